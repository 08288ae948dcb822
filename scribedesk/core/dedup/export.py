from __future__ import annotations

import csv
import io
import json
import os
import tempfile
import zipfile
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from scribedesk.core.dedup.models import ActivityEntry, Priority
from scribedesk.core.dedup.reporter import DedupReport, GroupReport
from scribedesk.core.errors import ExportError

FORMATS = ("csv", "json", "md", "zip")

CSV_HEADERS = [
    "File Title",
    "Checksum",
    "Total Versions",
    "Wasted Space",
    "Wasted Space (Bytes)",
    "Oldest Version",
    "Newest Version",
    "Priority",
    "Recommendations",
]

MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
    "md": "text/markdown; charset=utf-8",
    "zip": "application/zip",
}


def _ts(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def report_filename(ext: str, at: datetime) -> str:
    return f"deduplication_report_{at.strftime('%Y-%m-%d_%H%M%S')}.{ext}"


def to_csv(report: DedupReport) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    w.writerow(CSV_HEADERS)
    for g in report.duplicate_groups:
        w.writerow(
            [
                g.file_title,
                g.checksum,
                g.total_versions,
                g.wasted_space,
                g.wasted_bytes,
                _ts(g.oldest_version),
                _ts(g.newest_version),
                g.priority.value,
                "; ".join(g.recommendations),
            ]
        )
    return buf.getvalue()


def report_dict(report: DedupReport) -> Dict[str, Any]:
    doc = report.model_dump(mode="json")
    for g in doc["duplicate_groups"]:
        g.pop("deletable_ids", None)
    return doc


def to_json(report: DedupReport) -> str:
    return json.dumps(report_dict(report), indent=2, ensure_ascii=False)


def _group_md(idx: int, g: GroupReport) -> List[str]:
    lines = [
        f"### {idx}. {g.file_title}",
        "",
        f"- **Checksum:** `{g.checksum}`",
        f"- **Total Versions:** {g.total_versions}",
        f"- **Priority:** {g.priority.value}",
        f"- **Wasted Space:** {g.wasted_space}",
        f"- **Date Range:** {g.oldest_version.strftime('%b %d, %Y')} - {g.newest_version.strftime('%b %d, %Y')}",
        "",
        "**Recommendations:**",
        "",
    ]
    lines += [f"- {rec}" for rec in g.recommendations]
    lines += [
        "",
        "**Versions:**",
        "",
        "| Version | Created | Status | Size | Tags |",
        "|---------|---------|--------|------|------|",
    ]
    for v in g.versions:
        label = f"{v.version_number} (Latest)" if v.is_latest else str(v.version_number)
        tags = ", ".join(v.tags) or "None"
        lines.append(f"| {label} | {v.created_at.strftime('%b %d, %Y %H:%M')} | {v.status} | {v.size_chars:,} chars | {tags} |")
    lines += ["", "---", ""]
    return lines


def _action_items(groups: Sequence[GroupReport], prio: Priority) -> List[str]:
    picked = [g for g in groups if g.priority == prio]
    if not picked:
        return [f"No {prio.value.lower()} priority items found."]
    return [
        f"{i}. **{g.file_title}** - {g.total_versions} versions, {g.wasted_space} to recover"
        for i, g in enumerate(picked, start=1)
    ]


def to_markdown(report: DedupReport) -> str:
    s = report.summary
    lines = [
        "# Deduplication Report",
        "",
        f"**Generated:** {report.generated_at.strftime('%B %d, %Y %H:%M:%S')}",
        "",
        "## Summary",
        "",
        f"- **Total Duplicate Groups:** {s.total_duplicate_groups}",
        f"- **Total Extra Copies:** {s.total_extra_copies}",
        f"- **Deletable Under Current Policy:** {s.total_deletable}",
        f"- **Wasted Space:** {s.reclaimable_space}",
        f"- **Percentage of Files:** {s.percentage_duplicates}%",
        "",
        "## Recommendations",
        "",
        "### Overall Strategy",
        "",
        "1. **High Priority Groups:** Focus on groups with 5+ versions first",
        "2. **Safety First:** Always keep the latest version unless there's a specific reason not to",
        '3. **Tag Preservation:** Use the "Merge Tags" feature before deletion to preserve metadata',
        "4. **Review Failed Versions:** Check error messages before deleting failed versions",
        "",
        "### Potential Savings",
        "",
        f"By removing the deletable duplicates, you can recover **{s.reclaimable_space}** of storage space (estimate).",
        "",
        "## Duplicate Groups",
        "",
    ]
    if report.is_empty:
        lines += ["No duplicate files found.", ""]
    for i, g in enumerate(report.duplicate_groups, start=1):
        lines += _group_md(i, g)

    lines += ["## Action Plan", "", "### Immediate Actions (High Priority)", ""]
    lines += _action_items(report.duplicate_groups, Priority.HIGH)
    lines += ["", "### Medium Priority", ""]
    lines += _action_items(report.duplicate_groups, Priority.MEDIUM)
    lines += [
        "",
        "## Notes",
        "",
        "- This report was automatically generated based on file checksums",
        "- Files with identical checksums are guaranteed to be exact duplicates",
        "- Sizes are estimated from transcript length (2 bytes per character), not measured storage",
        "- Always review the latest version before deleting older versions",
        "- Consider backing up important files before mass deletion",
        "",
    ]
    return "\n".join(lines)


def _readme(report: DedupReport) -> str:
    s = report.summary
    return "\n".join(
        [
            "# Deduplication Report Package",
            "",
            "This package contains a deduplication analysis of your transcription files.",
            "",
            "## Contents",
            "",
            "- **deduplication_report.csv** - Spreadsheet format for easy analysis in Excel/Google Sheets",
            "- **deduplication_report.json** - Machine-readable format for automated processing",
            "- **deduplication_report.md** - Human-readable report with recommendations",
            "- **README.md** - This file",
            "",
            "## Summary",
            "",
            f"- Total Duplicate Groups: {s.total_duplicate_groups}",
            f"- Total Extra Copies: {s.total_extra_copies}",
            f"- Potential Space Recovery: {s.reclaimable_space}",
            "",
            "## Next Steps",
            "",
            "1. Review the Markdown report for detailed recommendations",
            "2. Use the CSV file to analyze duplicates in a spreadsheet",
            "3. Use the JSON file for automated processing",
            "",
            f"Generated: {report.generated_at.strftime('%B %d, %Y %H:%M:%S')}",
            "",
        ]
    )


def bundle_zip(report: DedupReport) -> bytes:
    buf = io.BytesIO()
    try:
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=6) as z:
            z.writestr("deduplication_report.csv", to_csv(report).encode("utf-8"))
            z.writestr("deduplication_report.json", to_json(report).encode("utf-8"))
            z.writestr("deduplication_report.md", to_markdown(report).encode("utf-8"))
            z.writestr("README.md", _readme(report).encode("utf-8"))
    except (OSError, ValueError, TypeError, zipfile.BadZipFile) as e:
        raise ExportError(fmt="zip", error=str(e)) from e
    return buf.getvalue()


def render(report: DedupReport, fmt: str) -> bytes:
    fmt = str(fmt or "").lower()
    if fmt not in FORMATS:
        raise ExportError(f"Unsupported export format: {fmt}", fmt=fmt)
    if fmt == "zip":
        return bundle_zip(report)
    try:
        if fmt == "csv":
            return to_csv(report).encode("utf-8")
        if fmt == "json":
            return to_json(report).encode("utf-8")
        return to_markdown(report).encode("utf-8")
    except (ValueError, TypeError) as e:
        raise ExportError(fmt=fmt, error=str(e)) from e


def _atomic_write_bytes(path: str, data: bytes) -> None:
    d = os.path.dirname(path) or "."
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", dir=d)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            try:
                os.remove(tmp)
            except OSError:
                pass


def write_report(report: DedupReport, fmt: str, out_dir: str, *, at: Optional[datetime] = None) -> str:
    """Render one format and write it under out_dir. Returns the written path."""
    data = render(report, fmt)
    path = os.path.join(out_dir, report_filename(fmt.lower(), at or report.generated_at))
    try:
        _atomic_write_bytes(path, data)
    except OSError as e:
        raise ExportError(fmt=fmt, path=path, error=str(e)) from e
    return path


def write_bundle(report: DedupReport, out_dir: str) -> str:
    return write_report(report, "zip", out_dir)


# ---- activity log export ----
def activity_rows(entries: Iterable[ActivityEntry], users: Optional[Dict[str, Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    users = users or {}
    rows: List[Dict[str, Any]] = []
    for e in entries:
        u = users.get(e.user_id) or {}
        rows.append(
            {
                "id": e.id,
                "timestamp": e.created_at.isoformat(),
                "user_email": u.get("email") or "Unknown",
                "user_group": u.get("user_group") or "N/A",
                "action_type": e.action_type,
                "action_description": e.action_description,
                "metadata": e.metadata,
            }
        )
    return rows


def rows_to_csv(rows: Sequence[Dict[str, Any]]) -> str:
    if not rows:
        raise ExportError("No data to export.")
    headers = list(rows[0].keys())
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(headers)
    for row in rows:
        out = []
        for h in headers:
            v = row.get(h)
            if v is None:
                out.append("")
            elif isinstance(v, (dict, list)):
                out.append(json.dumps(v, ensure_ascii=False, default=str))
            else:
                out.append(v)
        w.writerow(out)
    return buf.getvalue()


__all__ = [
    "FORMATS",
    "MEDIA_TYPES",
    "activity_rows",
    "bundle_zip",
    "render",
    "report_filename",
    "rows_to_csv",
    "to_csv",
    "to_json",
    "to_markdown",
    "write_bundle",
    "write_report",
]
