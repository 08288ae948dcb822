from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from scribedesk.core.dedup.models import (
    CleanupRun,
    ClassifiedGroup,
    DuplicateGroup,
    Priority,
    RecordStatus,
    RetentionReason,
    RunStatus,
    utc_now,
)

# Byte figures are estimates: transcript characters x 2. Historical reports use
# the same factor, so it stays an approximation and is never replaced by real
# storage sizes.
BYTES_PER_CHAR = 2
LARGE_WASTE_CHARS = 100_000
OLD_SPAN_DAYS = 30


def approx_bytes(chars: int) -> int:
    return int(chars) * BYTES_PER_CHAR


def format_bytes(chars: int) -> str:
    b = approx_bytes(chars)
    if b < 1024:
        return f"{b} B"
    if b < 1024 * 1024:
        return f"{b / 1024:.1f} KB"
    return f"{b / (1024 * 1024):.1f} MB"


def priority_for(count: int) -> Priority:
    if count >= 5:
        return Priority.HIGH
    if count > 3:
        return Priority.MEDIUM
    return Priority.LOW


def span_days(group: DuplicateGroup) -> int:
    return (group.newest_timestamp - group.oldest_timestamp).days


def recommendations_for(group: DuplicateGroup, wasted_size: Optional[int] = None) -> List[str]:
    wasted = group.wasted_size if wasted_size is None else int(wasted_size)
    prio = priority_for(group.count)
    out: List[str] = []
    if prio == Priority.HIGH:
        out.append(f"HIGH PRIORITY: {group.count} versions detected - significant cleanup opportunity")
    elif prio == Priority.MEDIUM:
        out.append(f"MEDIUM PRIORITY: {group.count} versions detected - consider cleanup")
    else:
        out.append(f"LOW PRIORITY: {group.count} versions detected")

    if wasted > LARGE_WASTE_CHARS:
        out.append(f"Large storage waste: {format_bytes(wasted)} can be recovered")

    days = span_days(group)
    if days > OLD_SPAN_DAYS:
        out.append(f"Old duplicates: Versions span {days} days - likely safe to keep only latest")

    if all(m.status == RecordStatus.COMPLETED for m in group.members):
        out.append("All versions completed successfully - safe to delete older versions")
    else:
        out.append("Some versions failed - review before deletion")
    return out


class VersionReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version_number: int
    id: str
    status: str
    created_at: datetime
    size_chars: int
    is_latest: bool
    tags: List[str] = Field(default_factory=list)
    reason: RetentionReason
    will_be_deleted: bool


class GroupReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    file_title: str
    checksum: str
    total_versions: int
    # chars over Deletable members only
    wasted_size: int
    wasted_space: str
    wasted_bytes: int
    oldest_version: datetime
    newest_version: datetime
    priority: Priority
    recommendations: List[str]
    deletable_ids: List[str] = Field(default_factory=list)
    versions: List[VersionReport] = Field(default_factory=list)


class ReportSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_duplicate_groups: int = 0
    total_extra_copies: int = 0
    total_deletable: int = 0
    reclaimable_size: int = 0
    reclaimable_space: str = "0 B"
    reclaimable_bytes: int = 0
    percentage_duplicates: float = 0.0


class DedupReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    generated_at: datetime = Field(default_factory=utc_now)
    summary: ReportSummary = Field(default_factory=ReportSummary)
    duplicate_groups: List[GroupReport] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.duplicate_groups


def group_report(cg: ClassifiedGroup) -> GroupReport:
    g = cg.group
    wasted = cg.reclaimable_size
    versions = [
        VersionReport(
            version_number=cg.count - idx,
            id=m.record.id,
            status=m.record.status.value,
            created_at=m.record.created_at,
            size_chars=m.record.size_chars,
            is_latest=idx == 0,
            tags=[t.name for t in m.record.tags],
            reason=m.reason,
            will_be_deleted=m.will_be_deleted,
        )
        for idx, m in enumerate(cg.members)
    ]
    return GroupReport(
        file_title=g.title,
        checksum=g.checksum,
        total_versions=g.count,
        wasted_size=wasted,
        wasted_space=format_bytes(wasted),
        wasted_bytes=approx_bytes(wasted),
        oldest_version=g.oldest_timestamp,
        newest_version=g.newest_timestamp,
        priority=priority_for(g.count),
        recommendations=recommendations_for(g, wasted),
        deletable_ids=cg.deletable_ids,
        versions=versions,
    )


def build_report(
    classified_groups: Sequence[ClassifiedGroup],
    *,
    total_records: Optional[int] = None,
    generated_at: Optional[datetime] = None,
) -> DedupReport:
    groups = [group_report(cg) for cg in classified_groups]
    reclaimable = sum(cg.reclaimable_size for cg in classified_groups)
    members = sum(cg.count for cg in classified_groups)
    pct = round(members / total_records * 100, 1) if total_records else 0.0
    summary = ReportSummary(
        total_duplicate_groups=len(groups),
        total_extra_copies=sum(cg.count - 1 for cg in classified_groups),
        total_deletable=sum(len(cg.deletable_ids) for cg in classified_groups),
        reclaimable_size=reclaimable,
        reclaimable_space=format_bytes(reclaimable),
        reclaimable_bytes=approx_bytes(reclaimable),
        percentage_duplicates=pct,
    )
    return DedupReport(generated_at=generated_at or utc_now(), summary=summary, duplicate_groups=groups)


def version_distribution(groups: Iterable[DuplicateGroup]) -> Dict[str, int]:
    dist = {"2 versions": 0, "3 versions": 0, "4 versions": 0, "5+ versions": 0}
    for g in groups:
        if g.count == 2:
            dist["2 versions"] += 1
        elif g.count == 3:
            dist["3 versions"] += 1
        elif g.count == 4:
            dist["4 versions"] += 1
        else:
            dist["5+ versions"] += 1
    return {k: v for k, v in dist.items() if v > 0}


def top_duplicates(groups: Sequence[DuplicateGroup], n: int = 5) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for g in list(groups)[: max(0, int(n))]:
        rows.append({"name": g.title[:20] + "...", "versions": g.count, "wasted": g.wasted_size})
    return rows


def summarize_history(runs: Sequence[CleanupRun]) -> Dict[str, Any]:
    """runs newest-first, as the store lists them."""
    total = len(runs)
    ok = sum(1 for r in runs if r.status == RunStatus.COMPLETED)
    trend = [
        {
            "date": r.run_at.strftime("%Y-%m-%d"),
            "files_deleted": r.files_deleted,
            "space_freed_mb": round(r.space_freed_bytes / (1024 * 1024), 2),
        }
        for r in reversed(list(runs)[:10])
    ]
    return {
        "total_runs": total,
        "successful_runs": ok,
        "failed_runs": total - ok,
        "success_rate": round(ok / total * 100) if total else 0,
        "total_files_deleted": sum(r.files_deleted for r in runs),
        "total_space_freed_bytes": sum(r.space_freed_bytes for r in runs),
        "trend": trend,
    }
