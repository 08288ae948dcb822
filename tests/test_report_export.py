from __future__ import annotations

import csv
import io
import json
import os
import zipfile

import pytest

from scribedesk.core.dedup import export as exporter
from scribedesk.core.dedup.classifier import classify_groups
from scribedesk.core.dedup.grouper import find_duplicate_groups
from scribedesk.core.dedup.models import ActivityEntry, RetentionPolicy
from scribedesk.core.dedup.reporter import build_report
from scribedesk.core.errors import ExportError
from tests.helpers.records import NOW, make_record, scenario_records


def _report(extra_groups: int = 1):
    recs = scenario_records()
    for i in range(extra_groups):
        recs += [
            make_record(f"g{i}a", checksum=f"G{i}", age_days=1, title=f'Call, "part" {i}'),
            make_record(f"g{i}b", checksum=f"G{i}", age_days=40),
        ]
    classified = classify_groups(find_duplicate_groups(recs), RetentionPolicy(age_threshold_days=15), NOW)
    return build_report(classified, total_records=len(recs), generated_at=NOW)


def test_csv_has_header_plus_one_row_per_group():
    report = _report(extra_groups=2)
    rows = list(csv.reader(io.StringIO(exporter.to_csv(report))))
    assert rows[0] == exporter.CSV_HEADERS
    assert len(rows) == len(report.duplicate_groups) + 1
    titles = [r[0] for r in rows[1:]]
    # commas and quotes survive RFC-4180 escaping
    assert 'Call, "part" 0' in titles


def test_csv_recommendations_joined():
    report = _report()
    rows = list(csv.reader(io.StringIO(exporter.to_csv(report))))
    assert rows[1][-1] == "; ".join(report.duplicate_groups[0].recommendations)


def test_json_shape():
    report = _report(extra_groups=3)
    doc = json.loads(exporter.to_json(report))
    assert set(doc) == {"generated_at", "summary", "duplicate_groups"}
    assert len(doc["duplicate_groups"]) == len(report.duplicate_groups)
    assert "versions" in doc["duplicate_groups"][0]
    assert "deletable_ids" not in doc["duplicate_groups"][0]


def test_markdown_sections():
    md = exporter.to_markdown(_report())
    for heading in ("# Deduplication Report", "## Summary", "### Overall Strategy", "## Duplicate Groups", "## Action Plan", "## Notes"):
        assert heading in md
    assert "| Version | Created | Status | Size | Tags |" in md
    assert "(Latest)" in md


def test_markdown_empty_report():
    md = exporter.to_markdown(build_report([], generated_at=NOW))
    assert "No duplicate files found." in md
    assert "No high priority items found." in md


def test_zip_bundle_members():
    data = exporter.bundle_zip(_report())
    with zipfile.ZipFile(io.BytesIO(data)) as z:
        assert sorted(z.namelist()) == ["README.md", "deduplication_report.csv", "deduplication_report.json", "deduplication_report.md"]
        assert z.read("README.md").decode("utf-8").startswith("# Deduplication Report Package")


def test_report_filename_has_timestamp():
    assert exporter.report_filename("csv", NOW) == "deduplication_report_2024-06-01_120000.csv"


def test_write_report_atomic(tmp_path):
    report = _report()
    out = tmp_path / "exports"
    path = exporter.write_report(report, "json", str(out))
    assert os.path.basename(path) == "deduplication_report_2024-06-01_120000.json"
    assert json.loads(open(path, encoding="utf-8").read())["summary"]["total_duplicate_groups"] == 2
    assert [p for p in os.listdir(out) if p.startswith(".tmp_")] == []
    assert exporter.write_bundle(report, str(out)).endswith(".zip")


def test_unsupported_format_raises_export_error():
    with pytest.raises(ExportError):
        exporter.render(_report(), "xlsx")


def test_unwritable_target_raises_and_keeps_report(tmp_path):
    report = _report()
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(ExportError) as ei:
        exporter.write_report(report, "csv", str(blocker / "sub"))
    assert ei.value.code == "export_failed"
    # report untouched and still renderable
    assert exporter.to_csv(report).startswith("File Title,")


def test_activity_export():
    entries = [
        ActivityEntry(user_id="u1", created_at=NOW, action_type="admin", action_description="Cleanup completed: 2 duplicates removed", metadata={"files_deleted": 2}),
    ]
    rows = exporter.activity_rows(entries, {"u1": {"email": "ops@example.com"}})
    assert rows[0]["user_email"] == "ops@example.com"
    assert rows[0]["user_group"] == "N/A"
    text = exporter.rows_to_csv(rows)
    parsed = list(csv.reader(io.StringIO(text)))
    assert parsed[0][:3] == ["id", "timestamp", "user_email"]
    assert json.loads(parsed[1][-1]) == {"files_deleted": 2}
    with pytest.raises(ExportError):
        exporter.rows_to_csv([])
