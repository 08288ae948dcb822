from __future__ import annotations

from datetime import timedelta

import pytest

from scribedesk.core.dedup.classifier import classify_groups
from scribedesk.core.dedup.grouper import find_duplicate_groups
from scribedesk.core.dedup.models import CleanupRun, Priority, RecordStatus, RetentionPolicy, RunStatus
from scribedesk.core.dedup.reporter import (
    approx_bytes,
    build_report,
    format_bytes,
    priority_for,
    recommendations_for,
    summarize_history,
    top_duplicates,
    version_distribution,
)
from tests.helpers.records import NOW, make_record, scenario_records


@pytest.mark.parametrize("count,prio", [(2, Priority.LOW), (3, Priority.LOW), (4, Priority.MEDIUM), (5, Priority.HIGH), (9, Priority.HIGH)])
def test_priority_boundaries(count, prio):
    assert priority_for(count) == prio


def test_byte_estimate_and_formatting():
    assert approx_bytes(10) == 20
    assert format_bytes(100) == "200 B"
    assert format_bytes(1024) == "2.0 KB"
    assert format_bytes(1024 * 1024) == "2.0 MB"


def _group(n, *, checksum="abc", status=RecordStatus.COMPLETED, spread=1, text="x" * 10):
    recs = [make_record(f"{checksum}{i}", checksum=checksum, age_days=i * spread, status=status if i else RecordStatus.COMPLETED, text=text) for i in range(n)]
    return find_duplicate_groups(recs)[0]


def test_recommendations_priority_status_and_span():
    recs = recommendations_for(_group(5, spread=10))
    assert recs[0].startswith("HIGH PRIORITY: 5 versions detected")
    assert any(r.startswith("Old duplicates: Versions span 40 days") for r in recs)
    assert recs[-1] == "All versions completed successfully - safe to delete older versions"

    failed = recommendations_for(_group(2, status=RecordStatus.FAILED))
    assert failed[0] == "LOW PRIORITY: 2 versions detected"
    assert failed[-1] == "Some versions failed - review before deletion"


def test_large_waste_recommendation():
    recs = recommendations_for(_group(2, text="y" * 100_001))
    assert any(r.startswith("Large storage waste:") for r in recs)


def test_report_summary_and_wasted_equals_deletable():
    groups = find_duplicate_groups(scenario_records() + [make_record("z1", checksum="Z", age_days=1), make_record("z2", checksum="Z", age_days=2)])
    classified = classify_groups(groups, RetentionPolicy(age_threshold_days=15), NOW)
    report = build_report(classified, total_records=8, generated_at=NOW)
    s = report.summary
    assert s.total_duplicate_groups == 2
    assert s.total_extra_copies == 4
    assert s.total_deletable == 2
    assert s.reclaimable_size == 20
    assert s.reclaimable_bytes == 40
    assert s.percentage_duplicates == 75.0
    for cg, gr in zip(classified, report.duplicate_groups):
        assert gr.wasted_size == sum(m.record.size_chars for m in cg.members if m.will_be_deleted)
        assert gr.total_versions == cg.count
    first = report.duplicate_groups[0]
    assert first.versions[0].is_latest
    assert first.versions[0].version_number == first.total_versions
    assert report.generated_at == NOW


def test_empty_report_is_valid():
    report = build_report([], total_records=0)
    assert report.is_empty
    assert report.summary.total_duplicate_groups == 0
    assert report.summary.percentage_duplicates == 0.0


def test_distribution_and_top():
    groups = [_group(2, checksum="a"), _group(3, checksum="b"), _group(6, checksum="c"), _group(2, checksum="d")]
    assert version_distribution(groups) == {"2 versions": 2, "3 versions": 1, "5+ versions": 1}
    top = top_duplicates(groups, n=2)
    assert len(top) == 2
    assert top[0]["versions"] == 2
    assert top[0]["name"].endswith("...")


def test_history_summary():
    runs = [
        CleanupRun(user_id="u1", run_at=NOW - timedelta(days=i), files_deleted=i, space_freed_bytes=i * 1024 * 1024, status=RunStatus.FAILED if i == 3 else RunStatus.COMPLETED)
        for i in range(12)
    ]
    s = summarize_history(runs)
    assert s["total_runs"] == 12
    assert s["successful_runs"] == 11
    assert s["failed_runs"] == 1
    assert s["success_rate"] == 92
    assert s["total_files_deleted"] == sum(range(12))
    assert len(s["trend"]) == 10
    # oldest first
    assert s["trend"][0]["files_deleted"] == 9
    assert s["trend"][-1]["files_deleted"] == 0
    assert s["trend"][0]["space_freed_mb"] == 9.0


def test_history_summary_empty():
    assert summarize_history([])["success_rate"] == 0
