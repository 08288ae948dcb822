from __future__ import annotations

import json
import os

import app
from scribedesk.core.dedup.models import RetentionPolicy
from tests.helpers.fakes import DummyLogger
from tests.helpers.records import scenario_records


def test_build_runtime_creates_config_and_db(tmp_path):
    rt = app.build_runtime(str(tmp_path))
    try:
        assert os.path.exists(tmp_path / "config" / "retention.json")
        assert os.path.exists(tmp_path / "data" / "scribedesk.db")
        assert rt.service.default_policy == RetentionPolicy()
    finally:
        rt.bus.shutdown(0.5)


def test_cli_cleanup_and_report(tmp_path, capsys):
    rt = app.build_runtime(str(tmp_path))
    for r in scenario_records():
        rt.store.add_record(r)
    rt.store.save_policy("u1", RetentionPolicy(enabled=True, age_threshold_days=15))
    rt.bus.shutdown(0.5)

    assert app.main(["--root", str(tmp_path), "cleanup", "--user", "u1"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["status"] == "completed"
    assert out["user_id"] == "u1"

    out_dir = tmp_path / "reports"
    assert app.main(["--root", str(tmp_path), "report", "--user", "u1", "--format", "json", "--out", str(out_dir)]) == 0
    path = capsys.readouterr().out.strip()
    assert path.endswith(".json") and os.path.exists(path)


def test_cli_reports_scribe_errors(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("x", encoding="utf-8")
    assert app.main(["--root", str(tmp_path), "report", "--user", "u1", "--format", "csv", "--out", str(blocker)]) == 2
    errs = [json.loads(x) for x in open(tmp_path / "logs" / "errors.jsonl", encoding="utf-8")]
    assert errs[-1]["error_code"] == "export_failed"


def test_scheduler_tick_runs_due_cleanups(tmp_path):
    rt = app.build_runtime(str(tmp_path))
    try:
        rt.store.save_policy("u1", RetentionPolicy(enabled=True))
        sched = app.CleanupScheduler(service=rt.service, poll_seconds=60, logger=DummyLogger(), error_reporter=rt.error_reporter)
        first = sched.tick()
        assert first == [{"user_id": "u1", "status": "completed", "files_deleted": 0}]
        assert sched.tick() == [{"user_id": "u1", "status": "skipped", "reason": "not_due"}]
    finally:
        rt.bus.shutdown(0.5)
