from __future__ import annotations

import json
import sqlite3

from scribedesk.core.error_reporter import ErrorReporter, ErrorReporterConfig, normalize_exception
from scribedesk.core.errors import ExportError, PolicyValidationError, ScribeError, StoreUnavailableError


def test_unknown_exception_normalized_and_redacted(tmp_path):
    p = tmp_path / "errors.jsonl"
    r = ErrorReporter(path=str(p))
    try:
        raise RuntimeError("boom")
    except Exception as e:  # noqa: BLE001
        se = r.report_exception(e, trace_id="t1", subsystem="cli", context={"api_key": "SECRET", "x": 1})
        assert se.code == "unknown_error"
        assert se.user_message
    lines = p.read_text(encoding="utf-8").splitlines()
    obj = json.loads(lines[-1])
    assert obj["trace_id"] == "t1"
    assert obj["subsystem"] == "cli"
    assert "SECRET" not in json.dumps(obj)
    assert "***REDACTED***" in json.dumps(obj)
    assert "internal_context" not in obj


def test_tracebacks_only_when_enabled(tmp_path):
    p = tmp_path / "errors.jsonl"
    r = ErrorReporter(path=str(p), cfg=ErrorReporterConfig(include_tracebacks=True))
    try:
        raise ValueError("bad")
    except ValueError as e:
        r.report_exception(e, trace_id="t2", subsystem="export")
    obj = r.tail(1)[0]
    assert obj["error_code"] == "export_failed"
    assert "ValueError" in obj["internal_context"]["traceback"]


def test_normalization_by_subsystem():
    assert isinstance(normalize_exception(OSError("disk"), subsystem="export", context={}), ExportError)
    assert isinstance(normalize_exception(RuntimeError("x"), subsystem="store", context={}), StoreUnavailableError)
    assert isinstance(normalize_exception(sqlite3.OperationalError("locked"), subsystem="web", context={}), StoreUnavailableError)
    assert isinstance(normalize_exception(ValueError("x"), subsystem="policy", context={}), PolicyValidationError)
    assert normalize_exception(KeyError("x"), subsystem="config", context={}).code == "config_error"


def test_scribe_errors_pass_through():
    err = PolicyValidationError("nope", fields=["age_threshold_days"])
    assert normalize_exception(err, subsystem="web", context={}) is err
    assert err.to_dict()["code"] == "policy_invalid"
    assert str(err) == "policy_invalid: nope"
    assert isinstance(err, ScribeError)


def test_tail_skips_garbage(tmp_path):
    p = tmp_path / "errors.jsonl"
    r = ErrorReporter(path=str(p))
    r.write_error(ExportError(), trace_id="t", subsystem="export")
    with open(p, "a", encoding="utf-8") as f:
        f.write("not json\n")
    assert [x["error_code"] for x in r.tail(5)] == ["export_failed"]
