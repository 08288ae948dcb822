from __future__ import annotations

import argparse
import json
import os
import sys
import threading
from dataclasses import dataclass
from typing import Any, Optional

import uvicorn

from scribedesk.core.cleanup import CleanupService
from scribedesk.core.config import ConfigFsPaths, ConfigManager, ScribeConfig
from scribedesk.core.dedup.models import RetentionPolicy
from scribedesk.core.error_reporter import ErrorReporter
from scribedesk.core.errors import ScribeError
from scribedesk.core.events import BaseEvent, EventBus, EventLogger
from scribedesk.core.logger import setup_logging
from scribedesk.core.store import TranscriptStore
from scribedesk.web.api import create_app


@dataclass
class Runtime:
    cfg: ScribeConfig
    logger: Any
    event_logger: EventLogger
    error_reporter: ErrorReporter
    bus: EventBus
    store: TranscriptStore
    service: CleanupService


def build_runtime(root: str = ".") -> Runtime:
    cm = ConfigManager(fs=ConfigFsPaths(root))
    cfg = cm.load_all()
    log_dir = os.path.join(root, cfg.app.log_dir)
    logger = setup_logging(log_dir)
    cm.logger = logger
    event_logger = EventLogger(os.path.join(log_dir, "events.jsonl"))
    error_reporter = ErrorReporter(path=os.path.join(log_dir, "errors.jsonl"))

    bus = EventBus(cfg=cm.event_bus_config(), logger=logger)

    def journal_change(ev: BaseEvent) -> None:
        event_logger.log(ev.trace_id or "store", ev.event_type, ev.payload)

    bus.subscribe("*", journal_change)

    store = TranscriptStore(db_path=os.path.join(root, cfg.app.data_dir, "scribedesk.db"), event_bus=bus, logger=logger)
    r = cfg.retention
    default_policy = RetentionPolicy(keep_latest=r.keep_latest, age_threshold_days=r.age_threshold_days, enabled=r.enabled, schedule=r.schedule)
    service = CleanupService.from_store(store, event_bus=bus, event_logger=event_logger, logger=logger, default_policy=default_policy)
    return Runtime(cfg=cfg, logger=logger, event_logger=event_logger, error_reporter=error_reporter, bus=bus, store=store, service=service)


class CleanupScheduler:
    """Background thread that runs due scheduled cleanups every poll interval."""

    def __init__(self, *, service: CleanupService, poll_seconds: int, logger, error_reporter: ErrorReporter):  # noqa: ANN001
        self.service = service
        self.poll_seconds = max(10, int(poll_seconds))
        self.logger = logger
        self.error_reporter = error_reporter
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="scribedesk-scheduler", daemon=True)
        self._thread.start()
        self.logger.info(f"Cleanup scheduler started (poll every {self.poll_seconds}s)")

    def tick(self) -> list:
        try:
            results = self.service.run_scheduled()
        except ScribeError as e:
            self.error_reporter.write_error(e, trace_id="scheduler", subsystem="scheduler")
            self.logger.error(f"Scheduled pass failed: {e}")
            return []
        ran = [r for r in results if r.get("status") != "skipped"]
        if ran:
            self.logger.info(f"Scheduled pass: {json.dumps(ran)}")
        return results

    def _run(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.poll_seconds)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=3.0)


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True, default=str))


def cmd_serve(rt: Runtime, args: argparse.Namespace) -> int:
    web = rt.cfg.web
    if not web.enabled:
        rt.logger.warning("Web API disabled in config/web.json.")
        return 1
    app = create_app(
        rt.service,
        logger=rt.logger,
        event_logger=rt.event_logger,
        export_dir=web.export_dir,
        enable_cors_origins=web.allowed_origins,
        error_reporter=rt.error_reporter,
    )
    scheduler = None
    if not args.no_scheduler:
        scheduler = CleanupScheduler(
            service=rt.service,
            poll_seconds=rt.cfg.retention.scheduler_poll_seconds,
            logger=rt.logger,
            error_reporter=rt.error_reporter,
        )
        scheduler.start()
    host = args.host or web.bind_host
    port = int(args.port or web.port)
    rt.logger.info(f"Web server starting on http://{host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    finally:
        if scheduler is not None:
            scheduler.stop()
    return 0


def cmd_cleanup(rt: Runtime, args: argparse.Namespace) -> int:
    res = rt.service.run_cleanup(args.user, trigger="manual")
    _print(res.model_dump(mode="json"))
    return 0


def cmd_scheduled(rt: Runtime, args: argparse.Namespace) -> int:
    _print(rt.service.run_scheduled())
    return 0


def cmd_report(rt: Runtime, args: argparse.Namespace) -> int:
    path = rt.service.export(args.user, args.format, args.out or rt.cfg.web.export_dir)
    print(path)
    return 0


def cmd_preview(rt: Runtime, args: argparse.Namespace) -> int:
    groups = rt.service.preview(args.user)
    _print(
        [
            {
                "checksum": cg.checksum,
                "title": cg.group.title,
                "members": [{"id": m.record.id, "reason": m.reason.value, "delete": m.will_be_deleted} for m in cg.members],
            }
            for cg in groups
        ]
    )
    return 0


def main(argv: Optional[list] = None) -> int:
    ap = argparse.ArgumentParser(description="ScribeDesk transcript deduplication and retention service")
    ap.add_argument("--root", default=".", help="Directory holding config/, data/ and logs/.")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="Run the HTTP API (and the cleanup scheduler).")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.add_argument("--no-scheduler", action="store_true", help="Do not run scheduled cleanups in the background.")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("cleanup", help="Run a manual cleanup for one user.")
    p.add_argument("--user", required=True)
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser("run-scheduled", help="Run every due scheduled cleanup once and exit.")
    p.set_defaults(func=cmd_scheduled)

    p = sub.add_parser("preview", help="Show what a cleanup would delete for one user.")
    p.add_argument("--user", required=True)
    p.set_defaults(func=cmd_preview)

    p = sub.add_parser("report", help="Write a deduplication report.")
    p.add_argument("--user", required=True)
    p.add_argument("--format", choices=["csv", "json", "md", "zip"], default="zip")
    p.add_argument("--out", default=None, help="Output directory (defaults to web.export_dir).")
    p.set_defaults(func=cmd_report)

    args = ap.parse_args(argv)
    rt = build_runtime(args.root)
    try:
        return int(args.func(rt, args))
    except ScribeError as e:
        rt.error_reporter.write_error(e, trace_id="cli", subsystem="cli")
        rt.logger.error(f"{e.code}: {e.user_message}")
        return 2
    finally:
        rt.bus.shutdown()


if __name__ == "__main__":
    sys.exit(main())
