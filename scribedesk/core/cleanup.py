from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from scribedesk.core.dedup import export as exporter
from scribedesk.core.dedup.classifier import classify_groups
from scribedesk.core.dedup.grouper import find_duplicate_groups
from scribedesk.core.dedup.models import (
    ActivityEntry,
    CleanupRun,
    ClassifiedGroup,
    DuplicateGroup,
    Record,
    RecordFilter,
    RetentionPolicy,
    RunStatus,
    RunTrigger,
    as_utc,
    utc_now,
)
from scribedesk.core.dedup.reporter import DedupReport, approx_bytes, build_report, summarize_history
from scribedesk.core.dedup.schedule import next_run, should_run
from scribedesk.core.dedup.tags import merged_tag_ids
from scribedesk.core.errors import NotFoundError, ScribeError, StoreUnavailableError, ValidationError
from scribedesk.core.events.models import EventSeverity, SourceSubsystem
from scribedesk.core.store.ports import (
    ActivityLog,
    BatchResult,
    CleanupHistory,
    DeletionSink,
    PolicyStore,
    ProtectionSink,
    RecordSource,
    TagSink,
)


class CleanupResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    trigger: RunTrigger = RunTrigger.MANUAL
    # completed | skipped | failed
    status: str = "completed"
    message: str = ""
    files_deleted: int = 0
    space_freed_bytes: int = 0
    deleted_ids: List[str] = Field(default_factory=list)
    groups: int = 0
    run_id: Optional[str] = None


class CleanupService:
    """
    Glue between the pure dedup engine and the injected store ports.

    Every call loads a fresh snapshot from the record source, runs the engine
    on it and hands decisions to the sinks. The service keeps no state between
    calls except `last_report`, the most recent report built for export.
    """

    def __init__(
        self,
        source: RecordSource,
        deletions: DeletionSink,
        protection: ProtectionSink,
        policies: PolicyStore,
        *,
        history: Optional[CleanupHistory] = None,
        activity: Optional[ActivityLog] = None,
        tags: Optional[TagSink] = None,
        event_bus: Any = None,
        event_logger: Any = None,
        logger: Any = None,
        clock: Optional[Callable[[], datetime]] = None,
        default_policy: Optional[RetentionPolicy] = None,
    ):
        self.source = source
        self.deletions = deletions
        self.protection = protection
        self.policies = policies
        self.history = history
        self.activity = activity
        self.tags = tags
        self.event_bus = event_bus
        self.event_logger = event_logger
        self.logger = logger
        self.clock = clock or utc_now
        self.default_policy = default_policy or RetentionPolicy()
        self.last_report: Optional[DedupReport] = None

    @classmethod
    def from_store(cls, store: Any, **kwargs: Any) -> "CleanupService":
        """One object implementing every port, e.g. TranscriptStore."""
        return cls(store, store, store, store, history=store, activity=store, tags=store, **kwargs)

    # ---- helpers ----
    def _now(self, now: Optional[datetime] = None) -> datetime:
        return as_utc(now) if now is not None else as_utc(self.clock())

    def _log_activity(self, user_id: str, action_type: str, description: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        if self.activity is None:
            return
        self.activity.log_activity(
            ActivityEntry(user_id=user_id, created_at=self._now(), action_type=action_type, action_description=description, metadata=metadata or {})
        )

    def _journal(self, trace_id: str, event_type: str, details: Dict[str, Any]) -> None:
        if self.event_logger is not None:
            self.event_logger.log(trace_id, event_type, details)

    def _emit(self, event_type: str, payload: Dict[str, Any], *, severity: EventSeverity = EventSeverity.INFO) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_type, payload, source=SourceSubsystem.cleanup, severity=severity)

    # ---- read side ----
    def records(self, user_id: str, *, record_filter: Optional[RecordFilter] = None) -> List[Record]:
        checksum_only = record_filter.checksum_only if record_filter is not None else False
        return self.source.fetch_records(user_id, checksum_only=checksum_only, record_filter=record_filter)

    def duplicate_groups(
        self,
        user_id: str,
        *,
        completed_only: bool = False,
        record_filter: Optional[RecordFilter] = None,
    ) -> List[DuplicateGroup]:
        return find_duplicate_groups(self.records(user_id, record_filter=record_filter), completed_only=completed_only)

    def get_policy(self, user_id: str) -> Optional[RetentionPolicy]:
        return self.policies.get_policy(user_id)

    def effective_policy(self, user_id: str) -> RetentionPolicy:
        return self.policies.get_policy(user_id) or self.default_policy

    def preview(self, user_id: str, policy: Any = None, now: Optional[datetime] = None) -> List[ClassifiedGroup]:
        # validate first: a malformed policy never reaches the store
        pol = RetentionPolicy.parse(policy) if policy is not None else self.effective_policy(user_id)
        return classify_groups(self.duplicate_groups(user_id), pol, self._now(now))

    def build_report(self, user_id: str, *, now: Optional[datetime] = None, policy: Any = None) -> DedupReport:
        pol = RetentionPolicy.parse(policy) if policy is not None else self.effective_policy(user_id)
        at = self._now(now)
        records = self.records(user_id)
        classified = classify_groups(find_duplicate_groups(records), pol, at)
        report = build_report(classified, total_records=len(records), generated_at=at)
        self.last_report = report
        return report

    def export(self, user_id: str, fmt: str, out_dir: str, *, now: Optional[datetime] = None) -> str:
        """
        Write one report format (csv|json|md|zip) under out_dir.

        The report is computed first and kept on `last_report`, so an ExportError
        raised by the write leaves it available to the caller.
        """
        report = self.build_report(user_id, now=now)
        path = exporter.write_report(report, fmt, out_dir)
        if self.logger:
            self.logger.info(f"Report exported for {user_id}: {path}")
        self._journal(user_id, "report.exported", {"user_id": user_id, "format": fmt, "path": path})
        return path

    def render_report(self, user_id: str, fmt: str, *, now: Optional[datetime] = None) -> Tuple[str, bytes]:
        report = self.build_report(user_id, now=now)
        data = exporter.render(report, fmt)
        return exporter.report_filename(fmt.lower(), report.generated_at), data

    # ---- policy ----
    def save_policy(self, user_id: str, policy: Any) -> RetentionPolicy:
        pol = RetentionPolicy.parse(policy)
        saved = self.policies.save_policy(user_id, pol)
        self._log_activity(
            user_id,
            "settings",
            "Retention policy updated",
            {"keep_latest": saved.keep_latest, "age_threshold_days": saved.age_threshold_days, "enabled": saved.enabled, "schedule": saved.schedule},
        )
        if self.logger:
            self.logger.info(f"Retention policy saved for {user_id}: enabled={saved.enabled} schedule={saved.schedule!r}")
        return saved

    def next_scheduled_run(self, user_id: str, now: Optional[datetime] = None) -> Optional[datetime]:
        pol = self.policies.get_policy(user_id)
        if pol is None or not pol.enabled or self.history is None:
            return None
        last = self.history.last_cleanup_run(user_id)
        return next_run(pol.schedule, last.run_at if last else None, self._now(now))

    def cleanup_history(self, user_id: str, *, limit: int = 50) -> List[CleanupRun]:
        if self.history is None:
            return []
        return self.history.list_cleanup_runs(user_id, limit=limit)

    def history_summary(self, user_id: str, *, limit: int = 50) -> Dict[str, Any]:
        return summarize_history(self.cleanup_history(user_id, limit=limit))

    def activity_log(self, user_id: Optional[str] = None, *, since: Optional[datetime] = None, limit: int = 200) -> List[ActivityEntry]:
        if self.activity is None:
            return []
        return self.activity.list_activity(user_id, since=since, limit=limit)

    # ---- cleanup runs ----
    def run_cleanup(self, user_id: str, *, trigger: str = "manual", now: Optional[datetime] = None) -> CleanupResult:
        try:
            trig = RunTrigger(str(trigger))
        except ValueError as e:
            raise ValidationError("Unknown cleanup trigger.", trigger=trigger) from e
        at = self._now(now)
        pol = self.policies.get_policy(user_id)
        if pol is None:
            return CleanupResult(user_id=user_id, trigger=trig, status="skipped", message="No cleanup configuration found")
        if not pol.enabled:
            return CleanupResult(user_id=user_id, trigger=trig, status="skipped", message="Cleanup is disabled")

        classified = classify_groups(find_duplicate_groups(self.source.fetch_records(user_id, checksum_only=True)), pol, at)
        ids = [rid for cg in classified for rid in cg.deletable_ids]
        freed = approx_bytes(sum(cg.reclaimable_size for cg in classified))
        if self.logger:
            self.logger.info(f"Cleanup for {user_id} ({trig.value}): {len(classified)} groups, {len(ids)} deletable")

        run_id = uuid.uuid4().hex
        affected = 0
        if ids:
            res = self.deletions.delete_records(user_id, ids)
            if not res.ok:
                self._record_run(CleanupRun(id=run_id, user_id=user_id, run_at=at, status=RunStatus.FAILED, trigger=trig, error=res.error))
                self._journal(user_id, "cleanup.failed", {"user_id": user_id, "trigger": trig.value, "error": res.error})
                if self.logger:
                    self.logger.error(f"Cleanup failed for {user_id}: {res.error}")
                raise StoreUnavailableError("Cleanup failed: duplicates could not be deleted.", user_id=user_id, error=res.error)
            affected = res.affected

        self._record_run(
            CleanupRun(id=run_id, user_id=user_id, run_at=at, files_deleted=affected, space_freed_bytes=freed if affected else 0, status=RunStatus.COMPLETED, trigger=trig)
        )
        self._log_activity(
            user_id,
            "admin",
            f"Cleanup completed: {affected} duplicates removed",
            {"files_deleted": affected, "space_freed_mb": round(freed / (1024 * 1024)) if affected else 0, "trigger": trig.value},
        )
        self._journal(user_id, "cleanup.completed", {"user_id": user_id, "trigger": trig.value, "files_deleted": affected})
        return CleanupResult(
            user_id=user_id,
            trigger=trig,
            status="completed",
            message="Nothing to delete" if not ids else f"Deleted {affected} duplicate file{'s' if affected != 1 else ''}",
            files_deleted=affected,
            space_freed_bytes=freed if affected else 0,
            deleted_ids=ids if affected else [],
            groups=len(classified),
            run_id=run_id,
        )

    def _record_run(self, run: CleanupRun) -> None:
        if self.history is not None:
            self.history.record_cleanup_run(run)

    def run_scheduled(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Run every enabled policy that is due. One user's failure never stops the others."""
        at = self._now(now)
        results: List[Dict[str, Any]] = []
        for user_id, pol in self.policies.list_enabled_policies():
            last = self.history.last_cleanup_run(user_id) if self.history is not None else None
            if not should_run(pol.schedule, last.run_at if last else None, at):
                results.append({"user_id": user_id, "status": "skipped", "reason": "not_due"})
                continue
            try:
                res = self.run_cleanup(user_id, trigger="scheduled", now=at)
            except ScribeError as e:
                if self.logger:
                    self.logger.warning(f"Scheduled cleanup failed for {user_id}: {e}")
                results.append({"user_id": user_id, "status": "failed", "error": e.code})
                continue
            results.append({"user_id": user_id, "status": res.status, "files_deleted": res.files_deleted})
        self._emit("cleanup.scheduled_pass", {"users": len(results), "ran": sum(1 for r in results if r["status"] == "completed")})
        return results

    # ---- bulk actions ----
    def bulk_protect(self, user_id: str, ids: Sequence[str], value: bool = True) -> BatchResult:
        res = self.protection.set_protected(user_id, list(ids), bool(value))
        if not res.ok:
            raise StoreUnavailableError("Protection could not be updated.", user_id=user_id, error=res.error)
        self._log_activity(
            user_id,
            "bulk_action",
            f"{'Protected' if value else 'Unprotected'} {res.requested} file{'s' if res.requested != 1 else ''}",
            {"ids": list(ids), "protected": bool(value), "changed": res.affected},
        )
        return res

    def bulk_delete(self, user_id: str, ids: Sequence[str]) -> BatchResult:
        res = self.deletions.delete_records(user_id, list(ids))
        if not res.ok:
            raise StoreUnavailableError("Records could not be deleted.", user_id=user_id, error=res.error)
        self._log_activity(
            user_id,
            "bulk_action",
            f"Deleted {res.affected} file{'s' if res.affected != 1 else ''}",
            {"ids": list(ids), "deleted": res.affected},
        )
        return res

    def _group(self, user_id: str, checksum: str) -> DuplicateGroup:
        for g in self.duplicate_groups(user_id):
            if g.checksum == checksum:
                return g
        raise NotFoundError("Duplicate group not found.", checksum=checksum)

    def delete_group(self, user_id: str, checksum: str, keep_latest: bool = True) -> BatchResult:
        """Delete one group's versions (all but the newest when keep_latest). Protected versions stay."""
        g = self._group(user_id, checksum)
        candidates = g.members[1:] if keep_latest else g.members
        ids = [m.id for m in candidates if not m.protected]
        if not ids:
            return BatchResult(ok=True, requested=0)
        res = self.deletions.delete_records(user_id, ids)
        if not res.ok:
            raise StoreUnavailableError("Failed to delete duplicates.", user_id=user_id, checksum=checksum, error=res.error)
        self._log_activity(
            user_id,
            "delete",
            f"Deleted {res.affected} duplicate file{'s' if res.affected != 1 else ''}",
            {"checksum": checksum, "keep_latest": bool(keep_latest), "ids": ids},
        )
        return res

    def merge_tags(self, user_id: str, checksum: str) -> Dict[str, Any]:
        """Copy every version's tags onto the newest version of the group."""
        if self.tags is None:
            raise ValidationError("Tag merging is not available.")
        g = self._group(user_id, checksum)
        newest_id, tag_ids = merged_tag_ids(g)
        if not tag_ids:
            return {"record_id": newest_id, "tag_ids": [], "added": 0}
        res = self.tags.attach_tags(user_id, newest_id, tag_ids)
        if not res.ok:
            raise StoreUnavailableError("Failed to merge tags.", user_id=user_id, checksum=checksum, error=res.error)
        self._log_activity(user_id, "tag", f"Merged tags from {g.count} versions to latest file", {"checksum": checksum, "tag_ids": tag_ids})
        return {"record_id": newest_id, "tag_ids": tag_ids, "added": res.affected}
