from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from scribedesk.core.dedup.models import ActivityEntry, CleanupRun, Record, RecordFilter, RetentionPolicy


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one batch mutation; success is reported per batch, never per record."""

    ok: bool
    requested: int
    affected: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "requested": self.requested, "affected": self.affected, "error": self.error}


class RecordSource(Protocol):
    def fetch_records(
        self,
        user_id: str,
        *,
        checksum_only: bool = True,
        record_filter: Optional[RecordFilter] = None,
    ) -> List[Record]:
        """Records of one user, newest first."""
        ...


class DeletionSink(Protocol):
    def delete_records(self, user_id: str, ids: Sequence[str]) -> BatchResult: ...


class ProtectionSink(Protocol):
    def set_protected(self, user_id: str, ids: Sequence[str], value: bool) -> BatchResult: ...


class PolicyStore(Protocol):
    def get_policy(self, user_id: str) -> Optional[RetentionPolicy]: ...

    def save_policy(self, user_id: str, policy: RetentionPolicy) -> RetentionPolicy: ...

    def list_enabled_policies(self) -> List[Tuple[str, RetentionPolicy]]: ...


class TagSink(Protocol):
    def attach_tags(self, user_id: str, record_id: str, tag_ids: Sequence[str]) -> BatchResult: ...


class CleanupHistory(Protocol):
    def record_cleanup_run(self, run: CleanupRun) -> CleanupRun: ...

    def last_cleanup_run(self, user_id: str) -> Optional[CleanupRun]: ...

    def list_cleanup_runs(self, user_id: str, *, limit: int = 50) -> List[CleanupRun]: ...


class ActivityLog(Protocol):
    def log_activity(self, entry: ActivityEntry) -> ActivityEntry: ...

    def list_activity(
        self,
        user_id: Optional[str] = None,
        *,
        since: Optional[datetime] = None,
        limit: int = 200,
    ) -> List[ActivityEntry]: ...
