from __future__ import annotations

import json
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from scribedesk.core.dedup.models import (
    ActivityEntry,
    CleanupRun,
    Record,
    RecordFilter,
    RecordStatus,
    RetentionPolicy,
    RunStatus,
    RunTrigger,
    Tag,
    as_utc,
)
from scribedesk.core.errors import StoreUnavailableError
from scribedesk.core.events.models import EventSeverity, SourceSubsystem
from scribedesk.core.store.ports import BatchResult

# stay well below SQLITE_MAX_VARIABLE_NUMBER
_CHUNK = 500


def _iso(dt: datetime) -> str:
    return as_utc(dt).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse(s: str) -> datetime:
    return datetime.strptime(s, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


def _chunks(ids: Sequence[str]) -> Iterator[List[str]]:
    items = list(dict.fromkeys(str(i) for i in ids if i))
    for i in range(0, len(items), _CHUNK):
        yield items[i : i + _CHUNK]


class TranscriptStore:
    """
    Local transcript record store (SQLite).

    Implements every store port the cleanup service needs. One connection per
    call, serialized by a lock. Mutations are idempotent and publish change
    events on the attached bus.
    """

    def __init__(self, *, db_path: str, event_bus: Any = None, logger: Any = None):
        self.db_path = str(db_path)
        self.event_bus = event_bus
        self.logger = logger
        self._lock = threading.Lock()
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        self._init_db()

    # ---- sqlite helpers ----
    def _conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.execute("PRAGMA foreign_keys=ON;")
        except sqlite3.Error as e:
            raise StoreUnavailableError(db_path=self.db_path, error=str(e)) from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        except sqlite3.Error:
            pass
        return conn

    def _init_db(self) -> None:
        with self._lock:
            conn = self._conn()
            try:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS records (
                      id TEXT PRIMARY KEY,
                      user_id TEXT NOT NULL,
                      title TEXT NOT NULL DEFAULT '',
                      created_at TEXT NOT NULL,
                      checksum TEXT,
                      protected INTEGER NOT NULL DEFAULT 0,
                      status TEXT NOT NULL DEFAULT 'completed',
                      transcript_text TEXT
                    );
                    CREATE INDEX IF NOT EXISTS idx_records_user_checksum ON records(user_id, checksum);
                    CREATE INDEX IF NOT EXISTS idx_records_user_created ON records(user_id, created_at);

                    CREATE TABLE IF NOT EXISTS tags (
                      id TEXT PRIMARY KEY,
                      user_id TEXT NOT NULL,
                      name TEXT NOT NULL,
                      color TEXT NOT NULL DEFAULT '#3b82f6',
                      UNIQUE(user_id, name)
                    );

                    CREATE TABLE IF NOT EXISTS record_tags (
                      record_id TEXT NOT NULL REFERENCES records(id) ON DELETE CASCADE,
                      tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
                      PRIMARY KEY(record_id, tag_id)
                    );

                    CREATE TABLE IF NOT EXISTS retention_policies (
                      user_id TEXT PRIMARY KEY,
                      keep_latest INTEGER NOT NULL,
                      age_threshold_days INTEGER NOT NULL,
                      enabled INTEGER NOT NULL,
                      schedule TEXT NOT NULL,
                      created_at TEXT NOT NULL,
                      updated_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS cleanup_history (
                      id TEXT PRIMARY KEY,
                      user_id TEXT NOT NULL,
                      run_at TEXT NOT NULL,
                      files_deleted INTEGER NOT NULL DEFAULT 0,
                      space_freed_bytes INTEGER NOT NULL DEFAULT 0,
                      status TEXT NOT NULL,
                      run_trigger TEXT NOT NULL,
                      error TEXT
                    );
                    CREATE INDEX IF NOT EXISTS idx_cleanup_user_run ON cleanup_history(user_id, run_at);

                    CREATE TABLE IF NOT EXISTS activity_logs (
                      id TEXT PRIMARY KEY,
                      user_id TEXT NOT NULL,
                      created_at TEXT NOT NULL,
                      action_type TEXT NOT NULL,
                      action_description TEXT NOT NULL DEFAULT '',
                      metadata_json TEXT NOT NULL DEFAULT '{}'
                    );
                    CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_logs(created_at);
                    """
                )
                conn.commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="init", db_path=self.db_path, error=str(e)) from e
            finally:
                conn.close()

    def _emit(self, trace_id: str, event_type: str, payload: Dict[str, Any], *, severity: EventSeverity = EventSeverity.INFO) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.emit(event_type, payload, source=SourceSubsystem.store, trace_id=trace_id, severity=severity)
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.warning(f"Change event {event_type} not published: {e}")

    # ---- records ----
    def add_record(self, record: Record) -> Record:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    INSERT INTO records(id, user_id, title, created_at, checksum, protected, status, transcript_text)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      title=excluded.title,
                      checksum=excluded.checksum,
                      protected=excluded.protected,
                      status=excluded.status,
                      transcript_text=excluded.transcript_text
                    """,
                    (
                        record.id,
                        record.user_id,
                        record.title,
                        _iso(record.created_at),
                        record.checksum,
                        1 if record.protected else 0,
                        record.status.value,
                        record.transcript_text,
                    ),
                )
                for t in record.tags:
                    self._upsert_tag_row(conn, record.user_id, t)
                    conn.execute("INSERT OR IGNORE INTO record_tags(record_id, tag_id) VALUES (?, ?)", (record.id, t.id))
                conn.commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="add_record", error=str(e)) from e
            finally:
                conn.close()
        self._emit(record.user_id, "record.inserted", {"user_id": record.user_id, "id": record.id, "checksum": record.checksum})
        return record

    def get_record(self, user_id: str, record_id: str) -> Optional[Record]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute("SELECT * FROM records WHERE user_id=? AND id=?", (user_id, record_id)).fetchone()
                if row is None:
                    return None
                tags = self._tags_for(conn, [row["id"]])
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="get_record", error=str(e)) from e
            finally:
                conn.close()
        return self._row_to_record(row, tags.get(row["id"], []))

    def fetch_records(
        self,
        user_id: str,
        *,
        checksum_only: bool = True,
        record_filter: Optional[RecordFilter] = None,
    ) -> List[Record]:
        sql = "SELECT * FROM records WHERE user_id=?"
        if checksum_only:
            sql += " AND checksum IS NOT NULL AND checksum != ''"
        # rowid keeps insertion order for equal timestamps
        sql += " ORDER BY created_at DESC, rowid ASC"
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(sql, (user_id,)).fetchall()
                tags = self._tags_for(conn, [r["id"] for r in rows])
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="fetch_records", error=str(e)) from e
            finally:
                conn.close()
        out = [self._row_to_record(r, tags.get(r["id"], [])) for r in rows]
        if record_filter is not None:
            out = [r for r in out if record_filter.matches(r)]
        return out

    def delete_records(self, user_id: str, ids: Sequence[str]) -> BatchResult:
        requested = len(set(i for i in ids if i))
        if not requested:
            return BatchResult(ok=True, requested=0)
        deleted: List[str] = []
        with self._lock:
            conn = self._conn()
            try:
                for chunk in _chunks(ids):
                    marks = ",".join("?" for _ in chunk)
                    found = conn.execute(f"SELECT id FROM records WHERE user_id=? AND id IN ({marks})", (user_id, *chunk)).fetchall()
                    conn.execute(f"DELETE FROM records WHERE user_id=? AND id IN ({marks})", (user_id, *chunk))
                    deleted.extend(r["id"] for r in found)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                if self.logger:
                    self.logger.error(f"Batch delete failed for {user_id}: {e}")
                return BatchResult(ok=False, requested=requested, affected=0, error=str(e))
            finally:
                conn.close()
        if deleted:
            self._emit(user_id, "record.deleted", {"user_id": user_id, "ids": deleted})
        return BatchResult(ok=True, requested=requested, affected=len(deleted))

    def set_protected(self, user_id: str, ids: Sequence[str], value: bool) -> BatchResult:
        requested = len(set(i for i in ids if i))
        if not requested:
            return BatchResult(ok=True, requested=0)
        flag = 1 if value else 0
        changed = 0
        with self._lock:
            conn = self._conn()
            try:
                for chunk in _chunks(ids):
                    marks = ",".join("?" for _ in chunk)
                    cur = conn.execute(
                        f"UPDATE records SET protected=? WHERE user_id=? AND protected != ? AND id IN ({marks})",
                        (flag, user_id, flag, *chunk),
                    )
                    changed += int(cur.rowcount or 0)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                if self.logger:
                    self.logger.error(f"Batch protect failed for {user_id}: {e}")
                return BatchResult(ok=False, requested=requested, affected=0, error=str(e))
            finally:
                conn.close()
        if changed:
            self._emit(user_id, "record.protected", {"user_id": user_id, "ids": list(dict.fromkeys(ids)), "protected": bool(value)})
        return BatchResult(ok=True, requested=requested, affected=changed)

    # ---- tags ----
    def _upsert_tag_row(self, conn: sqlite3.Connection, user_id: str, tag: Tag) -> None:
        conn.execute(
            "INSERT INTO tags(id, user_id, name, color) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name=excluded.name, color=excluded.color",
            (tag.id, user_id, tag.name, tag.color),
        )

    def upsert_tag(self, user_id: str, tag: Tag) -> Tag:
        with self._lock:
            conn = self._conn()
            try:
                self._upsert_tag_row(conn, user_id, tag)
                conn.commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="upsert_tag", error=str(e)) from e
            finally:
                conn.close()
        return tag

    def attach_tags(self, user_id: str, record_id: str, tag_ids: Sequence[str]) -> BatchResult:
        requested = len(set(tag_ids))
        added = 0
        with self._lock:
            conn = self._conn()
            try:
                if conn.execute("SELECT 1 FROM records WHERE user_id=? AND id=?", (user_id, record_id)).fetchone() is None:
                    return BatchResult(ok=False, requested=requested, error="record not found")
                for tid in dict.fromkeys(tag_ids):
                    cur = conn.execute("INSERT OR IGNORE INTO record_tags(record_id, tag_id) VALUES (?, ?)", (record_id, tid))
                    added += int(cur.rowcount or 0)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                return BatchResult(ok=False, requested=requested, error=str(e))
            finally:
                conn.close()
        if added:
            self._emit(user_id, "record.tagged", {"user_id": user_id, "id": record_id, "tag_ids": list(dict.fromkeys(tag_ids))})
        return BatchResult(ok=True, requested=requested, affected=added)

    def _tags_for(self, conn: sqlite3.Connection, record_ids: Sequence[str]) -> Dict[str, List[Tag]]:
        out: Dict[str, List[Tag]] = {}
        for chunk in _chunks(record_ids):
            marks = ",".join("?" for _ in chunk)
            rows = conn.execute(
                f"""
                SELECT rt.record_id, t.id, t.name, t.color
                FROM record_tags rt JOIN tags t ON t.id = rt.tag_id
                WHERE rt.record_id IN ({marks})
                ORDER BY t.name ASC
                """,
                tuple(chunk),
            ).fetchall()
            for r in rows:
                out.setdefault(r["record_id"], []).append(Tag(id=r["id"], name=r["name"], color=r["color"]))
        return out

    def _row_to_record(self, row: sqlite3.Row, tags: List[Tag]) -> Record:
        return Record(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"] or "",
            created_at=_parse(row["created_at"]),
            checksum=row["checksum"],
            protected=bool(row["protected"]),
            status=RecordStatus(row["status"]),
            transcript_text=row["transcript_text"],
            tags=tags,
        )

    # ---- retention policies ----
    def get_policy(self, user_id: str) -> Optional[RetentionPolicy]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute("SELECT * FROM retention_policies WHERE user_id=?", (user_id,)).fetchone()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="get_policy", error=str(e)) from e
            finally:
                conn.close()
        return None if row is None else self._row_to_policy(row)

    def save_policy(self, user_id: str, policy: RetentionPolicy) -> RetentionPolicy:
        now = _iso(datetime.now(timezone.utc))
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    INSERT INTO retention_policies(user_id, keep_latest, age_threshold_days, enabled, schedule, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                      keep_latest=excluded.keep_latest,
                      age_threshold_days=excluded.age_threshold_days,
                      enabled=excluded.enabled,
                      schedule=excluded.schedule,
                      updated_at=excluded.updated_at
                    """,
                    (user_id, 1 if policy.keep_latest else 0, int(policy.age_threshold_days), 1 if policy.enabled else 0, policy.schedule, now, now),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="save_policy", error=str(e)) from e
            finally:
                conn.close()
        self._emit(user_id, "policy.saved", {"user_id": user_id, **policy.model_dump()})
        return policy

    def list_enabled_policies(self) -> List[Tuple[str, RetentionPolicy]]:
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute("SELECT * FROM retention_policies WHERE enabled=1 ORDER BY user_id ASC").fetchall()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="list_enabled_policies", error=str(e)) from e
            finally:
                conn.close()
        return [(r["user_id"], self._row_to_policy(r)) for r in rows]

    def _row_to_policy(self, row: sqlite3.Row) -> RetentionPolicy:
        return RetentionPolicy(
            keep_latest=bool(row["keep_latest"]),
            age_threshold_days=int(row["age_threshold_days"]),
            enabled=bool(row["enabled"]),
            schedule=row["schedule"],
        )

    # ---- cleanup history ----
    def record_cleanup_run(self, run: CleanupRun) -> CleanupRun:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    "INSERT INTO cleanup_history(id, user_id, run_at, files_deleted, space_freed_bytes, status, run_trigger, error) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        run.id,
                        run.user_id,
                        _iso(run.run_at),
                        int(run.files_deleted),
                        int(run.space_freed_bytes),
                        run.status.value,
                        run.trigger.value,
                        run.error,
                    ),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="record_cleanup_run", error=str(e)) from e
            finally:
                conn.close()
        sev = EventSeverity.INFO if run.status == RunStatus.COMPLETED else EventSeverity.WARN
        self._emit(run.user_id, "cleanup.completed", run.model_dump(mode="json"), severity=sev)
        return run

    def last_cleanup_run(self, user_id: str) -> Optional[CleanupRun]:
        runs = self.list_cleanup_runs(user_id, limit=1)
        return runs[0] if runs else None

    def list_cleanup_runs(self, user_id: str, *, limit: int = 50) -> List[CleanupRun]:
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(
                    "SELECT * FROM cleanup_history WHERE user_id=? ORDER BY run_at DESC, rowid DESC LIMIT ?",
                    (user_id, max(1, int(limit))),
                ).fetchall()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="list_cleanup_runs", error=str(e)) from e
            finally:
                conn.close()
        return [
            CleanupRun(
                id=r["id"],
                user_id=r["user_id"],
                run_at=_parse(r["run_at"]),
                files_deleted=int(r["files_deleted"]),
                space_freed_bytes=int(r["space_freed_bytes"]),
                status=RunStatus(r["status"]),
                trigger=RunTrigger(r["run_trigger"]),
                error=r["error"],
            )
            for r in rows
        ]

    # ---- activity ----
    def log_activity(self, entry: ActivityEntry) -> ActivityEntry:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    "INSERT INTO activity_logs(id, user_id, created_at, action_type, action_description, metadata_json) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        entry.id,
                        entry.user_id,
                        _iso(entry.created_at),
                        entry.action_type,
                        entry.action_description,
                        json.dumps(entry.metadata, ensure_ascii=False, default=str),
                    ),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="log_activity", error=str(e)) from e
            finally:
                conn.close()
        return entry

    def list_activity(self, user_id: Optional[str] = None, *, since: Optional[datetime] = None, limit: int = 200) -> List[ActivityEntry]:
        sql = "SELECT * FROM activity_logs WHERE 1=1"
        params: List[Any] = []
        if user_id:
            sql += " AND user_id=?"
            params.append(user_id)
        if since is not None:
            sql += " AND created_at >= ?"
            params.append(_iso(since))
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(max(1, int(limit)))
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as e:
                raise StoreUnavailableError(op="list_activity", error=str(e)) from e
            finally:
                conn.close()
        out: List[ActivityEntry] = []
        for r in rows:
            try:
                meta = json.loads(r["metadata_json"] or "{}")
            except json.JSONDecodeError:
                meta = {}
            out.append(
                ActivityEntry(
                    id=r["id"],
                    user_id=r["user_id"],
                    created_at=_parse(r["created_at"]),
                    action_type=r["action_type"],
                    action_description=r["action_description"],
                    metadata=meta if isinstance(meta, dict) else {},
                )
            )
        return out
