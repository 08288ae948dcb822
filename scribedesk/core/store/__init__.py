"""
Record store ports and the local SQLite adapter.

The engine never talks to storage; the cleanup service gets these ports injected.
"""

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
from scribedesk.core.store.sqlite_store import TranscriptStore

__all__ = [
    "ActivityLog",
    "BatchResult",
    "CleanupHistory",
    "DeletionSink",
    "PolicyStore",
    "ProtectionSink",
    "RecordSource",
    "TagSink",
    "TranscriptStore",
]
