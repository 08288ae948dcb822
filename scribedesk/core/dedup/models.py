from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from scribedesk.core.errors import PolicyValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(v: datetime) -> datetime:
    # naive timestamps from the store are UTC
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class RecordStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RetentionReason(str, Enum):
    PROTECTED = "Protected"
    TOO_RECENT = "TooRecent"
    NEWEST_KEPT = "NewestKept"
    DELETABLE = "Deletable"


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Tag(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, min_length=1)
    name: str = Field(min_length=1, max_length=80)
    color: str = Field(default="#3b82f6", max_length=16)


class Record(BaseModel):
    """A transcribed-file entry as the record source returns it."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)
    title: str = ""
    created_at: datetime
    checksum: Optional[str] = None
    protected: bool = False
    status: RecordStatus = RecordStatus.COMPLETED
    transcript_text: Optional[str] = None
    tags: List[Tag] = Field(default_factory=list)
    user_id: str = "default"

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("checksum")
    @classmethod
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @property
    def size_chars(self) -> int:
        return len(self.transcript_text or "")


class DuplicateGroup(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    checksum: str
    members: List[Record]

    @model_validator(mode="after")
    def _at_least_two(self) -> "DuplicateGroup":
        if len(self.members) < 2:
            raise ValueError("a duplicate group has at least two members")
        return self

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def newest(self) -> Record:
        return self.members[0]

    @property
    def title(self) -> str:
        return self.members[0].title

    @property
    def oldest_timestamp(self) -> datetime:
        return min(m.created_at for m in self.members)

    @property
    def newest_timestamp(self) -> datetime:
        return max(m.created_at for m in self.members)

    @property
    def wasted_size(self) -> int:
        return sum(m.size_chars for m in self.members[1:])

    @property
    def total_size(self) -> int:
        return sum(m.size_chars for m in self.members)


class RetentionPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    keep_latest: bool = True
    age_threshold_days: int = Field(default=30, ge=1)
    enabled: bool = False
    schedule: str = "0 0 * * 0"

    @field_validator("schedule")
    @classmethod
    def _five_fields(cls, v: str) -> str:
        parts = str(v or "").split()
        if len(parts) != 5:
            raise ValueError("schedule must have five whitespace-separated fields")
        return " ".join(parts)

    @classmethod
    def parse(cls, data: Any) -> "RetentionPolicy":
        """Validated construction that raises PolicyValidationError instead of pydantic's error."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            fields = [".".join(str(p) for p in err.get("loc", ())) for err in e.errors()]
            raise PolicyValidationError(f"Invalid retention policy: {', '.join(fields) or 'malformed'}.", fields=fields) from e


class ClassifiedMember(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    record: Record
    will_be_deleted: bool
    reason: RetentionReason


class ClassifiedGroup(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    group: DuplicateGroup
    members: List[ClassifiedMember]

    @property
    def checksum(self) -> str:
        return self.group.checksum

    @property
    def count(self) -> int:
        return self.group.count

    @property
    def deletable(self) -> List[ClassifiedMember]:
        return [m for m in self.members if m.reason == RetentionReason.DELETABLE]

    @property
    def deletable_ids(self) -> List[str]:
        return [m.record.id for m in self.deletable]

    @property
    def reclaimable_size(self) -> int:
        return sum(m.record.size_chars for m in self.deletable)


class RecordFilter(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    status: Optional[RecordStatus] = None
    tag_ids: List[str] = Field(default_factory=list)
    title_contains: Optional[str] = Field(default=None, max_length=200)
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    checksum_only: bool = True

    @field_validator("created_after", "created_before")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return None if v is None else as_utc(v)

    @model_validator(mode="after")
    def _range(self) -> "RecordFilter":
        if self.created_after and self.created_before and self.created_after > self.created_before:
            raise ValueError("created_after must not be later than created_before")
        return self

    def matches(self, r: Record) -> bool:
        if self.checksum_only and not r.checksum:
            return False
        if self.status is not None and r.status != self.status:
            return False
        if self.tag_ids and not ({t.id for t in r.tags} & set(self.tag_ids)):
            return False
        if self.title_contains and self.title_contains.lower() not in r.title.lower():
            return False
        if self.created_after and r.created_at < self.created_after:
            return False
        if self.created_before and r.created_at > self.created_before:
            return False
        return True


class RunStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class RunTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class CleanupRun(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    run_at: datetime = Field(default_factory=utc_now)
    files_deleted: int = Field(default=0, ge=0)
    space_freed_bytes: int = Field(default=0, ge=0)
    status: RunStatus = RunStatus.COMPLETED
    trigger: RunTrigger = RunTrigger.MANUAL
    error: Optional[str] = None

    @field_validator("run_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class ActivityEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)
    action_type: str = Field(min_length=1, max_length=40)
    action_description: str = Field(default="", max_length=500)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class PendingDelete(BaseModel):
    model_config = ConfigDict(extra="forbid")

    checksum: str
    keep_latest: bool = True


class ViewState(BaseModel):
    """Dashboard selection and dialog state, kept apart from the records themselves."""

    model_config = ConfigDict(extra="forbid")

    selected_ids: List[str] = Field(default_factory=list)
    expanded_checksum: Optional[str] = None
    confirm_delete: Optional[PendingDelete] = None

    def toggle(self, record_id: str) -> "ViewState":
        ids = [i for i in self.selected_ids if i != record_id]
        if len(ids) == len(self.selected_ids):
            ids.append(record_id)
        return self.model_copy(update={"selected_ids": ids})

    def clear_selection(self) -> "ViewState":
        return self.model_copy(update={"selected_ids": [], "confirm_delete": None})
