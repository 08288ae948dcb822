from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PolicyBody(BaseModel):
    keep_latest: bool = True
    age_threshold_days: int = 30
    enabled: bool = False
    schedule: str = "0 0 * * 0"


class PolicyResponse(BaseModel):
    user_id: str
    saved: bool
    policy: Dict[str, Any]
    schedule_label: str
    next_run: Optional[datetime] = None


class ProtectRequest(BaseModel):
    ids: List[str] = Field(min_length=1, max_length=5000)
    protected: bool = True


class DeleteRequest(BaseModel):
    ids: List[str] = Field(min_length=1, max_length=5000)


class GroupDeleteRequest(BaseModel):
    keep_latest: bool = True


class BatchResponse(BaseModel):
    ok: bool
    requested: int
    affected: int
    error: Optional[str] = None


class DuplicatesResponse(BaseModel):
    user_id: str
    stats: Dict[str, Any]
    distribution: Dict[str, int]
    top: List[Dict[str, Any]]
    groups: List[Dict[str, Any]]


class PreviewResponse(BaseModel):
    user_id: str
    policy: Dict[str, Any]
    summary: Dict[str, Any]
    groups: List[Dict[str, Any]]


class HistoryResponse(BaseModel):
    user_id: str
    summary: Dict[str, Any]
    runs: List[Dict[str, Any]]


class ActivityResponse(BaseModel):
    entries: List[Dict[str, Any]]
