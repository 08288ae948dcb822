from __future__ import annotations

import ipaddress
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AppFileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    data_dir: str = "data"
    log_dir: str = "logs"
    backups: Dict[str, Any] = Field(default_factory=lambda: {"max_backups_per_file": 10})


class WebConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    bind_host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=1, le=65535)
    allowed_origins: List[str] = Field(default_factory=list)
    export_dir: str = "exports"

    @field_validator("bind_host")
    @classmethod
    def _validate_bind_host(cls, v: str) -> str:
        v = str(v or "").strip()
        if v in {"localhost", "0.0.0.0"}:
            return v
        try:
            ipaddress.ip_address(v)
        except ValueError as e:
            raise ValueError("bind_host must be an IP address or 'localhost'") from e
        return v


class RetentionDefaultsConfig(BaseModel):
    """Defaults offered to a user who has never saved a retention policy."""

    model_config = ConfigDict(extra="forbid")
    keep_latest: bool = True
    age_threshold_days: int = Field(default=30, ge=1, le=3650)
    enabled: bool = False
    schedule: str = "0 0 * * 0"
    scheduler_poll_seconds: int = Field(default=3600, ge=10, le=86_400)

    @field_validator("schedule")
    @classmethod
    def _five_fields(cls, v: str) -> str:
        if len(str(v or "").split()) != 5:
            raise ValueError("schedule must have five whitespace-separated fields")
        return str(v).strip()


class EventsBusConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    synchronous: bool = False
    max_queue_size: int = Field(default=1000, ge=10, le=100_000)
    overflow_policy: str = "DROP_OLDEST"  # DROP_OLDEST|DROP_NEWEST
    shutdown_grace_seconds: float = Field(default=2.0, ge=0.1, le=60.0)
    keep_recent: int = Field(default=200, ge=10, le=10_000)


class ScribeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    app: AppFileConfig
    web: WebConfig
    retention: RetentionDefaultsConfig
    events: EventsBusConfigFile
