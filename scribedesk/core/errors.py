from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from scribedesk.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class ScribeError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return f"{self.code}: {self.user_message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- input errors ----
class PolicyValidationError(ScribeError):
    def __init__(self, user_message: str = "Invalid retention policy.", **ctx: Any):
        super().__init__("policy_invalid", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class ValidationError(ScribeError):
    def __init__(self, user_message: str = "Invalid request.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class NotFoundError(ScribeError):
    def __init__(self, user_message: str = "Not found.", **ctx: Any):
        super().__init__("not_found", user_message, severity=Severity.INFO, recoverable=False, context=ctx)


# ---- I/O edge errors ----
class ExportError(ScribeError):
    def __init__(self, user_message: str = "Report export failed.", **ctx: Any):
        super().__init__("export_failed", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class StoreUnavailableError(ScribeError):
    def __init__(self, user_message: str = "The record store is unavailable.", **ctx: Any):
        super().__init__("store_unavailable", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class ConfigError(ScribeError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)
