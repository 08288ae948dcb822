"""
Change feed (in-process event bus) and the JSONL operator journal.
"""

from scribedesk.core.events.journal import EventLogger, redact
from scribedesk.core.events.models import BaseEvent, EventSeverity, SourceSubsystem
from scribedesk.core.events.bus import EventBus, EventBusConfig, OverflowPolicy

__all__ = [
    "EventLogger",
    "redact",
    "BaseEvent",
    "EventSeverity",
    "SourceSubsystem",
    "EventBus",
    "EventBusConfig",
    "OverflowPolicy",
]
