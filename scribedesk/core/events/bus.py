from __future__ import annotations

import collections
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from scribedesk.core.events.models import BaseEvent, EventSeverity, SourceSubsystem


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "DROP_OLDEST"
    DROP_NEWEST = "DROP_NEWEST"


class EventBusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    # synchronous delivery runs handlers inline in publish(); used by scripts and tests
    synchronous: bool = False
    max_queue_size: int = Field(default=1000, ge=10, le=100_000)
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    shutdown_grace_seconds: float = Field(default=2.0, ge=0.1, le=60.0)
    keep_recent: int = Field(default=200, ge=10, le=10_000)


@dataclass
class _Subscriber:
    pattern: str
    handler: Callable[[BaseEvent], None]
    inbox: "queue.Queue[Optional[BaseEvent]]" = field(default_factory=queue.Queue)
    thread: Optional[threading.Thread] = None


@dataclass
class _Counters:
    published: int = 0
    delivered: int = 0
    dropped: int = 0
    handler_errors: int = 0
    per_type: Dict[str, int] = field(default_factory=dict)


class EventBus:
    """
    In-process change feed.

    Stores publish record/policy/cleanup changes here; the web layer or any
    other collaborator subscribes. Delivery is per-subscriber FIFO, publishing
    never blocks the publisher, and a failing handler never affects the
    publisher or other subscribers.
    """

    def __init__(self, *, cfg: Optional[EventBusConfig] = None, logger=None):
        self.cfg = cfg or EventBusConfig()
        self.logger = logger
        self._lock = threading.Lock()
        self._subs: List[_Subscriber] = []
        self._counters = _Counters()
        self._recent: Deque[Dict[str, Any]] = collections.deque(maxlen=int(self.cfg.keep_recent))
        self._closed = False

    def subscribe(self, pattern: str, handler: Callable[[BaseEvent], None]) -> None:
        """
        pattern supports an exact type ("record.deleted"), a prefix ("record.*")
        or everything ("*").
        """
        if not callable(handler):
            raise ValueError("handler must be callable")
        sub = _Subscriber(pattern=str(pattern), handler=handler)
        if not self.cfg.synchronous:
            sub.thread = threading.Thread(target=self._drain, args=(sub,), name=f"changefeed-{len(self._subs) + 1}", daemon=True)
            sub.thread.start()
        with self._lock:
            self._subs.append(sub)

    def unsubscribe(self, handler: Callable[[BaseEvent], None]) -> int:
        with self._lock:
            gone = [s for s in self._subs if s.handler is handler]
            self._subs = [s for s in self._subs if s.handler is not handler]
        for s in gone:
            s.inbox.put(None)
        return len(gone)

    def publish(self, ev: BaseEvent) -> bool:
        if self._closed or not self.cfg.enabled:
            return False
        with self._lock:
            self._counters.published += 1
            self._counters.per_type[ev.event_type] = self._counters.per_type.get(ev.event_type, 0) + 1
            self._recent.appendleft(ev.model_dump())
            targets = [s for s in self._subs if _match(s.pattern, ev.event_type)]
        for s in targets:
            if self.cfg.synchronous:
                self._deliver(s, ev)
                continue
            if s.inbox.qsize() >= int(self.cfg.max_queue_size):
                with self._lock:
                    self._counters.dropped += 1
                if self.cfg.overflow_policy == OverflowPolicy.DROP_NEWEST:
                    continue
                try:
                    s.inbox.get_nowait()
                except queue.Empty:
                    pass
            s.inbox.put(ev)
        return True

    def emit(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        source: SourceSubsystem,
        trace_id: Optional[str] = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> bool:
        return self.publish(
            BaseEvent(
                event_type=event_type,
                trace_id=trace_id,
                source_subsystem=source,
                severity=severity,
                payload=dict(payload or {}),
            )
        )

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            c = self._counters
            return {
                "enabled": bool(self.cfg.enabled) and not self._closed,
                "published_total": c.published,
                "delivered_total": c.delivered,
                "dropped_total": c.dropped,
                "handler_errors_total": c.handler_errors,
                "subscribers": len(self._subs),
                "per_type_published": dict(c.per_type),
            }

    def dump_recent(self, n: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._recent)[: max(1, int(n))]

    def shutdown(self, grace_seconds: Optional[float] = None) -> None:
        self._closed = True
        grace = float(self.cfg.shutdown_grace_seconds if grace_seconds is None else grace_seconds)
        with self._lock:
            subs = list(self._subs)
            self._subs = []
        for s in subs:
            s.inbox.put(None)
        for s in subs:
            if s.thread is not None:
                s.thread.join(timeout=max(0.1, grace))

    # ---- internals ----
    def _drain(self, sub: _Subscriber) -> None:
        while True:
            ev = sub.inbox.get()
            if ev is None:
                return
            self._deliver(sub, ev)

    def _deliver(self, sub: _Subscriber, ev: BaseEvent) -> None:
        try:
            sub.handler(ev)
        except Exception as e:  # noqa: BLE001
            with self._lock:
                self._counters.handler_errors += 1
            if self.logger is not None:
                self.logger.warning(f"Change feed handler failed for {ev.event_type}: {e}")
            return
        with self._lock:
            self._counters.delivered += 1


def _match(pattern: str, event_type: str) -> bool:
    if pattern == "*":
        return True
    if pattern.endswith(".*"):
        return str(event_type).startswith(pattern[:-1])
    return pattern == event_type
