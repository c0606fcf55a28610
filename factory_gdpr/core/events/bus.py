from __future__ import annotations

"""
In-process pub/sub used to fan audit entries out to whoever listens.

publish never blocks: once the queue is full an event is dropped according
to OverflowPolicy. One dispatcher thread routes events; every subscriber
owns a worker thread, so a slow handler only delays itself and each handler
sees events in publish order.
"""

import collections
import logging
import queue
import threading
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from factory_gdpr.core.events.models import BaseEvent, EventSeverity, SourceSubsystem
from factory_gdpr.core.events.stats import BusStats


Handler = Callable[[BaseEvent], None]


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "DROP_OLDEST"
    DROP_NEWEST = "DROP_NEWEST"


class EventBusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    max_queue_size: int = Field(default=1000, ge=10, le=100_000)
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    shutdown_grace_seconds: float = Field(default=5.0, ge=0.1, le=60.0)


def _matches(pattern: str, event_type: str) -> bool:
    if pattern == "*":
        return True
    if pattern.endswith(".*"):
        return event_type.startswith(pattern[:-1])
    return pattern == event_type


class _Subscriber:
    def __init__(self, pattern: str, handler: Handler, priority: int, deliver: Callable[[Handler, BaseEvent], None]):
        self.pattern = pattern
        self.handler = handler
        self.priority = priority
        # None is the close sentinel; events queued before it are still delivered
        self._inbox: "queue.Queue[Optional[BaseEvent]]" = queue.Queue()
        self._thread = threading.Thread(target=self._run, args=(deliver,), name=f"eventbus-sub:{pattern}", daemon=True)
        self._thread.start()

    def offer(self, ev: BaseEvent) -> None:
        self._inbox.put_nowait(ev)

    def close(self, grace_seconds: float) -> None:
        self._inbox.put_nowait(None)
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=max(0.1, float(grace_seconds)))

    def _run(self, deliver: Callable[[Handler, BaseEvent], None]) -> None:
        while True:
            ev = self._inbox.get()
            if ev is None:
                return
            deliver(self.handler, ev)


class EventBus:
    """
    Subscriptions match exactly ("gdpr.data_erasure"), by prefix ("gdpr.*")
    or everything ("*"). A handler that raises is logged, counted and
    reported as an "error.raised" event; other handlers are unaffected.
    """

    def __init__(self, *, cfg: EventBusConfig, logger: Optional[logging.Logger] = None):
        self.cfg = cfg
        self.logger = logger or logging.getLogger("factory_gdpr.events")
        self._cv = threading.Condition()
        self._pending: Deque[BaseEvent] = collections.deque()
        self._subs: List[_Subscriber] = []
        self._stats = BusStats()
        self._closed = False
        self._dispatcher: Optional[threading.Thread] = None
        if cfg.enabled:
            self.start()

    def start(self) -> None:
        with self._cv:
            if self._dispatcher is not None or self._closed:
                return
            self._dispatcher = threading.Thread(target=self._dispatch, name="eventbus-dispatch", daemon=True)
            self._dispatcher.start()

    def enabled(self) -> bool:
        return bool(self.cfg.enabled) and self._dispatcher is not None and not self._closed

    def set_enabled(self, enabled: bool) -> None:
        """Gate publishing. Does not start the dispatcher."""
        self.cfg.enabled = bool(enabled)

    def subscribe(self, event_type: str, handler: Handler, priority: int = 50) -> None:
        if not callable(handler):
            raise ValueError("handler must be callable")
        sub = _Subscriber(str(event_type), handler, int(priority), self._deliver)
        with self._cv:
            self._subs.append(sub)
            self._subs.sort(key=lambda s: s.priority)

    def unsubscribe(self, handler: Handler) -> int:
        with self._cv:
            gone = [s for s in self._subs if s.handler is handler]
            self._subs = [s for s in self._subs if s.handler is not handler]
        for s in gone:
            s.close(0.5)
        return len(gone)

    def publish(self, ev: BaseEvent) -> bool:
        """Queue ev for delivery. False when refused or dropped."""
        if self._closed or not self.cfg.enabled:
            return False
        with self._cv:
            if len(self._pending) >= int(self.cfg.max_queue_size):
                if self.cfg.overflow_policy == OverflowPolicy.DROP_NEWEST:
                    self._stats.dropped(ev, "drop_newest")
                    return False
                self._stats.dropped(self._pending.popleft(), "drop_oldest")
            self._pending.append(ev)
            self._stats.published(ev)
            self._cv.notify()
        return True

    publish_nowait = publish

    def get_stats(self) -> Dict[str, Any]:
        out = self._stats.snapshot()
        with self._cv:
            out["queue_depth"] = len(self._pending)
            out["subscribers"] = len(self._subs)
        out["enabled"] = self.enabled()
        return out

    def shutdown(self, grace_seconds: Optional[float] = None) -> None:
        """Refuse new events, drain what is queued, then stop every thread."""
        grace = float(self.cfg.shutdown_grace_seconds if grace_seconds is None else grace_seconds)
        with self._cv:
            self._closed = True
            self._cv.notify_all()
            t = self._dispatcher
        if t is not None:
            t.join(timeout=max(0.1, grace))
        with self._cv:
            subs, self._subs = self._subs, []
        for s in subs:
            s.close(0.5)

    # ---- internals ----
    def _dispatch(self) -> None:
        while True:
            with self._cv:
                while not self._pending and not self._closed:
                    self._cv.wait(timeout=0.2)
                if not self._pending:
                    return
                ev = self._pending.popleft()
                subs = list(self._subs)
            n = 0
            for s in subs:
                if _matches(s.pattern, ev.event_type):
                    s.offer(ev)
                    n += 1
            if n:
                self._stats.delivered(n)

    def _deliver(self, handler: Handler, ev: BaseEvent) -> None:
        try:
            handler(ev)
        except Exception as e:  # noqa: BLE001
            name = getattr(handler, "__name__", "handler")
            self._stats.handler_error()
            self.logger.warning(f"Event handler {name} failed for {ev.event_type}: {e}")
            if ev.event_type == "error.raised":
                return
            self.publish(
                BaseEvent(
                    event_type="error.raised",
                    trace_id=ev.trace_id,
                    source_subsystem=SourceSubsystem.events,
                    severity=EventSeverity.ERROR,
                    payload={"handler": name, "event_type": ev.event_type, "error": str(e)[:500]},
                )
            )
