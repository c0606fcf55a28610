from __future__ import annotations

import collections
import threading
from typing import Any, Counter, Deque, Dict

from factory_gdpr.core.events.models import BaseEvent


class BusStats:
    """Thread-safe counters behind EventBus.get_stats()."""

    def __init__(self, keep_dropped: int = 200) -> None:
        self._lock = threading.Lock()
        self._published: Counter[str] = collections.Counter()
        self._dropped: Counter[str] = collections.Counter()
        self._delivered = 0
        self._handler_errors = 0
        self._dropped_tail: Deque[Dict[str, Any]] = collections.deque(maxlen=max(1, int(keep_dropped)))

    def published(self, ev: BaseEvent) -> None:
        with self._lock:
            self._published[ev.event_type] += 1

    def dropped(self, ev: BaseEvent, reason: str) -> None:
        with self._lock:
            self._dropped[ev.event_type] += 1
            self._dropped_tail.appendleft({"event_type": ev.event_type, "trace_id": ev.trace_id, "reason": reason})

    def delivered(self, n: int) -> None:
        with self._lock:
            self._delivered += int(n)

    def handler_error(self) -> None:
        with self._lock:
            self._handler_errors += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "published_total": sum(self._published.values()),
                "dropped_total": sum(self._dropped.values()),
                "delivered_total": self._delivered,
                "handler_errors_total": self._handler_errors,
                "per_type_published": dict(self._published),
                "per_type_dropped": dict(self._dropped),
                "dropped_recent": list(self._dropped_tail)[:50],
            }
