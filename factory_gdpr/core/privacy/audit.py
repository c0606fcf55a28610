from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol

from factory_gdpr.core.events import BaseEvent, EventLogger, EventSeverity, SourceSubsystem
from factory_gdpr.core.privacy.models import AuditLogEntry, Clock, utc_now
from factory_gdpr.core.privacy.redaction import privacy_redact


class AuditSink(Protocol):
    def emit(self, entry: AuditLogEntry) -> None: ...


class EventBusAuditSink:
    """
    Publishes each entry as gdpr.<action> on the in-process event bus.
    """

    def __init__(self, event_bus: Any):
        self.event_bus = event_bus

    def emit(self, entry: AuditLogEntry) -> None:
        ev = BaseEvent(
            event_type=f"gdpr.{entry.action}",
            trace_id=uuid.uuid4().hex,
            source_subsystem=SourceSubsystem.audit,
            severity=EventSeverity.INFO,
            payload=entry.model_dump(mode="json"),
        )
        self.event_bus.publish_nowait(ev)


class JsonlAuditSink:
    """
    Append-only JSONL file, one line per entry.
    """

    def __init__(self, path: str):
        self.event_logger = EventLogger(path)

    @property
    def path(self) -> str:
        return self.event_logger.path

    def emit(self, entry: AuditLogEntry) -> None:
        body = entry.model_dump(mode="json")
        self.event_logger.log(uuid.uuid4().hex, entry.action, body)


class LoggerAuditSink:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("factory_gdpr.audit")

    def emit(self, entry: AuditLogEntry) -> None:
        self.logger.info(f"[audit] {entry.action} subject={entry.data_subject_id or '-'} details={entry.details}")


class AuditTrail:
    """
    Fan-out to audit sinks.

    Details are minimized before they leave the engine. A failing sink is
    logged and skipped; it never fails the operation being audited.
    """

    def __init__(self, sinks: Iterable[AuditSink] = (), *, logger: Optional[logging.Logger] = None, clock: Optional[Clock] = None):
        self._sinks: List[AuditSink] = list(sinks)
        self._lock = threading.Lock()
        self.logger = logger or logging.getLogger("factory_gdpr.audit")
        self.clock = clock or utc_now
        self.sink_failures = 0

    def add_sink(self, sink: AuditSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def record(
        self,
        action: str,
        data_subject_id: str = "",
        *,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            action=str(action),
            data_subject_id=str(data_subject_id or ""),
            timestamp=self.clock(),
            reason=reason,
            details=privacy_redact(dict(details or {})),
        )
        with self._lock:
            sinks = list(self._sinks)
        for s in sinks:
            try:
                s.emit(entry)
            except Exception as e:  # noqa: BLE001
                with self._lock:
                    self.sink_failures += 1
                self.logger.warning(f"Audit sink {type(s).__name__} failed for {entry.action}: {e}")
        return entry
