"""
Audit event plumbing: an in-process event bus and an append-only JSONL
event logger. The governance engine publishes audit entries here so that
dashboards or forwarders can subscribe without the engine knowing them.
"""

from factory_gdpr.core.events.bus import EventBus, EventBusConfig, OverflowPolicy
from factory_gdpr.core.events.jsonl import EventLogger, redact
from factory_gdpr.core.events.models import BaseEvent, EventSeverity, SourceSubsystem

__all__ = [
    "BaseEvent",
    "EventBus",
    "EventBusConfig",
    "EventLogger",
    "EventSeverity",
    "OverflowPolicy",
    "SourceSubsystem",
    "redact",
]
