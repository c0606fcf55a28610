from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from factory_gdpr.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class GovernanceError(Exception):
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


# ---- Core types ----
class ConfigError(GovernanceError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class KeyUnavailableError(GovernanceError):
    def __init__(self, user_message: str = "The data encryption key is not available.", **ctx: Any):
        super().__init__("key_unavailable", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class DecryptionError(GovernanceError):
    def __init__(self, user_message: str = "Stored value could not be decrypted.", **ctx: Any):
        super().__init__("decryption_failure", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class UnsupportedFieldError(GovernanceError):
    def __init__(self, user_message: str = "No anonymization rule is registered for this field.", **ctx: Any):
        super().__init__("unsupported_field", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class ValidationError(GovernanceError):
    def __init__(self, user_message: str = "Invalid request.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class SchedulerError(GovernanceError):
    def __init__(self, user_message: str = "Lifecycle scheduler error.", **ctx: Any):
        super().__init__("scheduler_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)
