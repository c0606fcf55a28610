from __future__ import annotations

from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Keys accepted in retention_days / auto_anonymize_after_days.
# Kept as plain strings so governance.json stays readable by non-Python tooling.
CATEGORY_KEYS = {"personal_identifiable", "sensitive_personal", "operational", "technical", "anonymous"}

DAY_SECONDS = 24 * 60 * 60


def _default_anonymize_after_days() -> Dict[str, int]:
    return {"sensitive_personal": 90, "personal_identifiable": 365}


def _default_retention_days() -> Dict[str, int]:
    return {
        "personal_identifiable": 2555,  # 7 years
        "sensitive_personal": 1095,  # 3 years
        "operational": 1825,  # 5 years
        "technical": 365,
        "default": 730,
    }


class SchedulerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    start_on_boot: bool = False
    retention_interval_seconds: float = Field(default=float(DAY_SECONDS), ge=0.05)
    anonymization_interval_seconds: float = Field(default=3600.0, ge=0.05)
    compliance_interval_seconds: float = Field(default=6 * 3600.0, ge=0.05)
    stop_grace_seconds: float = Field(default=2.0, ge=0.1, le=60.0)


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: Literal["memory", "sqlite"] = "memory"
    sqlite_path: str = Field(default="runtime/governance.sqlite", min_length=1)


class KeysConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: Literal["file", "ephemeral"] = "file"
    key_path: str = Field(default="secure/data.key", min_length=1)
    create_if_missing: bool = True


class AuditConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    jsonl_path: str = Field(default="logs/gdpr_audit.jsonl")
    publish_events: bool = True
    history_size: int = Field(default=100, ge=1, le=10_000)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_dir: str = "logs"


class GovernanceConfigFile(BaseModel):
    """
    config/governance.json schema.

    Strict: unknown keys are rejected so typos in retention settings surface
    at load time instead of silently falling back to defaults.
    """

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=1, ge=1, le=10)
    retention_days: Dict[str, int] = Field(default_factory=_default_retention_days)
    consent_retention_days: int = Field(default=2555, ge=1, le=36500)
    auto_anonymize_after_days: Dict[str, int] = Field(default_factory=_default_anonymize_after_days)
    anonymize_sensitive_on_write: bool = True
    location_noise_degrees: float = Field(default=0.001, gt=0.0, le=1.0)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    keys: KeysConfig = Field(default_factory=KeysConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("retention_days")
    @classmethod
    def _retention_keys(cls, v: Dict[str, int]) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for k, days in (v or {}).items():
            kk = str(k).strip().lower()
            if kk not in CATEGORY_KEYS and kk != "default":
                raise ValueError(f"unknown data category in retention_days: {k!r}")
            if int(days) < 1:
                raise ValueError(f"retention_days[{k!r}] must be >= 1")
            out[kk] = int(days)
        return out

    @field_validator("auto_anonymize_after_days")
    @classmethod
    def _threshold_keys(cls, v: Dict[str, int]) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for k, days in (v or {}).items():
            kk = str(k).strip().lower()
            if kk not in CATEGORY_KEYS:
                raise ValueError(f"unknown data category in auto_anonymize_after_days: {k!r}")
            if int(days) < 0:
                raise ValueError(f"auto_anonymize_after_days[{k!r}] must be >= 0")
            out[kk] = int(days)
        return out

    @model_validator(mode="after")
    def _fill_defaults(self) -> "GovernanceConfigFile":
        # partial maps override per category; unnamed categories keep their defaults
        retention = _default_retention_days()
        retention.update(self.retention_days)
        self.retention_days = retention
        thresholds = _default_anonymize_after_days()
        thresholds.update(self.auto_anonymize_after_days)
        self.auto_anonymize_after_days = thresholds
        return self

    def retention_for(self, category: str) -> int:
        return int(self.retention_days.get(str(category), self.retention_days["default"]))


def default_governance_config_dict() -> Dict[str, Any]:
    return GovernanceConfigFile().model_dump(mode="json")
