from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class DataCategory(str, Enum):
    """
    Personal-data categories. Values are stable: they are keys in
    governance.json retention settings.
    """

    PERSONAL_IDENTIFIABLE = "personal_identifiable"
    SENSITIVE_PERSONAL = "sensitive_personal"
    OPERATIONAL = "operational"
    TECHNICAL = "technical"
    ANONYMOUS = "anonymous"


class LegalBasis(str, Enum):
    CONSENT = "consent"
    CONTRACT = "contract"
    LEGAL_OBLIGATION = "legal_obligation"
    VITAL_INTERESTS = "vital_interests"
    PUBLIC_TASK = "public_task"
    LEGITIMATE_INTERESTS = "legitimate_interests"


class AnonymizationTechnique(str, Enum):
    PSEUDONYMIZATION = "pseudonymization"
    GENERALIZATION = "generalization"
    SUPPRESSION = "suppression"
    NOISE_ADDITION = "noise_addition"
    DATA_MASKING = "data_masking"
    K_ANONYMITY = "k_anonymity"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    XML = "xml"


class PersonalDataRecord(BaseModel):
    """
    One field+value belonging to one data subject.

    The original value is only ever held encrypted. State changes go through
    mark_anonymized()/mark_deleted() so the cleared-value invariants hold on
    every path.
    """

    model_config = ConfigDict(extra="forbid")

    record_id: str = Field(default_factory=_new_id, min_length=1, max_length=64)
    data_subject_id: str = Field(min_length=1, max_length=128)
    category: DataCategory
    field_name: str = Field(min_length=1, max_length=80)
    encrypted_original_value: str = ""
    anonymized_value: str = ""
    applied_technique: Optional[AnonymizationTechnique] = None
    legal_basis: LegalBasis
    consent_timestamp: Optional[datetime] = None
    retention_period_days: int = Field(ge=1)
    created_at: datetime
    scheduled_deletion_at: datetime
    is_anonymized: bool = False
    is_deleted: bool = False

    def can_be_deleted(self) -> bool:
        # a legal obligation to keep the data overrides erasure; anonymize instead
        return self.legal_basis != LegalBasis.LEGAL_OBLIGATION

    def is_overdue(self, now: datetime) -> bool:
        return not self.is_deleted and self.scheduled_deletion_at <= now

    def age_days(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds() / 86400.0

    def mark_anonymized(self, value: str, technique: AnonymizationTechnique) -> None:
        self.anonymized_value = str(value)
        self.applied_technique = technique
        self.is_anonymized = True
        self.encrypted_original_value = ""

    def mark_deleted(self) -> None:
        if not self.can_be_deleted():
            raise ValueError("records held under a legal obligation cannot be deleted")
        self.is_deleted = True
        self.encrypted_original_value = ""
        self.anonymized_value = ""


class ConsentRecord(BaseModel):
    """
    One consent grant (or refusal) event. Withdrawal is one-way: once
    withdrawn_at is set the record is inactive for good.
    """

    model_config = ConfigDict(extra="forbid")

    consent_id: str = Field(default_factory=_new_id, min_length=1, max_length=64)
    data_subject_id: str = Field(min_length=1, max_length=128)
    purpose: str = Field(min_length=1, max_length=200)
    legal_basis: LegalBasis
    consent_given: bool
    consent_timestamp: datetime
    withdrawn_at: Optional[datetime] = None
    source: str = Field(min_length=1, max_length=80)  # web, mobile, paper, kiosk...
    ip_address: Optional[str] = Field(default=None, max_length=64)
    user_agent: Optional[str] = Field(default=None, max_length=300)
    data_categories: List[DataCategory] = Field(default_factory=list)
    retention_period_days: int = Field(default=2555, ge=1)
    version: str = Field(default="1.0", max_length=20)

    @property
    def is_active(self) -> bool:
        return bool(self.consent_given) and self.withdrawn_at is None

    def withdraw(self, when: datetime) -> bool:
        if not self.is_active:
            return False
        self.withdrawn_at = when
        return True


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: str = Field(min_length=1, max_length=80)
    data_subject_id: str = Field(default="", max_length=128)
    timestamp: datetime = Field(default_factory=utc_now)
    reason: Optional[str] = Field(default=None, max_length=300)
    details: Dict[str, Any] = Field(default_factory=dict)


# ---- workflow results ----
class ErasureResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    deleted_records: int = 0
    anonymized_records: int = 0
    retained_records: int = 0
    errors: List[str] = Field(default_factory=list)


class PersonalDataExportItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    field: str
    value: str
    category: DataCategory
    created_at: datetime
    is_anonymized: bool


class ConsentExportItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    purpose: str
    consent_given: bool
    timestamp: datetime
    is_active: bool
    data_categories: List[DataCategory] = Field(default_factory=list)


class ExportPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    data_subject_id: str
    personal_data: List[PersonalDataExportItem] = Field(default_factory=list)
    consents: List[ConsentExportItem] = Field(default_factory=list)
    export_timestamp: datetime


class ExportResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    data: ExportPayload
    format: ExportFormat = ExportFormat.JSON
    timestamp: datetime
    errors: List[str] = Field(default_factory=list)


class SweepResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sweep: str
    as_of: datetime
    examined: int = 0
    deleted: int = 0
    anonymized: int = 0
    skipped: int = 0
    errors: int = 0


# ---- compliance ----
class ComplianceCheckResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    compliant: bool
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    checked_at: datetime


class ComplianceOverview(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    compliant: bool
    last_check: datetime


class ComplianceReport(BaseModel):
    """Dashboard contract; dump with by_alias=True for the camelCase shape."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    overview: ComplianceOverview
    data_subjects: int = 0
    personal_data_records: int = 0
    anonymized_records: int = 0
    deleted_records: int = 0
    active_consents: int = 0
    compliance_issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    last_audit_date: datetime


class ComplianceAuditEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    audit_id: str = Field(default_factory=_new_id)
    date: datetime
    kind: str = "automatic"  # automatic | manual
    compliant: bool
    issues: int = 0
    recommendations: int = 0
    auditor: str = "system"


class TechniqueCount(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    technique: AnonymizationTechnique
    count: int
    percentage: float


class AnonymizationMetrics(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_records: int = 0
    anonymized_records: int = 0
    pending_anonymization: int = 0
    deleted_records: int = 0
    anonymization_rate: float = 0.0
    techniques: List[TechniqueCount] = Field(default_factory=list)
    last_update: datetime


class DataSubjectSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    data_subject_id: str
    total_records: int = 0
    anonymized_records: int = 0
    deleted_records: int = 0
    active_consents: int = 0
    data_categories: List[DataCategory] = Field(default_factory=list)
    oldest_record: Optional[datetime] = None
    next_scheduled_deletion: Optional[datetime] = None


class UpcomingDeletion(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    data_subject_id: str
    category: DataCategory
    record_count: int
    scheduled_date: datetime
    can_be_postponed: bool


# ---- record of processing activities ----
class ProcessingActivity(BaseModel):
    model_config = ConfigDict(extra="forbid")

    activity_id: str = Field(default_factory=_new_id)
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    controller: str = Field(min_length=1, max_length=200)
    processor: Optional[str] = Field(default=None, max_length=200)
    legal_basis: LegalBasis
    data_categories: List[DataCategory] = Field(default_factory=list)
    data_subjects: List[str] = Field(default_factory=list)
    purposes: List[str] = Field(default_factory=list)
    recipients: List[str] = Field(default_factory=list)
    transfers_to_third_countries: bool = False
    retention_period_days: int = Field(ge=1)
    security_measures: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    is_active: bool = True


def scheduled_deletion(created_at: datetime, retention_days: int) -> datetime:
    return created_at + timedelta(days=int(retention_days))
