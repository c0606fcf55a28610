from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from factory_gdpr.core.config.models import GovernanceConfigFile
from factory_gdpr.core.crypto import CryptoBox
from factory_gdpr.core.errors import ValidationError
from factory_gdpr.core.privacy.audit import AuditTrail
from factory_gdpr.core.privacy.locks import SubjectLocks
from factory_gdpr.core.privacy.models import (
    Clock,
    ConsentRecord,
    DataCategory,
    DataSubjectSummary,
    LegalBasis,
    PersonalDataRecord,
    UpcomingDeletion,
    scheduled_deletion,
    utc_now,
)
from factory_gdpr.core.privacy.repository import Repository
from factory_gdpr.core.privacy.rules import AnonymizationRuleRegistry


def coerce_enum(enum_cls: Any, value: Any, what: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"Unknown {what}: {value!r}", field=what) from e


def _check_retention(retention_days: Optional[int]) -> Optional[int]:
    if retention_days is None:
        return None
    if int(retention_days) < 1:
        raise ValidationError("Retention period must be at least one day.", retention_days=int(retention_days))
    return int(retention_days)


class ConsentStore:
    """
    Consent records per data subject.

    A consent is never edited except to withdraw it; withdrawal is one-way.
    """

    def __init__(
        self,
        *,
        repo: Repository[ConsentRecord],
        cfg: GovernanceConfigFile,
        audit: AuditTrail,
        locks: SubjectLocks,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.repo = repo
        self.cfg = cfg
        self.audit = audit
        self.locks = locks
        self.clock = clock or utc_now
        self.logger = logger or logging.getLogger("factory_gdpr.consent")

    def record(
        self,
        data_subject_id: str,
        purpose: str,
        legal_basis: Any,
        consent_given: bool,
        data_categories: Iterable[Any],
        source: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        retention_days: Optional[int] = None,
    ) -> ConsentRecord:
        basis = coerce_enum(LegalBasis, legal_basis, "legal_basis")
        cats = [coerce_enum(DataCategory, c, "data_category") for c in data_categories]
        days = _check_retention(retention_days) or int(self.cfg.consent_retention_days)
        try:
            consent = ConsentRecord(
                data_subject_id=str(data_subject_id),
                purpose=str(purpose),
                legal_basis=basis,
                consent_given=bool(consent_given),
                consent_timestamp=self.clock(),
                source=str(source),
                ip_address=ip_address,
                user_agent=user_agent,
                data_categories=list(dict.fromkeys(cats)),
                retention_period_days=days,
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid consent record.", errors=e.errors(include_url=False, include_input=False)) from e
        with self.locks.hold(consent.data_subject_id):
            self.repo.insert(consent)
        self.audit.record(
            "consent_recorded",
            consent.data_subject_id,
            details={
                "consent_id": consent.consent_id,
                "purpose": consent.purpose,
                "legal_basis": consent.legal_basis.value,
                "consent_given": consent.consent_given,
                "source": consent.source,
                "data_categories": [c.value for c in consent.data_categories],
            },
        )
        self.logger.info(f"Consent recorded: subject={consent.data_subject_id} id={consent.consent_id} given={consent.consent_given}")
        return consent

    def withdraw_all(self, data_subject_id: str, *, reason: Optional[str] = None) -> int:
        sid = str(data_subject_id)
        withdrawn: List[str] = []
        with self.locks.hold(sid):
            now = self.clock()
            for c in self.repo.get_by_parent(sid):
                if c.withdraw(now):
                    self.repo.update(c)
                    withdrawn.append(c.consent_id)
        if withdrawn:
            self.audit.record("consent_withdrawn", sid, reason=reason, details={"consent_ids": withdrawn, "count": len(withdrawn)})
            self.logger.info(f"Consents withdrawn: subject={sid} count={len(withdrawn)}")
        return len(withdrawn)

    def withdraw(self, consent_id: str, *, reason: Optional[str] = None) -> bool:
        sid = self.repo.parent_of(str(consent_id))
        if sid is None:
            return False
        with self.locks.hold(sid):
            c = self.repo.get_by_id(str(consent_id))
            if c is None or not c.withdraw(self.clock()):
                return False
            self.repo.update(c)
        self.audit.record("consent_withdrawn", sid, reason=reason, details={"consent_ids": [c.consent_id], "count": 1})
        return True

    def get(self, consent_id: str) -> Optional[ConsentRecord]:
        return self.repo.get_by_id(str(consent_id))

    def list_for_subject(self, data_subject_id: str) -> List[ConsentRecord]:
        return self.repo.get_by_parent(str(data_subject_id))

    def active_for_subject(self, data_subject_id: str) -> List[ConsentRecord]:
        return [c for c in self.list_for_subject(data_subject_id) if c.is_active]

    def iter_all(self) -> Iterator[ConsentRecord]:
        return self.repo.iter_all()

    def count_active(self) -> int:
        return sum(1 for c in self.repo.iter_all() if c.is_active)

    def subjects(self) -> List[str]:
        return self.repo.parents()


class PersonalDataStore:
    """
    Encrypted personal-data inventory.

    Values are encrypted before they reach the repository. Sensitive values
    are anonymized on write when a rule exists for the field. Every mutation
    of a subject's records happens under that subject's lock.
    """

    def __init__(
        self,
        *,
        repo: Repository[PersonalDataRecord],
        crypto: CryptoBox,
        rules: AnonymizationRuleRegistry,
        cfg: GovernanceConfigFile,
        audit: AuditTrail,
        locks: SubjectLocks,
        consents: Optional[ConsentStore] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.repo = repo
        self.crypto = crypto
        self.rules = rules
        self.cfg = cfg
        self.audit = audit
        self.locks = locks
        self.consents = consents
        self.clock = clock or utc_now
        self.logger = logger or logging.getLogger("factory_gdpr.personal_data")

    # ---- write path ----
    def record(
        self,
        data_subject_id: str,
        field_name: str,
        value: str,
        category: Any,
        legal_basis: Any,
        retention_days: Optional[int] = None,
        consent_timestamp: Optional[datetime] = None,
    ) -> PersonalDataRecord:
        cat = coerce_enum(DataCategory, category, "category")
        basis = coerce_enum(LegalBasis, legal_basis, "legal_basis")
        days = _check_retention(retention_days)
        if days is None:
            days = self.cfg.retention_for(cat.value)
        now = self.clock()
        try:
            rec = PersonalDataRecord(
                data_subject_id=str(data_subject_id),
                category=cat,
                field_name=str(field_name),
                encrypted_original_value=self.crypto.encrypt(str(value)),
                legal_basis=basis,
                consent_timestamp=consent_timestamp,
                retention_period_days=days,
                created_at=now,
                scheduled_deletion_at=scheduled_deletion(now, days),
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid personal data record.", errors=e.errors(include_url=False, include_input=False)) from e

        anonymized_on_write = False
        with self.locks.hold(rec.data_subject_id):
            if cat == DataCategory.SENSITIVE_PERSONAL and self.cfg.anonymize_sensitive_on_write and self.rules.has(rec.field_name):
                anon, technique = self.rules.apply(rec.field_name, str(value))
                rec.mark_anonymized(anon, technique)
                anonymized_on_write = True
            self.repo.insert(rec)

        self.audit.record(
            "personal_data_recorded",
            rec.data_subject_id,
            details={
                "record_id": rec.record_id,
                "field_name": rec.field_name,
                "category": rec.category.value,
                "legal_basis": rec.legal_basis.value,
                "retention_days": rec.retention_period_days,
                "anonymized": anonymized_on_write,
            },
        )
        if anonymized_on_write:
            self._audit_anonymized(rec, trigger="on_write")
        self.logger.info(f"Personal data recorded: subject={rec.data_subject_id} id={rec.record_id} category={rec.category.value}")
        return rec

    def anonymize(self, record_id: str) -> bool:
        """
        Anonymize one record by id.

        True when the record ends up anonymized (including when it already
        was). False for unknown ids, deleted records and fields with no rule.
        DecryptionError propagates.
        """
        sid = self.repo.parent_of(str(record_id))
        if sid is None:
            return False
        with self.locks.hold(sid):
            rec = self.repo.get_by_id(str(record_id))
            if rec is None:
                return False
            return self.anonymize_record(rec, trigger="request")

    def purge(self, record_id: str, *, reason: Optional[str] = None) -> bool:
        sid = self.repo.parent_of(str(record_id))
        if sid is None:
            return False
        with self.locks.hold(sid):
            rec = self.repo.get_by_id(str(record_id))
            if rec is None:
                return False
            return self.purge_record(rec, reason=reason)

    def anonymize_record(self, rec: PersonalDataRecord, *, trigger: str = "request") -> bool:
        """Caller must hold the subject lock; rec is persisted on change."""
        if rec.is_deleted:
            return False
        if rec.is_anonymized:
            return True
        rule = self.rules.get(rec.field_name)
        if rule is None:
            return False
        plaintext = self.crypto.decrypt(rec.encrypted_original_value)
        rec.mark_anonymized(rule.transform(plaintext), rule.technique)
        self.repo.update(rec)
        self._audit_anonymized(rec, trigger=trigger)
        return True

    def purge_record(self, rec: PersonalDataRecord, *, reason: Optional[str] = None) -> bool:
        """Caller must hold the subject lock; rec is persisted on change."""
        if rec.is_deleted:
            return True
        if not rec.can_be_deleted():
            return False
        rec.mark_deleted()
        self.repo.update(rec)
        self.audit.record(
            "personal_data_deleted",
            rec.data_subject_id,
            reason=reason,
            details={"record_id": rec.record_id, "field_name": rec.field_name, "category": rec.category.value},
        )
        return True

    def _audit_anonymized(self, rec: PersonalDataRecord, *, trigger: str) -> None:
        self.audit.record(
            "personal_data_anonymized",
            rec.data_subject_id,
            details={
                "record_id": rec.record_id,
                "field_name": rec.field_name,
                "technique": rec.applied_technique.value if rec.applied_technique else None,
                "trigger": trigger,
            },
        )

    # ---- read path ----
    def get(self, record_id: str) -> Optional[PersonalDataRecord]:
        return self.repo.get_by_id(str(record_id))

    def list_for_subject(self, data_subject_id: str) -> List[PersonalDataRecord]:
        return self.repo.get_by_parent(str(data_subject_id))

    def subjects(self) -> List[str]:
        return self.repo.parents()

    def iter_all(self) -> Iterator[PersonalDataRecord]:
        return self.repo.iter_all()

    def count(self) -> int:
        return self.repo.count()

    def reveal(self, rec: PersonalDataRecord) -> str:
        if rec.is_deleted:
            return ""
        if rec.is_anonymized:
            return rec.anonymized_value
        return self.crypto.decrypt(rec.encrypted_original_value)

    def summary(self, data_subject_id: str, now: Optional[datetime] = None) -> DataSubjectSummary:
        now = now or self.clock()
        sid = str(data_subject_id)
        records = self.list_for_subject(sid)
        live = [r for r in records if not r.is_deleted]
        cats: List[DataCategory] = []
        for r in live:
            if r.category not in cats:
                cats.append(r.category)
        upcoming = [r.scheduled_deletion_at for r in live if r.scheduled_deletion_at > now]
        active = len(self.consents.active_for_subject(sid)) if self.consents is not None else 0
        return DataSubjectSummary(
            data_subject_id=sid,
            total_records=len(records),
            anonymized_records=sum(1 for r in records if r.is_anonymized),
            deleted_records=sum(1 for r in records if r.is_deleted),
            active_consents=active,
            data_categories=cats,
            oldest_record=min((r.created_at for r in records), default=None),
            next_scheduled_deletion=min(upcoming, default=None),
        )

    def upcoming_deletions(self, within_days: int = 30, now: Optional[datetime] = None) -> List[UpcomingDeletion]:
        """
        Records due for deletion in (now, now + within_days], grouped by
        subject and category, soonest first.

        A group can be postponed only when every record in it rests on
        consent.
        """
        now = now or self.clock()
        horizon = now + timedelta(days=int(within_days))
        groups: Dict[Tuple[str, DataCategory], List[PersonalDataRecord]] = {}
        for r in self.iter_all():
            if r.is_deleted or not (now < r.scheduled_deletion_at <= horizon):
                continue
            groups.setdefault((r.data_subject_id, r.category), []).append(r)
        out = [
            UpcomingDeletion(
                data_subject_id=sid,
                category=cat,
                record_count=len(recs),
                scheduled_date=min(r.scheduled_deletion_at for r in recs),
                can_be_postponed=all(r.legal_basis == LegalBasis.CONSENT for r in recs),
            )
            for (sid, cat), recs in groups.items()
        ]
        out.sort(key=lambda u: u.scheduled_date)
        return out
