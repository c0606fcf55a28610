from __future__ import annotations

"""
Data subject requests: right to erasure and right to data portability.

Both workflows are the boundary where per-record faults stop propagating:
they are collected into the result's error list and the request finishes
with success=False instead of raising.
"""

import logging
from typing import Any, Optional

from factory_gdpr.core.errors import GovernanceError
from factory_gdpr.core.privacy.audit import AuditTrail
from factory_gdpr.core.privacy.locks import SubjectLocks
from factory_gdpr.core.privacy.models import (
    Clock,
    ConsentExportItem,
    ErasureResult,
    ExportFormat,
    ExportPayload,
    ExportResult,
    PersonalDataExportItem,
    utc_now,
)
from factory_gdpr.core.privacy.store import ConsentStore, PersonalDataStore, coerce_enum


DEFAULT_ERASURE_REASON = "User request"


def _describe(e: Exception) -> str:
    if isinstance(e, GovernanceError):
        return e.user_message
    return str(e) or type(e).__name__


class ErasureWorkflow:
    def __init__(
        self,
        *,
        personal_data: PersonalDataStore,
        consents: ConsentStore,
        audit: AuditTrail,
        locks: SubjectLocks,
        logger: Optional[logging.Logger] = None,
    ):
        self.personal_data = personal_data
        self.consents = consents
        self.audit = audit
        self.locks = locks
        self.logger = logger or logging.getLogger("factory_gdpr.erasure")

    def process_erasure_request(self, data_subject_id: str, reason: Optional[str] = None) -> ErasureResult:
        """
        Erase everything held about one data subject.

        Deletable records are hard-deleted. Records kept under a legal
        obligation are anonymized instead; the ones with no anonymization
        rule stay as they are and are counted as retained. All active
        consents are withdrawn. There is no rollback: records changed before
        a failure stay changed.
        """
        sid = str(data_subject_id)
        reason = reason or DEFAULT_ERASURE_REASON
        result = ErasureResult()
        with self.locks.hold(sid):
            try:
                records = self.personal_data.list_for_subject(sid)
            except Exception as e:  # noqa: BLE001
                records = []
                result.success = False
                result.errors.append(f"Record lookup: {_describe(e)}")
                self.logger.warning(f"Erasure could not list records (subject={sid}): {e}")
            for rec in records:
                try:
                    if rec.is_deleted:
                        continue
                    if rec.can_be_deleted():
                        if self.personal_data.purge_record(rec, reason=reason):
                            result.deleted_records += 1
                    elif not rec.is_anonymized:
                        if self.personal_data.anonymize_record(rec, trigger="erasure"):
                            result.anonymized_records += 1
                        else:
                            result.retained_records += 1
                except Exception as e:  # noqa: BLE001
                    result.success = False
                    result.errors.append(f"Record {rec.record_id}: {_describe(e)}")
                    self.logger.warning(f"Erasure failed for record {rec.record_id} (subject={sid}): {e}")
            try:
                withdrawn = self.consents.withdraw_all(sid, reason=reason)
            except Exception as e:  # noqa: BLE001
                withdrawn = 0
                result.success = False
                result.errors.append(f"Consent withdrawal: {_describe(e)}")
                self.logger.warning(f"Consent withdrawal failed during erasure (subject={sid}): {e}")

        self.audit.record(
            "data_erasure",
            sid,
            reason=reason,
            details={
                "deleted_records": result.deleted_records,
                "anonymized_records": result.anonymized_records,
                "retained_records": result.retained_records,
                "consents_withdrawn": withdrawn,
                "success": result.success,
                "error_count": len(result.errors),
            },
        )
        self.logger.info(
            f"Erasure processed: subject={sid} deleted={result.deleted_records} "
            f"anonymized={result.anonymized_records} retained={result.retained_records} success={result.success}"
        )
        return result


class ExportWorkflow:
    def __init__(
        self,
        *,
        personal_data: PersonalDataStore,
        consents: ConsentStore,
        audit: AuditTrail,
        locks: SubjectLocks,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.personal_data = personal_data
        self.consents = consents
        self.audit = audit
        self.locks = locks
        self.clock = clock or utc_now
        self.logger = logger or logging.getLogger("factory_gdpr.export")

    def export_personal_data(self, data_subject_id: str, format: Any = "json") -> ExportResult:
        sid = str(data_subject_id)
        fmt = coerce_enum(ExportFormat, format, "export format")
        now = self.clock()
        result_errors = []
        items = []
        records = []
        consents = []
        with self.locks.hold(sid):
            try:
                records = self.personal_data.list_for_subject(sid)
            except Exception as e:  # noqa: BLE001
                result_errors.append(f"Record lookup: {_describe(e)}")
                self.logger.warning(f"Export could not list records (subject={sid}): {e}")
            try:
                consents = self.consents.list_for_subject(sid)
            except Exception as e:  # noqa: BLE001
                result_errors.append(f"Consent lookup: {_describe(e)}")
                self.logger.warning(f"Export could not list consents (subject={sid}): {e}")
        for rec in records:
            if rec.is_deleted:
                continue
            try:
                value = self.personal_data.reveal(rec)
            except Exception as e:  # noqa: BLE001
                result_errors.append(f"Record {rec.record_id}: {_describe(e)}")
                self.logger.warning(f"Export could not reveal record {rec.record_id} (subject={sid}): {type(e).__name__}")
                continue
            items.append(
                PersonalDataExportItem(
                    id=rec.record_id,
                    field=rec.field_name,
                    value=value,
                    category=rec.category,
                    created_at=rec.created_at,
                    is_anonymized=rec.is_anonymized,
                )
            )
        consent_items = [
            ConsentExportItem(
                purpose=c.purpose,
                consent_given=c.consent_given,
                timestamp=c.consent_timestamp,
                is_active=c.is_active,
                data_categories=list(c.data_categories),
            )
            for c in consents
        ]
        payload = ExportPayload(data_subject_id=sid, personal_data=items, consents=consent_items, export_timestamp=now)
        result = ExportResult(success=not result_errors, data=payload, format=fmt, timestamp=now, errors=result_errors)

        self.audit.record(
            "data_export",
            sid,
            details={
                "format": fmt.value,
                "records_exported": len(items),
                "consents_exported": len(consent_items),
                "error_count": len(result_errors),
            },
        )
        self.logger.info(f"Export produced: subject={sid} records={len(items)} consents={len(consent_items)} format={fmt.value}")
        return result
