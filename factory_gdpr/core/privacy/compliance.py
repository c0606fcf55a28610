from __future__ import annotations

import collections
import logging
import threading
from datetime import datetime
from typing import Deque, Dict, List, Optional

from factory_gdpr.core.privacy.audit import AuditTrail
from factory_gdpr.core.privacy.models import (
    AnonymizationMetrics,
    AnonymizationTechnique,
    Clock,
    ComplianceAuditEntry,
    ComplianceCheckResult,
    ComplianceOverview,
    ComplianceReport,
    TechniqueCount,
    utc_now,
)
from factory_gdpr.core.privacy.store import ConsentStore, PersonalDataStore


def _pct(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(100.0 * float(part) / float(whole), 2)


class ComplianceReporter:
    """
    Read-only compliance checks over the whole inventory.

    Never mutates records or consents. Keeps the latest report and a bounded
    history of audit runs in memory.
    """

    def __init__(
        self,
        *,
        personal_data: PersonalDataStore,
        consents: ConsentStore,
        audit: AuditTrail,
        history_size: int = 100,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.personal_data = personal_data
        self.consents = consents
        self.audit = audit
        self.clock = clock or utc_now
        self.logger = logger or logging.getLogger("factory_gdpr.compliance")
        self._lock = threading.Lock()
        self._history: Deque[ComplianceAuditEntry] = collections.deque(maxlen=max(1, int(history_size)))
        self._latest: Optional[ComplianceReport] = None

    def check(self, now: Optional[datetime] = None) -> ComplianceCheckResult:
        """
        Non-mutating compliance check.

        Only live records count: a subject whose records are all anonymized
        or deleted no longer holds identifying data, so it is not flagged for
        missing consent and has nothing overdue. A subject with at least one
        live record and no active consent is flagged once; each subject with
        live records past scheduled_deletion_at gets one overdue issue.
        """
        now = now or self.clock()
        consented = {c.data_subject_id for c in self.consents.iter_all() if c.is_active}
        issues: List[str] = []
        recommendations: List[str] = []
        for sid in self.personal_data.subjects():
            live = [r for r in self.personal_data.list_for_subject(sid) if not r.is_deleted and not r.is_anonymized]
            if not live:
                continue
            if sid not in consented:
                issues.append(f"Data subject {sid} has no active consent but has personal data")
                recommendations.append(f"Review and obtain valid consent or anonymize data for {sid}")
            overdue = sum(1 for r in live if r.scheduled_deletion_at <= now)
            if overdue:
                issues.append(f"{overdue} overdue data records for subject {sid}")
                recommendations.append(f"Schedule immediate anonymization or deletion for overdue records of subject {sid}")
        return ComplianceCheckResult(compliant=not issues, issues=issues, recommendations=recommendations, checked_at=now)

    def report(self, now: Optional[datetime] = None) -> ComplianceReport:
        now = now or self.clock()
        result = self.check(now)
        total = anonymized = deleted = 0
        for r in self.personal_data.iter_all():
            total += 1
            anonymized += int(r.is_anonymized)
            deleted += int(r.is_deleted)
        with self._lock:
            last_audit = self._history[-1].date if self._history else now
        rep = ComplianceReport(
            overview=ComplianceOverview(compliant=result.compliant, last_check=now),
            data_subjects=len(self.personal_data.subjects()),
            personal_data_records=total,
            anonymized_records=anonymized,
            deleted_records=deleted,
            active_consents=self.consents.count_active(),
            compliance_issues=result.issues,
            recommendations=result.recommendations,
            last_audit_date=last_audit,
        )
        return rep

    def latest_report(self) -> Optional[ComplianceReport]:
        """Report captured by the most recent run_audit(); None before the first audit."""
        with self._lock:
            return self._latest

    def run_audit(self, kind: str = "automatic", now: Optional[datetime] = None) -> ComplianceAuditEntry:
        if kind not in {"automatic", "manual"}:
            raise ValueError(f"unknown audit kind: {kind!r}")
        now = now or self.clock()
        rep = self.report(now)
        entry = ComplianceAuditEntry(
            date=now,
            kind=kind,
            compliant=rep.overview.compliant,
            issues=len(rep.compliance_issues),
            recommendations=len(rep.recommendations),
            auditor="system" if kind == "automatic" else "operator",
        )
        with self._lock:
            self._history.append(entry)
            self._latest = rep.model_copy(update={"last_audit_date": now})
        self.audit.record(
            "compliance_check",
            details={"audit_id": entry.audit_id, "kind": kind, "compliant": entry.compliant, "issues": entry.issues},
        )
        if not entry.compliant:
            self.logger.warning(f"Compliance audit found {entry.issues} issue(s)")
        return entry

    def audit_history(self) -> List[ComplianceAuditEntry]:
        """Newest first."""
        with self._lock:
            return list(reversed(self._history))

    def anonymization_metrics(self, now: Optional[datetime] = None) -> AnonymizationMetrics:
        now = now or self.clock()
        total = anonymized = deleted = pending = 0
        by_technique: Dict[AnonymizationTechnique, int] = {}
        for r in self.personal_data.iter_all():
            total += 1
            if r.is_deleted:
                deleted += 1
            if r.is_anonymized:
                anonymized += 1
                if r.applied_technique is not None:
                    by_technique[r.applied_technique] = by_technique.get(r.applied_technique, 0) + 1
            elif not r.is_deleted:
                pending += 1
        techniques = [
            TechniqueCount(technique=t, count=n, percentage=_pct(n, anonymized))
            for t, n in sorted(by_technique.items(), key=lambda kv: (-kv[1], kv[0].value))
        ]
        return AnonymizationMetrics(
            total_records=total,
            anonymized_records=anonymized,
            pending_anonymization=pending,
            deleted_records=deleted,
            anonymization_rate=_pct(anonymized, total),
            techniques=techniques,
            last_update=now,
        )
