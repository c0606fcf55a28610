from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from factory_gdpr.core.errors import ValidationError
from factory_gdpr.core.privacy.audit import AuditTrail
from factory_gdpr.core.privacy.models import Clock, DataCategory, LegalBasis, ProcessingActivity, utc_now
from factory_gdpr.core.privacy.repository import Repository
from factory_gdpr.core.privacy.store import coerce_enum


_IMMUTABLE = {"activity_id", "created_at", "updated_at"}


class ProcessingActivityRegistry:
    """
    Record of processing activities (GDPR Art. 30), partitioned by controller.
    """

    def __init__(
        self,
        *,
        repo: Repository[ProcessingActivity],
        audit: AuditTrail,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.repo = repo
        self.audit = audit
        self.clock = clock or utc_now
        self.logger = logger or logging.getLogger("factory_gdpr.activities")

    def register(
        self,
        name: str,
        description: str,
        controller: str,
        legal_basis: Any,
        data_categories: Iterable[Any],
        purposes: Iterable[str],
        retention_days: int,
        security_measures: Iterable[str] = (),
        *,
        processor: Optional[str] = None,
        data_subjects: Iterable[str] = (),
        recipients: Iterable[str] = (),
        transfers_to_third_countries: bool = False,
    ) -> ProcessingActivity:
        now = self.clock()
        try:
            act = ProcessingActivity(
                name=str(name),
                description=str(description or ""),
                controller=str(controller),
                processor=processor,
                legal_basis=coerce_enum(LegalBasis, legal_basis, "legal_basis"),
                data_categories=[coerce_enum(DataCategory, c, "data_category") for c in data_categories],
                data_subjects=[str(x) for x in data_subjects],
                purposes=[str(x) for x in purposes],
                recipients=[str(x) for x in recipients],
                transfers_to_third_countries=bool(transfers_to_third_countries),
                retention_period_days=int(retention_days),
                security_measures=[str(x) for x in security_measures],
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid processing activity.", errors=e.errors(include_url=False, include_input=False)) from e
        self.repo.insert(act)
        self.audit.record(
            "processing_activity_registered",
            details={
                "activity_id": act.activity_id,
                "controller": act.controller,
                "legal_basis": act.legal_basis.value,
                "data_categories": [c.value for c in act.data_categories],
            },
        )
        self.logger.info(f"Processing activity registered: id={act.activity_id} controller={act.controller}")
        return act

    def get(self, activity_id: str) -> Optional[ProcessingActivity]:
        return self.repo.get_by_id(str(activity_id))

    def list(self, active_only: bool = True) -> List[ProcessingActivity]:
        return [a for a in self.repo.iter_all() if a.is_active or not active_only]

    def update(self, activity_id: str, **fields: Any) -> Optional[ProcessingActivity]:
        bad = sorted(set(fields) & _IMMUTABLE)
        if bad:
            raise ValidationError("These fields cannot be changed.", fields=bad)
        cur = self.get(activity_id)
        if cur is None:
            return None
        if "controller" in fields and str(fields["controller"]) != cur.controller:
            # activities are partitioned by controller
            raise ValidationError("Controller cannot be changed; register a new activity instead.")
        merged = cur.model_dump()
        merged.update(fields)
        merged["updated_at"] = self.clock()
        try:
            act = ProcessingActivity.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError("Invalid processing activity.", errors=e.errors(include_url=False, include_input=False)) from e
        self.repo.update(act)
        return act

    def deactivate(self, activity_id: str) -> bool:
        cur = self.get(activity_id)
        if cur is None or not cur.is_active:
            return False
        self.update(activity_id, is_active=False)
        return True
