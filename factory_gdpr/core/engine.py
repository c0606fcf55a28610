from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any, Iterable, List, Optional

from factory_gdpr.core.config import ConfigFsPaths, ConfigManager, GovernanceConfigFile
from factory_gdpr.core.crypto import CryptoBox, EphemeralKeyProvider, FileKeyProvider, KeyProvider
from factory_gdpr.core.privacy.activities import ProcessingActivityRegistry
from factory_gdpr.core.privacy.audit import AuditSink, AuditTrail, EventBusAuditSink, JsonlAuditSink
from factory_gdpr.core.privacy.compliance import ComplianceReporter
from factory_gdpr.core.privacy.dsar import ErasureWorkflow, ExportWorkflow
from factory_gdpr.core.privacy.locks import SubjectLocks
from factory_gdpr.core.privacy.models import (
    AnonymizationMetrics,
    Clock,
    ComplianceAuditEntry,
    ComplianceCheckResult,
    ComplianceReport,
    ConsentRecord,
    DataSubjectSummary,
    ErasureResult,
    ExportResult,
    PersonalDataRecord,
    ProcessingActivity,
    UpcomingDeletion,
    utc_now,
)
from factory_gdpr.core.privacy.repository import InMemoryRepository, SqliteRepository
from factory_gdpr.core.privacy.rules import AnonymizationRule, AnonymizationRuleRegistry
from factory_gdpr.core.privacy.scheduler import LifecycleScheduler
from factory_gdpr.core.privacy.store import ConsentStore, PersonalDataStore


def _repositories(cfg: GovernanceConfigFile, paths: ConfigFsPaths):
    if cfg.storage.backend == "sqlite":
        db = paths.resolve(cfg.storage.sqlite_path)
        return (
            SqliteRepository(db_path=db, table="personal_data", model=PersonalDataRecord, id_attr="record_id", parent_attr="data_subject_id"),
            SqliteRepository(db_path=db, table="consents", model=ConsentRecord, id_attr="consent_id", parent_attr="data_subject_id"),
            SqliteRepository(db_path=db, table="processing_activities", model=ProcessingActivity, id_attr="activity_id", parent_attr="controller"),
        )
    return (
        InMemoryRepository(PersonalDataRecord, id_attr="record_id", parent_attr="data_subject_id"),
        InMemoryRepository(ConsentRecord, id_attr="consent_id", parent_attr="data_subject_id"),
        InMemoryRepository(ProcessingActivity, id_attr="activity_id", parent_attr="controller"),
    )


def _key_provider(cfg: GovernanceConfigFile, paths: ConfigFsPaths) -> KeyProvider:
    if cfg.keys.provider == "ephemeral":
        return EphemeralKeyProvider()
    return FileKeyProvider(path=paths.resolve(cfg.keys.key_path), create_if_missing=cfg.keys.create_if_missing)


class GovernanceEngine:
    """
    Composition root for the governance components.

    One instance per process (or per test). Everything it owns is reachable
    from here; there is no module-level state.
    """

    def __init__(
        self,
        *,
        cfg: GovernanceConfigFile,
        crypto: CryptoBox,
        rules: AnonymizationRuleRegistry,
        personal_data: PersonalDataStore,
        consents: ConsentStore,
        erasure: ErasureWorkflow,
        export: ExportWorkflow,
        reporter: ComplianceReporter,
        scheduler: LifecycleScheduler,
        activities: ProcessingActivityRegistry,
        audit: AuditTrail,
        locks: SubjectLocks,
        event_bus: Any = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.cfg = cfg
        self.crypto = crypto
        self.rules = rules
        self.personal_data = personal_data
        self.consents = consents
        self.erasure = erasure
        self.export = export
        self.reporter = reporter
        self.scheduler = scheduler
        self.activities = activities
        self.audit = audit
        self.locks = locks
        self.event_bus = event_bus
        self.clock = clock or utc_now
        self.logger = logger or logging.getLogger("factory_gdpr.engine")

    @classmethod
    def from_config(
        cls,
        cfg: Optional[GovernanceConfigFile] = None,
        *,
        root_path: str = ".",
        event_bus: Any = None,
        key_provider: Optional[KeyProvider] = None,
        audit_sinks: Optional[Iterable[AuditSink]] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
        extra_rules: Iterable[AnonymizationRule] = (),
        rng: Optional[random.Random] = None,
    ) -> "GovernanceEngine":
        cfg = cfg or GovernanceConfigFile()
        paths = ConfigFsPaths(root=root_path)
        clock = clock or utc_now
        base_logger = logger or logging.getLogger("factory_gdpr")

        if audit_sinks is None:
            sinks: List[AuditSink] = [JsonlAuditSink(paths.resolve(cfg.audit.jsonl_path))] if cfg.audit.jsonl_path else []
        else:
            sinks = list(audit_sinks)
        if event_bus is not None and cfg.audit.publish_events:
            sinks.append(EventBusAuditSink(event_bus))
        audit = AuditTrail(sinks, logger=base_logger.getChild("audit"), clock=clock)

        crypto = CryptoBox(key_provider or _key_provider(cfg, paths))
        rules = AnonymizationRuleRegistry(crypto, extra_rules, location_noise_degrees=cfg.location_noise_degrees, rng=rng)
        locks = SubjectLocks()
        pd_repo, consent_repo, activity_repo = _repositories(cfg, paths)

        consents = ConsentStore(repo=consent_repo, cfg=cfg, audit=audit, locks=locks, clock=clock, logger=base_logger.getChild("consent"))
        personal_data = PersonalDataStore(
            repo=pd_repo,
            crypto=crypto,
            rules=rules,
            cfg=cfg,
            audit=audit,
            locks=locks,
            consents=consents,
            clock=clock,
            logger=base_logger.getChild("personal_data"),
        )
        reporter = ComplianceReporter(
            personal_data=personal_data,
            consents=consents,
            audit=audit,
            history_size=cfg.audit.history_size,
            clock=clock,
            logger=base_logger.getChild("compliance"),
        )
        engine = cls(
            cfg=cfg,
            crypto=crypto,
            rules=rules,
            personal_data=personal_data,
            consents=consents,
            erasure=ErasureWorkflow(personal_data=personal_data, consents=consents, audit=audit, locks=locks, logger=base_logger.getChild("erasure")),
            export=ExportWorkflow(
                personal_data=personal_data, consents=consents, audit=audit, locks=locks, clock=clock, logger=base_logger.getChild("export")
            ),
            reporter=reporter,
            scheduler=LifecycleScheduler(
                personal_data=personal_data,
                reporter=reporter,
                cfg=cfg,
                audit=audit,
                locks=locks,
                clock=clock,
                logger=base_logger.getChild("scheduler"),
            ),
            activities=ProcessingActivityRegistry(repo=activity_repo, audit=audit, clock=clock, logger=base_logger.getChild("activities")),
            audit=audit,
            locks=locks,
            event_bus=event_bus,
            clock=clock,
            logger=base_logger.getChild("engine"),
        )
        engine.logger.info(f"Governance engine ready (storage={cfg.storage.backend}, key_id={crypto.key_id})")
        if cfg.scheduler.start_on_boot:
            engine.start()
        return engine

    @classmethod
    def from_root(cls, root_path: str = ".", **kwargs: Any) -> "GovernanceEngine":
        """Load config/governance.json under root_path and build an engine from it."""
        fs = ConfigFsPaths(root=root_path)
        cfg = ConfigManager(fs=fs, logger=kwargs.get("logger")).load()
        return cls.from_config(cfg, root_path=root_path, **kwargs)

    # ---- personal data ----
    def record_personal_data(
        self,
        data_subject_id: str,
        field_name: str,
        value: str,
        category: Any,
        legal_basis: Any,
        retention_days: Optional[int] = None,
        consent_timestamp: Optional[datetime] = None,
    ) -> PersonalDataRecord:
        return self.personal_data.record(
            data_subject_id,
            field_name,
            value,
            category,
            legal_basis,
            retention_days=retention_days,
            consent_timestamp=consent_timestamp,
        )

    def anonymize(self, record_id: str) -> bool:
        return self.personal_data.anonymize(record_id)

    def purge(self, record_id: str, reason: Optional[str] = None) -> bool:
        return self.personal_data.purge(record_id, reason=reason)

    def subject_summary(self, data_subject_id: str) -> DataSubjectSummary:
        return self.personal_data.summary(data_subject_id)

    def upcoming_deletions(self, within_days: int = 30) -> List[UpcomingDeletion]:
        return self.personal_data.upcoming_deletions(within_days)

    # ---- consent ----
    def record_consent(
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
        return self.consents.record(
            data_subject_id,
            purpose,
            legal_basis,
            consent_given,
            data_categories,
            source,
            ip_address=ip_address,
            user_agent=user_agent,
            retention_days=retention_days,
        )

    def withdraw_consent(self, consent_id: str, reason: Optional[str] = None) -> bool:
        return self.consents.withdraw(consent_id, reason=reason)

    def withdraw_all_consents(self, data_subject_id: str, reason: Optional[str] = None) -> int:
        return self.consents.withdraw_all(data_subject_id, reason=reason)

    # ---- data subject requests ----
    def process_erasure_request(self, data_subject_id: str, reason: Optional[str] = None) -> ErasureResult:
        return self.erasure.process_erasure_request(data_subject_id, reason)

    def export_personal_data(self, data_subject_id: str, format: Any = "json") -> ExportResult:
        return self.export.export_personal_data(data_subject_id, format)

    # ---- compliance ----
    def compliance_check(self) -> ComplianceCheckResult:
        return self.reporter.check()

    def compliance_report(self) -> ComplianceReport:
        """Freshly computed on every call; reporter.latest_report() keeps the last sweep's copy."""
        return self.reporter.report()

    def run_compliance_audit(self, kind: str = "manual") -> ComplianceAuditEntry:
        return self.reporter.run_audit(kind)

    def compliance_audit_history(self) -> List[ComplianceAuditEntry]:
        return self.reporter.audit_history()

    def anonymization_metrics(self) -> AnonymizationMetrics:
        return self.reporter.anonymization_metrics()

    # ---- processing activities ----
    def register_processing_activity(self, *args: Any, **kwargs: Any) -> ProcessingActivity:
        return self.activities.register(*args, **kwargs)

    def processing_activities(self, active_only: bool = True) -> List[ProcessingActivity]:
        return self.activities.list(active_only=active_only)

    # ---- lifecycle ----
    def start(self) -> bool:
        return self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def __enter__(self) -> "GovernanceEngine":
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()
