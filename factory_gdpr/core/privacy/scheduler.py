from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from factory_gdpr.core.config.models import GovernanceConfigFile
from factory_gdpr.core.errors import SchedulerError
from factory_gdpr.core.privacy.audit import AuditTrail
from factory_gdpr.core.privacy.compliance import ComplianceReporter
from factory_gdpr.core.privacy.locks import SubjectLocks
from factory_gdpr.core.privacy.models import Clock, ComplianceAuditEntry, DataCategory, SweepResult, utc_now
from factory_gdpr.core.privacy.store import PersonalDataStore


class PeriodicTask:
    """
    Runs fn every interval_seconds on a daemon thread.

    Runs of the same task never overlap: a tick (or run_now call) that finds
    the previous run still active is skipped and counted. A failing run is
    logged and counted; the loop keeps going.
    """

    def __init__(self, name: str, interval_seconds: float, fn: Callable[[], Any], *, logger: Optional[logging.Logger] = None):
        if float(interval_seconds) <= 0:
            raise SchedulerError(f"Interval for {name} must be positive.", task=name)
        self.name = str(name)
        self.interval_seconds = float(interval_seconds)
        self.fn = fn
        self.logger = logger or logging.getLogger("factory_gdpr.scheduler")
        self._stop = threading.Event()
        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.skipped = 0
        self.errors = 0
        self.last_run_at: Optional[float] = None
        self.last_duration_ms: Optional[int] = None
        self.last_error: Optional[str] = None

    def start(self) -> None:
        """
        Start the loop thread. Each loop owns its stop event, so a loop that
        outlived stop()'s grace period still exits after its current run.
        """
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive() and not self._stop.is_set():
                return
            self._stop = threading.Event()
            self._thread = threading.Thread(target=self._loop, args=(self._stop,), name=f"gdpr-{self.name}", daemon=True)
            self._thread.start()

    def stop(self, grace_seconds: float = 2.0) -> None:
        with self._state_lock:
            stop, t = self._stop, self._thread
        stop.set()
        if t is None:
            return
        if t.is_alive() and t is not threading.current_thread():
            t.join(timeout=max(0.1, float(grace_seconds)))
        if t.is_alive():
            self.logger.warning(f"Sweep {self.name} still finishing after stop; its loop exits when the run ends")

    def is_running(self) -> bool:
        with self._state_lock:
            t, stop = self._thread, self._stop
        return t is not None and t.is_alive() and not stop.is_set()

    def run_now(self) -> bool:
        """False when skipped because a run is already in progress."""
        if not self._run_lock.acquire(blocking=False):
            with self._stats_lock:
                self.skipped += 1
            self.logger.info(f"Sweep {self.name} still running; tick skipped")
            return False
        t0 = time.time()
        try:
            self.fn()
            with self._stats_lock:
                self.runs += 1
        except Exception as e:  # noqa: BLE001
            with self._stats_lock:
                self.errors += 1
                self.last_error = str(e)[:300]
            self.logger.error(f"Sweep {self.name} failed: {e}")
        finally:
            with self._stats_lock:
                self.last_run_at = t0
                self.last_duration_ms = int((time.time() - t0) * 1000)
            self._run_lock.release()
        return True

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return {
                "name": self.name,
                "interval_seconds": self.interval_seconds,
                "running": self.is_running(),
                "runs": self.runs,
                "skipped": self.skipped,
                "errors": self.errors,
                "last_run_at": self.last_run_at,
                "last_duration_ms": self.last_duration_ms,
                "last_error": self.last_error,
            }

    def _loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval_seconds):
            self.run_now()


class LifecycleScheduler:
    """
    Retention, auto-anonymization and compliance sweeps.

    The sweep methods are plain calls (tests drive them with an explicit
    `now`); start() puts each on its own PeriodicTask.
    """

    RETENTION = "retention"
    ANONYMIZATION = "anonymization"
    COMPLIANCE = "compliance"

    def __init__(
        self,
        *,
        personal_data: PersonalDataStore,
        reporter: ComplianceReporter,
        cfg: GovernanceConfigFile,
        audit: AuditTrail,
        locks: SubjectLocks,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.personal_data = personal_data
        self.reporter = reporter
        self.cfg = cfg
        self.audit = audit
        self.locks = locks
        self.clock = clock or utc_now
        self.logger = logger or logging.getLogger("factory_gdpr.scheduler")
        self._tasks: Dict[str, PeriodicTask] = {}
        self._last: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    # ---- sweeps ----
    def retention_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Every live record past its scheduled deletion date is deleted, or
        anonymized when a legal obligation forbids deletion.
        """
        now = now or self.clock()
        res = SweepResult(sweep=self.RETENTION, as_of=now)
        for sid in self.personal_data.subjects():
            with self.locks.hold(sid):
                for rec in self.personal_data.list_for_subject(sid):
                    if rec.is_deleted:
                        continue
                    res.examined += 1
                    if not rec.is_overdue(now):
                        continue
                    try:
                        if rec.can_be_deleted():
                            if self.personal_data.purge_record(rec, reason="retention period expired"):
                                res.deleted += 1
                        elif not rec.is_anonymized and self.personal_data.anonymize_record(rec, trigger="retention"):
                            res.anonymized += 1
                        else:
                            res.skipped += 1
                    except Exception as e:  # noqa: BLE001
                        res.errors += 1
                        self.logger.warning(f"Retention sweep failed for record {rec.record_id}: {e}")
        self._finish(res)
        return res

    def anonymization_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Anonymizes live records older than the per-category threshold.
        Categories without a threshold are left to the retention sweep.
        """
        now = now or self.clock()
        thresholds = {DataCategory(k): int(v) for k, v in self.cfg.auto_anonymize_after_days.items()}
        res = SweepResult(sweep=self.ANONYMIZATION, as_of=now)
        for sid in self.personal_data.subjects():
            with self.locks.hold(sid):
                for rec in self.personal_data.list_for_subject(sid):
                    if rec.is_deleted or rec.is_anonymized or rec.category not in thresholds:
                        continue
                    res.examined += 1
                    if rec.age_days(now) <= thresholds[rec.category]:
                        continue
                    try:
                        if self.personal_data.anonymize_record(rec, trigger="age"):
                            res.anonymized += 1
                        else:
                            res.skipped += 1
                    except Exception as e:  # noqa: BLE001
                        res.errors += 1
                        self.logger.warning(f"Anonymization sweep failed for record {rec.record_id}: {e}")
        self._finish(res)
        return res

    def compliance_sweep(self, now: Optional[datetime] = None) -> ComplianceAuditEntry:
        entry = self.reporter.run_audit("automatic", now=now or self.clock())
        with self._lock:
            self._last[self.COMPLIANCE] = entry.model_dump(mode="json")
        return entry

    def _finish(self, res: SweepResult) -> None:
        with self._lock:
            self._last[res.sweep] = res.model_dump(mode="json")
        if res.deleted or res.anonymized or res.errors:
            self.audit.record(
                f"{res.sweep}_sweep",
                details={
                    "examined": res.examined,
                    "deleted": res.deleted,
                    "anonymized": res.anonymized,
                    "skipped": res.skipped,
                    "errors": res.errors,
                },
            )
        self.logger.info(
            f"{res.sweep} sweep: examined={res.examined} deleted={res.deleted} "
            f"anonymized={res.anonymized} skipped={res.skipped} errors={res.errors}"
        )

    # ---- lifecycle ----
    def start(self) -> bool:
        sc = self.cfg.scheduler
        if not sc.enabled:
            self.logger.info("Lifecycle scheduler disabled by configuration")
            return False
        with self._lock:
            if not self._tasks:
                self._tasks = {
                    self.RETENTION: PeriodicTask(self.RETENTION, sc.retention_interval_seconds, self.retention_sweep, logger=self.logger),
                    self.ANONYMIZATION: PeriodicTask(
                        self.ANONYMIZATION, sc.anonymization_interval_seconds, self.anonymization_sweep, logger=self.logger
                    ),
                    self.COMPLIANCE: PeriodicTask(self.COMPLIANCE, sc.compliance_interval_seconds, self.compliance_sweep, logger=self.logger),
                }
            tasks = list(self._tasks.values())
        for t in tasks:
            t.start()
        self.logger.info("Lifecycle scheduler started")
        return True

    def stop(self) -> None:
        with self._lock:
            tasks = list(self._tasks.values())
        for t in tasks:
            t.stop(grace_seconds=self.cfg.scheduler.stop_grace_seconds)
        if tasks:
            self.logger.info("Lifecycle scheduler stopped")

    def is_running(self) -> bool:
        with self._lock:
            tasks = list(self._tasks.values())
        return any(t.is_running() for t in tasks)

    def task(self, name: str) -> Optional[PeriodicTask]:
        with self._lock:
            return self._tasks.get(name)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            tasks: List[PeriodicTask] = list(self._tasks.values())
            last = dict(self._last)
        return {
            "running": any(t.is_running() for t in tasks),
            "tasks": {t.name: t.stats() for t in tasks},
            "last_results": last,
        }
