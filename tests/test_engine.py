from __future__ import annotations

import json
import logging
import os
import time

from factory_gdpr.core.config.models import GovernanceConfigFile
from factory_gdpr.core.engine import GovernanceEngine
from factory_gdpr.core.events.bus import EventBus, EventBusConfig
from factory_gdpr.core.logger import setup_logging
from factory_gdpr.core.privacy.audit import AuditTrail, LoggerAuditSink

from .helpers.fakes import CollectingAuditSink, FailingAuditSink, FakeClock


def _cfg(**over) -> GovernanceConfigFile:
    raw = {"keys": {"provider": "ephemeral"}, "scheduler": {"enabled": False}}
    raw.update(over)
    return GovernanceConfigFile.model_validate(raw)


def test_audit_entries_published_on_event_bus(tmp_path):
    bus = EventBus(cfg=EventBusConfig(enabled=True), logger=None)
    got = []
    bus.subscribe("gdpr.*", lambda ev: got.append(ev))
    eng = GovernanceEngine.from_config(_cfg(), root_path=str(tmp_path), event_bus=bus, audit_sinks=[])
    eng.record_personal_data("u1", "email", "alice@example.com", "personal_identifiable", "consent")
    eng.process_erasure_request("u1")
    time.sleep(0.3)
    types = [ev.event_type for ev in got]
    assert "gdpr.personal_data_recorded" in types
    assert "gdpr.data_erasure" in types
    erasure = next(ev for ev in got if ev.event_type == "gdpr.data_erasure")
    assert erasure.payload["data_subject_id"] == "u1"
    assert erasure.payload["details"]["deleted_records"] == 1
    assert all("alice" not in json.dumps(ev.payload) for ev in got)
    bus.shutdown(0.5)


def test_default_jsonl_audit_sink(tmp_path):
    eng = GovernanceEngine.from_config(_cfg(), root_path=str(tmp_path))
    eng.record_personal_data("u1", "phone", "5321234567", "personal_identifiable", "contract")
    eng.export_personal_data("u1")
    path = tmp_path / "logs" / "gdpr_audit.jsonl"
    lines = [json.loads(x) for x in path.read_text(encoding="utf-8").splitlines()]
    assert [x["event"] for x in lines] == ["personal_data_recorded", "data_export"]
    assert "5321234567" not in path.read_text(encoding="utf-8")


def test_failing_sink_does_not_break_operations(tmp_path):
    good = CollectingAuditSink()
    eng = GovernanceEngine.from_config(_cfg(), root_path=str(tmp_path), audit_sinks=[FailingAuditSink(), good])
    res = eng.process_erasure_request("u1")
    assert res.success is True
    assert good.actions() == ["data_erasure"]
    assert eng.audit.sink_failures == 1


def test_audit_trail_minimizes_details():
    sink = CollectingAuditSink()
    trail = AuditTrail([sink], clock=FakeClock())
    trail.record("data_export", "u1", details={"value": "alice@example.com", "email": "a@b.c", "count": 2, "data_key": "k"})
    d = sink.entries[0].details
    assert "value" not in d and "email" not in d
    assert d["value_len"] == len("alice@example.com")
    assert d["count"] == 2
    assert d["data_key"] == "***REDACTED***"


def test_logger_sink_writes_ids_only(caplog):
    logger = logging.getLogger("test.audit")
    trail = AuditTrail([LoggerAuditSink(logger)], clock=FakeClock())
    with caplog.at_level(logging.INFO, logger="test.audit"):
        trail.record("consent_withdrawn", "u7", details={"count": 1})
    assert "consent_withdrawn" in caplog.text
    assert "u7" in caplog.text


def test_from_root_loads_config_and_persists_key(tmp_path):
    eng = GovernanceEngine.from_root(str(tmp_path), audit_sinks=[CollectingAuditSink()])
    assert os.path.exists(tmp_path / "config" / "governance.json")
    assert os.path.getsize(tmp_path / "secure" / "data.key") == 32
    rec = eng.record_personal_data("u1", "email", "a@b.c", "personal_identifiable", "consent")
    assert eng.anonymize(rec.record_id) is True


def test_context_manager_starts_and_stops_scheduler(tmp_path):
    cfg = _cfg(scheduler={"enabled": True, "retention_interval_seconds": 60})
    eng = GovernanceEngine.from_config(cfg, root_path=str(tmp_path), audit_sinks=[])
    with eng as running:
        assert running is eng
        assert eng.scheduler.is_running() is True
    assert eng.scheduler.is_running() is False


def test_start_on_boot(tmp_path):
    cfg = _cfg(scheduler={"enabled": True, "start_on_boot": True})
    eng = GovernanceEngine.from_config(cfg, root_path=str(tmp_path), audit_sinks=[])
    try:
        assert eng.scheduler.is_running() is True
    finally:
        eng.stop()


def test_processing_activity_via_engine(engine, sink):
    act = engine.register_processing_activity(
        "Shift scheduling",
        "Assigning operators to production lines",
        "Factory Ltd",
        "contract",
        ["personal_identifiable", "operational"],
        ["workforce planning"],
        1825,
        ["encryption at rest"],
    )
    assert [a.activity_id for a in engine.processing_activities()] == [act.activity_id]
    assert sink.of("processing_activity_registered")[0].details["controller"] == "Factory Ltd"


def test_setup_logging_is_idempotent(tmp_path):
    lg = setup_logging(str(tmp_path / "logs"))
    n = len(lg.handlers)
    lg2 = setup_logging(str(tmp_path / "logs"))
    assert lg2 is lg
    assert len(lg2.handlers) == n
    assert lg.propagate is False
    assert os.path.exists(tmp_path / "logs" / "factory_gdpr.log")
