from __future__ import annotations

import pytest

from factory_gdpr.core.errors import ValidationError
from factory_gdpr.core.privacy.models import DataCategory, LegalBasis


def _register(engine, **kw):
    args = dict(
        name="Badge access",
        description="Door access logging at the plant gates",
        controller="Factory Ltd",
        legal_basis="legitimate_interests",
        data_categories=["personal_identifiable", "technical"],
        purposes=["site security"],
        retention_days=365,
        security_measures=["encryption at rest", "role based access"],
    )
    args.update(kw)
    return engine.activities.register(**args)


def test_register_normalizes_enums(engine, clock):
    act = _register(engine, recipients=["Security contractor"], transfers_to_third_countries=False)
    assert act.legal_basis is LegalBasis.LEGITIMATE_INTERESTS
    assert act.data_categories == [DataCategory.PERSONAL_IDENTIFIABLE, DataCategory.TECHNICAL]
    assert act.created_at == act.updated_at == clock()
    assert act.is_active is True
    assert engine.activities.get(act.activity_id).recipients == ["Security contractor"]


@pytest.mark.parametrize(
    "override",
    [
        {"legal_basis": "because"},
        {"data_categories": ["biometric"]},
        {"retention_days": 0},
        {"name": ""},
    ],
)
def test_register_rejects_invalid_input(engine, sink, override):
    with pytest.raises(ValidationError):
        _register(engine, **override)
    assert sink.of("processing_activity_registered") == []


def test_update_bumps_timestamp_and_keeps_identity(engine, clock):
    act = _register(engine)
    clock.advance(days=1)
    upd = engine.activities.update(act.activity_id, purposes=["site security", "fire safety"])
    assert upd.activity_id == act.activity_id
    assert upd.created_at == act.created_at
    assert upd.updated_at == clock()
    assert engine.activities.get(act.activity_id).purposes == ["site security", "fire safety"]


def test_update_rejects_immutable_and_controller_changes(engine):
    act = _register(engine)
    with pytest.raises(ValidationError):
        engine.activities.update(act.activity_id, created_at=act.created_at)
    with pytest.raises(ValidationError):
        engine.activities.update(act.activity_id, controller="Other Ltd")
    with pytest.raises(ValidationError):
        engine.activities.update(act.activity_id, retention_period_days=-5)
    assert engine.activities.update("missing", purposes=[]) is None


def test_deactivate_hides_from_active_listing(engine):
    a = _register(engine)
    b = _register(engine, name="Payroll", legal_basis="contract")
    assert engine.activities.deactivate(a.activity_id) is True
    assert engine.activities.deactivate(a.activity_id) is False
    assert engine.activities.deactivate("missing") is False
    assert [x.activity_id for x in engine.processing_activities()] == [b.activity_id]
    assert {x.activity_id for x in engine.processing_activities(active_only=False)} == {a.activity_id, b.activity_id}
