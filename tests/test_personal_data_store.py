from __future__ import annotations

import re
from datetime import timedelta

import pytest

from factory_gdpr.core.errors import DecryptionError, ValidationError
from factory_gdpr.core.privacy.models import AnonymizationTechnique, DataCategory, LegalBasis


DEFAULTS = {
    "personal_identifiable": 2555,
    "sensitive_personal": 1095,
    "operational": 1825,
    "technical": 365,
    "anonymous": 730,
}


@pytest.mark.parametrize("category,days", sorted(DEFAULTS.items()))
def test_retention_defaults_by_category(engine, category, days):
    rec = engine.record_personal_data("u1", "badgeId", "B-1", category, "contract")
    assert rec.retention_period_days == days
    assert rec.scheduled_deletion_at == rec.created_at + timedelta(days=days)


def test_retention_override_wins(engine):
    rec = engine.record_personal_data("u1", "email", "a@b.c", "personal_identifiable", "contract", retention_days=10)
    assert rec.retention_period_days == 10
    assert rec.scheduled_deletion_at == rec.created_at + timedelta(days=10)


@pytest.mark.parametrize("days", [0, -5])
def test_retention_override_must_be_positive(engine, days):
    with pytest.raises(ValidationError):
        engine.record_personal_data("u1", "email", "a@b.c", "personal_identifiable", "contract", retention_days=days)


def test_unknown_category_or_basis_rejected(engine):
    with pytest.raises(ValidationError):
        engine.record_personal_data("u1", "email", "a@b.c", "secret_stuff", "contract")
    with pytest.raises(ValidationError):
        engine.record_personal_data("u1", "email", "a@b.c", "technical", "because")


def test_value_is_stored_encrypted(engine):
    rec = engine.record_personal_data("u1", "email", "alice@example.com", DataCategory.PERSONAL_IDENTIFIABLE, LegalBasis.CONSENT)
    stored = engine.personal_data.get(rec.record_id)
    assert "alice" not in stored.encrypted_original_value
    assert engine.crypto.decrypt(stored.encrypted_original_value) == "alice@example.com"
    assert engine.personal_data.reveal(stored) == "alice@example.com"
    assert stored.is_anonymized is False


def test_sensitive_location_anonymized_on_write(engine):
    rec = engine.record_personal_data("u1", "location", "41.0082,28.9784", "sensitive_personal", "consent")
    assert rec.is_anonymized is True
    assert rec.encrypted_original_value == ""
    assert rec.applied_technique == AnonymizationTechnique.NOISE_ADDITION
    assert re.fullmatch(r"\d+\.\d{6},\d+\.\d{6}", rec.anonymized_value)
    lat, lon = (float(x) for x in rec.anonymized_value.split(","))
    assert abs(lat - 41.0082) <= 0.001
    assert abs(lon - 28.9784) <= 0.001
    assert engine.personal_data.get(rec.record_id).is_anonymized is True


def test_sensitive_field_without_rule_stays_encrypted(engine):
    rec = engine.record_personal_data("u1", "diagnosis", "asthma", "sensitive_personal", "consent")
    assert rec.is_anonymized is False
    assert engine.personal_data.reveal(rec) == "asthma"


def test_email_anonymize_scenario(engine):
    rec = engine.record_personal_data("u1", "email", "alice@example.com", "personal_identifiable", "consent")
    assert engine.anonymize(rec.record_id) is True
    stored = engine.personal_data.get(rec.record_id)
    assert re.fullmatch(r"user_[0-9a-f]{8}@example\.com", stored.anonymized_value)
    assert stored.encrypted_original_value == ""

    # same input under the same key gives the same pseudonym
    rec2 = engine.record_personal_data("u2", "email", "alice@example.com", "personal_identifiable", "consent")
    engine.anonymize(rec2.record_id)
    assert engine.personal_data.get(rec2.record_id).anonymized_value == stored.anonymized_value


def test_anonymize_is_idempotent(engine, sink):
    rec = engine.record_personal_data("u1", "phone", "5321234567", "personal_identifiable", "contract")
    assert engine.anonymize(rec.record_id) is True
    first = engine.personal_data.get(rec.record_id)
    assert engine.anonymize(rec.record_id) is True
    second = engine.personal_data.get(rec.record_id)
    assert first == second
    assert second.is_anonymized is True
    assert second.encrypted_original_value == ""
    assert len(sink.of("personal_data_anonymized")) == 1


def test_anonymize_not_found_or_unsupported(engine):
    assert engine.anonymize("does-not-exist") is False
    rec = engine.record_personal_data("u1", "shoeSize", "42", "operational", "contract")
    assert engine.anonymize(rec.record_id) is False
    assert engine.personal_data.get(rec.record_id).is_anonymized is False


def test_anonymize_deleted_record_returns_false(engine):
    rec = engine.record_personal_data("u1", "email", "a@b.c", "personal_identifiable", "contract")
    assert engine.purge(rec.record_id) is True
    assert engine.anonymize(rec.record_id) is False


def test_anonymize_propagates_decryption_error(engine):
    rec = engine.record_personal_data("u1", "email", "a@b.c", "personal_identifiable", "contract")
    broken = engine.personal_data.get(rec.record_id)
    broken.encrypted_original_value = '{"v":1,"nonce":"AAAAAAAAAAAAAAAA","ciphertext":"AAAAAAAAAAAAAAAAAAAAAA=="}'
    engine.personal_data.repo.update(broken)
    with pytest.raises(DecryptionError):
        engine.anonymize(rec.record_id)


def test_purge_clears_values_and_respects_legal_obligation(engine, sink):
    rec = engine.record_personal_data("u1", "email", "a@b.c", "personal_identifiable", "contract")
    kept = engine.record_personal_data("u1", "name", "Alice", "personal_identifiable", "legal_obligation")

    assert engine.purge(rec.record_id) is True
    gone = engine.personal_data.get(rec.record_id)
    assert gone.is_deleted is True
    assert gone.encrypted_original_value == ""
    assert gone.anonymized_value == ""
    assert engine.personal_data.reveal(gone) == ""

    assert engine.purge(kept.record_id) is False
    assert engine.personal_data.get(kept.record_id).is_deleted is False
    assert engine.purge("nope") is False
    assert len(sink.of("personal_data_deleted")) == 1


def test_mark_deleted_refuses_legal_obligation(engine):
    rec = engine.record_personal_data("u1", "name", "Alice", "personal_identifiable", "legal_obligation")
    with pytest.raises(ValueError):
        rec.mark_deleted()


def test_audit_details_never_carry_values(engine, sink):
    engine.record_personal_data("u1", "email", "alice@example.com", "personal_identifiable", "consent")
    entry = sink.of("personal_data_recorded")[0]
    assert entry.data_subject_id == "u1"
    assert entry.details["field_name"] == "email"
    assert "alice" not in str(entry.model_dump())


def test_summary_and_upcoming_deletions(engine, clock):
    engine.record_consent("u1", "maintenance", "consent", True, ["technical"], "web")
    engine.record_personal_data("u1", "ipAddress", "10.0.0.1", "technical", "consent", retention_days=10)
    engine.record_personal_data("u1", "ipAddress", "10.0.0.2", "technical", "consent", retention_days=20)
    engine.record_personal_data("u1", "email", "a@b.c", "personal_identifiable", "contract", retention_days=25)
    engine.record_personal_data("u1", "phone", "5321234567", "personal_identifiable", "contract")
    engine.record_personal_data("u2", "name", "Bob", "personal_identifiable", "legal_obligation", retention_days=5)

    s = engine.subject_summary("u1")
    assert s.total_records == 4
    assert s.active_consents == 1
    assert s.deleted_records == 0
    assert set(s.data_categories) == {DataCategory.TECHNICAL, DataCategory.PERSONAL_IDENTIFIABLE}
    assert s.oldest_record == clock()
    assert s.next_scheduled_deletion == clock() + timedelta(days=10)

    up = engine.upcoming_deletions(within_days=30)
    assert [(u.data_subject_id, u.category.value, u.record_count) for u in up] == [
        ("u2", "personal_identifiable", 1),
        ("u1", "technical", 2),
        ("u1", "personal_identifiable", 1),
    ]
    by_key = {(u.data_subject_id, u.category.value): u for u in up}
    assert by_key[("u1", "technical")].can_be_postponed is True
    assert by_key[("u1", "technical")].scheduled_date == clock() + timedelta(days=10)
    assert by_key[("u2", "personal_identifiable")].can_be_postponed is False
