from __future__ import annotations


def _corrupt(engine, record_id: str) -> None:
    rec = engine.personal_data.get(record_id)
    rec.encrypted_original_value = "not-a-token"
    engine.personal_data.repo.update(rec)


def test_erasure_deletes_or_anonymizes_by_legal_basis(engine, sink):
    a = engine.record_personal_data("u1", "email", "alice@example.com", "personal_identifiable", "consent")
    b = engine.record_personal_data("u1", "phone", "5321234567", "personal_identifiable", "contract")
    kept = engine.record_personal_data("u1", "name", "Alice Smith", "personal_identifiable", "legal_obligation")
    engine.record_consent("u1", "newsletter", "consent", True, ["personal_identifiable"], "web")
    engine.record_personal_data("u2", "email", "bob@example.com", "personal_identifiable", "consent")

    res = engine.process_erasure_request("u1")
    assert res.success is True
    assert res.deleted_records == 2
    assert res.anonymized_records == 1
    assert res.retained_records == 0
    assert res.errors == []

    for rid in (a.record_id, b.record_id):
        rec = engine.personal_data.get(rid)
        assert rec.is_deleted is True
        assert rec.encrypted_original_value == "" and rec.anonymized_value == ""

    k = engine.personal_data.get(kept.record_id)
    assert k.is_deleted is False
    assert k.is_anonymized is True
    assert k.anonymized_value.startswith("Person_")
    assert k.encrypted_original_value == ""

    assert engine.consents.active_for_subject("u1") == []
    # other subjects untouched
    assert all(not r.is_deleted for r in engine.personal_data.list_for_subject("u2"))

    entry = sink.of("data_erasure")[0]
    assert entry.reason == "User request"
    assert entry.details["deleted_records"] == 2
    assert entry.details["anonymized_records"] == 1


def test_legal_obligation_never_deleted_even_on_repeat(engine):
    kept = engine.record_personal_data("u1", "name", "Alice", "personal_identifiable", "legal_obligation")
    engine.process_erasure_request("u1", reason="first")
    res = engine.process_erasure_request("u1", reason="second")
    assert res.anonymized_records == 0
    assert res.deleted_records == 0
    assert engine.personal_data.get(kept.record_id).is_deleted is False


def test_legal_obligation_without_rule_is_retained(engine):
    rec = engine.record_personal_data("u1", "invoiceNo", "INV-1", "operational", "legal_obligation")
    res = engine.process_erasure_request("u1")
    assert res.success is True
    assert res.retained_records == 1
    stored = engine.personal_data.get(rec.record_id)
    assert stored.is_deleted is False
    assert stored.is_anonymized is False


def test_partial_failure_continues_with_next_record(engine, sink):
    bad = engine.record_personal_data("u1", "name", "Alice", "personal_identifiable", "legal_obligation")
    good = engine.record_personal_data("u1", "email", "alice@example.com", "personal_identifiable", "consent")
    engine.record_consent("u1", "x", "consent", True, [], "web")
    _corrupt(engine, bad.record_id)

    res = engine.process_erasure_request("u1", reason="court order")
    assert res.success is False
    assert len(res.errors) == 1
    assert bad.record_id in res.errors[0]
    assert res.deleted_records == 1
    assert engine.personal_data.get(good.record_id).is_deleted is True
    # consents are withdrawn regardless
    assert engine.consents.active_for_subject("u1") == []
    assert sink.of("data_erasure")[0].reason == "court order"
    assert sink.of("data_erasure")[0].details["success"] is False


def test_erasure_of_unknown_subject_is_empty_success(engine):
    res = engine.process_erasure_request("ghost")
    assert res.success is True
    assert (res.deleted_records, res.anonymized_records, res.retained_records) == (0, 0, 0)


def test_erasure_result_dumps_camel_case(engine):
    res = engine.process_erasure_request("ghost")
    assert set(res.model_dump(by_alias=True)) == {"success", "deletedRecords", "anonymizedRecords", "retainedRecords", "errors"}
