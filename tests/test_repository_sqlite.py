from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from factory_gdpr.core.config.models import GovernanceConfigFile
from factory_gdpr.core.crypto import FileKeyProvider
from factory_gdpr.core.engine import GovernanceEngine
from factory_gdpr.core.privacy.models import DataCategory, LegalBasis, PersonalDataRecord, scheduled_deletion
from factory_gdpr.core.privacy.repository import InMemoryRepository, SqliteRepository

from .helpers.fakes import CollectingAuditSink


def _rec(sid: str, rid: str) -> PersonalDataRecord:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return PersonalDataRecord(
        record_id=rid,
        data_subject_id=sid,
        category=DataCategory.TECHNICAL,
        field_name="ipAddress",
        encrypted_original_value="ct",
        legal_basis=LegalBasis.CONTRACT,
        retention_period_days=365,
        created_at=now,
        scheduled_deletion_at=scheduled_deletion(now, 365),
    )


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryRepository(PersonalDataRecord, id_attr="record_id", parent_attr="data_subject_id")
    return SqliteRepository(
        db_path=str(tmp_path / "runtime" / "gov.sqlite"),
        table="personal_data",
        model=PersonalDataRecord,
        id_attr="record_id",
        parent_attr="data_subject_id",
    )


def test_insert_get_and_partition(repo):
    repo.insert(_rec("u1", "r1"))
    repo.insert(_rec("u1", "r2"))
    repo.insert(_rec("u2", "r3"))
    assert [r.record_id for r in repo.get_by_parent("u1")] == ["r1", "r2"]
    assert repo.get_by_id("r3").data_subject_id == "u2"
    assert repo.get_by_id("nope") is None
    assert repo.parent_of("r2") == "u1"
    assert repo.parents() == ["u1", "u2"]
    assert repo.count() == 3
    assert sorted(r.record_id for r in repo.iter_all()) == ["r1", "r2", "r3"]


def test_items_are_copies_until_updated(repo):
    repo.insert(_rec("u1", "r1"))
    r = repo.get_by_id("r1")
    r.is_deleted = True
    assert repo.get_by_id("r1").is_deleted is False
    repo.update(r)
    assert repo.get_by_id("r1").is_deleted is True


def test_duplicate_insert_and_unknown_update(repo):
    repo.insert(_rec("u1", "r1"))
    with pytest.raises(ValueError):
        repo.insert(_rec("u1", "r1"))
    with pytest.raises(KeyError):
        repo.update(_rec("u1", "missing"))


def test_datetimes_round_trip_with_timezone(repo):
    repo.insert(_rec("u1", "r1"))
    got = repo.get_by_id("r1")
    assert got.created_at.tzinfo is not None
    assert got.scheduled_deletion_at - got.created_at == timedelta(days=365)


def test_sqlite_rejects_unsafe_table_name(tmp_path):
    with pytest.raises(ValueError):
        SqliteRepository(db_path=str(tmp_path / "x.sqlite"), table="x; DROP TABLE y", model=PersonalDataRecord, id_attr="record_id", parent_attr="data_subject_id")


def test_sqlite_engine_survives_restart(tmp_path):
    cfg = GovernanceConfigFile.model_validate({"storage": {"backend": "sqlite"}, "scheduler": {"enabled": False}})
    key_path = str(tmp_path / "secure" / "data.key")

    eng1 = GovernanceEngine.from_config(cfg, root_path=str(tmp_path), audit_sinks=[CollectingAuditSink()])
    rec = eng1.record_personal_data("u1", "email", "alice@example.com", "personal_identifiable", "consent")
    eng1.record_consent("u1", "service", "consent", True, ["personal_identifiable"], "web")

    eng2 = GovernanceEngine.from_config(
        cfg,
        root_path=str(tmp_path),
        audit_sinks=[CollectingAuditSink()],
        key_provider=FileKeyProvider(path=key_path),
    )
    exported = eng2.export_personal_data("u1")
    assert exported.success is True
    assert [i.value for i in exported.data.personal_data] == ["alice@example.com"]
    assert eng2.consents.count_active() == 1
    assert eng2.anonymize(rec.record_id) is True
    assert eng2.compliance_report().anonymized_records == 1
