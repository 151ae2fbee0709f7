"""Tests for the sync orchestrator: ingestion, commit, then extraction."""

import uuid

import pytest
from sqlalchemy import func, select

from farmsync.core.clock import format_watermark
from farmsync.core.exceptions import SyncValidationError, UniquenessConflict
from farmsync.models import Animal, Section, SyncLog
from farmsync.services.sync_engine import SyncEngine

SCENARIO = {
    "sections": [{"id": "tmp-1", "name": "Gestación"}],
    "pens": [{"id": "tmp-2", "section_name": "Gestación", "name": "Pen A", "capacity": 10}],
}


def _add_pig(db, tenant, tag, sex="M"):
    pig = Animal(id=uuid.uuid4(), tenant_id=tenant.id, tag_number=tag, sex=sex)
    db.add(pig)
    db.commit()
    return pig


def _sync_logs(db, tenant):
    return db.execute(
        select(func.count()).select_from(SyncLog).where(SyncLog.tenant_id == tenant.id)
    ).scalar()


class TestSyncRoundTrip:

    def test_pushed_rows_come_back_with_server_ids(self, db, tenant_a, user_a):
        result = SyncEngine(db, tenant_a.id, user_a.id).sync(SCENARIO, None)

        sections = result.deltas["sections"]
        pens = result.deltas["pens"]
        assert len(sections) == 1 and len(pens) == 1
        assert isinstance(sections[0]["id"], int)
        assert pens[0]["section_id"] == sections[0]["id"]
        assert result.id_map == {
            "sections": {"tmp-1": sections[0]["id"]},
            "pens": {"tmp-2": pens[0]["id"]},
        }

    def test_second_call_with_returned_watermark_is_empty(self, db, tenant_a):
        engine = SyncEngine(db, tenant_a.id)
        first = engine.sync(SCENARIO, None)
        second = engine.sync(None, format_watermark(first.new_watermark))

        assert set(second.deltas) == set(first.deltas)
        assert all(rows == [] for rows in second.deltas.values())
        assert second.new_watermark >= first.new_watermark

    def test_later_change_is_picked_up_once(self, db, tenant_a):
        engine = SyncEngine(db, tenant_a.id)
        first = engine.sync(SCENARIO, None)
        section_id = first.id_map["sections"]["tmp-1"]

        other = SyncEngine(db, tenant_a.id).sync(
            {"sections": [{"id": section_id, "name": "Gestación II"}]}, None
        )
        assert other.ingestion.applied == {"sections": 1}

        second = engine.sync(None, first.new_watermark)
        assert [row["name"] for row in second.deltas["sections"]] == ["Gestación II"]
        assert second.deltas["pens"] == []

        third = engine.sync(None, second.new_watermark)
        assert third.deltas["sections"] == []

    def test_epoch_and_iso_watermarks(self, db, tenant_a):
        engine = SyncEngine(db, tenant_a.id)
        engine.sync(SCENARIO, None)

        assert len(engine.sync(None, 0).deltas["sections"]) == 1
        assert len(engine.sync(None, "1970-01-01T00:00:00Z").deltas["sections"]) == 1
        assert engine.sync(None, "2999-01-01T00:00:00+02:00").deltas["sections"] == []

    def test_malformed_watermark(self, db, tenant_a):
        with pytest.raises(SyncValidationError) as exc:
            SyncEngine(db, tenant_a.id).sync(None, "hier soir")
        assert exc.value.details["rule"] == "malformed_watermark"


class TestIdempotence:

    def test_same_payload_twice(self, db, tenant_a):
        engine = SyncEngine(db, tenant_a.id)
        first = engine.sync(SCENARIO, None)
        second = engine.sync(SCENARIO, None)

        assert first.id_map == second.id_map
        assert len(second.deltas["sections"]) == 1
        assert len(second.deltas["pens"]) == 1
        assert second.deltas["pens"][0]["capacity"] == 10
        assert second.deltas["sections"][0]["updated_at"] > first.deltas["sections"][0]["updated_at"]


class TestAtomicity:

    def test_immutable_violation_rolls_back_everything(self, db, tenant_a):
        pig = _add_pig(db, tenant_a, "A-001", sex="M")

        with pytest.raises(SyncValidationError):
            SyncEngine(db, tenant_a.id).sync({
                "sections": [{"name": "Cuarentena"}],
                "pigs": [{"id": str(pig.id), "sex": "H", "stage": "Engorde"}],
            }, None)

        assert db.execute(select(func.count()).select_from(Section)).scalar() == 0
        row = db.execute(select(Animal.sex, Animal.stage).where(Animal.id == pig.id)).one()
        assert row.sex == "M"
        assert row.stage is None
        assert _sync_logs(db, tenant_a) == 0

    def test_duplicate_active_tag_is_a_conflict(self, db, tenant_a):
        _add_pig(db, tenant_a, "A-001")

        with pytest.raises(UniquenessConflict):
            SyncEngine(db, tenant_a.id).sync({
                "sections": [{"name": "Cuarentena"}],
                "pigs": [{"id": str(uuid.uuid4()), "tag_number": "A-001"}],
            }, None)

        assert db.execute(select(func.count()).select_from(Section)).scalar() == 0

    def test_tombstoned_tag_can_be_reused(self, db, tenant_a):
        pig = _add_pig(db, tenant_a, "A-001")
        engine = SyncEngine(db, tenant_a.id)
        engine.push([{"table": "pigs", "operation": "delete", "data": {"id": str(pig.id)}}])

        new_id = uuid.uuid4()
        engine.sync({"pigs": [{"id": str(new_id), "tag_number": "A-001"}]}, None)
        assert db.get(Animal, new_id).tag_number == "A-001"

    def test_check_constraint_is_a_validation_error(self, db, tenant_a):
        pig = _add_pig(db, tenant_a, "A-001")

        with pytest.raises(SyncValidationError) as exc:
            SyncEngine(db, tenant_a.id).sync({
                "weight_logs": [{"id": str(uuid.uuid4()), "pig_id": str(pig.id), "weight": -5}],
            }, None)
        assert exc.value.details["rule"] == "check_constraint"

    def test_successful_call_is_logged(self, db, tenant_a, user_a):
        SyncEngine(db, tenant_a.id, user_a.id).sync(SCENARIO, None)
        log = db.execute(select(SyncLog).where(SyncLog.tenant_id == tenant_a.id)).scalar_one()
        assert log.source == "sync"
        assert log.user_id == user_a.id
        assert log.rows_applied == 2


class TestTenantIsolation:

    def test_other_tenant_sees_nothing(self, db, tenant_a, tenant_b):
        SyncEngine(db, tenant_a.id).sync(SCENARIO, None)
        result = SyncEngine(db, tenant_b.id).pull(None)
        assert all(rows == [] for rows in result.deltas.values())

    def test_foreign_ids_in_payload_do_not_leak(self, db, tenant_a, tenant_b):
        foreign_pig = _add_pig(db, tenant_b, "B-001")
        foreign = SyncEngine(db, tenant_b.id).sync(SCENARIO, None)
        foreign_section = foreign.id_map["sections"]["tmp-1"]

        result = SyncEngine(db, tenant_a.id).sync({
            "sections": [{"id": foreign_section, "name": "Robada"}],
            "pigs": [{"id": str(foreign_pig.id), "stage": "Robado"}],
        }, None)

        returned_ids = {row["id"] for row in result.deltas["sections"]}
        assert foreign_section not in returned_ids
        assert result.deltas["pigs"] == []
        assert result.ingestion.skipped["pigs"] == 1

        stored = db.execute(select(Section.name).where(Section.id == foreign_section)).scalar()
        assert stored == "Gestación"


class TestLegacyShapes:

    def test_push_returns_id_map_without_deltas(self, db, tenant_a):
        result = SyncEngine(db, tenant_a.id).push([
            {"table": "sections", "operation": "create", "data": {"id": "tmp-1", "name": "Gestación"}},
            {"table": "pens", "operation": "create",
             "data": {"id": "tmp-2", "section_id": "tmp-1", "name": "Pen A"}},
        ])
        assert result.deltas == {}
        assert set(result.id_map) == {"sections", "pens"}
        assert result.ingestion.applied == {"sections": 1, "pens": 1}

    def test_pull_is_extraction_only(self, db, tenant_a):
        SyncEngine(db, tenant_a.id).sync(SCENARIO, None)
        result = SyncEngine(db, tenant_a.id).pull(None)
        assert len(result.deltas["pens"]) == 1
        assert result.id_map == {}
