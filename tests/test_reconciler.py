"""Tests for client identifier reconciliation."""

import uuid

import pytest
from sqlalchemy import func, select

from farmsync.models import Animal, Medication, Section
from farmsync.services.entity_registry import registry
from farmsync.services.reconciler import (
    Identity, NaturalKey, ProvisionalId, Reconciler, ServerId,
    parse_reference, reference_token,
)

SECTIONS = registry.get("sections")
PIGS = registry.get("pigs")
MEDICATIONS = registry.get("medications")
PERMISSIONS = registry.get("permissions")


@pytest.fixture
def reconciler_a(db, tenant_a):
    return Reconciler(db, tenant_a.id)


@pytest.fixture
def reconciler_b(db, tenant_b):
    return Reconciler(db, tenant_b.id)


def _add_pig(db, tenant, tag, sex="M"):
    pig = Animal(id=uuid.uuid4(), tenant_id=tenant.id, tag_number=tag, sex=sex)
    db.add(pig)
    db.commit()
    return pig


class TestParseReference:

    def test_integer_kind(self):
        assert parse_reference(SECTIONS, 7) == ServerId(7)
        assert parse_reference(SECTIONS, "7") == ServerId(7)
        assert parse_reference(SECTIONS, "tmp-1", "Gestación") == ProvisionalId("tmp-1", "Gestación")

    def test_uuid_kind(self):
        pig_id = uuid.uuid4()
        assert parse_reference(PIGS, str(pig_id)) == ServerId(pig_id)
        # Un entier n'est pas un identifiant au format UUID
        assert parse_reference(PIGS, "42") == ProvisionalId("42")

    def test_bare_hint_is_natural_key(self):
        assert parse_reference(SECTIONS, None, "Maternidad") == NaturalKey("Maternidad")
        assert parse_reference(SECTIONS, "", " Maternidad ") == NaturalKey("Maternidad")

    def test_nothing_usable(self):
        assert parse_reference(SECTIONS, None) is None
        assert parse_reference(SECTIONS, "   ") is None
        assert parse_reference(SECTIONS, True) is None

    def test_structured_reference(self):
        ref = parse_reference(SECTIONS, {"id": "tmp-9", "name": "Destete"})
        assert ref == ProvisionalId("tmp-9", "Destete")
        assert parse_reference(SECTIONS, {"name": "Destete"}) == NaturalKey("Destete")

    def test_reference_token(self):
        assert reference_token(ServerId(3)) == "3"
        assert reference_token(ProvisionalId("tmp-1")) == "tmp-1"
        assert reference_token(NaturalKey("Gestación")) is None
        assert reference_token(None) is None


class TestFindOrCreate:

    def test_creates_once_per_tenant(self, db, reconciler_a):
        first = reconciler_a.find_or_create(SECTIONS, "Gestación")
        second = reconciler_a.find_or_create(SECTIONS, "Gestación")
        assert first == second
        count = db.execute(select(func.count()).select_from(Section)).scalar()
        assert count == 1

    def test_same_name_in_two_tenants(self, db, reconciler_a, reconciler_b):
        a_id = reconciler_a.find_or_create(SECTIONS, "Gestación")
        b_id = reconciler_b.find_or_create(SECTIONS, "Gestación")
        assert a_id != b_id
        assert db.get(Section, a_id).tenant_id == reconciler_a.tenant_id
        assert db.get(Section, b_id).tenant_id == reconciler_b.tenant_id

    def test_client_assigned_kind_gets_uuid(self, db, reconciler_a):
        med_id = reconciler_a.find_or_create(MEDICATIONS, "Ivermectina")
        assert isinstance(med_id, uuid.UUID)
        assert db.get(Medication, med_id).name == "Ivermectina"

    def test_concurrent_creation_reuses_the_winner(self, db, reconciler_a, hide_first_find):
        winner = reconciler_a.find_or_create(SECTIONS, "Gestación")
        db.commit()

        calls = hide_first_find(reconciler_a)
        assert reconciler_a.find_or_create(SECTIONS, "Gestación") == winner
        assert calls == ["Gestación", "Gestación"]
        count = db.execute(select(func.count()).select_from(Section)).scalar()
        assert count == 1

    def test_concurrent_creation_keeps_outer_transaction(self, db, reconciler_a, hide_first_find):
        reconciler_a.find_or_create(SECTIONS, "Gestación")
        db.commit()

        hide_first_find(reconciler_a)
        reconciler_a.find_or_create(SECTIONS, "Gestación")
        other = reconciler_a.find_or_create(SECTIONS, "Maternidad")
        db.commit()
        assert db.get(Section, other).name == "Maternidad"

    def test_pigs_are_never_created_by_name(self, reconciler_a):
        assert reconciler_a.find_or_create(PIGS, "A-001") is None

    def test_global_catalogue_is_find_only(self, reconciler_a):
        assert reconciler_a.find_or_create(PERMISSIONS, "pig.view") is not None
        assert reconciler_a.find_or_create(PERMISSIONS, "pig.fly") is None


class TestResolve:

    def test_server_id_of_own_tenant(self, reconciler_a):
        section_id = reconciler_a.find_or_create(SECTIONS, "Gestación")
        assert reconciler_a.resolve(SECTIONS, ServerId(section_id)) == section_id

    def test_server_id_of_other_tenant_is_not_found(self, db, reconciler_a, reconciler_b):
        foreign = reconciler_b.find_or_create(SECTIONS, "Maternidad")
        db.commit()
        assert reconciler_a.resolve(SECTIONS, ServerId(foreign)) is None

    def test_foreign_server_id_with_hint_resolves_in_own_tenant(self, db, reconciler_a, reconciler_b):
        foreign = reconciler_b.find_or_create(SECTIONS, "Maternidad")
        db.commit()
        own = reconciler_a.resolve(SECTIONS, ServerId(foreign, "Maternidad"))
        assert own is not None and own != foreign
        assert db.get(Section, own).tenant_id == reconciler_a.tenant_id

    def test_provisional_id_uses_id_map(self, reconciler_a):
        reconciler_a.remember(SECTIONS, "tmp-1", 99)
        assert reconciler_a.resolve(SECTIONS, ProvisionalId("tmp-1")) == 99
        assert reconciler_a.id_map == {"sections": {"tmp-1": 99}}

    def test_provisional_id_without_hint_is_unresolved(self, reconciler_a):
        assert reconciler_a.resolve(SECTIONS, ProvisionalId("tmp-404")) is None

    def test_natural_key_creates(self, db, reconciler_a):
        section_id = reconciler_a.resolve(SECTIONS, NaturalKey("Engorde"))
        assert db.get(Section, section_id).name == "Engorde"


class TestResolveIdentity:

    def test_existing_row_of_tenant(self, db, tenant_a, reconciler_a):
        pig = _add_pig(db, tenant_a, "A-001")
        identity = reconciler_a.resolve_identity(PIGS, ServerId(pig.id))
        assert identity == Identity(pig.id, True)

    def test_unknown_client_uuid_is_inserted_as_is(self, reconciler_a):
        pig_id = uuid.uuid4()
        assert reconciler_a.resolve_identity(PIGS, ServerId(pig_id)) == Identity(pig_id, False)

    def test_other_tenant_row_falls_back_to_natural_key(self, db, tenant_a, tenant_b, reconciler_a):
        foreign = _add_pig(db, tenant_b, "B-001")
        own = _add_pig(db, tenant_a, "A-001")

        identity = reconciler_a.resolve_identity(PIGS, ServerId(foreign.id), "A-001")
        assert identity.id == own.id
        assert identity.exists

        # Sans clé naturelle : ligne inutilisable
        assert reconciler_a.resolve_identity(PIGS, ServerId(foreign.id)) is None

    def test_server_assigned_kind_gets_sequence_id(self, reconciler_a):
        identity = reconciler_a.resolve_identity(
            SECTIONS, ProvisionalId("tmp-1", "Gestación"), "Gestación"
        )
        assert identity == Identity(None, False, "tmp-1")

    def test_natural_key_match(self, reconciler_a):
        section_id = reconciler_a.find_or_create(SECTIONS, "Gestación")
        identity = reconciler_a.resolve_identity(SECTIONS, ProvisionalId("tmp-1"), "Gestación")
        assert identity == Identity(section_id, True, "tmp-1")

    def test_client_uuid_joins_row_created_by_name(self, reconciler_a):
        existing = reconciler_a.find_or_create(MEDICATIONS, "Ivermectina")
        client_id = uuid.uuid4()
        identity = reconciler_a.resolve_identity(MEDICATIONS, ServerId(client_id), "Ivermectina")
        assert identity == Identity(existing, True, str(client_id))

    def test_auto_created_kind_gets_new_uuid(self, reconciler_a):
        identity = reconciler_a.resolve_identity(MEDICATIONS, ProvisionalId("local-3"), "Oxitetraciclina")
        assert isinstance(identity.id, uuid.UUID)
        assert not identity.exists
        assert identity.token == "local-3"

    def test_no_identifier_at_all(self, reconciler_a):
        assert reconciler_a.resolve_identity(PIGS, ProvisionalId("local-1")) is None
        assert reconciler_a.resolve_identity(PIGS, None) is None
