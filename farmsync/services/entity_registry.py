# farmsync/services/entity_registry.py
"""
Catalogue des types d'entités synchronisables.

Chaque type déclare sa politique d'identifiant, sa clé naturelle, ses
références vers d'autres types et ses champs immuables. L'ordre
d'ingestion est l'ordre topologique des dépendances.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import Integer, Table

from farmsync.core.exceptions import SyncValidationError
from farmsync.models import (
    User, Permission, Role, RolePermission, Section, Pen, Medication,
    FeedInventoryItem, FeedUsageRecord, Animal, WeightLog, BreedingEvent,
    HealthEvent, AccessLogEntry, UserPointEntry,
)

logger = logging.getLogger(__name__)

# Colonnes toujours gérées par le serveur
MANAGED_COLUMNS = frozenset({"tenant_id", "updated_at"})


class IdPolicy(str, Enum):
    SERVER_ASSIGNED = "server_assigned"  # séquence serveur
    CLIENT_ASSIGNED = "client_assigned"  # UUID généré hors-ligne
    COMPOSITE = "composite"              # table pivot, clé = ses références


@dataclass(frozen=True)
class Reference:
    """Clé étrangère résolue par le réconciliateur"""
    column: str
    target: str
    required: bool = False
    hint_keys: Tuple[str, ...] = ()
    alias_keys: Tuple[str, ...] = ()

    @property
    def payload_keys(self) -> Tuple[str, ...]:
        return (self.column,) + self.alias_keys + self.hint_keys


@dataclass(frozen=True, eq=False)
class EntityKind:
    name: str
    model: Any
    id_policy: IdPolicy
    natural_key: Optional[str] = None
    auto_create: bool = False
    references: Tuple[Reference, ...] = ()
    immutable: Tuple[str, ...] = ()
    aliases: Dict[str, str] = field(default_factory=dict)
    past_dates: Tuple[str, ...] = ()
    timestamped: bool = True
    syncable: bool = True
    tenant_scoped: bool = True

    @property
    def table(self) -> Table:
        return self.model.__table__

    @property
    def primary_key(self) -> Tuple[str, ...]:
        return tuple(col.name for col in self.table.primary_key.columns)

    @property
    def integer_ids(self) -> bool:
        pk = self.table.primary_key.columns
        return len(pk) == 1 and isinstance(list(pk)[0].type, Integer)

    @property
    def reference_columns(self) -> Tuple[str, ...]:
        return tuple(ref.column for ref in self.references)

    @property
    def writable_columns(self) -> Tuple[str, ...]:
        """Colonnes acceptées depuis le client (hors clé, tenant, watermark)"""
        excluded = MANAGED_COLUMNS | set(self.primary_key)
        return tuple(col.name for col in self.table.columns if col.name not in excluded)

    @property
    def update_columns(self) -> Tuple[str, ...]:
        """Colonnes réécrites en cas de conflit sur la clé primaire"""
        return tuple(name for name in self.writable_columns if name != "created_at")

    @property
    def dependencies(self) -> Tuple[str, ...]:
        seen = []
        for ref in self.references:
            if ref.target != self.name and ref.target not in seen:
                seen.append(ref.target)
        return tuple(seen)

    @property
    def self_references(self) -> Tuple[Reference, ...]:
        return tuple(ref for ref in self.references if ref.target == self.name)


class EntityRegistry:
    def __init__(self, kinds: List[EntityKind], kind_aliases: Optional[Dict[str, str]] = None):
        self._kinds: Dict[str, EntityKind] = {}
        for kind in kinds:
            if kind.name in self._kinds:
                raise ValueError(f"Type d'entité déclaré deux fois: {kind.name}")
            self._kinds[kind.name] = kind
        self._kind_aliases = dict(kind_aliases or {})

        for kind in kinds:
            for ref in kind.references:
                if ref.target not in self._kinds:
                    raise ValueError(f"{kind.name}.{ref.column} référence un type inconnu: {ref.target}")
        for alias, target in self._kind_aliases.items():
            if target not in self._kinds:
                raise ValueError(f"Alias {alias} vers un type inconnu: {target}")

        self._order = self._topological_order()

    def _topological_order(self) -> List[EntityKind]:
        pending = [kind for kind in self._kinds.values() if kind.syncable]
        placed: List[EntityKind] = []
        placed_names = set()

        while pending:
            for kind in pending:
                deps = [
                    name for name in kind.dependencies
                    if self._kinds[name].syncable
                ]
                if all(name in placed_names for name in deps):
                    placed.append(kind)
                    placed_names.add(kind.name)
                    pending.remove(kind)
                    break
            else:
                cycle = ", ".join(kind.name for kind in pending)
                raise ValueError(f"Dépendances cycliques entre types d'entités: {cycle}")

        return placed

    def resolve_name(self, name: str) -> str:
        return self._kind_aliases.get(name, name)

    def get(self, name: str) -> EntityKind:
        kind = self._kinds.get(self.resolve_name(name))
        if kind is None:
            raise SyncValidationError(
                f"Type d'entité inconnu: {name}",
                details={"kind": name}
            )
        return kind

    def __contains__(self, name: str) -> bool:
        return self.resolve_name(name) in self._kinds

    def ingestion_order(self) -> List[EntityKind]:
        return list(self._order)

    def syncable_kinds(self) -> List[EntityKind]:
        return list(self._order)


# ======================================================
# DÉCLARATION DES TYPES
# ======================================================

_HEALTH_RECORD_ALIASES = {
    "tipo_tratamiento": "type",
    "fecha_aplicacion": "date",
    "observaciones": "description",
}

registry = EntityRegistry(
    [
        # Cibles de références non synchronisées
        EntityKind(
            name="users",
            model=User,
            id_policy=IdPolicy.SERVER_ASSIGNED,
            syncable=False,
        ),
        EntityKind(
            name="permissions",
            model=Permission,
            id_policy=IdPolicy.SERVER_ASSIGNED,
            natural_key="slug",
            syncable=False,
            tenant_scoped=False,
        ),

        # Types synchronisables
        EntityKind(
            name="sections",
            model=Section,
            id_policy=IdPolicy.SERVER_ASSIGNED,
            natural_key="name",
            auto_create=True,
        ),
        EntityKind(
            name="pens",
            model=Pen,
            id_policy=IdPolicy.SERVER_ASSIGNED,
            natural_key="name",
            auto_create=True,
            references=(
                Reference("section_id", "sections",
                          hint_keys=("section_name", "sectionName"),
                          alias_keys=("sectionId",)),
            ),
        ),
        EntityKind(
            name="medications",
            model=Medication,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
            natural_key="name",
            auto_create=True,
        ),
        EntityKind(
            name="feed_inventory",
            model=FeedInventoryItem,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
            natural_key="name",
            auto_create=True,
        ),
        EntityKind(
            name="pigs",
            model=Animal,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
            natural_key="tag_number",
            references=(
                Reference("pen_id", "pens", hint_keys=("pen_name", "penName"), alias_keys=("penId",)),
                Reference("father_id", "pigs", hint_keys=("father_tag",)),
                Reference("mother_id", "pigs", hint_keys=("mother_tag",)),
            ),
            immutable=("sex",),
            aliases={
                "numero_arete": "tag_number",
                "sexo": "sex",
                "etapa": "stage",
                "peso": "weight",
                "fecha_nacimiento": "birth_date",
                "fecha_ingreso": "entry_date",
            },
            past_dates=("birth_date",),
        ),
        EntityKind(
            name="weight_logs",
            model=WeightLog,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
            references=(
                Reference("pig_id", "pigs", required=True, hint_keys=("pig_tag",), alias_keys=("pigId",)),
            ),
        ),
        EntityKind(
            name="breeding_events",
            model=BreedingEvent,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
            references=(
                Reference("pig_id", "pigs", required=True, hint_keys=("pig_tag",), alias_keys=("pigId",)),
            ),
        ),
        EntityKind(
            name="health_events",
            model=HealthEvent,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
            references=(
                Reference("pig_id", "pigs", required=True, hint_keys=("pig_tag",), alias_keys=("pigId",)),
                Reference("medication_id", "medications",
                          hint_keys=("medication_name", "nombre_producto")),
            ),
            aliases=_HEALTH_RECORD_ALIASES,
        ),
        EntityKind(
            name="feed_usage",
            model=FeedUsageRecord,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
            references=(
                Reference("feed_id", "feed_inventory", required=True, hint_keys=("feed_name",)),
                Reference("pen_id", "pens", hint_keys=("pen_name",)),
                Reference("pig_id", "pigs", hint_keys=("pig_tag",)),
            ),
        ),
        EntityKind(
            name="access_logs",
            model=AccessLogEntry,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
        ),
        EntityKind(
            name="user_points",
            model=UserPointEntry,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
            references=(
                Reference("user_id", "users", required=True),
            ),
        ),
        EntityKind(
            name="roles",
            model=Role,
            id_policy=IdPolicy.CLIENT_ASSIGNED,
            natural_key="name",
            auto_create=True,
        ),
        EntityKind(
            name="role_permissions",
            model=RolePermission,
            id_policy=IdPolicy.COMPOSITE,
            references=(
                Reference("role_id", "roles", required=True, hint_keys=("role_name",)),
                Reference("permission_id", "permissions", required=True, hint_keys=("permission_slug", "slug")),
            ),
            timestamped=False,
        ),
    ],
    kind_aliases={"health_records": "health_events"},
)
