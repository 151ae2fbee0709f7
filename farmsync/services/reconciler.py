# farmsync/services/reconciler.py
"""
Réconciliation des identifiants envoyés par les clients hors-ligne.

Une référence client est étiquetée une seule fois (parse_reference) :
- ServerId      : identifiant au format serveur (entier ou UUID selon le type)
- ProvisionalId : jeton généré hors-ligne, éventuellement accompagné d'un indice
- NaturalKey    : clé naturelle seule (ex: nom de la section)

Le réconciliateur la transforme en identifiant durable du tenant, en créant
la ligne à la volée quand le type l'autorise. Une ligne d'un autre tenant
est toujours traitée comme introuvable.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union
import logging
import uuid

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from farmsync.core.clock import utcnow
from farmsync.services.entity_registry import EntityKind, IdPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerId:
    value: Any
    hint: Optional[str] = None


@dataclass(frozen=True)
class ProvisionalId:
    token: str
    hint: Optional[str] = None


@dataclass(frozen=True)
class NaturalKey:
    value: str


EntityRef = Union[ServerId, ProvisionalId, NaturalKey]

# {type: {jeton client: identifiant serveur}}
IdMap = Dict[str, Dict[str, Any]]


@dataclass(frozen=True)
class Identity:
    """
    Identité retenue pour une ligne ingérée.
    id None : insertion, l'identifiant sera attribué par la séquence serveur.
    token   : jeton client à remapper vers l'identifiant final.
    """
    id: Any
    exists: bool
    token: Optional[str] = None


def _clean_hint(hint: Any) -> Optional[str]:
    if hint is None or isinstance(hint, (bool, dict, list)):
        return None
    text = str(hint).strip()
    return text or None


def _as_server_id(kind: EntityKind, raw: Any) -> Any:
    if kind.integer_ids:
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
        if isinstance(raw, str) and raw.strip().isdigit():
            return int(raw.strip())
        return None

    if isinstance(raw, uuid.UUID):
        return raw
    if isinstance(raw, str):
        try:
            return uuid.UUID(raw.strip())
        except ValueError:
            return None
    return None


def parse_reference(kind: EntityKind, raw: Any, hint: Any = None) -> Optional[EntityRef]:
    """Étiquette une référence brute selon le format d'identifiant du type cible"""
    hint = _clean_hint(hint)

    if isinstance(raw, dict):
        nested_hint = raw.get(kind.natural_key) if kind.natural_key else None
        nested_hint = _clean_hint(nested_hint) or _clean_hint(raw.get("name"))
        return parse_reference(kind, raw.get("id"), hint or nested_hint)

    if raw is None or isinstance(raw, bool) or (isinstance(raw, str) and not raw.strip()):
        return NaturalKey(hint) if hint else None

    server_id = _as_server_id(kind, raw)
    if server_id is not None:
        return ServerId(server_id, hint)

    return ProvisionalId(str(raw).strip(), hint)


def reference_token(ref: Optional[EntityRef]) -> Optional[str]:
    """Forme textuelle stable d'une référence, utilisée pour l'id map"""
    if isinstance(ref, ServerId):
        return str(ref.value)
    if isinstance(ref, ProvisionalId):
        return ref.token
    return None


class Reconciler:
    def __init__(
        self,
        db: Session,
        tenant_id: Any,
        id_map: Optional[IdMap] = None,
        now: Optional[datetime] = None
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.id_map: IdMap = id_map if id_map is not None else {}
        self.now = now or utcnow()

    # ======================================================
    # REQUÊTES DE BASE
    # ======================================================

    def _pk(self, kind: EntityKind):
        return kind.table.c[kind.primary_key[0]]

    def lookup(self, kind: EntityKind, value: Any) -> Any:
        """Identifiant si la ligne existe pour ce tenant, sinon None"""
        pk = self._pk(kind)
        stmt = select(pk).where(pk == value)
        if kind.tenant_scoped:
            stmt = stmt.where(kind.table.c.tenant_id == self.tenant_id)
        return self.db.execute(stmt).scalar()

    def owner_of(self, kind: EntityKind, value: Any) -> Any:
        """Tenant propriétaire d'un identifiant, tous tenants confondus"""
        pk = self._pk(kind)
        stmt = select(kind.table.c.tenant_id).where(pk == value)
        return self.db.execute(stmt).scalar()

    def find(self, kind: EntityKind, key: Optional[str]) -> Any:
        """Recherche par clé naturelle, les lignes non supprimées d'abord"""
        if not kind.natural_key or not key:
            return None
        table = kind.table
        pk = self._pk(kind)
        stmt = select(pk).where(table.c[kind.natural_key] == key)
        if kind.tenant_scoped:
            stmt = stmt.where(table.c.tenant_id == self.tenant_id)
        if "deleted_at" in table.c:
            stmt = stmt.order_by(table.c.deleted_at.isnot(None), pk)
        return self.db.execute(stmt.limit(1)).scalar()

    def remember(self, kind: EntityKind, token: Optional[str], resolved: Any) -> None:
        if token is None or resolved is None or token == str(resolved):
            return
        self.id_map.setdefault(kind.name, {})[token] = resolved

    # ======================================================
    # FIND-OR-CREATE
    # ======================================================

    def find_or_create(self, kind: EntityKind, key: Optional[str]) -> Any:
        found = self.find(kind, key)
        if found is not None or not key:
            return found
        if not kind.auto_create or not kind.tenant_scoped:
            return None
        return self._create(kind, key)

    def _create(self, kind: EntityKind, key: str) -> Any:
        row = {
            kind.natural_key: key,
            "tenant_id": self.tenant_id,
            "created_at": self.now,
            "updated_at": self.now,
        }
        if not kind.integer_ids:
            row["id"] = uuid.uuid4()

        savepoint = self.db.begin_nested()
        try:
            result = self.db.execute(insert(kind.table).values(**row))
            savepoint.commit()
        except IntegrityError:
            # Création concurrente : la contrainte (tenant, clé naturelle) a tranché
            savepoint.rollback()
            winner = self.find(kind, key)
            if winner is None:
                raise
            logger.info(f"{kind.name} '{key}' créé par une transaction concurrente, réutilisation de {winner}")
            return winner

        new_id = row.get("id", None)
        if new_id is None:
            new_id = result.inserted_primary_key[0]
        logger.info(f"{kind.name} '{key}' créé à la volée (id={new_id})")
        return new_id

    # ======================================================
    # RÉSOLUTION
    # ======================================================

    def resolve(self, kind: EntityKind, ref: Optional[EntityRef]) -> Any:
        """Identifiant durable du tenant pour une référence, ou None"""
        if ref is None:
            return None

        if isinstance(ref, ServerId):
            found = self.lookup(kind, ref.value)
            if found is not None:
                return found
            return self.find_or_create(kind, ref.hint) if ref.hint else None

        if isinstance(ref, ProvisionalId):
            mapped = self.id_map.get(kind.name, {}).get(ref.token)
            if mapped is not None:
                return mapped
            return self.find_or_create(kind, ref.hint) if ref.hint else None

        return self.find_or_create(kind, ref.value)

    def resolve_identity(
        self,
        kind: EntityKind,
        ref: Optional[EntityRef],
        natural_key: Optional[str] = None
    ) -> Optional[Identity]:
        """
        Identité de la ligne ingérée :
        - ligne existante du tenant -> mise à jour
        - UUID client inconnu       -> insertion sous cet identifiant
        - sinon recherche par clé naturelle, puis insertion sous un
          identifiant serveur (ou UUID généré si le type l'autorise)
        None si la ligne n'a aucun identifiant exploitable.
        """
        token = reference_token(ref)

        if isinstance(ref, ServerId):
            owner = self.owner_of(kind, ref.value)
            if owner == self.tenant_id:
                return Identity(ref.value, True)
            if owner is not None:
                logger.warning(f"{kind.name}: identifiant {ref.value} introuvable pour ce tenant")
            elif kind.id_policy is IdPolicy.CLIENT_ASSIGNED:
                # Une ligne créée à la volée par son nom peut précéder l'UUID du client
                found = self.find(kind, _clean_hint(natural_key)) if kind.auto_create else None
                if found is not None:
                    return Identity(found, True, token)
                return Identity(ref.value, False)

        elif isinstance(ref, ProvisionalId):
            mapped = self.id_map.get(kind.name, {}).get(ref.token)
            if mapped is not None:
                return Identity(mapped, True, token)

        key = natural_key
        if key is None and ref is not None:
            key = ref.value if isinstance(ref, NaturalKey) else ref.hint
        key = _clean_hint(key)

        if key and kind.natural_key:
            found = self.find(kind, key)
            if found is not None:
                return Identity(found, True, token)
            if kind.id_policy is IdPolicy.SERVER_ASSIGNED:
                return Identity(None, False, token)
            if kind.auto_create:
                return Identity(uuid.uuid4(), False, token)

        return None
