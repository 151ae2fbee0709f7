# farmsync/services/ingestion.py
"""
Pipeline d'ingestion des modifications client.

Les lignes candidates sont normalisées une seule fois (alias, coercition des
types, étiquetage des références), puis appliquées type par type dans
l'ordre des dépendances, par upsert idempotent, dans la transaction ouverte
par l'appelant.

- Une référence obligatoire non résolue ou une ligne sans identifiant
  exploitable : la ligne est ignorée (warning), le lot continue.
- Un champ immuable modifié, une valeur illisible, une contrainte violée :
  le lot entier est annulé.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging
import uuid

from sqlalchemy import (
    Boolean, Date, DateTime, Integer, Numeric, String, Uuid, JSON,
    case, delete, func, insert, select, update
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from farmsync.core.clock import parse_datetime, utcnow
from farmsync.core.config import settings
from farmsync.core.exceptions import SyncValidationError, StorageFailure, UnresolvedReference
from farmsync.services.entity_registry import EntityKind, EntityRegistry, IdPolicy, Reference, registry
from farmsync.services.reconciler import (
    EntityRef, IdMap, NaturalKey, Reconciler, parse_reference, reference_token
)

logger = logging.getLogger(__name__)

UPSERT = "upsert"
DELETE = "delete"

_OPERATIONS = {
    "create": UPSERT,
    "update": UPSERT,
    "upsert": UPSERT,
    "delete": DELETE,
}

_TRUE_STRINGS = {"true", "1", "yes", "y", "t", "si", "oui"}
_FALSE_STRINGS = {"false", "0", "no", "n", "f", "non"}


# ======================================================
# LIGNES CANDIDATES
# ======================================================

@dataclass
class CandidateRow:
    kind: EntityKind
    identity: Optional[EntityRef]
    natural_key: Optional[str]
    values: Dict[str, Any]
    references: Dict[str, Tuple[Reference, Optional[EntityRef]]]
    operation: str = UPSERT
    raw_id: Any = None

    @property
    def token(self) -> Optional[str]:
        return reference_token(self.identity)

    def self_reference_tokens(self) -> List[str]:
        tokens = []
        for ref_def, ref in self.references.values():
            if ref_def.target == self.kind.name:
                token = reference_token(ref)
                if token is not None:
                    tokens.append(token)
        return tokens

    def self_reference_keys(self) -> List[str]:
        """Clés naturelles visées par les références vers le même type (ex: mother_tag)"""
        keys = []
        for ref_def, ref in self.references.values():
            if ref_def.target != self.kind.name or ref is None:
                continue
            key = ref.value if isinstance(ref, NaturalKey) else ref.hint
            if key:
                keys.append(key)
        return keys


def normalize_operation(operation: Any) -> str:
    op = _OPERATIONS.get(str(operation or UPSERT).strip().lower())
    if op is None:
        raise SyncValidationError(
            f"Opération inconnue: {operation}",
            details={"operation": operation}
        )
    return op


def coerce_value(kind: EntityKind, name: str, value: Any) -> Any:
    """Convertit une valeur JSON vers le type Python attendu par la colonne"""
    if value is None:
        return None

    column_type = kind.table.c[name].type
    try:
        if isinstance(column_type, DateTime):
            return parse_datetime(value)

        if isinstance(column_type, Date):
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return parse_datetime(value).date()
            text = str(value).strip()
            if not text:
                return None
            return date.fromisoformat(text[:10])

        if isinstance(column_type, Boolean):
            if isinstance(value, bool):
                return value
            if isinstance(value, (int, float)):
                return bool(value)
            text = str(value).strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            if not text:
                return None
            raise ValueError(value)

        if isinstance(column_type, Integer):
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(value)
            if isinstance(value, str) and not value.strip():
                return None
            return int(value)

        if isinstance(column_type, Numeric):
            if isinstance(value, bool):
                raise ValueError(value)
            if isinstance(value, str) and not value.strip():
                return None
            return Decimal(str(value))

        if isinstance(column_type, Uuid):
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))

        if isinstance(column_type, String):
            if isinstance(value, (dict, list)):
                raise ValueError(value)
            return str(value)

        if isinstance(column_type, JSON):
            return value

    except (ValueError, TypeError, InvalidOperation, OverflowError) as e:
        raise SyncValidationError(
            f"Valeur invalide pour {kind.name}.{name}: {value!r}",
            details={"kind": kind.name, "field": name, "rule": "malformed_value"}
        ) from e

    return value


def build_candidate(kind: EntityKind, raw: Any, operation: str = UPSERT, kinds: EntityRegistry = registry) -> CandidateRow:
    """Normalise une ligne brute du client (construit une seule fois à la frontière)"""
    if not isinstance(raw, Mapping):
        raise SyncValidationError(
            f"Ligne invalide pour {kind.name}: objet attendu",
            details={"kind": kind.name}
        )

    # Les noms canoniques l'emportent sur les alias hérités
    data = {kind.aliases[key]: value for key, value in raw.items() if key in kind.aliases}
    data.update({key: value for key, value in raw.items() if key not in kind.aliases})

    reference_columns = set(kind.reference_columns)
    values: Dict[str, Any] = {}
    for name in kind.writable_columns:
        if name in reference_columns or name not in data:
            continue
        value = coerce_value(kind, name, data[name])
        column = kind.table.c[name]
        if value is None and not column.nullable and column.default is not None:
            continue
        values[name] = value

    today = utcnow().date()
    for name in kind.past_dates:
        if values.get(name) is not None and values[name] > today:
            raise SyncValidationError(
                f"{kind.name}.{name} ne peut pas être dans le futur",
                details={"kind": kind.name, "field": name, "rule": "date_in_future"}
            )

    references: Dict[str, Tuple[Reference, Optional[EntityRef]]] = {}
    for ref_def in kind.references:
        if not any(key in data for key in ref_def.payload_keys):
            continue
        raw_ref = None
        for key in (ref_def.column,) + ref_def.alias_keys:
            if data.get(key) is not None:
                raw_ref = data[key]
                break
        hint = next((data[key] for key in ref_def.hint_keys if data.get(key)), None)
        references[ref_def.column] = (ref_def, parse_reference(kinds.get(ref_def.target), raw_ref, hint))

    natural_key = None
    if kind.natural_key and values.get(kind.natural_key):
        natural_key = str(values[kind.natural_key]).strip() or None

    identity = None
    if kind.id_policy is not IdPolicy.COMPOSITE:
        identity = parse_reference(kind, data.get("id"), natural_key)

    # Tombstone envoyé sur une table pivot : le lien est retiré
    if kind.id_policy is IdPolicy.COMPOSITE and data.get("deleted_at"):
        operation = DELETE

    return CandidateRow(
        kind=kind,
        identity=identity,
        natural_key=natural_key,
        values=values,
        references=references,
        operation=operation,
        raw_id=data.get("id"),
    )


# ======================================================
# RÉSULTAT
# ======================================================

@dataclass
class IngestionResult:
    applied: Dict[str, int] = field(default_factory=dict)
    skipped: Dict[str, int] = field(default_factory=dict)
    id_map: IdMap = field(default_factory=dict)

    @property
    def total_applied(self) -> int:
        return sum(self.applied.values())

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped.values())


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise StorageFailure(f"Dialecte non supporté pour l'upsert: {dialect}")


# ======================================================
# PIPELINE
# ======================================================

class IngestionPipeline:
    def __init__(
        self,
        db: Session,
        tenant_id: Any,
        now: Optional[datetime] = None,
        kinds: EntityRegistry = registry
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.now = now or utcnow()
        self.kinds = kinds
        self.id_map: IdMap = {}
        self.reconciler = Reconciler(db, tenant_id, id_map=self.id_map, now=self.now)

    # ---------- Parsing ----------

    def parse_change_set(self, changes: Optional[Mapping[str, Any]]) -> Dict[str, List[CandidateRow]]:
        """
        {type: [ligne...]} ou, format WatermelonDB,
        {type: {created: [...], updated: [...], deleted: [id...]}}
        """
        batches: Dict[str, List[CandidateRow]] = {}
        if not changes:
            return batches
        if not isinstance(changes, Mapping):
            raise SyncValidationError("changes doit être un objet {type: [lignes]}")

        for name, rows in changes.items():
            kind = self._syncable(name)
            if rows is None or kind is None:
                continue
            bucket = batches.setdefault(kind.name, [])

            if isinstance(rows, Mapping):
                for raw in list(rows.get("created") or []) + list(rows.get("updated") or []):
                    bucket.append(build_candidate(kind, raw, UPSERT, self.kinds))
                for raw in rows.get("deleted") or []:
                    raw = raw if isinstance(raw, Mapping) else {"id": raw}
                    bucket.append(build_candidate(kind, raw, DELETE, self.kinds))
            elif isinstance(rows, list):
                for raw in rows:
                    bucket.append(build_candidate(kind, raw, UPSERT, self.kinds))
            else:
                raise SyncValidationError(
                    f"Les modifications de {name} doivent être une liste",
                    details={"kind": name}
                )

        self._check_size(batches)
        return batches

    def parse_operations(self, items: Sequence[Mapping[str, Any]]) -> Dict[str, List[CandidateRow]]:
        """Format hérité : liste plate de {table, operation, data}"""
        batches: Dict[str, List[CandidateRow]] = {}
        for item in items:
            table = item.get("table") or item.get("table_name")
            if not table:
                raise SyncValidationError("Élément de synchronisation sans table")
            kind = self._syncable(table)
            if kind is None:
                continue
            operation = normalize_operation(item.get("operation") or item.get("action"))
            batches.setdefault(kind.name, []).append(
                build_candidate(kind, item.get("data") or {}, operation, self.kinds)
            )

        self._check_size(batches)
        return batches

    def _syncable(self, name: str) -> Optional[EntityKind]:
        """Les tables locales inconnues du serveur sont ignorées"""
        if name not in self.kinds or not self.kinds.get(name).syncable:
            logger.warning(f"Type d'entité ignoré (non synchronisable): {name}")
            return None
        return self.kinds.get(name)

    def _check_size(self, batches: Dict[str, List[CandidateRow]]) -> None:
        total = sum(len(rows) for rows in batches.values())
        if total > settings.SYNC_MAX_ROWS_PER_REQUEST:
            raise SyncValidationError(
                f"Lot trop volumineux: {total} lignes (maximum {settings.SYNC_MAX_ROWS_PER_REQUEST})",
                details={"rule": "batch_too_large", "rows": total}
            )

    # ---------- Application ----------

    def apply_changes(self, changes: Optional[Mapping[str, Any]]) -> IngestionResult:
        return self.apply_candidates(self.parse_change_set(changes))

    def apply_candidates(self, batches: Dict[str, List[CandidateRow]]) -> IngestionResult:
        result = IngestionResult(id_map=self.id_map)

        for kind in self.kinds.ingestion_order():
            rows = batches.get(kind.name)
            if not rows:
                continue

            applied = skipped = 0
            for row in self._defer_self_references(kind, rows):
                try:
                    self._apply_row(row)
                    applied += 1
                except UnresolvedReference as e:
                    skipped += 1
                    logger.warning(f"Ligne {kind.name} ignorée ({row.raw_id!r}): {e.message}")

            result.applied[kind.name] = applied
            result.skipped[kind.name] = skipped
            logger.debug(f"{kind.name}: {applied} appliquée(s), {skipped} ignorée(s)")

        return result

    def _defer_self_references(self, kind: EntityKind, rows: List[CandidateRow]) -> List[CandidateRow]:
        """Une ligne qui référence une autre ligne du même lot passe après elle"""
        if not kind.self_references or len(rows) < 2:
            return rows

        in_batch = {row.token for row in rows if row.token is not None}
        keys_in_batch = {row.natural_key for row in rows if row.natural_key is not None}
        ordered: List[CandidateRow] = []
        written = set()
        written_keys = set()
        pending = list(rows)

        while pending:
            progressed = False
            for row in list(pending):
                waiting = [
                    token for token in row.self_reference_tokens()
                    if token in in_batch and token not in written and token != row.token
                ]
                waiting += [
                    key for key in row.self_reference_keys()
                    if key in keys_in_batch and key not in written_keys and key != row.natural_key
                ]
                if not waiting:
                    ordered.append(row)
                    written.add(row.token)
                    written_keys.add(row.natural_key)
                    pending.remove(row)
                    progressed = True
            if not progressed:
                # Cycle : ordre d'origine
                ordered.extend(pending)
                break

        return ordered

    def _apply_row(self, row: CandidateRow) -> None:
        kind = row.kind
        if kind.id_policy is IdPolicy.COMPOSITE:
            self._apply_link(row)
            return

        identity = self.reconciler.resolve_identity(kind, row.identity, row.natural_key)
        if identity is None:
            raise UnresolvedReference(f"aucun identifiant exploitable pour {kind.name}")

        if row.operation == DELETE:
            if not identity.exists:
                raise UnresolvedReference(f"{kind.name} introuvable, rien à supprimer")
            self._tombstone(kind, identity.id, row.values.get("deleted_at") or self.now)
            self.reconciler.remember(kind, identity.token, identity.id)
            return

        values = dict(row.values)
        for column, (ref_def, ref) in row.references.items():
            target = self.kinds.get(ref_def.target)
            resolved = self.reconciler.resolve(target, ref)
            if resolved is None:
                if ref_def.required:
                    raise UnresolvedReference(f"référence {column} non résolue")
                if ref is not None:
                    logger.warning(f"{kind.name}.{column}: référence {reference_token(ref) or ref} non résolue, mise à NULL")
            values[column] = resolved

        if identity.exists:
            self._check_immutable(kind, identity.id, values)

        if identity.id is None:
            final_id = self._insert_new(kind, values)
        else:
            self._upsert(kind, identity.id, values)
            final_id = identity.id

        self.reconciler.remember(kind, identity.token, final_id)

    def _check_immutable(self, kind: EntityKind, row_id: Any, values: Dict[str, Any]) -> None:
        watched = [name for name in kind.immutable if values.get(name) is not None]
        if not watched:
            return

        table = kind.table
        stored = self.db.execute(
            select(*[table.c[name] for name in watched]).where(
                table.c[kind.primary_key[0]] == row_id,
                table.c.tenant_id == self.tenant_id
            )
        ).mappings().first()
        if stored is None:
            return

        for name in watched:
            if stored[name] is not None and stored[name] != values[name]:
                logger.error(f"Champ immuable modifié: {kind.name}.{name} (id={row_id})")
                raise SyncValidationError(
                    f"Erreur de validation : {kind.name}.{name} est immuable (id {row_id})",
                    details={"kind": kind.name, "field": name, "id": str(row_id), "rule": "immutable_field"}
                )

    @staticmethod
    def _advance(stored, incoming):
        """Le watermark d'une ligne ne recule jamais, même si l'horloge recule"""
        return case((stored > incoming, stored), else_=incoming)

    def _upsert(self, kind: EntityKind, row_id: Any, values: Dict[str, Any]) -> None:
        table = kind.table
        pk = table.c[kind.primary_key[0]]

        row = dict(values)
        row[pk.name] = row_id
        row["tenant_id"] = self.tenant_id
        row["updated_at"] = self.now
        row.setdefault("created_at", self.now)
        # Une ligne réécrite sans tombstone est restaurée
        if "deleted_at" in table.c:
            row.setdefault("deleted_at", None)

        stmt = _dialect_insert(self.db)(table).values(**row)
        update_set = {}
        for name in kind.update_columns:
            if name not in row:
                continue
            if name in kind.immutable:
                update_set[name] = func.coalesce(table.c[name], stmt.excluded[name])
            else:
                update_set[name] = stmt.excluded[name]
        update_set["updated_at"] = self._advance(table.c.updated_at, stmt.excluded.updated_at)

        stmt = stmt.on_conflict_do_update(
            index_elements=[pk],
            set_=update_set,
            where=table.c.tenant_id == stmt.excluded.tenant_id,
        )
        result = self.db.execute(stmt)
        if result.rowcount == 0:
            # La clé appartient à un autre tenant (écriture concurrente)
            raise UnresolvedReference(f"{kind.name} {row_id} introuvable pour ce tenant")

    def _insert_new(self, kind: EntityKind, values: Dict[str, Any]) -> Any:
        """Insertion sous un identifiant attribué par la séquence serveur"""
        row = dict(values)
        row["tenant_id"] = self.tenant_id
        row["updated_at"] = self.now
        row.setdefault("created_at", self.now)

        savepoint = self.db.begin_nested()
        try:
            result = self.db.execute(insert(kind.table).values(**row))
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            winner = self.reconciler.find(kind, values.get(kind.natural_key)) if kind.natural_key else None
            if winner is None:
                raise
            # Perdant d'une création concurrente : rejoué en mise à jour
            self._check_immutable(kind, winner, values)
            self._upsert(kind, winner, values)
            return winner

        return result.inserted_primary_key[0]

    def _tombstone(self, kind: EntityKind, row_id: Any, deleted_at: datetime) -> None:
        table = kind.table
        self.db.execute(
            update(table)
            .where(table.c[kind.primary_key[0]] == row_id, table.c.tenant_id == self.tenant_id)
            .values(deleted_at=deleted_at, updated_at=self._advance(table.c.updated_at, self.now))
        )

    def _apply_link(self, row: CandidateRow) -> None:
        kind = row.kind
        table = kind.table

        keys: Dict[str, Any] = {}
        for ref_def in kind.references:
            entry = row.references.get(ref_def.column)
            ref = entry[1] if entry else None
            resolved = self.reconciler.resolve(self.kinds.get(ref_def.target), ref)
            if resolved is None:
                raise UnresolvedReference(f"référence {ref_def.column} non résolue")
            keys[ref_def.column] = resolved

        if row.operation == DELETE:
            self.db.execute(
                delete(table).where(
                    table.c.tenant_id == self.tenant_id,
                    *[table.c[name] == value for name, value in keys.items()]
                )
            )
            return

        stmt = _dialect_insert(self.db)(table).values(tenant_id=self.tenant_id, **keys)
        stmt = stmt.on_conflict_do_nothing(index_elements=[table.c[name] for name in kind.primary_key])
        self.db.execute(stmt)
