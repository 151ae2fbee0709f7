# farmsync/services/extraction.py
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from farmsync.services.entity_registry import EntityKind, EntityRegistry, registry

logger = logging.getLogger(__name__)


class DeltaExtractor:
    """
    Calcule, par type d'entité, les lignes du tenant modifiées depuis un
    watermark : créées, mises à jour ou supprimées (tombstone), sans
    distinction. Sans watermark, renvoie l'instantané complet.
    """

    def __init__(self, db: Session, tenant_id: Any, kinds: EntityRegistry = registry):
        self.db = db
        self.tenant_id = tenant_id
        self.kinds = kinds

    def extract_deltas(self, since: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
        deltas = {}
        for kind in self.kinds.syncable_kinds():
            deltas[kind.name] = self.extract_kind(kind, since)
        logger.debug(
            f"Extraction depuis {since or 'le début'}: "
            f"{sum(len(rows) for rows in deltas.values())} ligne(s)"
        )
        return deltas

    def extract_kind(self, kind: EntityKind, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        table = kind.table
        stmt = select(table).where(table.c.tenant_id == self.tenant_id)

        # Les tables pivot sans horodatage sont renvoyées en entier
        if since is not None and kind.timestamped:
            changed_at = func.coalesce(table.c.updated_at, table.c.created_at)
            stmt = stmt.where(or_(changed_at > since, table.c.deleted_at > since))

        stmt = stmt.order_by(*[table.c[name] for name in kind.primary_key])
        return [dict(row) for row in self.db.execute(stmt).mappings()]
