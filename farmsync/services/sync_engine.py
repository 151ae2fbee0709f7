# farmsync/services/sync_engine.py
"""
Orchestrateur de synchronisation : ingestion puis extraction.

    transaction ouverte -> ingestion (ordre des dépendances) -> commit
                        -> watermark serveur -> extraction de tous les types

Aucun état partiel n'est visible : l'appel est soit validé avec sa réponse,
soit annulé avec une erreur structurée. Un client peut renvoyer le même lot
après un échec, les upserts étant idempotents.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from farmsync.core.clock import parse_watermark, utcnow
from farmsync.core.exceptions import (
    StorageFailure, SyncError, SyncValidationError, classify_integrity_error
)
from farmsync.models.sync_log import SyncLog
from farmsync.services.extraction import DeltaExtractor
from farmsync.services.ingestion import IngestionPipeline, IngestionResult

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    new_watermark: datetime
    deltas: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    ingestion: IngestionResult = field(default_factory=IngestionResult)

    @property
    def id_map(self) -> Dict[str, Dict[str, Any]]:
        return self.ingestion.id_map


class SyncEngine:
    def __init__(self, db: Session, tenant_id: Any, user_id: Any = None):
        self.db = db
        self.tenant_id = tenant_id
        self.user_id = user_id

    # ======================================================
    # POINTS D'ENTRÉE
    # ======================================================

    def sync(self, changes: Optional[Mapping[str, Any]], since: Any = None, source: str = "sync") -> SyncResult:
        """Push + pull dans la même frontière transactionnelle"""
        since = self._parse_since(since)
        ingestion = self._ingest(
            lambda pipeline: pipeline.apply_changes(changes),
            source=source,
            since=since,
        )
        return self._extract(since, ingestion)

    def push(self, items: Sequence[Mapping[str, Any]]) -> SyncResult:
        """Format hérité : liste plate {table, operation, data}, sans extraction"""
        ingestion = self._ingest(
            lambda pipeline: pipeline.apply_candidates(pipeline.parse_operations(items)),
            source="push",
        )
        return SyncResult(new_watermark=utcnow(), ingestion=ingestion)

    def pull(self, since: Any = None) -> SyncResult:
        return self.sync(None, since, source="pull")

    # ======================================================
    # ÉTAPES
    # ======================================================

    def _parse_since(self, since: Any) -> Optional[datetime]:
        try:
            return parse_watermark(since)
        except (ValueError, TypeError, OverflowError) as e:
            raise SyncValidationError(
                f"Watermark invalide: {since!r}",
                details={"rule": "malformed_watermark"}
            ) from e

    def _ingest(
        self,
        apply: Callable[[IngestionPipeline], IngestionResult],
        source: str,
        since: Optional[datetime] = None
    ) -> IngestionResult:
        pipeline = IngestionPipeline(self.db, self.tenant_id)
        try:
            result = apply(pipeline)
            self.db.add(SyncLog(
                tenant_id=self.tenant_id,
                user_id=self.user_id,
                source=source,
                since_watermark=since,
                rows_applied=result.total_applied,
                rows_skipped=result.total_skipped,
                details={"applied": result.applied, "skipped": result.skipped},
                created_at=pipeline.now,
            ))
            self.db.commit()

        except SyncError as e:
            self.db.rollback()
            logger.error(f"Synchronisation annulée pour le tenant {self.tenant_id}: {e.kind} - {e.message}")
            raise

        except IntegrityError as e:
            self.db.rollback()
            error = classify_integrity_error(e)
            logger.error(f"Synchronisation annulée pour le tenant {self.tenant_id}: {error.kind} - {e.orig}")
            raise error from e

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Erreur de stockage pendant la synchronisation du tenant {self.tenant_id}")
            raise StorageFailure("Erreur interne de base de données, le lot peut être renvoyé") from e

        if result.total_applied or result.total_skipped:
            logger.info(
                f"Sync {source} tenant {self.tenant_id}: "
                f"{result.total_applied} ligne(s) appliquée(s), {result.total_skipped} ignorée(s)"
            )
        return result

    def _extract(self, since: Optional[datetime], ingestion: IngestionResult) -> SyncResult:
        # Watermark pris avant la lecture : une écriture validée pendant
        # l'extraction sera renvoyée au prochain appel
        new_watermark = utcnow()
        try:
            deltas = DeltaExtractor(self.db, self.tenant_id).extract_deltas(since)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Erreur de stockage pendant l'extraction du tenant {self.tenant_id}")
            raise StorageFailure("Erreur interne de base de données, le lot peut être renvoyé") from e

        return SyncResult(new_watermark=new_watermark, deltas=deltas, ingestion=ingestion)
