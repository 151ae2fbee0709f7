# farmsync/api/v1/sync.py
from typing import List, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from farmsync.api.deps import get_db, get_current_tenant, get_current_user_id
from farmsync.core.clock import format_watermark
from farmsync.models.tenant import Tenant
from farmsync.schemas.sync import (
    KindRows,
    LegacyKindChanges,
    PullResponse,
    PushResponse,
    SyncItem,
    SyncPayload,
    SyncRequest,
    SyncResponse,
    serialize_id_map,
    serialize_row,
)
from farmsync.services.sync_engine import SyncEngine

router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post("", response_model=SyncResponse, response_model_by_alias=True)
def sync_data(
    payload: SyncRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    user_id: Optional[UUID] = Depends(get_current_user_id)
):
    """
    Push + pull en un seul appel :
    applique les modifications du client puis renvoie tout ce qui a changé
    pour la ferme depuis `sinceWatermark`.
    """
    result = SyncEngine(db, tenant.id, user_id).sync(payload.changes, payload.since_watermark)
    watermark = format_watermark(result.new_watermark)

    return SyncResponse(
        new_watermark=watermark,
        timestamp=watermark,
        changes={
            kind: KindRows(rows=[serialize_row(row) for row in rows])
            for kind, rows in result.deltas.items()
        },
        id_map=serialize_id_map(result.id_map),
        applied=result.ingestion.applied,
        skipped=result.ingestion.skipped,
    )


@router.post("/push", response_model=PushResponse, response_model_by_alias=True)
def push_changes(
    payload: Union[List[SyncItem], SyncPayload] = Body(...),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    user_id: Optional[UUID] = Depends(get_current_user_id)
):
    """Format hérité : liste plate {table, operation, data}"""
    items = payload.items if isinstance(payload, SyncPayload) else payload
    operations = [
        {"table": item.table, "operation": item.operation.value, "data": item.data}
        for item in items
    ]

    result = SyncEngine(db, tenant.id, user_id).push(operations)

    return PushResponse(
        new_watermark=format_watermark(result.new_watermark),
        id_map=serialize_id_map(result.id_map),
        applied=result.ingestion.applied,
        skipped=result.ingestion.skipped,
    )


@router.get("/pull", response_model=PullResponse, response_model_by_alias=True)
def pull_changes(
    last_pulled_at: Optional[str] = Query(None, alias="lastPulledAt"),
    since_watermark: Optional[str] = Query(None, alias="sinceWatermark"),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    user_id: Optional[UUID] = Depends(get_current_user_id)
):
    """
    Pull seul, au format WatermelonDB : toutes les lignes modifiées sont
    renvoyées dans `updated`, les tombstones portent `deleted_at`.
    """
    result = SyncEngine(db, tenant.id, user_id).pull(last_pulled_at or since_watermark)
    watermark = format_watermark(result.new_watermark)

    return PullResponse(
        new_watermark=watermark,
        timestamp=watermark,
        changes={
            kind: LegacyKindChanges(updated=[serialize_row(row) for row in rows])
            for kind, rows in result.deltas.items()
        },
    )
