# farmsync/schemas/sync.py
from pydantic import BaseModel, Field, field_validator, ConfigDict, AliasChoices
from typing import Optional, List, Dict, Any, Union
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from farmsync.core.clock import format_watermark


# ============================
# ENUMS
# ============================
class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# ============================
# REQUÊTES
# ============================
class SyncRequest(BaseModel):
    """Push + pull : {changes: {type: [ligne]}, sinceWatermark}"""
    model_config = ConfigDict(populate_by_name=True)

    changes: Optional[Dict[str, Any]] = Field(
        None,
        description="Modifications locales par type d'entité"
    )
    since_watermark: Optional[Union[int, float, str]] = Field(
        None,
        validation_alias=AliasChoices("sinceWatermark", "lastPulledAt", "since_watermark"),
        description="Watermark du dernier pull (ISO-8601 ou epoch ms), null pour un instantané complet"
    )


class SyncItem(BaseModel):
    """Élément du format hérité {table, operation, data}"""
    model_config = ConfigDict(populate_by_name=True)

    table: str = Field(..., validation_alias=AliasChoices("table", "table_name"))
    operation: SyncOperation = Field(
        SyncOperation.UPDATE,
        validation_alias=AliasChoices("operation", "action")
    )
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("operation", mode="before")
    @classmethod
    def lower_operation(cls, v):
        return v.lower() if isinstance(v, str) else v


class SyncPayload(BaseModel):
    items: List[SyncItem]


# ============================
# RÉPONSES
# ============================
class KindRows(BaseModel):
    rows: List[Dict[str, Any]] = []


class LegacyKindChanges(BaseModel):
    created: List[Dict[str, Any]] = []
    updated: List[Dict[str, Any]] = []
    deleted: List[Any] = []


class SyncResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "success"
    new_watermark: str = Field(..., alias="newWatermark")
    timestamp: str
    changes: Dict[str, KindRows]
    id_map: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="idMap")
    applied: Dict[str, int] = {}
    skipped: Dict[str, int] = {}


class PushResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "success"
    message: str = "Synchronisation reçue"
    new_watermark: str = Field(..., alias="newWatermark")
    id_map: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="idMap")
    applied: Dict[str, int] = {}
    skipped: Dict[str, int] = {}


class PullResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "success"
    new_watermark: str = Field(..., alias="newWatermark")
    timestamp: str
    changes: Dict[str, LegacyKindChanges]


# ============================
# SÉRIALISATION DES LIGNES
# ============================
def serialize_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_watermark(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    return value


def serialize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {key: serialize_value(value) for key, value in row.items()}


def serialize_id_map(id_map: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    return {
        kind: {token: serialize_value(value) for token, value in mapping.items()}
        for kind, mapping in id_map.items()
    }
