# farmsync/core/exceptions.py
"""
Erreurs structurées de la synchronisation.

Les erreurs d'intégrité (champ immuable, doublon, contrainte CHECK) annulent
tout le lot ; une référence non résolue n'élimine qu'une seule ligne.
"""
from typing import Optional, Dict, Any

from sqlalchemy.exc import IntegrityError


class SyncError(Exception):
    """Erreur de base renvoyée au client sous la forme {kind, message}"""

    kind = "sync_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"kind": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class SyncValidationError(SyncError):
    kind = "validation_error"
    status_code = 400


class UniquenessConflict(SyncError):
    kind = "uniqueness_conflict"
    status_code = 409


class StorageFailure(SyncError):
    kind = "storage_failure"
    status_code = 500


class UnresolvedReference(SyncError):
    """Levée et interceptée pendant l'ingestion : la ligne est ignorée"""

    kind = "unresolved_reference"
    status_code = 422


# Codes SQLSTATE PostgreSQL
_PG_UNIQUE_VIOLATION = "23505"
_PG_CHECK_VIOLATION = "23514"
_PG_NOT_NULL_VIOLATION = "23502"
_PG_FOREIGN_KEY_VIOLATION = "23503"


def classify_integrity_error(exc: IntegrityError) -> SyncError:
    """Traduit une IntegrityError SQLAlchemy en erreur de synchronisation"""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None)
    text = str(orig if orig is not None else exc)

    if code == _PG_UNIQUE_VIOLATION or "UNIQUE constraint failed" in text:
        return UniquenessConflict(
            "Conflit : une valeur unique existe déjà pour ce tenant",
            details={"constraint": _constraint_name(orig, text)}
        )

    if code == _PG_CHECK_VIOLATION or "CHECK constraint failed" in text:
        rule = "check_constraint"
    elif code == _PG_NOT_NULL_VIOLATION or "NOT NULL constraint failed" in text:
        rule = "not_null"
    elif code == _PG_FOREIGN_KEY_VIOLATION or "FOREIGN KEY constraint failed" in text:
        rule = "foreign_key"
    else:
        rule = "integrity"

    return SyncValidationError(
        "Erreur de validation : contrainte d'intégrité non respectée",
        details={"rule": rule, "constraint": _constraint_name(orig, text)}
    )


def _constraint_name(orig: Any, text: str) -> Optional[str]:
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return name
    # SQLite : "UNIQUE constraint failed: pigs.tenant_id, pigs.tag_number"
    if "constraint failed:" in text:
        return text.split("constraint failed:", 1)[1].strip() or None
    return None
