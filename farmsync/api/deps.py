# farmsync/api/deps.py

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any
from uuid import UUID

from farmsync.db.session import get_db
from farmsync.models.user import User
from farmsync.models.tenant import Tenant
from farmsync.core.config import settings
from farmsync.core.security import decode_access_token, JWTError

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def _as_uuid(value: Any) -> Optional[UUID]:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Token invalide ou expiré",
        headers={"WWW-Authenticate": "Bearer"},
    )


# ======================================================
# AUTHENTIFICATION
# ======================================================

def get_token_claims(token: str = Depends(oauth2_scheme)) -> Dict[str, Any]:
    """Claims du token JWT vérifié (signature + expiration)"""

    try:
        return decode_access_token(token)
    except JWTError:
        raise _credentials_exception()


def get_current_user(
    claims: Dict[str, Any] = Depends(get_token_claims),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """
    Utilisateur désigné par le claim `sub`, s'il existe.
    Un token de service peut ne porter que le tenant.
    """
    user_id = _as_uuid(claims.get("sub") or claims.get("id"))
    if not user_id:
        return None

    user = db.get(User, user_id)
    if user and not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Utilisateur inactif ou suspendu"
        )
    return user


def get_current_user_id(user: Optional[User] = Depends(get_current_user)) -> Optional[UUID]:
    return user.id if user else None


# ======================================================
# TENANT
# ======================================================

def get_current_tenant(
    claims: Dict[str, Any] = Depends(get_token_claims),
    user: Optional[User] = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Tenant:
    """
    Tenant de l'appelant, issu uniquement du contexte vérifié :
    claim `tenant_id` (ou `farmId`), à défaut le tenant de l'utilisateur.
    Jamais depuis le corps de la requête.
    """
    raw_claim = claims.get("tenant_id") or claims.get("farmId")
    if raw_claim:
        tenant_id = _as_uuid(raw_claim)
        if tenant_id is None:
            raise _credentials_exception()
        if user and user.tenant_id != tenant_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Contexte tenant invalide"
            )
    else:
        tenant_id = user.tenant_id if user else None

    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Contexte tenant invalide"
        )

    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant introuvable"
        )

    if tenant.status not in settings.SYNC_ACTIVE_TENANT_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Tenant {tenant.status} – accès refusé"
        )

    return tenant


__all__ = [
    "get_db",
    "get_token_claims",
    "get_current_user",
    "get_current_user_id",
    "get_current_tenant",
    "oauth2_scheme",
]
