# farmsync/models/tenant.py
import uuid
from enum import Enum
from sqlalchemy import Column, String, DateTime, Uuid

from farmsync.core.clock import utcnow
from farmsync.db.base import Base


class TenantStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class Tenant(Base):
    """
    Ferme cliente : frontière d'isolation de toutes les données synchronisées.
    Créée par le provisioning (hors périmètre de la synchronisation).
    """
    __tablename__ = "tenants"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    plan = Column(String(50), nullable=False, default="Basic")
    status = Column(String(20), nullable=False, default=TenantStatus.ACTIVE.value, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Tenant {self.name} ({self.status})>"
