# farmsync/models/medication.py
import uuid
from sqlalchemy import Column, String, Integer, UniqueConstraint, Uuid

from farmsync.db.base import Base
from farmsync.models.mixins import TenantScopedMixin, SyncTimestampsMixin


class Medication(TenantScopedMixin, SyncTimestampsMixin, Base):
    __tablename__ = "medications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False)
    withdrawal_days = Column(Integer, nullable=False, default=0, comment="Délai d'attente en jours")

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_medications_tenant_name"),
    )
