# farmsync/models/facility.py
from sqlalchemy import Column, String, Integer, ForeignKey, UniqueConstraint, CheckConstraint

from farmsync.db.base import Base
from farmsync.models.mixins import TenantScopedMixin, SyncTimestampsMixin


class Section(TenantScopedMixin, SyncTimestampsMixin, Base):
    """Bâtiment ou zone de la ferme (ex: Gestación, Maternidad)"""
    __tablename__ = "sections"

    # Identifiant attribué par le serveur
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_sections_tenant_name"),
    )


class Pen(TenantScopedMixin, SyncTimestampsMixin, Base):
    """Case / enclos rattaché à une section"""
    __tablename__ = "pens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(100), nullable=False)
    capacity = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_pens_tenant_name"),
        CheckConstraint("capacity >= 0", name="ck_pens_capacity_positive"),
    )
