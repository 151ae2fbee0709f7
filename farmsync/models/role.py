# farmsync/models/role.py
import uuid
from sqlalchemy import Column, String, Integer, Text, ForeignKey, UniqueConstraint, Uuid

from farmsync.db.base import Base
from farmsync.models.mixins import TenantScopedMixin, SyncTimestampsMixin


class Permission(Base):
    """Catalogue global des permissions (non rattaché à un tenant)"""
    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)


class Role(TenantScopedMixin, SyncTimestampsMixin, Base):
    __tablename__ = "roles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
    )


class RolePermission(TenantScopedMixin, Base):
    """
    Table pivot rôle ↔ permission. Sans horodatage : elle est renvoyée en
    entier à chaque pull.
    """
    __tablename__ = "role_permissions"

    role_id = Column(Uuid(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id = Column(Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)
