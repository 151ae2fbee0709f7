# farmsync/models/activity.py
import uuid
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, ForeignKey, Uuid

from farmsync.core.clock import utcnow
from farmsync.db.base import Base
from farmsync.models.mixins import TenantScopedMixin, SyncTimestampsMixin


class AccessLogEntry(TenantScopedMixin, SyncTimestampsMixin, Base):
    """Registre de biosécurité des visiteurs"""
    __tablename__ = "access_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    visitor_name = Column(String(200), nullable=True)
    origin = Column(String(200), nullable=True)
    is_safe_origin = Column(Boolean, nullable=False, default=False)
    entry_time = Column(DateTime, nullable=False, default=utcnow)


class UserPointEntry(TenantScopedMixin, SyncTimestampsMixin, Base):
    """Points de gamification attribués à un utilisateur"""
    __tablename__ = "user_points"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    points = Column(Integer, nullable=False, default=0)
    reason = Column(Text, nullable=True)
