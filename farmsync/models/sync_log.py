# farmsync/models/sync_log.py
import uuid
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey, Uuid

from farmsync.core.clock import utcnow
from farmsync.db.base import Base


class SyncLog(Base):
    """Trace d'un appel de synchronisation, écrite dans la même transaction"""
    __tablename__ = "sync_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    source = Column(String(20), nullable=False)  # sync, push, pull
    since_watermark = Column(DateTime, nullable=True)
    rows_applied = Column(Integer, nullable=False, default=0)
    rows_skipped = Column(Integer, nullable=False, default=0)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
