# farmsync/models/feed.py
import uuid
from sqlalchemy import (
    Column, String, Integer, Date, ForeignKey, Numeric, UniqueConstraint, CheckConstraint, Uuid
)

from farmsync.db.base import Base
from farmsync.models.mixins import TenantScopedMixin, SyncTimestampsMixin


class FeedInventoryItem(TenantScopedMixin, SyncTimestampsMixin, Base):
    """Aliment en stock"""
    __tablename__ = "feed_inventory"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False)
    cost_per_kg = Column(Numeric(12, 2), nullable=True)
    current_stock = Column(Numeric(12, 2), nullable=True)
    batch_code = Column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_feed_inventory_tenant_name"),
    )


class FeedUsageRecord(TenantScopedMixin, SyncTimestampsMixin, Base):
    """Consommation d'aliment par case et/ou par animal"""
    __tablename__ = "feed_usage"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    feed_id = Column(Uuid(as_uuid=True), ForeignKey("feed_inventory.id", ondelete="CASCADE"), nullable=False, index=True)
    pen_id = Column(Integer, ForeignKey("pens.id", ondelete="SET NULL"), nullable=True)
    pig_id = Column(Uuid(as_uuid=True), ForeignKey("pigs.id", ondelete="SET NULL"), nullable=True)
    amount_kg = Column(Numeric(10, 2), nullable=True)
    date = Column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint("amount_kg IS NULL OR amount_kg >= 0", name="ck_feed_usage_amount_positive"),
    )
