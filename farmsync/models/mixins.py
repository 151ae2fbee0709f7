# farmsync/models/mixins.py
from sqlalchemy import Column, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import declared_attr

from farmsync.core.clock import utcnow


class TenantScopedMixin:
    """Chaque ligne synchronisable appartient à un tenant (ferme)"""

    @declared_attr
    def tenant_id(cls):
        return Column(
            Uuid(as_uuid=True),
            ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True
        )


class SyncTimestampsMixin:
    """
    created_at : conservé depuis la première insertion
    updated_at : watermark de la ligne, posé par le serveur
    deleted_at : tombstone (suppression logique)
    """

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, default=utcnow, index=True)
    deleted_at = Column(DateTime, nullable=True, index=True)
