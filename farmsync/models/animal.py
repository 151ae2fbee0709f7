# farmsync/models/animal.py
import uuid
from sqlalchemy import (
    Column, String, Date, Text, ForeignKey, Numeric, Integer, JSON, Index, CheckConstraint, Uuid, text
)

from farmsync.db.base import Base
from farmsync.models.mixins import TenantScopedMixin, SyncTimestampsMixin


class Animal(TenantScopedMixin, SyncTimestampsMixin, Base):
    """
    Animal (porc) identifié par un UUID généré hors-ligne par le client.
    Le sexe est immuable après la première écriture.
    """
    __tablename__ = "pigs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pen_id = Column(Integer, ForeignKey("pens.id", ondelete="SET NULL"), nullable=True, index=True)

    # =====================================
    # IDENTIFICATION
    # =====================================
    tag_number = Column(String(50), nullable=True, comment="Numéro de boucle (arete)")
    sex = Column(String(20), nullable=True)
    stage = Column(String(50), nullable=True)
    status = Column(String(30), nullable=False, default="Activo")

    # =====================================
    # DATES ET MESURES
    # =====================================
    birth_date = Column(Date, nullable=True)
    entry_date = Column(Date, nullable=True)
    weight = Column(Numeric(10, 2), nullable=True)

    # =====================================
    # GÉNÉALOGIE
    # =====================================
    father_id = Column(Uuid(as_uuid=True), ForeignKey("pigs.id", ondelete="SET NULL"), nullable=True)
    mother_id = Column(Uuid(as_uuid=True), ForeignKey("pigs.id", ondelete="SET NULL"), nullable=True)
    genetics_score = Column(Numeric(6, 2), nullable=True)

    __table_args__ = (
        # Boucle unique parmi les animaux actifs d'une ferme
        Index(
            "uq_pigs_tenant_tag_active", "tenant_id", "tag_number",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        CheckConstraint("weight IS NULL OR weight > 0", name="ck_pigs_weight_positive"),
    )


class WeightLog(TenantScopedMixin, SyncTimestampsMixin, Base):
    __tablename__ = "weight_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pig_id = Column(Uuid(as_uuid=True), ForeignKey("pigs.id", ondelete="CASCADE"), nullable=False, index=True)
    weight = Column(Numeric(10, 2), nullable=False)
    date = Column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint("weight > 0", name="ck_weight_logs_weight_positive"),
    )


class BreedingEvent(TenantScopedMixin, SyncTimestampsMixin, Base):
    """Saillie, diagnostic, mise bas, sevrage..."""
    __tablename__ = "breeding_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pig_id = Column(Uuid(as_uuid=True), ForeignKey("pigs.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(50), nullable=True)
    date = Column(Date, nullable=True)
    details = Column(JSON, nullable=True)


class HealthEvent(TenantScopedMixin, SyncTimestampsMixin, Base):
    __tablename__ = "health_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pig_id = Column(Uuid(as_uuid=True), ForeignKey("pigs.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    date = Column(Date, nullable=True)
    cost = Column(Numeric(12, 2), nullable=False, default=0)
    medication_id = Column(Uuid(as_uuid=True), ForeignKey("medications.id", ondelete="SET NULL"), nullable=True)
    withdrawal_end_date = Column(Date, nullable=True, comment="Fin du délai d'attente")
