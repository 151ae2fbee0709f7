# farmsync/models/user.py
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Uuid

from farmsync.core.clock import utcnow
from farmsync.db.base import Base


class User(Base):
    """
    Utilisateur d'une ferme. Provisionné hors synchronisation ; sert de cible
    aux références `user_id` (points utilisateur, journal de sync).
    """
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(200), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=True)
    role_id = Column(Uuid(as_uuid=True), ForeignKey("roles.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<User {self.email}>"
