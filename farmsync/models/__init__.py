# farmsync/models/__init__.py
"""
Fichier d'initialisation des modèles - importer ce module enregistre toutes
les tables sur Base.metadata
"""

# =====================================
# MODÈLES DE BASE
# =====================================
from .tenant import Tenant, TenantStatus
from .role import Permission, Role, RolePermission
from .user import User
from .sync_log import SyncLog

# =====================================
# MODÈLES SYNCHRONISABLES
# =====================================
from .facility import Section, Pen
from .medication import Medication
from .feed import FeedInventoryItem, FeedUsageRecord
from .animal import Animal, WeightLog, BreedingEvent, HealthEvent
from .activity import AccessLogEntry, UserPointEntry


__all__ = [
    "Tenant",
    "TenantStatus",
    "User",
    "SyncLog",
    "Permission",
    "Role",
    "RolePermission",
    "Section",
    "Pen",
    "Medication",
    "FeedInventoryItem",
    "FeedUsageRecord",
    "Animal",
    "WeightLog",
    "BreedingEvent",
    "HealthEvent",
    "AccessLogEntry",
    "UserPointEntry",
]
