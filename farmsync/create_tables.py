# farmsync/create_tables.py
"""
Script simple pour créer les tables et le catalogue des permissions
"""
import logging

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_PERMISSIONS = {
    "pig.create": "Créer des animaux",
    "pig.view": "Consulter les animaux",
    "pig.edit": "Modifier les animaux",
    "pig.delete": "Supprimer des animaux",
    "finance.view": "Consulter les finances",
    "finance.manage": "Gérer les finances",
    "health.manage": "Gérer les traitements sanitaires",
    "admin.manage": "Administration de la ferme",
}


def seed_permissions(db: Session) -> int:
    """Insère les permissions manquantes ; retourne le nombre de créations"""
    from farmsync.models import Permission

    existing = set(db.execute(select(Permission.slug)).scalars())
    created = 0
    for slug, description in DEFAULT_PERMISSIONS.items():
        if slug in existing:
            continue
        db.add(Permission(slug=slug, description=description))
        created += 1
    db.commit()
    return created


def create_all_tables(bind: Engine = None) -> None:
    """Crée toutes les tables de la base de données"""
    from farmsync.db.base import Base
    from farmsync.db.session import engine

    # Enregistre tous les modèles sur Base.metadata
    import farmsync.models  # noqa: F401

    bind = bind or engine
    logger.info("Création des tables...")
    Base.metadata.create_all(bind=bind)

    with Session(bind) as db:
        created = seed_permissions(db)
    logger.info(f"✅ Tables créées, {created} permission(s) ajoutée(s)")


if __name__ == "__main__":
    create_all_tables()
