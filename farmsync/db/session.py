# farmsync/db/session.py
from typing import Generator
import logging

from fastapi import HTTPException
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError

from farmsync.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str, **options) -> Engine:
    """
    Crée le moteur SQLAlchemy.

    Pour SQLite, la gestion transactionnelle du driver pysqlite est
    désactivée au profit de BEGIN explicites afin que les SAVEPOINT
    (find-or-create) et les ROLLBACK du lot complet se comportent comme
    sous PostgreSQL.
    """
    engine = create_engine(url, echo=settings.SQLALCHEMY_ECHO, **options)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


engine = build_engine(settings.DATABASE_URL, **settings.SQLALCHEMY_ENGINE_OPTIONS)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


def get_db() -> Generator[Session, None, None]:
    """
    Dépendance DB
    - 1 session / requête
    - commit auto si succès
    - rollback garanti
    """
    db: Session = SessionLocal()
    try:
        yield db
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Erreur SQLAlchemy")
        raise HTTPException(
            status_code=500,
            detail="Erreur interne de base de données"
        ) from e
    except Exception:
        db.rollback()
        logger.exception("Erreur inattendue")
        raise
    finally:
        db.close()
