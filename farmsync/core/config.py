# farmsync/core/config.py
import os
from typing import Optional, List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration de l'application avec validation Pydantic"""

    # =====================================
    # APPLICATION
    # =====================================
    APP_NAME: str = "FarmSync"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # =====================================
    # SÉCURITÉ JWT
    # =====================================
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 30  # 30 jours (clients hors-ligne)

    # =====================================
    # BASE DE DONNÉES
    # =====================================
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "postgres")
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "farmsync")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: str = os.getenv("POSTGRES_PORT", "5432")

    # URL SQLAlchemy complète (ex: sqlite:///./farmsync.db en développement)
    DATABASE_URL_OVERRIDE: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # =====================================
    # SQLALCHEMY CONFIGURATION
    # =====================================
    SQLALCHEMY_ECHO: bool = False

    @property
    def SQLALCHEMY_ENGINE_OPTIONS(self) -> dict:
        if self.DATABASE_URL.startswith("sqlite"):
            return {"connect_args": {"check_same_thread": False}}
        return {
            "pool_size": 10,
            "max_overflow": 20,
            "pool_timeout": 30,
            "pool_recycle": 1800,
            "pool_pre_ping": True,
            "connect_args": {"client_encoding": "utf8", "connect_timeout": 10}
        }

    # =====================================
    # CORS
    # =====================================
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # =====================================
    # SYNCHRONISATION
    # =====================================
    SYNC_MAX_ROWS_PER_REQUEST: int = 5000
    SYNC_ACTIVE_TENANT_STATUSES: List[str] = ["active", "trial"]

    # =====================================
    # LOGGING
    # =====================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Instance globale des paramètres
settings = Settings()
