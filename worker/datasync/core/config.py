"""
Configuración central del worker de sincronización.
Gestiona variables de entorno para la base de destino, la base de origen
(backfill) y el logging.
"""
from typing import List

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Configuración del worker.
    Lee variables de entorno (y .env) y proporciona valores por defecto.

    - DATABASE_URL se puede especificar completa o por componentes
    - SOURCE_DATABASE_URL solo es necesaria para los backfills desde Postgres
    """

    APP_NAME: str = Field(default="LMS Data Sync")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Base de datos destino - componentes
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="sync_user")
    DATABASE_PASSWORD: str = Field(default="sync_pass")
    DATABASE_NAME: str = Field(default="analytics_db")

    # Base de datos destino - URL completa (override de componentes)
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # Base de datos origen (backfill)
    SOURCE_DATABASE_URL: str = Field(default="")

    # Topics de entrada (lista separada por comas)
    KAFKA_TOPICS: str = Field(default="user-topic,event-topic,attendance-topic,tracking-topic,project-topic,project-sync-topic,project-update-topic")

    # Backfill
    BACKFILL_PROGRESS_EVERY: int = Field(default=100)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/datasync.log")

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """
        Retorna la URL efectiva de la base de destino.
        Si DATABASE_URL está definida, la usa (normalizada al driver async).
        Si no, construye la URL desde los componentes individuales.
        """
        if self.DATABASE_URL:
            return normalize_async_dsn(self.DATABASE_URL)
        return (
            f"postgresql+psycopg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    @computed_field
    @property
    def effective_source_database_url(self) -> str:
        """URL de la base de origen con driver async, o cadena vacía."""
        if not self.SOURCE_DATABASE_URL:
            return ""
        return normalize_async_dsn(self.SOURCE_DATABASE_URL)

    @computed_field
    @property
    def topics(self) -> List[str]:
        """Topics configurados como lista."""
        return [t.strip() for t in self.KAFKA_TOPICS.split(",") if t.strip()]

    class Config:
        """Configuración de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


def normalize_async_dsn(url: str) -> str:
    """
    Normaliza un DSN Postgres al driver async de SQLAlchemy (psycopg v3).

    Acepta:
    - postgres://...
    - postgresql://...
    - postgresql+asyncpg://... / postgresql+psycopg2://...
    Otros esquemas (p.ej. sqlite+aiosqlite) se devuelven tal cual.
    """
    u = url.strip()
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg2://", "postgresql://", "postgres://"):
        if u.startswith(prefix):
            return "postgresql+psycopg://" + u[len(prefix):]
    return u


settings = Settings()
