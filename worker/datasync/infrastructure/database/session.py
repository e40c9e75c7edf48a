"""
Creación de engines async (SQLAlchemy) para destino y origen.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from datasync.core.config import Settings, normalize_async_dsn


# Base para modelos de SQLAlchemy (esquema destino)
Base = declarative_base()


def _create_engine_args(url: str, settings: Optional[Settings]) -> dict:
    """
    Construye los argumentos del engine según el tipo de base de datos.
    PostgreSQL usa pool de conexiones, SQLite no lo soporta.
    """
    args = {
        "echo": bool(settings and settings.DEBUG),
        "future": True,
    }

    if "postgresql" in url:
        args.update({
            "pool_size": settings.DB_POOL_SIZE if settings else 5,
            "max_overflow": settings.DB_MAX_OVERFLOW if settings else 10,
            "pool_pre_ping": True,
        })

    return args


def create_engine(url: str, settings: Optional[Settings] = None) -> AsyncEngine:
    """
    Crea un engine async para la URL indicada.

    Args:
        url: DSN (se normaliza a postgresql+psycopg si es Postgres)
        settings: Configuración para tamaño de pool y echo
    """
    dsn = normalize_async_dsn(url)
    return create_async_engine(dsn, **_create_engine_args(dsn, settings))


def create_destination_engine(settings: Settings) -> AsyncEngine:
    return create_engine(settings.effective_database_url, settings)


def create_source_engine(settings: Settings) -> AsyncEngine:
    """Engine de la base de origen; requiere SOURCE_DATABASE_URL."""
    if not settings.effective_source_database_url:
        raise RuntimeError("Falta SOURCE_DATABASE_URL para el backfill desde Postgres")
    return create_engine(settings.effective_source_database_url, settings)

