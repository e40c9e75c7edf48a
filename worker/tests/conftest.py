"""
Configuración de fixtures para pytest.
"""
from typing import AsyncGenerator, Dict, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from datasync.application.services.transform_service import TransformService
from datasync.domain.repositories.cohort_type_lookup import ICohortTypeLookup
from datasync.infrastructure.database import models  # noqa: F401  registra las tablas en Base
from datasync.infrastructure.database.session import Base
from datasync.infrastructure.repositories.reconciler import RecordReconciler


# URL de base de datos de prueba
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeCohortTypeLookup(ICohortTypeLookup):
    """Lookup en memoria: cohortId -> tipo crudo del padre."""

    def __init__(self, types: Optional[Dict[str, Optional[str]]] = None, error: Optional[Exception] = None):
        self.types = types or {}
        self.error = error
        self.calls = []

    async def lookup_type(self, cohort_id: str) -> Optional[str]:
        self.calls.append(cohort_id)
        if self.error is not None:
            raise self.error
        return self.types.get(cohort_id)


@pytest.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Engine SQLite en memoria con el esquema destino.
    StaticPool mantiene una sola conexión para que todas vean las mismas tablas.
    """
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def reconciler(engine) -> RecordReconciler:
    return RecordReconciler(engine)


@pytest.fixture
def transformer() -> TransformService:
    return TransformService()
