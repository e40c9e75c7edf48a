"""
Arranque y cierre del worker.

Construye una vez los engines, el catálogo de columnas y los servicios, y
los entrega a los scripts (consumo de eventos y backfills).
"""
from dataclasses import dataclass
from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from datasync.application.services.cohort_type import CohortTypeResolver
from datasync.application.services.transform_service import TransformService
from datasync.application.use_cases.event_processor import EventProcessor
from datasync.core.config import Settings
from datasync.infrastructure.database.column_catalog import load_column_catalog
from datasync.infrastructure.database.session import create_destination_engine, create_source_engine
from datasync.infrastructure.repositories.cohort_type_lookups import (
    DestinationCohortTypeLookup,
    SourceCohortTypeLookup,
)
from datasync.infrastructure.repositories.reconciler import RecordReconciler
from datasync.infrastructure.source.source_repository import SourceRepository

# Tablas con columnas de custom fields que pueden ser arreglo
CATALOG_TABLES = ("CohortMember", "Users", "Cohort")


@dataclass
class WorkerContext:
    destination: AsyncEngine
    reconciler: RecordReconciler
    transformer: TransformService
    source: Optional[AsyncEngine] = None
    source_repository: Optional[SourceRepository] = None

    @property
    def processor(self) -> EventProcessor:
        return EventProcessor(self.reconciler, self.transformer)


async def startup(settings: Settings, *, with_source: bool = False) -> WorkerContext:
    """
    Inicializa recursos.

    Args:
        settings: Configuración del worker
        with_source: Si True abre la base de origen y resuelve tipos de
            cohorte padre contra ella (modo backfill); si no, contra el destino
    """
    logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENVIRONMENT})")
    destination = create_destination_engine(settings)
    catalog = await load_column_catalog(destination, CATALOG_TABLES)
    reconciler = RecordReconciler(destination, catalog)

    source = None
    source_repository = None
    if with_source:
        source = create_source_engine(settings)
        source_repository = SourceRepository(source)
        lookup = SourceCohortTypeLookup(source)
    else:
        lookup = DestinationCohortTypeLookup(destination)

    transformer = TransformService(CohortTypeResolver(lookup))
    logger.success("Worker inicializado")
    return WorkerContext(
        destination=destination,
        reconciler=reconciler,
        transformer=transformer,
        source=source,
        source_repository=source_repository,
    )


async def shutdown(context: WorkerContext) -> None:
    """Cierra las conexiones de las bases de datos."""
    await context.destination.dispose()
    if context.source is not None:
        await context.source.dispose()
    logger.info("Conexiones cerradas")
