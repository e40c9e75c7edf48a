"""
Base de los runners de backfill.

Cada runner carga sus registros de origen y los procesa en secuencia. Un
fallo de un registro se registra con su clave natural, se cuenta y la
corrida continua; al final siempre se registra el resumen.
"""
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from datasync.application.services.transform_service import TransformService
from datasync.core.config import settings
from datasync.domain.entities.reconcile import BatchSummary
from datasync.infrastructure.repositories.reconciler import RecordReconciler
from datasync.shared.exceptions.base import SyncException
from datasync.shared.exceptions.domain import ValidationException


class BackfillRunner(ABC):
    """Runner secuencial de un backfill."""

    name: str = "backfill"

    def __init__(
        self,
        reconciler: RecordReconciler,
        transformer: TransformService,
        progress_every: Optional[int] = None,
    ):
        self.reconciler = reconciler
        self.transformer = transformer
        self.progress_every = progress_every or settings.BACKFILL_PROGRESS_EVERY

    @abstractmethod
    async def load(self) -> Iterable[Any]:
        """Carga los registros de origen."""

    @abstractmethod
    async def process(self, record: Any, summary: BatchSummary) -> None:
        """Transforma y reconcilia un registro, actualizando el resumen."""

    @abstractmethod
    def describe(self, record: Any) -> str:
        """Clave natural legible del registro, para los logs."""

    async def run(self) -> BatchSummary:
        summary = BatchSummary(name=self.name)
        logger.info(f"[{self.name}] Iniciando backfill")
        records = await self.load()

        for record in records:
            summary.processed += 1
            try:
                await self.process(record, summary)
            except ValidationException as e:
                summary.skipped += 1
                logger.warning(f"[{self.name}] {self.describe(record)} omitido: {e.message}")
            except SyncException as e:
                summary.errors += 1
                logger.error(f"[{self.name}] {self.describe(record)} {e.error_code}: {e.message}")
            except SQLAlchemyError as e:
                summary.errors += 1
                logger.error(f"[{self.name}] {self.describe(record)} error de base de datos: {e}")
            except Exception as e:
                summary.errors += 1
                logger.exception(f"[{self.name}] {self.describe(record)} error inesperado: {e}")

            if summary.processed % self.progress_every == 0:
                logger.info(f"[{self.name}] Progreso: {summary}")

        if summary.has_errors:
            logger.warning(f"[{self.name}] Finalizado con errores. {summary}")
        else:
            logger.success(f"[{self.name}] Finalizado. {summary}")
        return summary
