"""
Backfills desde los exports del store de documentos.

- projects: un Project por documento de solutions
- project-tasks: árbol de tareas del primer documento de projects de cada solution
- project-tracking: tareas completadas de cada documento de projects
Las tareas y el tracking solo se cargan si el Project ya existe en el destino.
"""
from typing import Any, Dict, Iterable

from loguru import logger

from datasync.application.backfill.base import BackfillRunner
from datasync.application.services.coercion import object_id
from datasync.application.services.transform_service import TransformService
from datasync.domain.entities.reconcile import BatchSummary
from datasync.infrastructure.repositories.entity_specs import (
    PROJECT,
    PROJECT_TASK,
    PROJECT_TASK_TRACKING,
    TRACKING_DEDUP_COLUMNS,
)
from datasync.infrastructure.repositories.reconciler import RecordReconciler
from datasync.infrastructure.source.document_export import DocumentExport
from datasync.shared.exceptions.domain import ValidationException


class _DocumentRunner(BackfillRunner):
    def __init__(
        self,
        reconciler: RecordReconciler,
        transformer: TransformService,
        export: DocumentExport,
        **kwargs,
    ):
        super().__init__(reconciler, transformer, **kwargs)
        self.export = export

    async def project_exists(self, project_id: str) -> bool:
        found = await self.reconciler.fetch_value(PROJECT, {"ProjectId": project_id}, "ProjectId")
        return found is not None


class ProjectBackfill(_DocumentRunner):
    name = "projects"

    async def load(self) -> Iterable[Dict[str, Any]]:
        return self.export.solutions()

    def describe(self, record: Dict[str, Any]) -> str:
        return f"ProjectId={object_id(record.get('_id'))}"

    async def process(self, record: Dict[str, Any], summary: BatchSummary) -> None:
        row = self.transformer.transform_solution(record)
        summary.upserted += await self.reconciler.upsert_rows(PROJECT, [row])


class ProjectTaskBackfill(_DocumentRunner):
    name = "project-tasks"

    async def load(self) -> Iterable[Dict[str, Any]]:
        return self.export.solutions()

    def describe(self, record: Dict[str, Any]) -> str:
        return f"solution={object_id(record.get('_id'))}"

    async def process(self, record: Dict[str, Any], summary: BatchSummary) -> None:
        solution_id = object_id(record.get("_id"))
        if not solution_id:
            raise ValidationException("solution sin _id", field="_id")

        project = self.export.project_for_solution(solution_id)
        if project is None:
            summary.skipped += 1
            logger.info(f"[{self.name}] {self.describe(record)} sin documento en projects")
            return
        if not await self.project_exists(solution_id):
            summary.skipped += 1
            logger.warning(f"[{self.name}] Project {solution_id} no existe en destino; tareas omitidas")
            return

        rows = self.transformer.transform_project_document_tasks(project)
        summary.upserted += await self.reconciler.upsert_rows(PROJECT_TASK, rows)


class ProjectTrackingBackfill(_DocumentRunner):
    name = "project-tracking"

    async def load(self) -> Iterable[Dict[str, Any]]:
        return self.export.projects()

    def describe(self, record: Dict[str, Any]) -> str:
        return f"project={object_id(record.get('_id'))} solution={object_id(record.get('solutionId'))}"

    async def process(self, record: Dict[str, Any], summary: BatchSummary) -> None:
        solution_id = object_id(record.get("solutionId"))
        if not solution_id:
            raise ValidationException("documento projects sin solutionId", field="solutionId")
        rows = self.transformer.transform_project_document_tracking(record)

        if not await self.project_exists(solution_id):
            summary.skipped += 1
            logger.warning(f"[{self.name}] Project {solution_id} no existe en destino; tracking omitido")
            return

        for row in rows:
            summary.record(
                await self.reconciler.insert_if_absent(PROJECT_TASK_TRACKING, TRACKING_DEDUP_COLUMNS, row)
            )
