"""
Backfills desde la base relacional de origen.

- cohorts: fila base + patch de FieldValues con tipo derivado (lookup en origen)
- attendance: filas diarias agrupadas en un patch mensual por clave natural
- registration: UserTenantMapping x UserRolesMapping
- cohort-members: membresías con el slot de FieldValues
"""
from typing import Any, Dict, Iterable, List

from loguru import logger

from datasync.application.backfill.base import BackfillRunner
from datasync.application.services.field_mappings import COHORT_MEMBER_SLOT_FIELD_ID
from datasync.application.services.reshaping import AttendancePatch, group_attendance_rows
from datasync.application.services.transform_service import TransformService
from datasync.domain.entities.reconcile import BatchSummary
from datasync.infrastructure.repositories.entity_specs import (
    ATTENDANCE_TRACKER,
    COHORT,
    COHORT_MEMBER,
    REGISTRATION_TRACKER,
)
from datasync.infrastructure.repositories.reconciler import RecordReconciler
from datasync.infrastructure.source.source_repository import SourceRepository


class _SourceRunner(BackfillRunner):
    def __init__(
        self,
        reconciler: RecordReconciler,
        transformer: TransformService,
        source: SourceRepository,
        **kwargs,
    ):
        super().__init__(reconciler, transformer, **kwargs)
        self.source = source


class CohortBackfill(_SourceRunner):
    """
    Cohortes: upsert de la fila base y luego patch de las columnas mapeadas
    desde FieldValues. El transformer debe usar un lookup de tipos sobre el
    origen para que las hijas migradas antes que el padre clasifiquen bien.
    """

    name = "cohorts"

    async def load(self) -> Iterable[Dict[str, Any]]:
        return await self.source.cohorts()

    def describe(self, record: Dict[str, Any]) -> str:
        return f"CohortID={record.get('cohortId')}"

    async def process(self, record: Dict[str, Any], summary: BatchSummary) -> None:
        core = self.transformer.transform_cohort_core(record)
        key, columns = COHORT.split(core)
        summary.record(await self.reconciler.apply_patch(COHORT, key, columns))

        field_values = await self.source.field_values(key["CohortID"])
        if not field_values:
            logger.debug(f"[{self.name}] {self.describe(record)} sin FieldValues")
            return
        patch = await self.transformer.transform_cohort_field_values(
            key["CohortID"], record.get("parentId") or None, field_values
        )
        if patch:
            await self.reconciler.apply_patch(COHORT, key, patch)
            logger.debug(f"[{self.name}] {self.describe(record)} columnas: {', '.join(sorted(patch))}")


class AttendanceBackfill(_SourceRunner):
    """Asistencia: un patch mensual por clave natural con todos sus días."""

    name = "attendance"

    async def load(self) -> List[AttendancePatch]:
        rows = await self.source.attendance()
        patches = group_attendance_rows(rows)
        logger.info(f"[{self.name}] {len(rows)} filas agrupadas en {len(patches)} meses")
        return patches

    def describe(self, record: AttendancePatch) -> str:
        return str(record.key.as_columns())

    async def process(self, record: AttendancePatch, summary: BatchSummary) -> None:
        summary.record(
            await self.reconciler.apply_patch(ATTENDANCE_TRACKER, record.key.as_columns(), record.columns())
        )


class RegistrationBackfill(_SourceRunner):
    """RegistrationTracker: update si existe la clave, si no insert."""

    name = "registration"

    async def load(self) -> Iterable[Dict[str, Any]]:
        return await self.source.registrations()

    def describe(self, record: Dict[str, Any]) -> str:
        return f"UserID={record.get('userId')} RoleID={record.get('roleId')} TenantID={record.get('tenantId')}"

    async def process(self, record: Dict[str, Any], summary: BatchSummary) -> None:
        row = self.transformer.transform_registration_row(record)
        key, columns = REGISTRATION_TRACKER.split(row)
        summary.record(await self.reconciler.apply_patch(REGISTRATION_TRACKER, key, columns))


class CohortMemberBackfill(_SourceRunner):
    """Membresías por CohortMemberID, con el slot leído de FieldValues."""

    name = "cohort-members"

    async def load(self) -> Iterable[Dict[str, Any]]:
        return await self.source.cohort_members()

    def describe(self, record: Dict[str, Any]) -> str:
        return f"CohortMemberID={record.get('cohortMembershipId')}"

    async def process(self, record: Dict[str, Any], summary: BatchSummary) -> None:
        slot = None
        if record.get("cohortMembershipId"):
            slot = await self.source.field_value(record["cohortMembershipId"], COHORT_MEMBER_SLOT_FIELD_ID)
        row = self.transformer.transform_cohort_member_row(record, slot)
        key, columns = COHORT_MEMBER.split(row)
        summary.record(await self.reconciler.apply_patch(COHORT_MEMBER, key, columns))
