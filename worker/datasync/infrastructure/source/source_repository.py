"""
Lecturas de la base de origen para los backfills.

Consultas de solo lectura con text() sobre el engine de origen. Las filas
se devuelven como dicts con los nombres de columna del origen.
"""
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine


class SourceRepository:
    """Repositorio de lectura sobre el esquema `public` del origen."""

    COHORTS = text(
        'SELECT c."cohortId", c."tenantId", c."name", c."createdAt", c."parentId" '
        'FROM public."Cohort" c'
    )
    FIELD_VALUES = text(
        'SELECT fv."fieldId", fv.value FROM public."FieldValues" fv WHERE fv."itemId" = :item_id'
    )
    FIELD_VALUE = text(
        'SELECT fv.value FROM public."FieldValues" fv '
        'WHERE fv."itemId" = :item_id AND fv."fieldId" = :field_id'
    )
    ATTENDANCE = text(
        'SELECT a."attendanceDate", a.attendance, a."userId", a."tenantId", a."contextId", a.context, '
        'a.remark, a.latitude, a.longitude, a.scope, a."lateMark", a."absentReason", '
        'a."validLocation", a."metaData" '
        'FROM public."Attendance" a '
        'WHERE a."attendanceDate" IS NOT NULL AND a."userId" IS NOT NULL'
    )
    REGISTRATIONS = text(
        'SELECT utm."userId", utm."tenantId", utm."createdAt" AS tenant_regn_date, '
        'urm."roleId", urm."createdAt" AS role_assigned_date '
        'FROM public."UserTenantMapping" utm '
        'INNER JOIN public."UserRolesMapping" urm '
        'ON utm."userId" = urm."userId" AND utm."tenantId" = urm."tenantId" '
        'WHERE utm."userId" IS NOT NULL AND utm."tenantId" IS NOT NULL AND urm."roleId" IS NOT NULL'
    )
    COHORT_MEMBERS = text(
        'SELECT cm."cohortMembershipId", cm."cohortId", cm."userId", cm.status, '
        'cm."cohortAcademicYearId", cay."academicYearId" '
        'FROM public."CohortMembers" cm '
        'LEFT JOIN public."CohortAcademicYear" cay '
        'ON cm."cohortAcademicYearId" = cay."cohortAcademicYearId"'
    )

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def _fetch_all(self, statement, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(statement, params or {})
            return [dict(row) for row in result.mappings().all()]

    async def cohorts(self) -> List[Dict[str, Any]]:
        rows = await self._fetch_all(self.COHORTS)
        logger.info(f"Origen: {len(rows)} cohortes")
        return rows

    async def field_values(self, item_id: str) -> List[Dict[str, Any]]:
        """Todas las filas FieldValues de un item (cohorte o membresía)."""
        return await self._fetch_all(self.FIELD_VALUES, {"item_id": item_id})

    async def field_value(self, item_id: str, field_id: str) -> Optional[Any]:
        rows = await self._fetch_all(self.FIELD_VALUE, {"item_id": item_id, "field_id": field_id})
        return rows[0]["value"] if rows else None

    async def attendance(self) -> List[Dict[str, Any]]:
        rows = await self._fetch_all(self.ATTENDANCE)
        logger.info(f"Origen: {len(rows)} filas de asistencia")
        return rows

    async def registrations(self) -> List[Dict[str, Any]]:
        rows = await self._fetch_all(self.REGISTRATIONS)
        logger.info(f"Origen: {len(rows)} registros usuario/tenant/rol")
        return rows

    async def cohort_members(self) -> List[Dict[str, Any]]:
        rows = await self._fetch_all(self.COHORT_MEMBERS)
        logger.info(f"Origen: {len(rows)} membresías")
        return rows

