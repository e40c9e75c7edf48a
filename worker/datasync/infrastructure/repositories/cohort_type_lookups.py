"""
Implementaciones de ICohortTypeLookup.

- DestinationCohortTypeLookup: tipo ya clasificado en Cohort."Type" del destino (modo eventos)
- SourceCohortTypeLookup: campo "center type" en FieldValues del origen (modo backfill)
"""

from __future__ import annotations

from typing import Optional

from loguru import logger
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncEngine

from datasync.application.services.coercion import first_or_self
from datasync.application.services.cohort_type import raw_type_from_stored
from datasync.application.services.field_mappings import COHORT_TYPE_FIELD_ID
from datasync.domain.repositories.cohort_type_lookup import ICohortTypeLookup
from datasync.infrastructure.database.models import CohortModel


class DestinationCohortTypeLookup(ICohortTypeLookup):
    """Lee el tipo del padre desde la cohorte ya migrada en el destino."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def lookup_type(self, cohort_id: str) -> Optional[str]:
        table = CohortModel.__table__
        async with self._engine.connect() as conn:
            result = await conn.execute(select(table.c.Type).where(table.c.CohortID == cohort_id).limit(1))
            row = result.first()
        if row is None:
            logger.warning(f"Cohorte padre {cohort_id} no encontrada en destino")
            return None
        return raw_type_from_stored(row[0])


class SourceCohortTypeLookup(ICohortTypeLookup):
    """Lee el tipo crudo del padre desde FieldValues en la base de origen."""

    _COHORT_EXISTS = text('SELECT "cohortId" FROM public."Cohort" WHERE "cohortId" = :cohort_id')
    _TYPE_VALUE = text(
        'SELECT fv.value FROM public."FieldValues" fv '
        'WHERE fv."itemId" = :item_id AND fv."fieldId" = :field_id'
    )

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def lookup_type(self, cohort_id: str) -> Optional[str]:
        async with self._engine.connect() as conn:
            exists = (await conn.execute(self._COHORT_EXISTS, {"cohort_id": cohort_id})).first()
            if exists is None:
                logger.warning(f"Cohorte padre {cohort_id} no encontrada en origen")
                return None
            row = (
                await conn.execute(self._TYPE_VALUE, {"item_id": cohort_id, "field_id": COHORT_TYPE_FIELD_ID})
            ).first()

        if row is None:
            logger.info(f"Cohorte padre {cohort_id} sin valor de tipo en FieldValues")
            return None
        value = first_or_self(row[0])
        return str(value).strip() if value is not None else None
