"""
Catálogo inmutable de tipos de columna del destino.

Se construye una vez al arrancar (introspección) y se pasa por referencia al
reconciliador. Decide si un valor se codifica como arreglo o como escalar.
Si la introspección falla, el fallback explícito es "todas escalares".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, FrozenSet, Sequence, Tuple

from loguru import logger
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.types import ARRAY


@dataclass(frozen=True)
class ColumnTypeCatalog:
    """
    Snapshot de columnas de tipo arreglo por tabla.

    loaded=False indica que se está usando el fallback escalar.
    """

    array_columns: FrozenSet[Tuple[str, str]] = field(default_factory=frozenset)
    loaded: bool = True

    @classmethod
    def scalar_fallback(cls) -> "ColumnTypeCatalog":
        return cls(array_columns=frozenset(), loaded=False)

    def is_array(self, table: str, column: str) -> bool:
        return (table, column) in self.array_columns

    def encode(self, table: str, column: str, value: Any) -> Any:
        """
        Codifica el valor según el tipo de la columna.

        - Columna arreglo: escalar -> [valor]; listas se respetan
        - Columna escalar: listas -> primer elemento
        """
        if value is None:
            return None
        if self.is_array(table, column):
            return list(value) if isinstance(value, (list, tuple)) else [value]
        if isinstance(value, (list, tuple)):
            return value[0] if value else None
        return value


def _inspect_array_columns(sync_conn, tables: Sequence[str]) -> FrozenSet[Tuple[str, str]]:
    inspector = inspect(sync_conn)
    found = set()
    for table in tables:
        if not inspector.has_table(table):
            logger.warning(f"Tabla {table} no existe en el destino; sus columnas se tratan como escalares")
            continue
        for column in inspector.get_columns(table):
            if isinstance(column["type"], ARRAY):
                found.add((table, column["name"]))
    return frozenset(found)


async def load_column_catalog(engine: AsyncEngine, tables: Sequence[str]) -> ColumnTypeCatalog:
    """
    Introspecciona las tablas indicadas y retorna el catálogo.

    Ante error de introspección retorna ColumnTypeCatalog.scalar_fallback()
    y lo deja registrado en el log.
    """
    try:
        async with engine.connect() as conn:
            array_columns = await conn.run_sync(_inspect_array_columns, list(tables))
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"No se pudo introspeccionar tipos de columna ({e}); se asume tipo escalar para todas")
        return ColumnTypeCatalog.scalar_fallback()

    logger.info(f"Catálogo de columnas cargado: {len(array_columns)} columnas arreglo en {len(tables)} tablas")
    return ColumnTypeCatalog(array_columns=array_columns, loaded=True)
