"""
Motor de reconciliación (upsert) contra el destino.

Operaciones:
- apply_patch: update por clave natural primero; insert solo si no afecto filas
- upsert_rows: INSERT ... ON CONFLICT (clave) DO UPDATE con lista permitida
- reconcile_set: diff de claves dentro de un scope, borrado en bloque + upsert
- insert_if_absent: dedup por clave lógica antes de insertar
- upsert_by_logical_key: membresías con detección de "sin cambios"
- update_columns_by_key: update de custom fields codificados según el catálogo
- update_matching: update parcial sobre un filtro, nunca inserta
- delete_by_key: borrado por clave natural

Todas las sentencias se construyen a partir de un Patch validado contra la
EntitySpec; nunca se interpolan nombres de columna recibidos del evento.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from loguru import logger
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from datasync.domain.entities.reconcile import ReconcileOutcome, SetReconcileResult
from datasync.infrastructure.database.column_catalog import ColumnTypeCatalog
from datasync.infrastructure.repositories.entity_specs import EntitySpec, Patch
from datasync.shared.exceptions.domain import PersistenceConflictException, ValidationException

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _key_clause(table, key: Mapping[str, Any]) -> list:
    """Condiciones de igualdad null-safe sobre la clave natural."""
    return [table.c[c].is_(None) if v is None else table.c[c] == v for c, v in key.items()]


class RecordReconciler:
    """
    Decide insert / update / no-op para registros entrantes.

    El catálogo de tipos de columna se recibe ya construido y no se muta.
    """

    def __init__(self, engine: AsyncEngine, catalog: Optional[ColumnTypeCatalog] = None) -> None:
        self._engine = engine
        self._catalog = catalog or ColumnTypeCatalog.scalar_fallback()

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def catalog(self) -> ColumnTypeCatalog:
        return self._catalog

    # ------------------------------------------------------------------
    # Update-before-insert
    # ------------------------------------------------------------------
    async def apply_patch(
        self,
        spec: EntitySpec,
        key: Mapping[str, Any],
        columns: Mapping[str, Any],
    ) -> ReconcileOutcome:
        """
        Aplica un patch parcial sobre la clave natural.

        Solo se tocan las columnas del patch. Si el update no afecta filas se
        inserta clave + columnas. Si el insert pierde una carrera contra otro
        escritor (violación de unicidad), se reintenta como update.
        """
        patch = Patch.build(spec, key, columns)
        try:
            async with self._engine.begin() as conn:
                return await self._update_or_insert(conn, patch)
        except IntegrityError as e:
            logger.warning(f"Insert concurrente en {spec.name} {patch.key}; reintentando como update ({e.orig})")

        try:
            async with self._engine.begin() as conn:
                if await self._update(conn, patch) > 0:
                    return ReconcileOutcome.UPDATED
        except IntegrityError as e:
            raise PersistenceConflictException(spec.name, patch.key, str(e.orig)) from e
        raise PersistenceConflictException(spec.name, patch.key, "insert rechazado y update sin filas afectadas")

    async def _update_or_insert(self, conn: AsyncConnection, patch: Patch) -> ReconcileOutcome:
        if patch.update_values():
            if await self._update(conn, patch) > 0:
                return ReconcileOutcome.UPDATED
        elif await self._exists(conn, patch.spec, patch.key):
            return ReconcileOutcome.UNCHANGED

        await conn.execute(insert(patch.spec.table).values(self._insert_values(patch.spec, patch.insert_values())))
        return ReconcileOutcome.INSERTED

    async def _update(self, conn: AsyncConnection, patch: Patch) -> int:
        values = patch.update_values()
        if not values:
            return 1 if await self._exists(conn, patch.spec, patch.key) else 0
        spec = patch.spec
        if spec.updated_column and spec.updated_column not in values:
            values[spec.updated_column] = func.now()
        result = await conn.execute(
            update(spec.table).where(*_key_clause(spec.table, patch.key)).values(values)
        )
        return result.rowcount or 0

    async def _exists(self, conn: AsyncConnection, spec: EntitySpec, key: Mapping[str, Any]) -> bool:
        first_key = spec.table.c[next(iter(key))]
        result = await conn.execute(select(first_key).where(*_key_clause(spec.table, key)).limit(1))
        return result.first() is not None

    @staticmethod
    def _insert_values(spec: EntitySpec, values: Dict[str, Any]) -> Dict[str, Any]:
        if spec.generated_id_column and not values.get(spec.generated_id_column):
            values[spec.generated_id_column] = str(uuid.uuid4())
        return values

    # ------------------------------------------------------------------
    # ON CONFLICT upsert
    # ------------------------------------------------------------------
    async def upsert_rows(self, spec: EntitySpec, rows: Iterable[Mapping[str, Any]]) -> int:
        """
        Upsert en bloque. En conflicto solo se refrescan las columnas de la
        lista permitida de la entidad presentes en la fila.

        Returns:
            Cantidad de filas enviadas (tras deduplicar por clave, gana la última)
        """
        prepared = self._prepare_rows(spec, rows)
        if not prepared:
            return 0
        try:
            async with self._engine.begin() as conn:
                await self._upsert(conn, spec, prepared)
        except IntegrityError as e:
            raise PersistenceConflictException(spec.name, {"rows": len(prepared)}, str(e.orig)) from e
        return len(prepared)

    def _prepare_rows(self, spec: EntitySpec, rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        deduped: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        for row in rows:
            spec.validate_columns(row)
            key = spec.key_of(row)
            for column, value in zip(spec.key_columns, key):
                if value is None:
                    raise ValidationException(f"Fila de {spec.name} sin clave {column}", field=column)
                if isinstance(value, (list, dict, set)):
                    raise ValidationException(
                        f"Fila de {spec.name} con clave {column} no escalar: {value!r}", field=column
                    )
            deduped[key] = dict(row)
        return list(deduped.values())

    async def _upsert(self, conn: AsyncConnection, spec: EntitySpec, rows: Sequence[Dict[str, Any]]) -> None:
        dialect_insert = _DIALECT_INSERTS.get(conn.dialect.name)
        if dialect_insert is None:
            await self._upsert_row_by_row(conn, spec, rows)
            return

        # Un INSERT multi-fila exige el mismo conjunto de columnas por fila
        groups: Dict[Tuple[str, ...], List[Dict[str, Any]]] = {}
        for row in rows:
            groups.setdefault(tuple(sorted(row)), []).append(row)

        for columns, batch in groups.items():
            stmt = dialect_insert(spec.table).values(batch)
            set_ = {c: stmt.excluded[c] for c in spec.upsert_update_columns if c in columns}
            if set_ and spec.updated_column and spec.updated_column not in set_:
                set_[spec.updated_column] = func.now()
            if set_:
                stmt = stmt.on_conflict_do_update(index_elements=list(spec.key_columns), set_=set_)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=list(spec.key_columns))
            await conn.execute(stmt)

    async def _upsert_row_by_row(self, conn: AsyncConnection, spec: EntitySpec, rows: Sequence[Dict[str, Any]]) -> None:
        logger.debug(f"Dialecto {conn.dialect.name} sin ON CONFLICT; upsert fila a fila en {spec.name}")
        for row in rows:
            key, columns = spec.split(row)
            refresh = {c: v for c, v in columns.items() if c in spec.upsert_update_columns}
            patch = Patch.build(spec, key, refresh)
            if await self._update(conn, patch) == 0:
                await conn.execute(insert(spec.table).values(dict(row)))

    # ------------------------------------------------------------------
    # Reconciliación de conjuntos
    # ------------------------------------------------------------------
    async def reconcile_set(
        self,
        spec: EntitySpec,
        scope_column: str,
        scope_value: Any,
        rows: Iterable[Mapping[str, Any]],
    ) -> SetReconcileResult:
        """
        Reconciliación de conjunto dentro de un scope (p.ej. ProjectId).

        1. Lee las claves existentes del scope una sola vez
        2. Calcula en memoria las claves que ya no vienen
        3. Borra esas claves en bloque y hace upsert de todas las entrantes
        Todo en una transacción; las filas que siguen conservan su CreatedAt.
        """
        if len(spec.key_columns) != 1:
            raise ValueError(f"reconcile_set requiere clave simple; {spec.name} tiene {spec.key_columns}")
        key_column = spec.key_columns[0]
        table = spec.table

        prepared = self._prepare_rows(spec, ({**row, scope_column: scope_value} for row in rows))
        incoming = {row[key_column] for row in prepared}

        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    select(table.c[key_column]).where(table.c[scope_column] == scope_value)
                )
                existing = set(result.scalars().all())
                to_delete = sorted(existing - incoming)
                if to_delete:
                    await conn.execute(
                        delete(table).where(
                            table.c[scope_column] == scope_value,
                            table.c[key_column].in_(to_delete),
                        )
                    )
                if prepared:
                    await self._upsert(conn, spec, prepared)
        except IntegrityError as e:
            raise PersistenceConflictException(spec.name, {scope_column: scope_value}, str(e.orig)) from e

        logger.info(
            f"{spec.name} {scope_column}={scope_value}: existentes={len(existing)}, "
            f"entrantes={len(prepared)}, borradas={len(to_delete)}"
        )
        return SetReconcileResult(deleted_keys=[(k,) for k in to_delete], upserted=len(prepared))

    # ------------------------------------------------------------------
    # Dedup-insert
    # ------------------------------------------------------------------
    async def insert_if_absent(
        self,
        spec: EntitySpec,
        dedup_columns: Sequence[str],
        row: Mapping[str, Any],
    ) -> ReconcileOutcome:
        """
        Inserta solo si no existe fila con la misma clave lógica.
        Si existe es un no-op (idempotente ante re-entregas).
        """
        spec.validate_columns(row)
        dedup_key = {c: row.get(c) for c in dedup_columns}
        try:
            async with self._engine.begin() as conn:
                if await self._exists(conn, spec, dedup_key):
                    return ReconcileOutcome.UNCHANGED
                await conn.execute(insert(spec.table).values(self._insert_values(spec, dict(row))))
                return ReconcileOutcome.INSERTED
        except IntegrityError as e:
            async with self._engine.connect() as conn:
                if await self._exists(conn, spec, dedup_key):
                    logger.info(f"{spec.name} {dedup_key} insertado por otro escritor; sin cambios")
                    return ReconcileOutcome.UNCHANGED
            raise PersistenceConflictException(spec.name, dedup_key, str(e.orig)) from e

    # ------------------------------------------------------------------
    # Membresías
    # ------------------------------------------------------------------
    async def upsert_by_logical_key(
        self,
        spec: EntitySpec,
        logical_key: Mapping[str, Any],
        row: Mapping[str, Any],
        compare_columns: Sequence[str],
    ) -> ReconcileOutcome:
        """
        Busca por clave lógica; si todas las columnas comparadas coinciden no
        hace nada, si difieren actualiza solo esas columnas, si no existe inserta.
        """
        spec.validate_columns(row)
        spec.validate_columns(logical_key)
        table = spec.table
        compared = [c for c in compare_columns if c in row]

        async def _attempt() -> ReconcileOutcome:
            async with self._engine.begin() as conn:
                existing = await self._select_compared(conn, spec, logical_key, compared)
                if existing is None:
                    await conn.execute(insert(table).values(self._insert_values(spec, {**dict(logical_key), **dict(row)})))
                    return ReconcileOutcome.INSERTED
                changes = {c: row[c] for c in compared if existing[c] != row[c]}
                if not changes:
                    return ReconcileOutcome.UNCHANGED
                if spec.updated_column:
                    changes[spec.updated_column] = func.now()
                await conn.execute(update(table).where(*_key_clause(table, logical_key)).values(changes))
                return ReconcileOutcome.UPDATED

        try:
            return await _attempt()
        except IntegrityError as e:
            logger.warning(f"Insert concurrente en {spec.name} {dict(logical_key)}; reintentando ({e.orig})")
        try:
            return await _attempt()
        except IntegrityError as e:
            raise PersistenceConflictException(spec.name, dict(logical_key), str(e.orig)) from e

    async def _select_compared(
        self,
        conn: AsyncConnection,
        spec: EntitySpec,
        logical_key: Mapping[str, Any],
        compared: Sequence[str],
    ) -> Optional[Mapping[str, Any]]:
        table = spec.table
        result = await conn.execute(
            select(*[table.c[c] for c in compared] or [table.c[spec.key_columns[0]]])
            .where(*_key_clause(table, logical_key))
            .limit(1)
        )
        return result.mappings().first()

    async def find_key(
        self,
        spec: EntitySpec,
        logical_key: Mapping[str, Any],
    ) -> Optional[Any]:
        """Retorna la clave primaria simple de la fila con esa clave lógica, o None."""
        return await self.fetch_value(spec, logical_key, spec.key_columns[0])

    async def fetch_value(
        self,
        spec: EntitySpec,
        where: Mapping[str, Any],
        column: str,
    ) -> Optional[Any]:
        """Valor de una columna de la primera fila que cumple `where`, o None."""
        spec.validate_columns(where)
        spec.validate_columns({column: None})
        table = spec.table
        async with self._engine.connect() as conn:
            result = await conn.execute(select(table.c[column]).where(*_key_clause(table, where)).limit(1))
            return result.scalar_one_or_none()

    async def update_columns_by_key(
        self,
        spec: EntitySpec,
        key: Mapping[str, Any],
        columns: Mapping[str, Any],
        *,
        allowed: Iterable[str],
    ) -> ReconcileOutcome:
        """
        Update de columnas de custom fields.

        Las columnas fuera de `allowed` se descartan con warning. Cada valor se
        codifica como arreglo o escalar según el catálogo de columnas.
        """
        allowed_set = set(allowed)
        ignored = [c for c in columns if c not in allowed_set]
        if ignored:
            logger.warning(f"{spec.name} {dict(key)}: columnas ignoradas (no permitidas): {', '.join(sorted(ignored))}")

        table_name = spec.table.name
        encoded = {
            c: self._catalog.encode(table_name, c, v)
            for c, v in columns.items()
            if c in allowed_set
        }
        if not encoded:
            return ReconcileOutcome.UNCHANGED

        patch = Patch.build(spec, key, encoded)
        async with self._engine.begin() as conn:
            affected = await self._update(conn, patch)
        if affected == 0:
            logger.warning(f"{spec.name} {patch.key} no existe; update de custom fields sin efecto")
            return ReconcileOutcome.UNCHANGED
        return ReconcileOutcome.UPDATED

    # ------------------------------------------------------------------
    # Updates parciales y borrados
    # ------------------------------------------------------------------
    async def update_matching(
        self,
        spec: EntitySpec,
        where: Mapping[str, Any],
        columns: Mapping[str, Any],
    ) -> int:
        """
        Actualiza las columnas dadas en todas las filas que cumplen `where`.

        Nunca inserta. El filtro puede ser un subconjunto de la clave natural
        (p.ej. todos los roles de un usuario en un tenant).

        Returns:
            Cantidad de filas afectadas
        """
        if not where:
            raise ValidationException(f"Update sobre {spec.name} sin filtro")
        spec.validate_columns(where)
        spec.validate_columns(columns)
        values = {c: v for c, v in columns.items() if c not in spec.insert_only}
        if not values:
            return 0
        if spec.updated_column and spec.updated_column not in values:
            values[spec.updated_column] = func.now()

        table = spec.table
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(update(table).where(*_key_clause(table, where)).values(values))
        except IntegrityError as e:
            raise PersistenceConflictException(spec.name, dict(where), str(e.orig)) from e
        return result.rowcount or 0

    async def delete_by_key(self, spec: EntitySpec, key: Mapping[str, Any]) -> ReconcileOutcome:
        """Borra la fila con esa clave natural; sin fila es un no-op."""
        patch = Patch.build(spec, key, {})
        async with self._engine.begin() as conn:
            result = await conn.execute(delete(spec.table).where(*_key_clause(spec.table, patch.key)))
        if not result.rowcount:
            logger.info(f"{spec.name} {patch.key} no existe; nada que borrar")
            return ReconcileOutcome.UNCHANGED
        return ReconcileOutcome.DELETED
