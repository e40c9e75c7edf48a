"""
Clasificación jerárquica del tipo de cohorte.

- Cohorte sin padre: 'regular' -> regularCenter, 'remote' -> remoteCenter
- Cohorte con padre: el tipo se deriva SOLO del tipo del padre
  ('regular' -> regularBatch, 'remote' -> remoteBatch)
- Cualquier otro caso: passthrough del tipo crudo
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from datasync.domain.repositories.cohort_type_lookup import ICohortTypeLookup

REGULAR = "regular"
REMOTE = "remote"

REGULAR_CENTER = "regularCenter"
REMOTE_CENTER = "remoteCenter"
REGULAR_BATCH = "regularBatch"
REMOTE_BATCH = "remoteBatch"

_CENTER_TYPES = {REGULAR: REGULAR_CENTER, REMOTE: REMOTE_CENTER}
_BATCH_TYPES = {REGULAR: REGULAR_BATCH, REMOTE: REMOTE_BATCH}


def _normalize(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip().lower()


def classify_cohort_type(
    raw_type: Optional[str],
    has_parent: bool,
    parent_type: Optional[str] = None,
) -> Optional[str]:
    """
    Aplica la maquina de estados de tipos.

    Args:
        raw_type: tipo propio de la cohorte (campo "center type"), puede ser None
        has_parent: si la cohorte tiene parentId
        parent_type: tipo crudo del padre ('regular'/'remote'), si se resolvió

    Returns:
        Tipo derivado, o raw_type sin cambios si no aplica clasificación
    """
    if not has_parent:
        return _CENTER_TYPES.get(_normalize(raw_type), raw_type)

    if not parent_type:
        return raw_type

    # El tipo propio del hijo se ignora cuando el padre es reconocible
    return _BATCH_TYPES.get(_normalize(parent_type), raw_type)


def raw_type_from_stored(stored: Optional[str]) -> Optional[str]:
    """
    Lleva un tipo ya clasificado del destino a su forma cruda.

    regularCenter / RegularCenter -> regular; remoteCenter -> remote.
    Valores desconocidos se retornan tal cual.
    """
    if stored is None:
        return None
    normalized = _normalize(stored)
    if normalized.endswith("center"):
        base = normalized[: -len("center")]
        if base in (REGULAR, REMOTE):
            return base
    return stored


class CohortTypeResolver:
    """
    Resuelve el tipo derivado de una cohorte consultando el tipo del padre
    a través de un lookup abstracto (destino en vivo, origen en backfill).
    """

    def __init__(self, lookup: ICohortTypeLookup) -> None:
        self._lookup = lookup

    async def resolve(
        self,
        cohort_id: Optional[str],
        raw_type: Optional[str],
        parent_id: Optional[str],
    ) -> Optional[str]:
        has_parent = bool(parent_id)
        parent_type: Optional[str] = None

        if has_parent:
            try:
                parent_type = await self._lookup.lookup_type(parent_id)
            except Exception as e:
                logger.error(f"Error consultando tipo del padre {parent_id} de cohorte {cohort_id}: {e}")
                parent_type = None
            if parent_type is None:
                logger.warning(
                    f"Padre {parent_id} sin tipo resoluble para cohorte {cohort_id}; "
                    f"se mantiene tipo original {raw_type!r}"
                )

        derived = classify_cohort_type(raw_type, has_parent, parent_type)
        logger.debug(f"Cohorte {cohort_id}: tipo {raw_type!r} -> {derived!r} (padre={parent_id}, tipo_padre={parent_type!r})")
        return derived
