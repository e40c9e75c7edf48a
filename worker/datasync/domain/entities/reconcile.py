"""
Resultados de la reconciliación contra el destino.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Tuple


class ReconcileOutcome(str, Enum):
    """Resultado de reconciliar un registro."""
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"


@dataclass
class SetReconcileResult:
    """Resultado de reconciliar un conjunto completo dentro de un scope."""

    deleted_keys: List[Tuple[Any, ...]] = field(default_factory=list)
    upserted: int = 0

    @property
    def deleted(self) -> int:
        return len(self.deleted_keys)


@dataclass
class BatchSummary:
    """
    Contadores de una corrida por lotes (backfill o replay).

    Los errores por registro se cuentan y la corrida continua.
    """

    name: str
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    upserted: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: int = 0

    def record(self, outcome: ReconcileOutcome) -> None:
        if outcome is ReconcileOutcome.INSERTED:
            self.inserted += 1
        elif outcome is ReconcileOutcome.UPDATED:
            self.updated += 1
        elif outcome is ReconcileOutcome.DELETED:
            self.deleted += 1
        else:
            self.unchanged += 1

    @property
    def has_errors(self) -> bool:
        return self.errors > 0

    def __str__(self) -> str:
        return (
            f"{self.name}: procesados={self.processed} insertados={self.inserted} "
            f"actualizados={self.updated} sin_cambios={self.unchanged} upserts={self.upserted} borrados={self.deleted} "
            f"omitidos={self.skipped} errores={self.errors}"
        )
