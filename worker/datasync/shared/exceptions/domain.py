"""
Excepciones relacionadas con la validación de registros entrantes
y con la escritura en el destino.
"""
from typing import Any, Dict, Optional

from datasync.shared.exceptions.base import SyncException


class ValidationException(SyncException):
    """Falta un campo obligatorio en el registro entrante."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else None
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details
        )
        self.field = field


class UnknownColumnException(SyncException):
    """Un patch nombra columnas fuera de la lista permitida de la entidad."""

    def __init__(self, entity_name: str, columns: list[str]):
        super().__init__(
            message=f"Columnas no permitidas para {entity_name}: {', '.join(sorted(columns))}",
            error_code="UNKNOWN_COLUMN",
            details={"entity": entity_name, "columns": sorted(columns)}
        )


class PersistenceConflictException(SyncException):
    """El destino rechazó una escritura (constraint, carrera de inserts)."""

    def __init__(self, entity_name: str, key: Dict[str, Any], reason: str):
        super().__init__(
            message=f"Escritura rechazada en {entity_name} {key}: {reason}",
            error_code="PERSISTENCE_CONFLICT",
            details={"entity": entity_name, "key": {k: str(v) for k, v in key.items()}}
        )
        self.key = key


class UnsupportedEventException(SyncException):
    """Evento con tipo o topic que el worker no sabe procesar."""

    def __init__(self, topic: str, event_type: Optional[str]):
        super().__init__(
            message=f"Evento no soportado: topic={topic} eventType={event_type}",
            error_code="UNSUPPORTED_EVENT",
            details={"topic": topic, "event_type": event_type}
        )
