from datasync.shared.exceptions.base import SyncException
from datasync.shared.exceptions.domain import (
    PersistenceConflictException,
    UnknownColumnException,
    UnsupportedEventException,
    ValidationException,
)

__all__ = [
    "SyncException",
    "ValidationException",
    "UnknownColumnException",
    "PersistenceConflictException",
    "UnsupportedEventException",
]
