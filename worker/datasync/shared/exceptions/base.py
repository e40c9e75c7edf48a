"""
Excepción base para todas las excepciones del motor de sincronización.
"""
from typing import Optional, Dict, Any


class SyncException(Exception):
    """
    Excepción base del worker.
    Todas las excepciones personalizadas deben heredar de esta clase.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "SYNC_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Inicializa la excepción.

        Args:
            message: Mensaje de error descriptivo
            error_code: Código de error personalizado
            details: Detalles adicionales del error (p.ej. la clave natural)
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)
