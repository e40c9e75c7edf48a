"""
Interfaz de consulta del tipo crudo de una cohorte.
Define el contrato que deben cumplir las implementaciones de destino y de origen.
"""
from abc import ABC, abstractmethod
from typing import Optional


class ICohortTypeLookup(ABC):
    """
    Capacidad abstracta lookup_type(id) -> str | None.
    """

    @abstractmethod
    async def lookup_type(self, cohort_id: str) -> Optional[str]:
        """
        Obtiene el tipo crudo ('regular', 'remote', ...) de una cohorte.

        Args:
            cohort_id: ID de la cohorte

        Returns:
            Optional[str]: Tipo crudo, o None si la cohorte o el campo no existen
        """
        pass
