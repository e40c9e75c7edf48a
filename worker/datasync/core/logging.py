"""
Configuración de logging (loguru) para el worker y los scripts.
"""
import sys

from loguru import logger

from datasync.core.config import Settings


def configure_logging(settings: Settings, *, to_file: bool = True) -> None:
    """
    Configura los sinks de loguru.

    Args:
        settings: Configuración del worker (nivel y archivo de log)
        to_file: Si True, agrega el sink de archivo con rotación
    """
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)
    if to_file and settings.LOG_FILE:
        logger.add(
            settings.LOG_FILE,
            rotation="500 MB",
            retention="10 days",
            level=settings.LOG_LEVEL,
        )
    logger.info(f"Logging configurado (nivel={settings.LOG_LEVEL})")
