"""
Manejadores de eventos de inicio y cierre de la aplicacion.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable
from fastapi import FastAPI
from loguru import logger

from opsapp.core.config import settings


def startup_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de inicio de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de inicio
    """
    async def startup() -> None:
        """Valida configuracion y agrega el sink de archivo de loguru."""
        logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Entorno: {settings.ENVIRONMENT}")

        _validate_config()

        logger.add(
            settings.LOG_FILE,
            rotation="500 MB",
            retention="10 days",
            level=settings.LOG_LEVEL
        )

        logger.success("Aplicacion iniciada correctamente")

    return startup


def _validate_config() -> None:
    """Valida que la configuracion critica este presente."""
    warnings = []

    if not settings.BUBBLE_API_TOKEN:
        warnings.append("BUBBLE_API_TOKEN no configurado - la migracion no funcionara")
    if not settings.DATABASE_URL:
        warnings.append(
            f"DATABASE_URL no configurada - se usara {settings.DATABASE_HOST}:{settings.DATABASE_PORT}/{settings.DATABASE_NAME}"
        )
    if settings.MIGRATION_PHASE_WORKERS < 1:
        warnings.append("MIGRATION_PHASE_WORKERS < 1 - se procesara secuencialmente")

    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de cierre de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de cierre
    """
    async def shutdown() -> None:
        logger.info("Cerrando aplicacion...")

    return shutdown


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Ciclo de vida de la app: startup antes de servir, shutdown al salir."""
    await startup_handler(app)()
    yield
    await shutdown_handler(app)()
