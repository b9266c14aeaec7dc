"""
Dependencias para inyeccion de casos de uso.
"""
from functools import lru_cache, partial

from opsapp.application.use_cases.migration_use_cases import MigrationUseCases
from opsapp.core.config import settings
from opsapp.core.security import build_identity_token_verifier
from opsapp.infrastructure.external.bubble_migration.bubble_client import (
    BubbleCredentials,
    BubbleDataClient,
)
from opsapp.infrastructure.external.bubble_migration.pg_repository import open_target_store
from opsapp.infrastructure.external.bubble_migration.rate_limiter import RequestRateLimiter
from opsapp.shared.exceptions.migration import MigrationConfigError


@lru_cache
def get_bubble_client() -> BubbleDataClient:
    """
    Cliente de Bubble compartido por el proceso.

    Una sola instancia implica un solo rate limiter para todas las corridas.
    """
    if not settings.BUBBLE_API_TOKEN:
        raise MigrationConfigError("BUBBLE_API_TOKEN no configurado")
    return BubbleDataClient(
        BubbleCredentials(token=settings.BUBBLE_API_TOKEN, base_url=settings.BUBBLE_API_URL),
        rate_limiter=RequestRateLimiter(settings.min_request_interval_s),
        page_size=settings.MIGRATION_PAGE_SIZE,
        timeout_s=settings.MIGRATION_REQUEST_TIMEOUT_S,
    )


def get_migration_use_cases() -> MigrationUseCases:
    """
    Dependencia para obtener los casos de uso de migracion.

    Returns:
        MigrationUseCases: Instancia configurada desde settings
    """
    return MigrationUseCases(
        open_store=partial(open_target_store, settings.effective_database_url),
        bubble=get_bubble_client(),
        verifier=build_identity_token_verifier(),
        modified_field=settings.MIGRATION_MODIFIED_FIELD,
        error_cap=settings.MIGRATION_ERROR_LIST_CAP,
        seed_page_size=settings.MIGRATION_SEED_PAGE_SIZE,
        phase_workers=settings.MIGRATION_PHASE_WORKERS,
    )
