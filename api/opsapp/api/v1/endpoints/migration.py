"""
Endpoint de migracion Bubble -> PostgreSQL.
Dispara una corrida full (sin `since`) o incremental (con `since`).
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from loguru import logger

from opsapp.api.v1.dependencies.use_case_deps import get_migration_use_cases
from opsapp.application.dto.migration_dto import (
    MigrationErrorDTO,
    MigrationRequestDTO,
    MigrationStatsDTO,
    MigrationSuccessDTO,
)
from opsapp.application.use_cases.migration_use_cases import MigrationUseCases


router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post(
    "/migrate-bubble",
    response_model=MigrationSuccessDTO,
    status_code=status.HTTP_200_OK,
    responses={500: {"model": MigrationErrorDTO}},
    summary="Migrar datos de Bubble a PostgreSQL"
)
async def migrate_bubble(
    payload: Optional[MigrationRequestDTO] = None,
    authorization: Optional[str] = Header(None),
    x_bubble_token: Optional[str] = Header(None),
    use_cases: MigrationUseCases = Depends(get_migration_use_cases),
):
    """
    Ejecuta la migracion completa de Bubble a PostgreSQL.

    - Sin body o sin `since`: full scan de todas las entidades
    - Con `since`: solo registros modificados despues de esa fecha (los mapas
      de identidad se siembran igual desde la base destino)
    - Requiere `Authorization: Bearer <token>` o `X-Bubble-Token` de un
      usuario con dev_permission

    Returns:
        `{success, stats}` o, si la corrida aborta, `{error, stats}` con 500
    """
    since = payload.since if payload else None
    logger.info(f"Migracion Bubble solicitada ({'incremental desde ' + since.isoformat() if since else 'full'})")

    # El motor es sincrono: se ejecuta en thread separado para no bloquear el event loop
    result = await asyncio.to_thread(
        use_cases.run_migration,
        since=since,
        authorization=authorization,
        bubble_token=x_bubble_token,
    )

    stats = MigrationStatsDTO.model_validate(result.stats)
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=MigrationErrorDTO(error=result.error, stats=stats).model_dump(by_alias=True),
        )
    return MigrationSuccessDTO(stats=stats)
