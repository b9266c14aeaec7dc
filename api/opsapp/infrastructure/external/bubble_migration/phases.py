"""
Configuración de fases (orden de dependencias padre -> hijo).

Este módulo no realiza I/O salvo en los hooks `prepare`, que se ejecutan
justo antes del fetch de su fase y pueden leer del destino.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger

from . import transformers as t
from .context import MigrationContext, ParentLookupCache
from .target_store import TargetStore
from .types import FOREIGN_ID_COLUMN, EntityType

Transform = Callable[[dict[str, Any], MigrationContext], t.TransformResult]
PrepareHook = Callable[[MigrationContext, TargetStore], None]


@dataclass(frozen=True)
class PhaseSpec:
    """
    Una fase = un tipo de entidad.

    - `prepare`: hook previo al fetch (p.ej. escanear datos auxiliares).
    """

    entity: EntityType
    transform: Transform
    prepare: Optional[PrepareHook] = None


def load_client_companies(ctx: MigrationContext, store: TargetStore) -> None:
    """bubble_id de client -> company_id, leído del destino tras la fase de clients."""
    rows = store.select_rows(
        EntityType.CLIENT.table,
        [FOREIGN_ID_COLUMN, "company_id"],
        not_null=(FOREIGN_ID_COLUMN, "company_id"),
    )
    ctx.client_companies = {str(r[FOREIGN_ID_COLUMN]): str(r["company_id"]) for r in rows}
    logger.debug(f"SubClients: {len(ctx.client_companies)} client(s) con company conocida")


def attach_parent_lookup(ctx: MigrationContext, store: TargetStore) -> None:
    # Memo nuevo por fase: no sobrevive a la fase de tasks.
    ctx.parent_lookup = ParentLookupCache(store)


def warn_task_type_ownership(ctx: MigrationContext, store: TargetStore) -> None:
    t.warn_task_type_ownership(ctx)


PHASES: tuple[PhaseSpec, ...] = (
    PhaseSpec(EntityType.COMPANY, t.transform_company),
    PhaseSpec(EntityType.USER, t.transform_user),
    PhaseSpec(EntityType.CLIENT, t.transform_client),
    PhaseSpec(EntityType.SUB_CLIENT, t.transform_sub_client, prepare=load_client_companies),
    PhaseSpec(EntityType.TASK_TYPE, t.transform_task_type, prepare=warn_task_type_ownership),
    PhaseSpec(EntityType.PROJECT, t.transform_project),
    PhaseSpec(EntityType.CALENDAR_EVENT, t.transform_calendar_event),
    PhaseSpec(EntityType.PROJECT_TASK, t.transform_project_task, prepare=attach_parent_lookup),
    PhaseSpec(EntityType.OPS_CONTACT, t.transform_ops_contact),
)
