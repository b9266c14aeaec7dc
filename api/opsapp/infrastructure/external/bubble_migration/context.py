"""
Contexto explícito de una corrida.

Reemplaza el paso manual de mapas entre funciones de fase: cada fase recibe
el contexto y lo devuelve extendido.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from loguru import logger

from opsapp.shared.exceptions.migration import TargetReadError

from .identity_map import IdentityMapRegistry
from .report import RunReport
from .state import RunStateMachine
from .target_store import TargetStore
from .types import Constraint, EntityType, RunMode, build_since_constraints, utc_now


class ParentLookupCache:
    """
    Búsqueda directa de la company de un proyecto, memoizada.

    Se usa cuando una task trae un `companyId` que no resuelve por mapa pero
    su proyecto sí resolvió. Vive solo durante la fase que lo crea; el lock
    protege el memo cuando la fase procesa registros en paralelo.
    """

    def __init__(self, store: TargetStore) -> None:
        self._store = store
        self._memo: dict[str, Optional[str]] = {}
        self._lock = threading.Lock()
        self.lookups = 0

    def company_for_project(self, project_local_id: str) -> Optional[str]:
        with self._lock:
            if project_local_id in self._memo:
                return self._memo[project_local_id]
            self.lookups += 1
            try:
                rows = self._store.select_rows(
                    EntityType.PROJECT.table,
                    ["company_id"],
                    equals={"id": project_local_id},
                )
            except TargetReadError as e:
                # Se trata como "no encontrado" sin memoizar: el registro se omite solo.
                logger.warning(f"Lookup de company para proyecto {project_local_id} falló: {e.message}")
                return None
            company_id = rows[0].get("company_id") if rows else None
            company_id = str(company_id) if company_id else None
            self._memo[project_local_id] = company_id
            if company_id:
                logger.debug(f"Company de proyecto {project_local_id} resuelta por lookup directo")
            return company_id


@dataclass
class MigrationContext:
    mode: RunMode
    started_at: datetime
    since: Optional[datetime]
    constraints: list[Constraint]
    id_maps: IdentityMapRegistry
    report: RunReport
    state: RunStateMachine
    # bubble_id de client -> uuid de su company (escaneado tras la fase de clients)
    client_companies: dict[str, str] = field(default_factory=dict)
    parent_lookup: Optional[ParentLookupCache] = None

    @classmethod
    def create(
        cls,
        *,
        since: Optional[datetime],
        modified_field: str = "Modified Date",
        error_cap: int = 50,
        state: Optional[RunStateMachine] = None,
        started_at: Optional[datetime] = None,
    ) -> "MigrationContext":
        return cls(
            mode=RunMode.INCREMENTAL if since else RunMode.FULL,
            started_at=started_at or utc_now(),
            since=since,
            constraints=build_since_constraints(since, modified_field),
            id_maps=IdentityMapRegistry(),
            report=RunReport(error_cap=error_cap),
            state=state or RunStateMachine(),
        )

    def stats(self) -> dict:
        return self.report.to_stats(
            mode=self.mode,
            started_at=self.started_at,
            final_state=self.state.state.value,
        )
