"""
Casos de uso de la migración Bubble -> Postgres.

Flujo de una corrida: Authorizing -> (gate) -> orquestador -> stats.
Todo es síncrono (requests + psycopg); el endpoint lo ejecuta en un thread.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from loguru import logger

from opsapp.core.security import IdentityTokenVerifier
from opsapp.infrastructure.external.bubble_migration.bubble_client import BubbleDataClient
from opsapp.infrastructure.external.bubble_migration.context import MigrationContext
from opsapp.infrastructure.external.bubble_migration.orchestrator import BubbleMigrationOrchestrator
from opsapp.infrastructure.external.bubble_migration.state import RunState, RunStateMachine
from opsapp.infrastructure.external.bubble_migration.target_store import TargetStore
from opsapp.infrastructure.external.bubble_migration.types import ensure_utc
from opsapp.infrastructure.security.migration_auth_gate import MigrationAuthGate
from opsapp.shared.exceptions.auth import AuthException, ForbiddenException

StoreFactory = Callable[[], AbstractContextManager[TargetStore]]


@dataclass(frozen=True)
class MigrationRunResult:
    stats: Dict[str, Any]
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class MigrationUseCases:
    """
    Ensambla gate + orquestador por corrida.

    El cliente de Bubble (y su rate limiter) es compartido entre corridas; la
    conexión al store destino se abre por corrida.
    """

    def __init__(
        self,
        *,
        open_store: StoreFactory,
        bubble: BubbleDataClient,
        verifier: IdentityTokenVerifier,
        modified_field: str = "Modified Date",
        error_cap: int = 50,
        seed_page_size: int = 1000,
        phase_workers: int = 1,
    ):
        self._open_store = open_store
        self._bubble = bubble
        self._verifier = verifier
        self._modified_field = modified_field
        self._error_cap = error_cap
        self._seed_page_size = seed_page_size
        self._phase_workers = phase_workers

    def run_migration(
        self,
        *,
        since: Optional[datetime] = None,
        authorization: Optional[str] = None,
        bubble_token: Optional[str] = None,
    ) -> MigrationRunResult:
        """
        Autoriza al llamante y ejecuta la migración.

        Raises:
            AuthException / ForbiddenException: llamante no autorizado (sin efectos)
        """
        state = RunStateMachine()
        with self._open_store() as store:
            gate = MigrationAuthGate(store=store, bubble=self._bubble, verifier=self._verifier)
            try:
                caller = gate.authorize(authorization, bubble_token)
            except (AuthException, ForbiddenException):
                state.transition(RunState.UNAUTHORIZED)
                raise
            logger.info(f"Migración autorizada para {caller.email or caller.user_id} ({caller.method})")

            ctx = self.run_authorized(store, since=since, state=state)

        return self._to_result(ctx)

    def run_authorized(
        self,
        store: TargetStore,
        *,
        since: Optional[datetime] = None,
        state: Optional[RunStateMachine] = None,
    ) -> MigrationContext:
        """Corrida sin gate (contexto de operador, p.ej. CLI)."""
        ctx = MigrationContext.create(
            since=ensure_utc(since) if since else None,
            modified_field=self._modified_field,
            error_cap=self._error_cap,
            state=state,
        )
        orchestrator = BubbleMigrationOrchestrator(
            source=self._bubble,
            store=store,
            seed_page_size=self._seed_page_size,
            phase_workers=self._phase_workers,
        )
        return orchestrator.run(ctx)

    @staticmethod
    def _to_result(ctx: MigrationContext) -> MigrationRunResult:
        stats = ctx.stats()
        if ctx.state.state == RunState.FATAL:
            fatal = next((e for e in reversed(stats["errors"]) if e.startswith("Fatal: ")), "Fatal: migration aborted")
            return MigrationRunResult(stats=stats, error=fatal[len("Fatal: "):])
        return MigrationRunResult(stats=stats)
