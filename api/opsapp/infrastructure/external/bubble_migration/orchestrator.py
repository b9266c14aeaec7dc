"""
Orquestador de la migración Bubble -> Postgres.

Diseño (resumen):
- Siembra los mapas de identidad de TODAS las entidades antes de la fase 1
  (full o incremental)
- Ejecuta las fases en orden de dependencias: fetch -> transform -> upsert ->
  extender mapa
- Un registro fallido nunca aborta la fase; una fase con fetch fallido
  continúa con lo que alcanzó a traer
- Al final: referencias hacia adelante, enlaces de pipeline y rollups

Estrategia de idempotencia:
- UPSERT por bubble_id: re-ejecutar no duplica filas
- Los resolvers conservan valores que ya son uuids locales
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Sequence, TypeVar, Union

from loguru import logger

from opsapp.shared.exceptions.migration import TargetWriteError

from .bubble_client import BubbleDataClient
from .context import MigrationContext
from .phases import PHASES, PhaseSpec
from .report import ErrorKind, RecordError, RecordOutcome
from .resolvers import (
    recompute_project_team_members,
    resolve_company_user_references,
    update_pipeline_refs,
)
from .state import RunState
from .target_store import TargetStore
from .transformers import foreign_id_of
from .types import FOREIGN_ID_COLUMN, EntityType, Row, Skip

T = TypeVar("T")
R = TypeVar("R")

# Errores de datos dentro de un transform: se reportan y el registro se omite.
TRANSFORM_ERRORS = (ValueError, TypeError, KeyError, AttributeError)


class BubbleMigrationOrchestrator:
    """
    Corre una migración completa sobre un MigrationContext.

    `phase_workers > 1` procesa los registros de una fase en paralelo; las
    fases siguen siendo estrictamente secuenciales.
    """

    def __init__(
        self,
        *,
        source: BubbleDataClient,
        store: TargetStore,
        phases: Sequence[PhaseSpec] = PHASES,
        seed_page_size: int = 1000,
        phase_workers: int = 1,
    ) -> None:
        self._source = source
        self._store = store
        self._phases = tuple(phases)
        self._seed_page_size = seed_page_size
        self._phase_workers = max(1, phase_workers)

    def run(self, ctx: MigrationContext) -> MigrationContext:
        """
        Ejecuta seeding, fases, resolvers y reporte.

        Cualquier excepción no prevista termina la corrida en estado Fatal:
        se agrega el marcador al reporte y se devuelven los stats acumulados.
        """
        logger.info(
            f"Migración Bubble: modo={ctx.mode.value}"
            + (f", since={ctx.since.isoformat()}" if ctx.since else "")
        )
        try:
            ctx.state.transition(RunState.SEEDING)
            ctx.id_maps.seed_all(
                self._store,
                [phase.entity for phase in self._phases],
                page_size=self._seed_page_size,
            )

            for phase in self._phases:
                ctx = self.run_phase(ctx, phase)

            ctx.state.transition(RunState.RESOLVING)
            self.resolve(ctx)

            ctx.state.transition(RunState.REPORTING)
            logger.info(
                f"Migración completada: upserts={sum(ctx.report.upserted.values())}, "
                f"errores={ctx.report.error_count}"
            )
            ctx.state.transition(RunState.DONE)
        except Exception as e:
            logger.exception(f"Migración abortada en estado {ctx.state.state.value}")
            ctx.report.record_fatal(str(e) or type(e).__name__)
            if not ctx.state.is_terminal:
                ctx.state.transition(RunState.FATAL)
        return ctx

    def run_phase(self, ctx: MigrationContext, phase: PhaseSpec) -> MigrationContext:
        """Una fase: fetch -> transform -> upsert -> extender el mapa de su entidad."""
        entity = phase.entity
        ctx.state.transition(RunState.FETCHING)
        if phase.prepare is not None:
            phase.prepare(ctx, self._store)

        fetched = self._source.fetch_all(entity.source_type, ctx.constraints)
        if fetched.error:
            ctx.report.record_error(ErrorKind.FETCH, fetched.error)

        ctx.state.transition(RunState.TRANSFORMING)
        transformed = self._map(lambda dto: self._transform_record(ctx, phase, dto), fetched.records)

        ctx.state.transition(RunState.UPSERTING)
        outcomes = self._map(
            lambda item: item if isinstance(item, RecordOutcome) else self._upsert_record(entity, item),
            transformed,
        )

        for outcome in outcomes:
            ctx.report.record_outcome(entity, outcome)
            if outcome.ok and outcome.foreign_id:
                ctx.id_maps.extend(entity, outcome.foreign_id, outcome.local_id)

        ctx.report.set_total(entity, ctx.id_maps.size(entity))
        ctx.parent_lookup = None

        written = sum(1 for o in outcomes if o.ok)
        failed = sum(1 for o in outcomes if o.error is not None)
        logger.info(
            f"Fase {entity.label}: {len(fetched.records)} leído(s), {written} upsert(s), "
            f"{failed} error(es), mapa={ctx.id_maps.size(entity)}"
        )
        return ctx

    def resolve(self, ctx: MigrationContext) -> None:
        ctx.report.forward_refs_resolved = resolve_company_user_references(self._store, ctx)
        ctx.report.pipeline_refs_updated = update_pipeline_refs(self._store, ctx)
        recompute_project_team_members(self._store, ctx)

    def _transform_record(
        self,
        ctx: MigrationContext,
        phase: PhaseSpec,
        dto: dict[str, Any],
    ) -> Union[Row, RecordOutcome]:
        foreign_id = foreign_id_of(dto)
        try:
            result = phase.transform(dto, ctx)
        except TRANSFORM_ERRORS as e:
            return RecordOutcome(foreign_id, error=RecordError(ErrorKind.TRANSFORM, f"transform failed: {e}"))

        if isinstance(result, Skip):
            if result.silent:
                logger.debug(f"{phase.entity.label}: registro omitido ({result.reason})")
                return RecordOutcome(foreign_id)
            return RecordOutcome(foreign_id, error=RecordError(ErrorKind.UNRESOLVED_REFERENCE, result.reason))

        if not result.get(FOREIGN_ID_COLUMN):
            return RecordOutcome(foreign_id, error=RecordError(ErrorKind.TRANSFORM, "record without _id"))
        return result

    def _upsert_record(self, entity: EntityType, row: Row) -> RecordOutcome:
        foreign_id = str(row[FOREIGN_ID_COLUMN])
        try:
            result = self._store.upsert(entity.table, row)
        except TargetWriteError as e:
            return RecordOutcome(foreign_id, error=RecordError(ErrorKind.WRITE, e.message))
        return RecordOutcome(foreign_id, local_id=result.local_id, inserted=result.inserted)

    def _map(self, fn: Callable[[T], R], items: Iterable[T]) -> list[R]:
        """map() secuencial o sobre un pool de threads, preservando el orden."""
        if self._phase_workers == 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=self._phase_workers) as pool:
            return list(pool.map(fn, items))
