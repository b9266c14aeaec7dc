"""
Reporte de corrida: contadores por entidad + errores acotados.

Decisión sobre el cap de errores: `error_count` es el total REAL de errores
registrados; la lista `errors` se trunca en `error_cap` para no inflar la
respuesta y `errors_truncated` indica que ambos divergen. El marcador fatal
se agrega siempre, aunque la lista ya esté llena.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from loguru import logger

from .types import EntityType, RunMode, isoformat_z


class ErrorKind(str, Enum):
    FETCH = "fetch"
    UNRESOLVED_REFERENCE = "unresolved_reference"
    TRANSFORM = "transform"
    WRITE = "write"
    FIXUP = "fixup"
    FATAL = "fatal"


@dataclass(frozen=True)
class RecordError:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class RecordOutcome:
    """
    Resultado de procesar un registro (Result<fila, error>).

    Exactamente uno de `local_id` / `error` está presente, salvo en registros
    omitidos en silencio (sin id en Bubble) donde ambos son None.
    """

    foreign_id: Optional[str]
    local_id: Optional[str] = None
    inserted: bool = False
    error: Optional[RecordError] = None

    @property
    def ok(self) -> bool:
        return self.local_id is not None


class RunReport:
    """Acumulador thread-safe de estadísticas y errores de una corrida."""

    def __init__(self, error_cap: int = 50) -> None:
        self._error_cap = error_cap
        self._lock = threading.Lock()
        self._errors: list[str] = []
        self._error_count = 0
        self._fatal = False
        self.totals: dict[str, int] = {e.stats_key: 0 for e in EntityType}
        self.upserted: dict[str, int] = {e.stats_key: 0 for e in EntityType}
        self.inserted: dict[str, int] = {e.stats_key: 0 for e in EntityType}
        self.pipeline_refs_updated = 0
        self.forward_refs_resolved = 0

    @property
    def errors(self) -> list[str]:
        with self._lock:
            return list(self._errors)

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def errors_truncated(self) -> bool:
        return self._error_count > len(self._errors)

    @property
    def fatal(self) -> bool:
        return self._fatal

    def record_error(self, kind: ErrorKind, message: str) -> None:
        logger.warning(f"[{kind.value}] {message}")
        with self._lock:
            self._error_count += 1
            if len(self._errors) < self._error_cap:
                self._errors.append(message)

    def record_outcome(self, entity: EntityType, outcome: RecordOutcome) -> None:
        if outcome.error is not None:
            self.record_error(
                outcome.error.kind,
                f"{entity.label} {outcome.foreign_id}: {outcome.error.message}",
            )
            return
        if outcome.ok:
            with self._lock:
                self.upserted[entity.stats_key] += 1
                if outcome.inserted:
                    self.inserted[entity.stats_key] += 1

    def record_fatal(self, message: str) -> None:
        logger.error(f"Fatal: {message}")
        with self._lock:
            self._fatal = True
            self._error_count += 1
            self._errors.append(f"Fatal: {message}")

    def set_total(self, entity: EntityType, total: int) -> None:
        with self._lock:
            self.totals[entity.stats_key] = total

    def to_stats(self, *, mode: RunMode, started_at: datetime, final_state: str) -> dict[str, Any]:
        """Serializa al shape `stats` de la respuesta."""
        with self._lock:
            return {
                "mode": mode.value,
                "startedAt": isoformat_z(started_at),
                "perEntityCounts": dict(self.totals),
                "upserted": dict(self.upserted),
                "inserted": dict(self.inserted),
                "pipelineRefsUpdated": self.pipeline_refs_updated,
                "forwardRefsResolved": self.forward_refs_resolved,
                "errorCount": self._error_count,
                "errorsTruncated": self.errors_truncated,
                "errors": list(self._errors),
                "fatal": self.fatal,
                "finalState": final_state,
            }
