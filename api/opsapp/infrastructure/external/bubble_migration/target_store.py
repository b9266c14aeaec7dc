"""
Contrato del store destino usado por el motor de migración.

El orquestador, los resolvers y el auth gate solo dependen de esta interfaz;
la implementación real es `PostgresTargetStore` (psycopg). Los tests usan
un store en memoria.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping, Optional, Sequence

from .types import FOREIGN_ID_COLUMN, Row, UpsertResult


class TargetStore(ABC):
    """Operaciones mínimas sobre las tablas destino."""

    @abstractmethod
    def fetch_id_page(self, table: str, *, offset: int, limit: int) -> list[Row]:
        """
        Página de pares `{id, bubble_id}` con `bubble_id IS NOT NULL`,
        en orden estable (por `id`).
        """

    @abstractmethod
    def upsert(
        self,
        table: str,
        row: Row,
        *,
        conflict_key: str = FOREIGN_ID_COLUMN,
    ) -> UpsertResult:
        """
        INSERT o UPDATE por clave natural. Nunca duplica: un segundo upsert
        con el mismo `bubble_id` devuelve el `id` existente.

        Raises:
            TargetWriteError: el store rechazó la fila.
        """

    @abstractmethod
    def select_rows(
        self,
        table: str,
        columns: Sequence[str],
        *,
        equals: Optional[Mapping[str, Any]] = None,
        is_null: Iterable[str] = (),
        not_null: Iterable[str] = (),
    ) -> list[Row]:
        """
        SELECT de columnas con filtros simples combinados con AND.

        Raises:
            TargetReadError: tabla o columna inexistente, conexión caída, etc.
        """

    @abstractmethod
    def update_row(self, table: str, local_id: str, values: Mapping[str, Any]) -> None:
        """UPDATE de una fila por `id`."""

    @abstractmethod
    def update_rows(self, table: str, local_ids: Sequence[str], values: Mapping[str, Any]) -> int:
        """UPDATE de varias filas por `id`. Retorna filas afectadas."""
