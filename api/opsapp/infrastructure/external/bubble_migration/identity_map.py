"""
Registro de mapas de identidad: por tipo de entidad, bubble_id -> uuid local.

Cada mapa es la unión de:
- la semilla leída del destino antes de la fase 1 (cubre registros no
  re-leídos en modo incremental y soft-deleted que Bubble ya no lista)
- los pares producidos por los UPSERTs de esta corrida

Los mapas viven solo durante la corrida.
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional

from loguru import logger

from .target_store import TargetStore
from .types import FOREIGN_ID_COLUMN, LOCAL_ID_COLUMN, EntityType, IdMap


def seed_id_map(store: TargetStore, table: str, *, page_size: int = 1000) -> IdMap:
    """
    Pagina la tabla destino acumulando pares (bubble_id -> id).
    Sigue pidiendo mientras la página venga llena.
    """
    id_map: IdMap = {}
    offset = 0
    while True:
        page = store.fetch_id_page(table, offset=offset, limit=page_size)
        for row in page:
            foreign_id = row.get(FOREIGN_ID_COLUMN)
            if foreign_id:
                id_map[str(foreign_id)] = str(row[LOCAL_ID_COLUMN])
        if len(page) < page_size:
            break
        offset += len(page)
    return id_map


class IdentityMapRegistry:
    """
    Contenedor de todos los mapas de la corrida.

    Las fases leen mapas de fases anteriores (ya completos) y extienden solo
    el suyo; `extend` toma un lock porque los registros de una fase pueden
    procesarse en paralelo.
    """

    def __init__(self) -> None:
        self._maps: dict[EntityType, IdMap] = {e: {} for e in EntityType}
        self._local_ids: dict[EntityType, set[str]] = {e: set() for e in EntityType}
        self._lock = threading.Lock()

    def seed(self, store: TargetStore, entity: EntityType, *, page_size: int = 1000) -> IdMap:
        seeded = seed_id_map(store, entity.table, page_size=page_size)
        with self._lock:
            self._maps[entity] = dict(seeded)
            self._local_ids[entity] = set(seeded.values())
        logger.info(f"Semilla {entity.table}: {len(seeded)} par(es) bubble_id -> id")
        return seeded

    def seed_all(
        self,
        store: TargetStore,
        entities: Iterable[EntityType] = tuple(EntityType),
        *,
        page_size: int = 1000,
    ) -> None:
        for entity in entities:
            self.seed(store, entity, page_size=page_size)

    def map_for(self, entity: EntityType) -> IdMap:
        """Mapa vivo del tipo (solo lectura por convención)."""
        return self._maps[entity]

    def resolve(self, entity: EntityType, foreign_id: Optional[str]) -> Optional[str]:
        if not foreign_id:
            return None
        return self._maps[entity].get(foreign_id)

    def extend(self, entity: EntityType, foreign_id: str, local_id: str) -> None:
        with self._lock:
            self._maps[entity][foreign_id] = local_id
            self._local_ids[entity].add(local_id)

    def is_local_id(self, entity: EntityType, value: Optional[str]) -> bool:
        """True si `value` ya es un uuid local conocido para el tipo."""
        return bool(value) and value in self._local_ids[entity]

    def resolve_or_keep(
        self,
        entity: EntityType,
        value: Optional[str],
        known_local_ids: Optional[set[str]] = None,
    ) -> Optional[str]:
        """
        Resuelve un valor que puede ser bubble_id o uuid local ya resuelto.

        `known_local_ids` amplía el conjunto de uuids aceptados (filas creadas
        directamente en destino, sin bubble_id). Usado por los resolvers para
        que re-ejecutarlos sea idempotente.
        """
        if not value:
            return None
        resolved = self._maps[entity].get(value)
        if resolved:
            return resolved
        if self.is_local_id(entity, value) or (known_local_ids and value in known_local_ids):
            return value
        return None

    def size(self, entity: EntityType) -> int:
        return len(self._maps[entity])

    def first_local_id(self, entity: EntityType) -> Optional[str]:
        """Primer uuid del mapa en orden de inserción (semilla primero)."""
        for local_id in self._maps[entity].values():
            return local_id
        return None
