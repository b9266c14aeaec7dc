"""
DTOs del endpoint de migración Bubble -> Postgres.

El body del request es opcional: sin `since` la corrida es full; con `since`
es incremental. Los stats se exponen en camelCase.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MigrationRequestDTO(BaseModel):
    """Request de migración. `sinceDate` se acepta como alias de `since`."""

    since: Optional[datetime] = Field(
        None,
        validation_alias=AliasChoices("since", "sinceDate"),
        description="Solo registros modificados después de esta fecha (modo incremental)",
    )


class MigrationStatsDTO(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    mode: str
    started_at: str
    per_entity_counts: Dict[str, int]
    upserted: Dict[str, int]
    inserted: Dict[str, int]
    pipeline_refs_updated: int = 0
    forward_refs_resolved: int = 0
    error_count: int = 0
    errors_truncated: bool = False
    errors: List[str] = Field(default_factory=list)
    fatal: bool = False
    final_state: str


class MigrationSuccessDTO(BaseModel):
    success: bool = True
    stats: MigrationStatsDTO


class MigrationErrorDTO(BaseModel):
    """Corrida abortada (Fatal): error + stats acumulados hasta el fallo."""

    error: str
    stats: MigrationStatsDTO
