"""
Tipos y utilidades puras para el pipeline Bubble -> Postgres.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

LOCAL_ID_COLUMN = "id"
FOREIGN_ID_COLUMN = "bubble_id"

IdMap = dict[str, str]  # bubble_id -> uuid local
Row = dict[str, Any]


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normaliza datetime a UTC (aware). Los naive se asumen UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_z(dt: datetime) -> str:
    """
    Representación canónica de timestamps en este pipeline:
    ISO8601 UTC con milisegundos y sufijo 'Z' (igual que Date.toISOString()).
    """
    return ensure_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RunMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class EntityType(Enum):
    """
    Tipos de entidad migrados.

    Cada miembro conoce su tipo en Bubble, la tabla destino, la etiqueta usada
    en los mensajes de error y la clave en las estadísticas de la respuesta.
    """

    COMPANY = ("company", "companies", "Company", "companies")
    USER = ("user", "users", "User", "users")
    CLIENT = ("client", "clients", "Client", "clients")
    SUB_CLIENT = ("Sub Client", "sub_clients", "SubClient", "subClients")
    TASK_TYPE = ("TaskType", "task_types", "TaskType", "taskTypes")
    PROJECT = ("project", "projects", "Project", "projects")
    CALENDAR_EVENT = ("calendarevent", "calendar_events", "CalendarEvent", "calendarEvents")
    PROJECT_TASK = ("task", "project_tasks", "Task", "projectTasks")
    OPS_CONTACT = ("opscontact", "ops_contacts", "OpsContact", "opsContacts")

    def __init__(self, source_type: str, table: str, label: str, stats_key: str) -> None:
        self.source_type = source_type
        self.table = table
        self.label = label
        self.stats_key = stats_key


@dataclass(frozen=True)
class Constraint:
    """Restricción de búsqueda de la Data API: `{key, constraint_type, value}`."""

    key: str
    constraint_type: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"key": self.key, "constraint_type": self.constraint_type}
        if self.value is not None:
            data["value"] = self.value
        return data


def build_since_constraints(since: Optional[datetime], modified_field: str) -> list[Constraint]:
    """
    Modo incremental: una única restricción "modificado después de `since`".
    Sin `since` no hay restricciones (full scan).
    """
    if since is None:
        return []
    return [Constraint(key=modified_field, constraint_type="greater than", value=isoformat_z(since))]


@dataclass(frozen=True)
class Skip:
    """
    Resultado de un transform que decide NO persistir el registro.

    `reason` termina en el reporte (p.ej. "no matching company for org-missing").
    `silent=True` omite sin registrar error (registros sin id).
    """

    reason: str
    silent: bool = False


@dataclass(frozen=True)
class UpsertResult:
    local_id: str
    inserted: bool


@dataclass(frozen=True)
class FetchResult:
    """
    Resultado de paginar un tipo completo.

    Si una página falla, `records` contiene lo acumulado hasta ahí y `error`
    describe el fallo (tipo + offset de página).
    """

    records: list[dict[str, Any]]
    error: Optional[str] = None
