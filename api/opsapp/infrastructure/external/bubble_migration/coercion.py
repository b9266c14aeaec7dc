"""
Parsers tolerantes para los campos "sueltos" de los DTOs de Bubble.

Bubble no garantiza tipos: una fecha puede llegar como unix seconds (número o
string numérico, típico de campos copiados desde Stripe) o como string de
fecha; un teléfono puede ser string o número; una referencia puede ser un id
o un objeto `{unique_id}`. Cada función documenta su regla de coerción y
NUNCA lanza: ante un valor irreconocible devuelve None.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from .types import IdMap, isoformat_z

_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")

# Formatos "libres" aceptados cuando el string no es ISO8601.
_FREEFORM_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%b %d, %Y %I:%M %p",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
)

DEFAULT_COLOR = "#417394"


def _from_unix_seconds(value: float) -> Optional[str]:
    try:
        return isoformat_z(datetime.fromtimestamp(value, tz=timezone.utc))
    except (OverflowError, OSError, ValueError):
        return None


def parse_date_string(value: str) -> Optional[datetime]:
    """
    Parsea un string de fecha: ISO8601 (con 'Z' o con offset) o uno de los
    formatos libres conocidos. Sin zona se asume UTC.
    """
    text = value.strip()
    if not text:
        return None

    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        dt = None
        for fmt in _FREEFORM_DATE_FORMATS:
            try:
                dt = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if dt is None:
            return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_flexible_date(value: Any) -> Optional[str]:
    """
    Coerción de fechas a timestamp canónico (ISO8601 UTC 'Z').

    - None / "" -> None
    - int/float -> unix seconds
    - string numérico ("1700000000" o "1700000000.5") -> unix seconds
    - otro string -> parse_date_string
    - cualquier otro tipo (bool, dict, list) -> None
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return _from_unix_seconds(value)

    if isinstance(value, str):
        text = value.strip()
        if _NUMERIC_RE.match(text):
            return _from_unix_seconds(float(text))
        dt = parse_date_string(text)
        return isoformat_z(dt) if dt else None

    return None


def coerce_scalar_string(value: Any) -> Optional[str]:
    """
    Campo string-o-número (p.ej. teléfonos) a string.

    - string -> tal cual ("" -> None)
    - número -> redondeado al entero más cercano (mitades hacia arriba)
    - otro -> None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return str(int(math.floor(value + 0.5)))
    return None


def normalize_choice(value: Any, allowed: Iterable[str]) -> Optional[str]:
    """
    Normaliza contra una allow-list, case-insensitive y con trim.
    Devuelve la grafía canónica de la allow-list; desconocido -> None.
    """
    if not isinstance(value, str) or not value:
        return None
    canonical = {a.lower(): a for a in allowed}
    return canonical.get(value.strip().lower())


def normalize_exact(value: Any, allowed: Iterable[str]) -> Optional[str]:
    """Como normalize_choice pero exigiendo coincidencia exacta."""
    if not isinstance(value, str):
        return None
    return value if value in set(allowed) else None


def apply_alias(value: Optional[str], aliases: Mapping[str, str]) -> Optional[str]:
    """Remapea valores legacy (p.ej. "Scheduled" -> "Booked")."""
    if value is None:
        return None
    return aliases.get(value, value)


def normalize_color(value: Any, default: str = DEFAULT_COLOR) -> str:
    """Garantiza el prefijo '#'; vacío o ausente -> color por defecto."""
    if not isinstance(value, str) or not value.strip():
        return default
    color = value.strip()
    return color if color.startswith("#") else f"#{color}"


def resolve_reference(ref: Any) -> Optional[str]:
    """Extrae el id de una referencia Bubble: string o `{unique_id}`."""
    if ref is None:
        return None
    if isinstance(ref, str):
        return ref or None
    if isinstance(ref, dict):
        return ref.get("unique_id") or None
    return None


def resolve_references(refs: Any) -> list[str]:
    """Lista de referencias -> lista de ids (descarta vacíos)."""
    if not isinstance(refs, list):
        return []
    ids = (resolve_reference(r) for r in refs)
    return [i for i in ids if i]


def lookup(ref: Any, id_map: IdMap) -> Optional[str]:
    """Referencia Bubble -> uuid local vía mapa de identidad (None si no resuelve)."""
    foreign_id = resolve_reference(ref)
    if not foreign_id:
        return None
    return id_map.get(foreign_id)


def lookup_many(refs: Any, id_map: IdMap) -> list[str]:
    """Lista de referencias -> uuids locales, descartando las no resueltas."""
    return [id_map[i] for i in resolve_references(refs) if i in id_map]


def nested(value: Any, *path: str) -> Any:
    """Acceso seguro a objetos anidados (`location.address`, `logo.url`, ...)."""
    current = value
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def coerce_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
