"""
CLI: Bubble -> Postgres (migración bulk / incremental).

Uso recomendado:
  - Ejecutar desde un contexto de operador (sin auth gate) o como job.
  - Corridas largas: evita timeouts del request/response del API.

Variables de entorno requeridas:
  - BUBBLE_API_TOKEN
  - DATABASE_URL (debe ser postgresql://... o postgres://...)

Ejecución:
  python scripts/run_bubble_migration.py
  python scripts/run_bubble_migration.py --since 2024-06-01T00:00:00Z
  python scripts/run_bubble_migration.py --schema-only
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
# La carpeta "api" contiene el paquete raíz `opsapp/`.
_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

# Cargar variables desde .env si existe (antes de importar settings).
load_dotenv(_API_ROOT / ".env", override=False)
load_dotenv(_API_ROOT.parent / ".env", override=False)

from opsapp.api.v1.dependencies.use_case_deps import get_migration_use_cases
from opsapp.core.config import settings
from opsapp.infrastructure.external.bubble_migration.pg_repository import open_target_store
from opsapp.infrastructure.external.bubble_migration.state import RunState


def _read_schema_sql() -> str:
    sql_path = _API_ROOT / "opsapp" / "infrastructure" / "external" / "bubble_migration" / "schema.sql"
    return sql_path.read_text(encoding="utf-8")


def _parse_since(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Fecha ISO inválida: {value}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Migración Bubble -> Postgres")
    parser.add_argument(
        "--since",
        type=_parse_since,
        default=None,
        help="Modo incremental: solo registros modificados después de esta fecha ISO.",
    )
    parser.add_argument(
        "--schema-only",
        action="store_true",
        help="Solo imprime el DDL que requieren los UPSERTs (no ejecuta la migración).",
    )
    args = parser.parse_args()

    if args.schema_only:
        print(_read_schema_sql())
        return 0

    if not settings.BUBBLE_API_TOKEN:
        raise SystemExit("Falta variable de entorno obligatoria: BUBBLE_API_TOKEN")

    use_cases = get_migration_use_cases()
    logger.info("Iniciando migración Bubble -> Postgres...")
    with open_target_store(settings.effective_database_url) as store:
        ctx = use_cases.run_authorized(store, since=args.since)

    print(json.dumps(ctx.stats(), indent=2))
    return 1 if ctx.state.state == RunState.FATAL else 0


if __name__ == "__main__":
    raise SystemExit(main())
