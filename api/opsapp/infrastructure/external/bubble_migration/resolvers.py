"""
Pasadas de corrección posteriores a las fases.

- Referencias hacia adelante de companies (admins, seated employees,
  account holder) guardadas como bubble_id crudos en la fase 1.
- Enlaces de pipeline (opportunities / estimates / invoices): columnas
  legacy `client_id` / `project_id` -> columnas tipadas `client_ref` / `project_ref`.
- Rollup `projects.team_member_ids` recalculado desde cero a partir de tasks.

Todas son idempotentes: un valor que ya es un uuid local se conserva, así que
repetirlas en cada corrida converge al mismo estado.
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger

from opsapp.shared.exceptions.migration import TargetReadError, TargetWriteError

from .context import MigrationContext
from .report import ErrorKind
from .target_store import TargetStore
from .types import LOCAL_ID_COLUMN, EntityType

PIPELINE_TABLES = ("opportunities", "estimates", "invoices")

# (columna legacy, columna tipada, entidad referenciada)
PIPELINE_LINKS = (
    ("client_id", "client_ref", EntityType.CLIENT),
    ("project_id", "project_ref", EntityType.PROJECT),
)


def scan_local_ids(store: TargetStore, entity: EntityType) -> set[str]:
    """Todos los uuids de la tabla, incluidas filas creadas sin bubble_id."""
    rows = store.select_rows(entity.table, [LOCAL_ID_COLUMN])
    return {str(r[LOCAL_ID_COLUMN]) for r in rows}


def _as_str_list(value: Any) -> list[str]:
    if not value:
        return []
    return [str(v) for v in value if v]


def _as_str(value: Any) -> Optional[str]:
    return str(value) if value else None


def resolve_company_user_references(store: TargetStore, ctx: MigrationContext) -> int:
    """
    Resuelve admin_ids / seated_employee_ids / account_holder_id de companies.

    Ids irresolubles se descartan (single -> None). Los admins resueltos
    quedan con `is_company_admin = true`. Retorna companies actualizadas.
    """
    known_users = scan_local_ids(store, EntityType.USER)
    companies = store.select_rows(
        EntityType.COMPANY.table,
        [LOCAL_ID_COLUMN, "admin_ids", "seated_employee_ids", "account_holder_id"],
    )

    def resolve_list(values: list[str]) -> list[str]:
        resolved = (ctx.id_maps.resolve_or_keep(EntityType.USER, v, known_users) for v in values)
        return list(dict.fromkeys(r for r in resolved if r))

    updated = 0
    admin_ids: set[str] = set()
    for company in companies:
        company_id = str(company[LOCAL_ID_COLUMN])
        current_admins = _as_str_list(company.get("admin_ids"))
        current_seated = _as_str_list(company.get("seated_employee_ids"))
        current_holder = _as_str(company.get("account_holder_id"))

        admins = resolve_list(current_admins)
        seated = resolve_list(current_seated)
        holder = ctx.id_maps.resolve_or_keep(EntityType.USER, current_holder, known_users)
        admin_ids.update(admins)

        if (admins, seated, holder) == (current_admins, current_seated, current_holder):
            continue
        try:
            store.update_row(
                EntityType.COMPANY.table,
                company_id,
                {"admin_ids": admins, "seated_employee_ids": seated, "account_holder_id": holder},
            )
            updated += 1
        except TargetWriteError as e:
            ctx.report.record_error(ErrorKind.FIXUP, f"Company refs {company_id}: {e.message}")

    if admin_ids:
        try:
            store.update_rows(EntityType.USER.table, sorted(admin_ids), {"is_company_admin": True})
        except TargetWriteError as e:
            ctx.report.record_error(ErrorKind.FIXUP, f"is_company_admin: {e.message}")

    logger.info(
        f"Referencias de companies: {updated} company(s) actualizada(s), {len(admin_ids)} admin(s)"
    )
    return updated


def update_pipeline_refs(store: TargetStore, ctx: MigrationContext) -> int:
    """
    Copia a `client_ref` / `project_ref` el uuid resuelto de las columnas legacy.

    Un valor legacy irresoluble deja la columna tipada intacta. Una tabla de
    pipeline inexistente o incompleta se reporta y se salta. Retorna filas
    actualizadas.
    """
    known = {entity: scan_local_ids(store, entity) for _, _, entity in PIPELINE_LINKS}
    columns = [LOCAL_ID_COLUMN] + [c for legacy, ref, _ in PIPELINE_LINKS for c in (legacy, ref)]

    updated = 0
    for table in PIPELINE_TABLES:
        try:
            rows = store.select_rows(table, columns)
        except TargetReadError as e:
            ctx.report.record_error(ErrorKind.FIXUP, f"Pipeline refs {table}: {e.message}")
            continue

        table_updated = 0
        for row in rows:
            values: dict[str, str] = {}
            for legacy, ref, entity in PIPELINE_LINKS:
                resolved = ctx.id_maps.resolve_or_keep(entity, _as_str(row.get(legacy)), known[entity])
                if resolved and resolved != _as_str(row.get(ref)):
                    values[ref] = resolved
            if not values:
                continue
            try:
                store.update_row(table, str(row[LOCAL_ID_COLUMN]), values)
                table_updated += 1
            except TargetWriteError as e:
                ctx.report.record_error(ErrorKind.FIXUP, f"Pipeline refs {table} {row[LOCAL_ID_COLUMN]}: {e.message}")

        logger.info(f"Pipeline refs {table}: {table_updated} fila(s) actualizada(s)")
        updated += table_updated
    return updated


def recompute_project_team_members(store: TargetStore, ctx: MigrationContext) -> int:
    """
    Rollup: team_member_ids de cada proyecto = unión de los team_member_ids
    de sus tasks no borradas. Se recalcula desde un escaneo fresco y el valor
    previo se descarta. Retorna proyectos cuyo valor cambió.
    """
    tasks = store.select_rows(
        EntityType.PROJECT_TASK.table,
        ["project_id", "team_member_ids"],
        is_null=("deleted_at",),
        not_null=("project_id",),
    )
    members_by_project: dict[str, set[str]] = {}
    for task in tasks:
        members_by_project.setdefault(str(task["project_id"]), set()).update(
            _as_str_list(task.get("team_member_ids"))
        )

    projects = store.select_rows(
        EntityType.PROJECT.table,
        [LOCAL_ID_COLUMN, "team_member_ids"],
        is_null=("deleted_at",),
    )

    updated = 0
    for project in projects:
        project_id = str(project[LOCAL_ID_COLUMN])
        members = sorted(members_by_project.get(project_id, set()))
        if members == sorted(_as_str_list(project.get("team_member_ids"))):
            continue
        try:
            store.update_row(EntityType.PROJECT.table, project_id, {"team_member_ids": members})
            updated += 1
        except TargetWriteError as e:
            ctx.report.record_error(ErrorKind.FIXUP, f"Team members {project_id}: {e.message}")

    logger.info(f"Team members: {updated} proyecto(s) actualizado(s) de {len(projects)}")
    return updated
