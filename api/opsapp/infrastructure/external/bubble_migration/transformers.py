"""
Transformers: DTO crudo de Bubble -> fila destino (o Skip).

Reglas comunes:
- Toda columna de referencia se escribe con un uuid local o con None; nunca
  con un id de Bubble. Las únicas excepciones son las referencias "hacia
  adelante" de companies (admins, seated employees, account holder), que se
  guardan crudas y luego corrige `resolvers.resolve_company_user_references`.
- Si una referencia requerida no resuelve, el registro se omite completo
  con un Skip que cita el id faltante.
"""

from __future__ import annotations

import math
from typing import Any, Optional, Union

from loguru import logger

from .coercion import (
    DEFAULT_COLOR,
    apply_alias,
    coerce_float,
    coerce_scalar_string,
    lookup,
    lookup_many,
    nested,
    normalize_choice,
    normalize_color,
    normalize_exact,
    parse_flexible_date,
    resolve_reference,
    resolve_references,
)
from .context import MigrationContext
from .types import FOREIGN_ID_COLUMN, EntityType, Row, Skip

TransformResult = Union[Row, Skip]

SUBSCRIPTION_STATUSES = ("active", "trialing", "past_due", "canceled", "incomplete", "paused")
SUBSCRIPTION_PLANS = ("free", "starter", "professional", "enterprise")
SUBSCRIPTION_PERIODS = ("Monthly", "Annual")

TASK_STATUSES = ("Booked", "In Progress", "Completed", "Cancelled")
TASK_STATUS_ALIASES = {"Scheduled": "Booked"}
TASK_STATUS_DEFAULT = "Booked"

PROJECT_STATUS_ALIASES = {"Pending": "RFQ"}
PROJECT_STATUS_DEFAULT = "RFQ"

EMPLOYEE_TYPE_ROLES = {"Admin": "Admin", "Office Crew": "Office Crew", "Field Crew": "Field Crew"}
DEFAULT_ROLE = "Field Crew"

DEFAULT_PROJECT_COLOR = "#9CA3AF"
DEFAULT_MAX_SEATS = 10


def foreign_id_of(dto: dict[str, Any]) -> Optional[str]:
    """Id Bubble del registro (`_id`; TaskType a veces trae `id`)."""
    value = dto.get("_id") or dto.get("id")
    return str(value) if value else None


def _address_columns(address: Any) -> dict[str, Any]:
    return {
        "address": nested(address, "address"),
        "latitude": coerce_float(nested(address, "lat")),
        "longitude": coerce_float(nested(address, "lng")),
    }


# --- companies --------------------------------------------------------------


def transform_company(dto: dict[str, Any], ctx: MigrationContext) -> TransformResult:
    industry = dto.get("industry")
    max_seats = dto.get("maxSeats")
    return {
        FOREIGN_ID_COLUMN: foreign_id_of(dto),
        "name": dto.get("companyName") or "Unknown Company",
        "external_id": dto.get("companyId"),
        "description": dto.get("companyDescription"),
        "phone": coerce_scalar_string(dto.get("phone")),
        "email": dto.get("officeEmail"),
        "website": dto.get("website"),
        **_address_columns(dto.get("location")),
        "open_hour": dto.get("openHour"),
        "close_hour": dto.get("closeHour"),
        "logo_url": nested(dto.get("logo"), "url"),
        "default_project_color": dto.get("defaultProjectColor") or DEFAULT_PROJECT_COLOR,
        "industries": [industry] if industry else [],
        "company_size": dto.get("companySize"),
        "company_age": dto.get("companyAge"),
        "referral_method": dto.get("referralMethod"),
        # Referencias hacia adelante: users todavía no migrados.
        "account_holder_id": resolve_reference(dto.get("accountHolder")),
        "admin_ids": resolve_references(dto.get("admin")),
        "seated_employee_ids": resolve_references(dto.get("seatedEmployees")),
        "max_seats": max_seats if isinstance(max_seats, int) and not isinstance(max_seats, bool) else DEFAULT_MAX_SEATS,
        "subscription_status": normalize_choice(dto.get("subscriptionStatus"), SUBSCRIPTION_STATUSES),
        "subscription_plan": normalize_choice(dto.get("subscriptionPlan"), SUBSCRIPTION_PLANS),
        "subscription_end": parse_flexible_date(dto.get("subscriptionEnd")),
        "subscription_period": normalize_exact(dto.get("subscriptionPeriod"), SUBSCRIPTION_PERIODS),
        "trial_start_date": parse_flexible_date(dto.get("trialStartDate")),
        "trial_end_date": parse_flexible_date(dto.get("trialEndDate")),
        "seat_grace_start_date": parse_flexible_date(dto.get("seatGraceStartDate")),
        "has_priority_support": bool(dto.get("hasPrioritySupport") or False),
        "data_setup_purchased": bool(dto.get("dataSetupPurchased") or False),
        "data_setup_completed": bool(dto.get("dataSetupCompleted") or False),
        "data_setup_scheduled": parse_flexible_date(dto.get("dataSetupScheduledDate")),
        "stripe_customer_id": dto.get("stripeCustomerId"),
        "deleted_at": parse_flexible_date(dto.get("deletedAt")),
    }


# --- users ------------------------------------------------------------------


def employee_type_to_role(employee_type: Any) -> str:
    if not isinstance(employee_type, str):
        return DEFAULT_ROLE
    return EMPLOYEE_TYPE_ROLES.get(employee_type, DEFAULT_ROLE)


def transform_user(dto: dict[str, Any], ctx: MigrationContext) -> TransformResult:
    # La company es opcional para users (cuentas sin empresa asignada).
    company_id = lookup(dto.get("company"), ctx.id_maps.map_for(EntityType.COMPANY))
    email = nested(dto.get("authentication"), "email", "email") or dto.get("email") or None

    return {
        FOREIGN_ID_COLUMN: foreign_id_of(dto),
        "company_id": company_id,
        "first_name": dto.get("nameFirst") or "",
        "last_name": dto.get("nameLast") or "",
        "email": email,
        "phone": coerce_scalar_string(dto.get("phone")),
        "home_address": nested(dto.get("homeAddress"), "address"),
        "profile_image_url": dto.get("avatar"),
        "user_color": dto.get("userColor"),
        "role": employee_type_to_role(dto.get("employeeType")),
        "user_type": dto.get("userType"),
        "is_company_admin": False,  # lo fija el resolver de referencias de companies
        "has_completed_onboarding": bool(dto.get("hasCompletedAppOnboarding") or False),
        "has_completed_tutorial": bool(dto.get("hasCompletedAppTutorial") or False),
        "dev_permission": bool(dto.get("devPermission") or False),
        "stripe_customer_id": dto.get("stripeCustomerId"),
        "device_token": dto.get("deviceToken"),
        "deleted_at": parse_flexible_date(dto.get("deletedAt")),
    }


# --- clients / sub clients ----------------------------------------------------


def transform_client(dto: dict[str, Any], ctx: MigrationContext) -> TransformResult:
    company_ref = resolve_reference(dto.get("parentCompany"))
    company_id = ctx.id_maps.resolve(EntityType.COMPANY, company_ref)
    if not company_id:
        return Skip(f"no matching company for {company_ref}")

    return {
        FOREIGN_ID_COLUMN: foreign_id_of(dto),
        "company_id": company_id,
        "name": dto.get("name") or "Unknown Client",
        "email": dto.get("emailAddress"),
        "phone_number": coerce_scalar_string(dto.get("phoneNumber")),
        "notes": dto.get("notes"),
        **_address_columns(dto.get("address")),
        "profile_image_url": dto.get("avatar"),
        "deleted_at": parse_flexible_date(dto.get("deletedAt")),
    }


def transform_sub_client(dto: dict[str, Any], ctx: MigrationContext) -> TransformResult:
    client_ref = resolve_reference(dto.get("parentClient"))
    client_id = ctx.id_maps.resolve(EntityType.CLIENT, client_ref)
    if not client_id:
        return Skip(f"no matching client for {client_ref}")

    company_id = ctx.client_companies.get(client_ref)
    if not company_id:
        return Skip(f"no company for client {client_ref}")

    return {
        FOREIGN_ID_COLUMN: foreign_id_of(dto),
        "client_id": client_id,
        "company_id": company_id,
        "name": dto.get("name") or "Unknown",
        "title": dto.get("title"),
        "email": dto.get("emailAddress"),
        "phone_number": coerce_scalar_string(dto.get("phoneNumber")),
        "address": nested(dto.get("address"), "address"),
        "deleted_at": parse_flexible_date(dto.get("deletedAt")),
    }


# --- task types ---------------------------------------------------------------


def transform_task_type(dto: dict[str, Any], ctx: MigrationContext) -> TransformResult:
    bubble_id = foreign_id_of(dto)
    if not bubble_id:
        return Skip("missing id", silent=True)

    # OJO: en Bubble los TaskType no tienen campo company (se enlazan desde la
    # lista taskTypes de la company). Se asignan a la PRIMERA company del mapa,
    # lo cual solo es correcto con un único tenant. Regla de ownership pendiente.
    company_id = ctx.id_maps.first_local_id(EntityType.COMPANY)
    if not company_id:
        return Skip("no company to assign to")

    return {
        FOREIGN_ID_COLUMN: bubble_id,
        "company_id": company_id,
        "display": dto.get("display") or dto.get("Display") or "Untitled",
        "color": normalize_color(dto.get("color"), DEFAULT_COLOR),
        "is_default": bool(dto.get("isDefault") or False),
        "deleted_at": parse_flexible_date(dto.get("deletedAt")),
    }


# --- projects -----------------------------------------------------------------


def normalize_project_status(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        return PROJECT_STATUS_DEFAULT
    return apply_alias(value.strip(), PROJECT_STATUS_ALIASES) or PROJECT_STATUS_DEFAULT


def transform_project(dto: dict[str, Any], ctx: MigrationContext) -> TransformResult:
    company_ref = resolve_reference(dto.get("company"))
    company_id = ctx.id_maps.resolve(EntityType.COMPANY, company_ref)
    if not company_id:
        return Skip(f"no matching company for {company_ref}")

    client_id = lookup(dto.get("client"), ctx.id_maps.map_for(EntityType.CLIENT))
    images = dto.get("projectImages")

    return {
        FOREIGN_ID_COLUMN: foreign_id_of(dto),
        "company_id": company_id,
        "client_id": client_id,
        "title": dto.get("projectName") or "Untitled Project",
        **_address_columns(dto.get("address")),
        "status": normalize_project_status(dto.get("status")),
        "notes": dto.get("teamNotes"),
        "description": dto.get("description"),
        "all_day": bool(dto.get("allDay") or False),
        "project_images": [i for i in images if isinstance(i, str) and i] if isinstance(images, list) else [],
        "team_member_ids": [],  # rollup: lo recalcula recompute_project_team_members
        "start_date": parse_flexible_date(dto.get("startDate")),
        "end_date": parse_flexible_date(dto.get("completion")),
        "duration": coerce_float(dto.get("duration")),
        "deleted_at": parse_flexible_date(dto.get("deletedAt")),
    }


# --- calendar events ------------------------------------------------------------


def normalize_duration(value: Any) -> int:
    """Duración en días: entero >= 1 (ausente -> 1)."""
    number = coerce_float(value)
    if number is None:
        number = 1.0
    return max(1, int(math.floor(number + 0.5)))


def transform_calendar_event(dto: dict[str, Any], ctx: MigrationContext) -> TransformResult:
    company_ref = resolve_reference(dto.get("companyId"))
    company_id = ctx.id_maps.resolve(EntityType.COMPANY, company_ref)
    if not company_id:
        return Skip(f"no matching company for {company_ref}")

    project_id = lookup(dto.get("projectId"), ctx.id_maps.map_for(EntityType.PROJECT))
    title = dto.get("title")

    return {
        FOREIGN_ID_COLUMN: foreign_id_of(dto),
        "company_id": company_id,
        "project_id": project_id,
        "title": (title.strip() if isinstance(title, str) else "") or "Untitled Event",
        "color": normalize_color(dto.get("color")),
        "start_date": parse_flexible_date(dto.get("startDate")),
        "end_date": parse_flexible_date(dto.get("endDate")),
        "duration": normalize_duration(dto.get("duration")),
        "team_member_ids": lookup_many(dto.get("teamMembers"), ctx.id_maps.map_for(EntityType.USER)),
        "deleted_at": parse_flexible_date(dto.get("deletedAt")),
    }


# --- project tasks --------------------------------------------------------------


def normalize_task_status(value: Any) -> str:
    aliased = apply_alias(value.strip(), TASK_STATUS_ALIASES) if isinstance(value, str) else None
    return normalize_choice(aliased, TASK_STATUSES) or TASK_STATUS_DEFAULT


def transform_project_task(dto: dict[str, Any], ctx: MigrationContext) -> TransformResult:
    company_ref = resolve_reference(dto.get("companyId"))
    project_ref = resolve_reference(dto.get("projectId"))
    company_id = ctx.id_maps.resolve(EntityType.COMPANY, company_ref)
    project_id = ctx.id_maps.resolve(EntityType.PROJECT, project_ref)

    # Fallback: derivar la company desde el proyecto ya resuelto.
    if not company_id and project_id and ctx.parent_lookup is not None:
        company_id = ctx.parent_lookup.company_for_project(project_id)

    if not company_id or not project_id:
        return Skip(f"missing company ({company_ref}) or project ({project_ref})")

    display_order = dto.get("taskIndex")

    return {
        FOREIGN_ID_COLUMN: foreign_id_of(dto),
        "company_id": company_id,
        "project_id": project_id,
        "task_type_id": lookup(dto.get("type"), ctx.id_maps.map_for(EntityType.TASK_TYPE)),
        "calendar_event_id": lookup(dto.get("calendarEventId"), ctx.id_maps.map_for(EntityType.CALENDAR_EVENT)),
        "custom_title": None,
        "task_notes": dto.get("taskNotes"),
        "status": normalize_task_status(dto.get("status")),
        "task_color": normalize_color(dto.get("taskColor")),
        "display_order": display_order if isinstance(display_order, int) and not isinstance(display_order, bool) else 0,
        "team_member_ids": lookup_many(dto.get("teamMembers"), ctx.id_maps.map_for(EntityType.USER)),
        "deleted_at": parse_flexible_date(dto.get("deletedAt")),
    }


# --- ops contacts ---------------------------------------------------------------


def transform_ops_contact(dto: dict[str, Any], ctx: MigrationContext) -> TransformResult:
    return {
        FOREIGN_ID_COLUMN: foreign_id_of(dto),
        "name": dto.get("name") or "Unknown",
        "email": dto.get("email") or "",
        "phone": coerce_scalar_string(dto.get("phone")),
        "display": dto.get("display"),
        "role": dto.get("role") or "General Support",
    }


def warn_task_type_ownership(ctx: MigrationContext) -> None:
    companies = ctx.id_maps.size(EntityType.COMPANY)
    if companies > 1:
        logger.warning(
            f"TaskTypes: hay {companies} companies; todos los TaskType se asignan a la primera "
            f"({ctx.id_maps.first_local_id(EntityType.COMPANY)}). Regla de ownership multi-tenant pendiente."
        )
