"""
Fakes compartidos por los tests del motor de migración.

- InMemoryTargetStore: TargetStore en memoria con semántica de UPSERT por bubble_id
- FakeBubbleSource: fuente con la misma interfaz que BubbleDataClient
"""

from __future__ import annotations

import copy
import uuid
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence

from opsapp.infrastructure.external.bubble_migration.context import MigrationContext
from opsapp.infrastructure.external.bubble_migration.orchestrator import BubbleMigrationOrchestrator
from opsapp.infrastructure.external.bubble_migration.target_store import TargetStore
from opsapp.infrastructure.external.bubble_migration.types import Constraint, FetchResult, UpsertResult
from opsapp.shared.exceptions.migration import TargetReadError, TargetWriteError

MODIFIED = "Modified Date"


class InMemoryTargetStore(TargetStore):
    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.reject: dict[tuple[str, str], str] = {}  # (table, bubble_id) -> mensaje
        self.missing_tables: set[str] = set()
        self.upsert_calls = 0
        self.select_calls: list[tuple[str, dict]] = []

    # helpers de test

    def insert(self, table: str, **values: Any) -> str:
        """Fila creada "nativamente" en destino (fuera de la migración)."""
        row = {"id": str(uuid.uuid4()), **copy.deepcopy(values)}
        self.tables.setdefault(table, []).append(row)
        return row["id"]

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])

    def by_bubble_id(self, table: str, bubble_id: str) -> Optional[dict[str, Any]]:
        return next((r for r in self.rows(table) if r.get("bubble_id") == bubble_id), None)

    def by_id(self, table: str, local_id: str) -> Optional[dict[str, Any]]:
        return next((r for r in self.rows(table) if r["id"] == local_id), None)

    # TargetStore

    def fetch_id_page(self, table: str, *, offset: int, limit: int) -> list[dict[str, Any]]:
        rows = sorted((r for r in self.rows(table) if r.get("bubble_id")), key=lambda r: r["id"])
        return [{"id": r["id"], "bubble_id": r["bubble_id"]} for r in rows[offset:offset + limit]]

    def upsert(self, table: str, row: dict[str, Any], *, conflict_key: str = "bubble_id") -> UpsertResult:
        self.upsert_calls += 1
        key = row.get(conflict_key)
        if (table, key) in self.reject:
            raise TargetWriteError(table, self.reject[(table, key)], row_key=key)

        for existing in self.rows(table):
            if existing.get(conflict_key) == key:
                existing.update(copy.deepcopy(row))
                return UpsertResult(local_id=existing["id"], inserted=False)

        new_id = self.insert(table, **row)
        return UpsertResult(local_id=new_id, inserted=True)

    def select_rows(
        self,
        table: str,
        columns: Sequence[str],
        *,
        equals: Optional[Mapping[str, Any]] = None,
        is_null: Iterable[str] = (),
        not_null: Iterable[str] = (),
    ) -> list[dict[str, Any]]:
        self.select_calls.append((table, dict(equals or {})))
        if table in self.missing_tables:
            raise TargetReadError(table, f'relation "{table}" does not exist')
        is_null, not_null = list(is_null), list(not_null)
        result = []
        for row in self.rows(table):
            if any(row.get(c) != v for c, v in (equals or {}).items()):
                continue
            if any(row.get(c) is not None for c in is_null):
                continue
            if any(row.get(c) is None for c in not_null):
                continue
            result.append({c: copy.deepcopy(row.get(c)) for c in columns})
        return result

    def update_row(self, table: str, local_id: str, values: Mapping[str, Any]) -> None:
        row = self.by_id(table, local_id)
        if row is not None:
            row.update(copy.deepcopy(dict(values)))

    def update_rows(self, table: str, local_ids: Sequence[str], values: Mapping[str, Any]) -> int:
        count = 0
        for local_id in local_ids:
            row = self.by_id(table, local_id)
            if row is not None:
                row.update(copy.deepcopy(dict(values)))
                count += 1
        return count


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class FakeBubbleSource:
    """
    Fuente Bubble en memoria. Aplica la constraint "greater than" sobre
    `Modified Date` igual que la Data API.
    """

    def __init__(
        self,
        data: Optional[dict[str, list[dict[str, Any]]]] = None,
        *,
        failures: Optional[dict[str, str]] = None,
        tokens: Optional[dict[str, str]] = None,
    ) -> None:
        self.data = data or {}
        self.failures = failures or {}
        self.tokens = tokens or {}
        self.calls: list[tuple[str, list[Constraint]]] = []

    def fetch_all(self, object_type: str, constraints: Iterable[Constraint] = ()) -> FetchResult:
        constraints = list(constraints)
        self.calls.append((object_type, constraints))
        records = copy.deepcopy(self.data.get(object_type, []))
        for c in constraints:
            if c.constraint_type == "greater than":
                records = [r for r in records if r.get(c.key) and _parse(r[c.key]) > _parse(c.value)]

        if object_type in self.failures:
            # La página 2 falla: se devuelve lo acumulado en la página 1.
            return FetchResult(records=records[:1], error=self.failures[object_type])
        return FetchResult(records=records)

    def validate_session_token(self, token: str) -> Optional[str]:
        return self.tokens.get(token)

    def constraints_for(self, object_type: str) -> list[list[Constraint]]:
        return [c for t, c in self.calls if t == object_type]


def sample_bubble_data(modified: str = "2024-01-01T00:00:00.000Z") -> dict[str, list[dict[str, Any]]]:
    """Un tenant completo: company -> user -> client -> ... -> task, más un contacto."""
    return {
        "company": [
            {
                "_id": "org-1",
                "companyName": "Acme Roofing",
                "admin": ["user-1"],
                "seatedEmployees": ["user-1", "user-2"],
                "accountHolder": "user-1",
                "subscriptionStatus": "Active",
                "location": {"address": "1 Main St", "lat": 49.28, "lng": -123.12},
                MODIFIED: modified,
            }
        ],
        "user": [
            {
                "_id": "user-1",
                "nameFirst": "Ana",
                "nameLast": "Diaz",
                "company": "org-1",
                "employeeType": "Admin",
                "authentication": {"email": {"email": "ana@acme.test"}},
                MODIFIED: modified,
            },
            {
                "_id": "user-2",
                "nameFirst": "Bo",
                "company": "org-1",
                "employeeType": "Field Crew",
                "email": "bo@acme.test",
                MODIFIED: modified,
            },
        ],
        "client": [
            {"_id": "cl-1", "name": "Jones", "parentCompany": "org-1", "phoneNumber": 6045550100, MODIFIED: modified},
        ],
        "Sub Client": [
            {"_id": "sc-1", "name": "Jones Jr", "parentClient": "cl-1", MODIFIED: modified},
        ],
        "TaskType": [
            {"_id": "tt-1", "Display": "Install", "color": "ff0000", MODIFIED: modified},
        ],
        "project": [
            {
                "_id": "pr-1",
                "projectName": "Roof",
                "company": "org-1",
                "client": "cl-1",
                "status": "Pending",
                MODIFIED: modified,
            },
        ],
        "calendarevent": [
            {
                "_id": "ev-1",
                "title": "  Install day ",
                "companyId": "org-1",
                "projectId": "pr-1",
                "duration": 2.4,
                "teamMembers": ["user-1", "ghost"],
                MODIFIED: modified,
            },
        ],
        "task": [
            {
                "_id": "tk-1",
                "companyId": "org-1",
                "projectId": "pr-1",
                "type": "tt-1",
                "calendarEventId": "ev-1",
                "status": "Scheduled",
                "teamMembers": ["user-1", "user-2"],
                MODIFIED: modified,
            },
        ],
        "opscontact": [
            {"_id": "oc-1", "name": "Support", "email": "help@ops.test", MODIFIED: modified},
        ],
    }


def run_migration(
    source: FakeBubbleSource,
    store: InMemoryTargetStore,
    *,
    since: Optional[datetime] = None,
    error_cap: int = 50,
    phase_workers: int = 1,
) -> MigrationContext:
    ctx = MigrationContext.create(since=since, error_cap=error_cap)
    orchestrator = BubbleMigrationOrchestrator(
        source=source,
        store=store,
        seed_page_size=2,
        phase_workers=phase_workers,
    )
    return orchestrator.run(ctx)
