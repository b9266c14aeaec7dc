"""
Tests del orquestador de migración sobre un store en memoria.

Cubren las propiedades del pipeline:
- idempotencia (re-ejecutar no duplica filas)
- integridad referencial (toda referencia apunta a un id existente)
- modo incremental (constraint + mapas sembrados)
- aislamiento de fallos por registro y por fase
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from migration_fakes import FakeBubbleSource, InMemoryTargetStore, run_migration, sample_bubble_data
from opsapp.infrastructure.external.bubble_migration.state import RunState
from opsapp.infrastructure.external.bubble_migration.types import Constraint, RunMode, isoformat_z
from opsapp.shared.exceptions.migration import TargetReadError

REFERENCES = {
    "users": {"company_id": "companies"},
    "clients": {"company_id": "companies"},
    "sub_clients": {"client_id": "clients", "company_id": "companies"},
    "task_types": {"company_id": "companies"},
    "projects": {"company_id": "companies", "client_id": "clients"},
    "calendar_events": {"company_id": "companies", "project_id": "projects"},
    "project_tasks": {
        "company_id": "companies",
        "project_id": "projects",
        "task_type_id": "task_types",
        "calendar_event_id": "calendar_events",
    },
}
TEAM_TABLES = ("projects", "calendar_events", "project_tasks")


def _counts(store: InMemoryTargetStore) -> dict[str, int]:
    return {table: len(rows) for table, rows in store.tables.items()}


@pytest.fixture
def source() -> FakeBubbleSource:
    return FakeBubbleSource(sample_bubble_data())


@pytest.fixture
def store() -> InMemoryTargetStore:
    return InMemoryTargetStore()


class TestFullRun:
    """Corrida full sobre un tenant completo."""

    def test_run_finishes_done_without_errors(self, source, store):
        ctx = run_migration(source, store)
        stats = ctx.stats()

        assert ctx.state.state == RunState.DONE
        assert stats["mode"] == "full"
        assert stats["errorCount"] == 0
        assert stats["errors"] == []
        assert stats["fatal"] is False
        assert stats["finalState"] == "done"
        assert stats["perEntityCounts"] == {
            "companies": 1,
            "users": 2,
            "clients": 1,
            "subClients": 1,
            "taskTypes": 1,
            "projects": 1,
            "calendarEvents": 1,
            "projectTasks": 1,
            "opsContacts": 1,
        }
        assert stats["inserted"] == stats["perEntityCounts"]

    def test_phases_fetch_in_dependency_order_without_constraints(self, source, store):
        run_migration(source, store)

        assert [t for t, _ in source.calls] == [
            "company", "user", "client", "Sub Client", "TaskType",
            "project", "calendarevent", "task", "opscontact",
        ]
        assert all(c == [] for _, c in source.calls)

    def test_person_resolves_tenant_reference(self, source, store):
        """Organization org-1 -> u1; el user con company org-1 queda con company_id u1."""
        run_migration(source, store)

        company = store.by_bubble_id("companies", "org-1")
        user = store.by_bubble_id("users", "user-1")
        assert user["company_id"] == company["id"]

    def test_transformed_fields_are_normalized(self, source, store):
        run_migration(source, store)

        assert store.by_bubble_id("clients", "cl-1")["phone_number"] == "6045550100"
        assert store.by_bubble_id("projects", "pr-1")["status"] == "RFQ"
        assert store.by_bubble_id("project_tasks", "tk-1")["status"] == "Booked"
        assert store.by_bubble_id("task_types", "tt-1")["color"] == "#ff0000"
        event = store.by_bubble_id("calendar_events", "ev-1")
        assert event["title"] == "Install day"
        assert event["duration"] == 2
        assert event["team_member_ids"] == [store.by_bubble_id("users", "user-1")["id"]]

    def test_sub_client_company_comes_from_parent_client(self, source, store):
        run_migration(source, store)

        client = store.by_bubble_id("clients", "cl-1")
        sub_client = store.by_bubble_id("sub_clients", "sc-1")
        assert sub_client["client_id"] == client["id"]
        assert sub_client["company_id"] == client["company_id"]

    def test_referential_integrity(self, source, store):
        run_migration(source, store)

        user_ids = {r["id"] for r in store.rows("users")}
        for table, refs in REFERENCES.items():
            for row in store.rows(table):
                for column, target in refs.items():
                    if row.get(column) is not None:
                        assert store.by_id(target, row[column]) is not None, f"{table}.{column}"
        for table in TEAM_TABLES:
            for row in store.rows(table):
                assert set(row.get("team_member_ids") or []) <= user_ids

    def test_forward_references_converge(self, source, store):
        ctx = run_migration(source, store)

        company = store.by_bubble_id("companies", "org-1")
        u1 = store.by_bubble_id("users", "user-1")["id"]
        u2 = store.by_bubble_id("users", "user-2")["id"]
        assert company["admin_ids"] == [u1]
        assert company["seated_employee_ids"] == [u1, u2]
        assert company["account_holder_id"] == u1
        assert store.by_id("users", u1)["is_company_admin"] is True
        assert store.by_id("users", u2)["is_company_admin"] is False
        assert ctx.stats()["forwardRefsResolved"] == 1

    def test_project_team_rollup_from_tasks(self, source, store):
        run_migration(source, store)

        project = store.by_bubble_id("projects", "pr-1")
        expected = sorted(store.by_bubble_id("users", b)["id"] for b in ("user-1", "user-2"))
        assert project["team_member_ids"] == expected

    def test_parallel_workers_produce_same_result(self, source):
        sequential, parallel = InMemoryTargetStore(), InMemoryTargetStore()

        run_migration(source, sequential)
        ctx = run_migration(FakeBubbleSource(sample_bubble_data()), parallel, phase_workers=4)

        assert ctx.state.state == RunState.DONE
        assert _counts(parallel) == _counts(sequential)


class TestIdempotence:
    def test_second_full_run_creates_no_duplicates(self, source, store):
        run_migration(source, store)
        counts_after_first = _counts(store)

        ctx = run_migration(source, store)
        stats = ctx.stats()

        assert _counts(store) == counts_after_first
        assert all(v == 0 for v in stats["inserted"].values())
        assert stats["upserted"] == stats["perEntityCounts"]
        assert stats["errorCount"] == 0

    def test_second_run_keeps_resolved_references(self, source, store):
        run_migration(source, store)
        company_before = dict(store.by_bubble_id("companies", "org-1"))

        run_migration(source, store)
        company_after = store.by_bubble_id("companies", "org-1")

        assert company_after["id"] == company_before["id"]
        assert company_after["admin_ids"] == company_before["admin_ids"]
        assert company_after["account_holder_id"] == company_before["account_holder_id"]


class TestIncremental:
    def test_since_prior_start_upserts_nothing_new(self, source, store):
        first = run_migration(source, store)
        counts_after_first = _counts(store)

        ctx = run_migration(source, store, since=first.started_at)
        stats = ctx.stats()

        assert stats["mode"] == "incremental"
        assert ctx.mode == RunMode.INCREMENTAL
        assert _counts(store) == counts_after_first
        assert stats["perEntityCounts"] == first.stats()["perEntityCounts"]
        assert all(v == 0 for v in stats["inserted"].values())
        assert all(v == 0 for v in stats["upserted"].values())

    def test_constraint_attached_to_every_incremental_phase(self, source, store):
        since = datetime(2024, 6, 1, tzinfo=timezone.utc)
        run_migration(source, store, since=since)

        expected = [Constraint(key="Modified Date", constraint_type="greater than", value=isoformat_z(since))]
        for object_type in (
            "company", "user", "client", "Sub Client", "TaskType", "project", "calendarevent", "task", "opscontact",
        ):
            assert source.constraints_for(object_type) == [expected]

    def test_changed_child_resolves_unchanged_parent_via_seed(self, store):
        data = sample_bubble_data()
        run_migration(FakeBubbleSource(data), store)

        data["project"].append(
            {"_id": "pr-2", "projectName": "Gutter", "company": "org-1", "Modified Date": "2025-01-01T00:00:00.000Z"}
        )
        ctx = run_migration(FakeBubbleSource(data), store, since=datetime(2024, 6, 1, tzinfo=timezone.utc))

        project = store.by_bubble_id("projects", "pr-2")
        assert project["company_id"] == store.by_bubble_id("companies", "org-1")["id"]
        assert ctx.stats()["inserted"]["projects"] == 1
        assert ctx.stats()["perEntityCounts"]["projects"] == 2

    def test_seeded_map_resolves_records_no_longer_listed(self, store):
        """Una company soft-deleted que Bubble ya no lista sigue siendo resoluble."""
        old_company = store.insert("companies", bubble_id="org-old", name="Old", deleted_at="2023-01-01T00:00:00.000Z")
        data = {"client": [{"_id": "cl-9", "name": "Legacy", "parentCompany": "org-old"}]}

        ctx = run_migration(FakeBubbleSource(data), store)

        assert store.by_bubble_id("clients", "cl-9")["company_id"] == old_company
        assert ctx.stats()["perEntityCounts"]["companies"] == 1


class TestFailureIsolation:
    def test_customer_with_missing_organization_is_skipped(self, store):
        data = sample_bubble_data()
        data["client"].append({"_id": "cl-2", "name": "Ghost", "parentCompany": "org-missing"})

        ctx = run_migration(FakeBubbleSource(data), store)
        stats = ctx.stats()

        assert store.by_bubble_id("clients", "cl-2") is None
        assert stats["errorCount"] == 1
        assert "org-missing" in stats["errors"][0]
        assert stats["errors"][0].startswith("Client cl-2:")
        assert ctx.state.state == RunState.DONE

    def test_one_bad_record_out_of_n(self, store):
        data = {
            "company": [{"_id": "org-1", "companyName": "Acme"}],
            "client": [
                {"_id": f"cl-{i}", "name": f"C{i}", "parentCompany": "org-1" if i != 3 else "org-nope"}
                for i in range(1, 6)
            ],
        }

        ctx = run_migration(FakeBubbleSource(data), store)
        stats = ctx.stats()

        assert stats["upserted"]["clients"] == 4
        assert stats["errorCount"] == 1
        assert stats["fatal"] is False

    def test_write_error_skips_record_and_dependents(self, source, store):
        store.reject[("clients", "cl-1")] = "new row violates check constraint"

        ctx = run_migration(source, store)
        stats = ctx.stats()

        assert store.by_bubble_id("clients", "cl-1") is None
        assert store.by_bubble_id("sub_clients", "sc-1") is None
        assert store.by_bubble_id("projects", "pr-1")["client_id"] is None
        assert stats["errorCount"] == 2
        assert any("violates check constraint" in e for e in stats["errors"])
        assert any("no matching client for cl-1" in e for e in stats["errors"])

    def test_fetch_failure_keeps_partial_results_and_continues(self, source, store):
        source.failures["user"] = "Bubble fetch user page 1: HTTP 500 - boom"

        ctx = run_migration(source, store)
        stats = ctx.stats()

        assert ctx.state.state == RunState.DONE
        assert stats["perEntityCounts"]["users"] == 1
        assert "Bubble fetch user page 1: HTTP 500 - boom" in stats["errors"]
        assert store.by_bubble_id("project_tasks", "tk-1")["team_member_ids"] == [
            store.by_bubble_id("users", "user-1")["id"]
        ]

    def test_unexpected_exception_is_fatal_with_partial_stats(self, source):
        class ExplodingStore(InMemoryTargetStore):
            def upsert(self, table, row, *, conflict_key="bubble_id"):
                if table == "projects":
                    raise RuntimeError("connection lost")
                return super().upsert(table, row, conflict_key=conflict_key)

        store = ExplodingStore()
        ctx = run_migration(source, store)
        stats = ctx.stats()

        assert ctx.state.state == RunState.FATAL
        assert stats["fatal"] is True
        assert stats["finalState"] == "fatal"
        assert stats["errors"][-1] == "Fatal: connection lost"
        assert stats["perEntityCounts"]["companies"] == 1
        assert stats["upserted"]["projects"] == 0

    def test_error_list_is_capped_but_count_is_true_total(self, store):
        data = {"client": [{"_id": f"cl-{i}", "parentCompany": "org-nope"} for i in range(8)]}

        ctx = run_migration(FakeBubbleSource(data), store, error_cap=5)
        stats = ctx.stats()

        assert stats["errorCount"] == 8
        assert len(stats["errors"]) == 5
        assert stats["errorsTruncated"] is True


class TestParentFallback:
    def test_task_company_derived_from_project(self, source, store):
        source.data["task"][0]["companyId"] = "org-unknown"
        source.data["task"].append(
            {"_id": "tk-2", "companyId": "org-unknown", "projectId": "pr-1", "teamMembers": []}
        )

        ctx = run_migration(source, store)

        company_id = store.by_bubble_id("companies", "org-1")["id"]
        assert store.by_bubble_id("project_tasks", "tk-1")["company_id"] == company_id
        assert store.by_bubble_id("project_tasks", "tk-2")["company_id"] == company_id
        assert ctx.stats()["errorCount"] == 0
        # Memo: una sola consulta directa para ambas tasks
        project_id = store.by_bubble_id("projects", "pr-1")["id"]
        assert store.select_calls.count(("projects", {"id": project_id})) == 1

    def test_failed_project_lookup_skips_only_that_task(self, source):
        class TimeoutStore(InMemoryTargetStore):
            def select_rows(self, table, columns, *, equals=None, is_null=(), not_null=()):
                if table == "projects" and equals:
                    self.select_calls.append((table, dict(equals)))
                    raise TargetReadError(table, "statement timeout")
                return super().select_rows(table, columns, equals=equals, is_null=is_null, not_null=not_null)

        store = TimeoutStore()
        source.data["task"].extend([
            {"_id": "tk-2", "companyId": "org-unknown", "projectId": "pr-1", "teamMembers": []},
            {"_id": "tk-3", "companyId": "org-unknown", "projectId": "pr-1", "teamMembers": []},
        ])

        ctx = run_migration(source, store)
        stats = ctx.stats()

        assert ctx.state.state == RunState.DONE
        assert stats["upserted"]["projectTasks"] == 1
        assert stats["upserted"]["opsContacts"] == 1
        assert stats["errorCount"] == 2
        assert stats["errors"][0].startswith("Task tk-2: missing company (org-unknown)")
        # Sin memo del fallo: cada intento vuelve a consultar
        project_id = store.by_bubble_id("projects", "pr-1")["id"]
        assert store.select_calls.count(("projects", {"id": project_id})) == 2

    def test_task_without_project_is_skipped(self, source, store):
        source.data["task"][0]["projectId"] = "pr-missing"

        ctx = run_migration(source, store)

        assert store.rows("project_tasks") == []
        assert "pr-missing" in ctx.stats()["errors"][0]


class TestTaskTypeOwnership:
    def test_all_task_types_go_to_first_company(self, store):
        data = {
            "company": [{"_id": "org-1", "companyName": "A"}, {"_id": "org-2", "companyName": "B"}],
            "TaskType": [{"_id": "tt-1", "display": "X"}, {"id": "tt-2", "display": "Y"}, {"display": "no id"}],
        }

        ctx = run_migration(FakeBubbleSource(data), store)

        first = store.by_bubble_id("companies", "org-1")["id"]
        assert [r["company_id"] for r in store.rows("task_types")] == [first, first]
        # El registro sin id se omite en silencio
        assert ctx.stats()["errorCount"] == 0
