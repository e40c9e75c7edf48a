"""
Tests del motor de reconciliación contra SQLite en memoria.
"""
import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError

from datasync.application.services.reshaping import flatten_task_tree
from datasync.domain.entities.reconcile import ReconcileOutcome
from datasync.infrastructure.database.column_catalog import ColumnTypeCatalog
from datasync.infrastructure.repositories.entity_specs import (
    ATTENDANCE_TRACKER,
    COHORT_MEMBER,
    COHORT_MEMBER_CUSTOM_COLUMNS,
    PROJECT,
    PROJECT_TASK,
    PROJECT_TASK_TRACKING,
    REGISTRATION_TRACKER,
    TRACKING_DEDUP_COLUMNS,
    USERS,
)
from datasync.infrastructure.repositories.reconciler import RecordReconciler
from datasync.shared.exceptions.domain import (
    PersistenceConflictException,
    UnknownColumnException,
    ValidationException,
)

ATTENDANCE_KEY = {
    "TenantID": "t-1",
    "Context": "cohort",
    "ContextID": "c-1",
    "UserID": "u-1",
    "Year": 2024,
    "Month": 3,
}


async def fetch_all(engine, spec, **where):
    table = spec.table
    stmt = select(table).where(*[table.c[c] == v for c, v in where.items()])
    async with engine.connect() as conn:
        return [dict(row) for row in (await conn.execute(stmt)).mappings().all()]


async def count(engine, spec):
    async with engine.connect() as conn:
        return (await conn.execute(select(func.count()).select_from(spec.table))).scalar_one()


class TestApplyPatch:

    async def test_attendance_is_idempotent(self, engine, reconciler):
        day = {"day10": {"attendance": "present", "remark": None}}

        first = await reconciler.apply_patch(ATTENDANCE_TRACKER, ATTENDANCE_KEY, day)
        [before] = await fetch_all(engine, ATTENDANCE_TRACKER)
        second = await reconciler.apply_patch(ATTENDANCE_TRACKER, ATTENDANCE_KEY, day)
        [after] = await fetch_all(engine, ATTENDANCE_TRACKER)

        assert first is ReconcileOutcome.INSERTED
        assert second is ReconcileOutcome.UPDATED
        assert before == after
        assert [c for c, v in after.items() if c.startswith("day") and v is not None] == ["day10"]

    async def test_partial_update_keeps_other_days(self, engine, reconciler):
        await reconciler.apply_patch(
            ATTENDANCE_TRACKER,
            ATTENDANCE_KEY,
            {"day01": {"attendance": "present"}, "day05": {"attendance": "absent"}},
        )
        await reconciler.apply_patch(ATTENDANCE_TRACKER, ATTENDANCE_KEY, {"day10": {"attendance": "present"}})

        [row] = await fetch_all(engine, ATTENDANCE_TRACKER)
        assert row["day01"] == {"attendance": "present"}
        assert row["day05"] == {"attendance": "absent"}
        assert row["day10"] == {"attendance": "present"}

    async def test_null_key_component_matches_existing_row(self, engine, reconciler):
        key = {**ATTENDANCE_KEY, "TenantID": None}
        await reconciler.apply_patch(ATTENDANCE_TRACKER, key, {"day01": {"attendance": "present"}})
        outcome = await reconciler.apply_patch(ATTENDANCE_TRACKER, key, {"day02": {"attendance": "present"}})

        assert outcome is ReconcileOutcome.UPDATED
        assert await count(engine, ATTENDANCE_TRACKER) == 1

    async def test_different_month_is_a_new_row(self, engine, reconciler):
        await reconciler.apply_patch(ATTENDANCE_TRACKER, ATTENDANCE_KEY, {"day01": {"attendance": "present"}})
        await reconciler.apply_patch(
            ATTENDANCE_TRACKER, {**ATTENDANCE_KEY, "Month": 4}, {"day01": {"attendance": "present"}}
        )
        assert await count(engine, ATTENDANCE_TRACKER) == 2

    async def test_unknown_column_never_reaches_the_database(self, engine, reconciler):
        with pytest.raises(UnknownColumnException):
            await reconciler.apply_patch(ATTENDANCE_TRACKER, ATTENDANCE_KEY, {"day99": {}})
        assert await count(engine, ATTENDANCE_TRACKER) == 0

    async def test_key_only_patch(self, reconciler):
        key = {"UserID": "u-1", "RoleID": "r-1", "TenantID": "t-1"}

        assert await reconciler.apply_patch(REGISTRATION_TRACKER, key, {}) is ReconcileOutcome.INSERTED
        assert await reconciler.apply_patch(REGISTRATION_TRACKER, key, {}) is ReconcileOutcome.UNCHANGED


class TestUpsertRows:

    async def test_insert_then_update_allowed_columns(self, engine, reconciler):
        await reconciler.upsert_rows(PROJECT, [{"ProjectId": "p-1", "ProjectName": "Plan", "TenantId": "t-1"}])
        await reconciler.upsert_rows(PROJECT, [{"ProjectId": "p-1", "ProjectName": "Plan v2", "TenantId": "t-2"}])

        [row] = await fetch_all(engine, PROJECT)
        assert row["ProjectName"] == "Plan v2"
        assert row["TenantId"] == "t-1"

    async def test_last_duplicate_wins(self, engine, reconciler):
        sent = await reconciler.upsert_rows(PROJECT, [
            {"ProjectId": "p-1", "ProjectName": "a"},
            {"ProjectId": "p-1", "ProjectName": "b"},
        ])
        assert sent == 1
        [row] = await fetch_all(engine, PROJECT)
        assert row["ProjectName"] == "b"

    async def test_rows_with_different_column_sets(self, engine, reconciler):
        await reconciler.upsert_rows(USERS, [
            {"UserID": "u-1", "UserName": "a"},
            {"UserID": "u-2", "UserName": "b", "UserEmail": "b@example.org"},
        ])
        assert await count(engine, USERS) == 2

    async def test_rejects_unknown_columns(self, reconciler):
        with pytest.raises(UnknownColumnException):
            await reconciler.upsert_rows(PROJECT, [{"ProjectId": "p-1", "Nope": 1}])

    async def test_rejects_missing_key(self, reconciler):
        with pytest.raises(ValidationException):
            await reconciler.upsert_rows(PROJECT, [{"ProjectName": "sin clave"}])

    async def test_empty_rows(self, reconciler):
        assert await reconciler.upsert_rows(PROJECT, []) == 0

    async def test_rejects_non_scalar_key(self, reconciler):
        with pytest.raises(ValidationException) as exc:
            await reconciler.upsert_rows(PROJECT_TASK, [{"ProjectTaskId": ["bad"], "ProjectId": "p-1"}])
        assert exc.value.field == "ProjectTaskId"


EXISTING_TASKS = [
    {"ProjectTaskId": "T1", "ProjectId": "p-1", "TaskName": "Unidad 1", "ParentId": None},
    {"ProjectTaskId": "T2", "ProjectId": "p-1", "TaskName": "Leccion 1", "ParentId": "T1"},
    {"ProjectTaskId": "T3", "ProjectId": "p-1", "TaskName": "Unidad 2", "ParentId": None},
    {"ProjectTaskId": "X1", "ProjectId": "p-2", "TaskName": "Otro proyecto", "ParentId": None},
]


class TestReconcileSet:

    async def test_missing_tasks_are_deleted(self, engine, reconciler):
        await reconciler.upsert_rows(PROJECT_TASK, EXISTING_TASKS)
        incoming = flatten_task_tree("p-1", [
            {"referenceId": "T1", "name": "Unidad 1 (editada)", "children": [{"referenceId": "T2", "name": "Leccion 1"}]},
        ])

        result = await reconciler.reconcile_set(PROJECT_TASK, "ProjectId", "p-1", incoming)

        assert result.deleted_keys == [("T3",)]
        assert result.upserted == 2
        rows = {r["ProjectTaskId"]: r for r in await fetch_all(engine, PROJECT_TASK, ProjectId="p-1")}
        assert sorted(rows) == ["T1", "T2"]
        assert rows["T1"]["TaskName"] == "Unidad 1 (editada)"
        assert rows["T2"]["ParentId"] == "T1"
        assert len(await fetch_all(engine, PROJECT_TASK, ProjectId="p-2")) == 1

    async def test_empty_set_deletes_whole_scope(self, engine, reconciler):
        await reconciler.upsert_rows(PROJECT_TASK, EXISTING_TASKS)

        result = await reconciler.reconcile_set(PROJECT_TASK, "ProjectId", "p-1", [])

        assert result.deleted == 3
        assert await fetch_all(engine, PROJECT_TASK, ProjectId="p-1") == []

    async def test_first_delivery_only_inserts(self, engine, reconciler):
        result = await reconciler.reconcile_set(
            PROJECT_TASK, "ProjectId", "p-9", [{"ProjectTaskId": "N1", "TaskName": "Nueva"}]
        )
        assert result.deleted == 0
        [row] = await fetch_all(engine, PROJECT_TASK, ProjectId="p-9")
        assert row["ProjectTaskId"] == "N1"

    async def test_requires_single_column_key(self, reconciler):
        with pytest.raises(ValueError):
            await reconciler.reconcile_set(ATTENDANCE_TRACKER, "UserID", "u-1", [])


class TestInsertIfAbsent:

    async def test_second_completion_is_a_noop(self, engine, reconciler):
        row = {"ProjectId": "p-1", "ProjectTaskId": "X", "CohortId": "c-1", "UpdatedBy": "teacher-1"}

        first = await reconciler.insert_if_absent(PROJECT_TASK_TRACKING, TRACKING_DEDUP_COLUMNS, dict(row))
        second = await reconciler.insert_if_absent(
            PROJECT_TASK_TRACKING, TRACKING_DEDUP_COLUMNS, {**row, "ProjectTaskTrackingId": "otro-id"}
        )

        assert first is ReconcileOutcome.INSERTED
        assert second is ReconcileOutcome.UNCHANGED
        [stored] = await fetch_all(engine, PROJECT_TASK_TRACKING)
        assert stored["ProjectTaskTrackingId"]

    async def test_other_cohort_is_a_new_row(self, engine, reconciler):
        row = {"ProjectId": "p-1", "ProjectTaskId": "X", "CohortId": "c-1"}
        await reconciler.insert_if_absent(PROJECT_TASK_TRACKING, TRACKING_DEDUP_COLUMNS, dict(row))
        await reconciler.insert_if_absent(PROJECT_TASK_TRACKING, TRACKING_DEDUP_COLUMNS, {**row, "CohortId": "c-2"})
        assert await count(engine, PROJECT_TASK_TRACKING) == 2


class TestMemberships:

    KEY = {"UserID": "u-1", "CohortID": "c-1"}

    async def test_insert_unchanged_update(self, engine, reconciler):
        compare = ("MemberStatus", "AcademicYearID")
        row = {"MemberStatus": "active", "AcademicYearID": "ay-1"}

        assert await reconciler.upsert_by_logical_key(COHORT_MEMBER, self.KEY, row, compare) is ReconcileOutcome.INSERTED
        assert await reconciler.upsert_by_logical_key(COHORT_MEMBER, self.KEY, row, compare) is ReconcileOutcome.UNCHANGED
        changed = {**row, "MemberStatus": "dropout"}
        assert await reconciler.upsert_by_logical_key(COHORT_MEMBER, self.KEY, changed, compare) is ReconcileOutcome.UPDATED

        [stored] = await fetch_all(engine, COHORT_MEMBER)
        assert stored["MemberStatus"] == "dropout"
        assert stored["CohortMemberID"]

    async def test_find_key(self, reconciler):
        await reconciler.upsert_by_logical_key(
            COHORT_MEMBER, self.KEY, {"CohortMemberID": "m-1", "MemberStatus": "active"}, ("MemberStatus",)
        )
        assert await reconciler.find_key(COHORT_MEMBER, self.KEY) == "m-1"
        assert await reconciler.find_key(COHORT_MEMBER, {"UserID": "u-9", "CohortID": "c-1"}) is None

    async def test_update_columns_by_key(self, engine, reconciler):
        await reconciler.upsert_by_logical_key(
            COHORT_MEMBER, self.KEY, {"CohortMemberID": "m-1", "MemberStatus": "active"}, ("MemberStatus",)
        )

        outcome = await reconciler.update_columns_by_key(
            COHORT_MEMBER,
            {"CohortMemberID": "m-1"},
            {"Subject": ["Maths", "Science"], "UserID": "hijack"},
            allowed=COHORT_MEMBER_CUSTOM_COLUMNS,
        )

        assert outcome is ReconcileOutcome.UPDATED
        [stored] = await fetch_all(engine, COHORT_MEMBER)
        assert stored["Subject"] == "Maths"
        assert stored["UserID"] == "u-1"

    async def test_update_columns_on_missing_row(self, engine, reconciler):
        outcome = await reconciler.update_columns_by_key(
            COHORT_MEMBER, {"CohortMemberID": "ghost"}, {"Fees": "paid"}, allowed=COHORT_MEMBER_CUSTOM_COLUMNS
        )
        assert outcome is ReconcileOutcome.UNCHANGED
        assert await count(engine, COHORT_MEMBER) == 0

    async def test_array_columns_from_catalog(self, engine):
        catalog = ColumnTypeCatalog(array_columns=frozenset({("CohortMember", "Subject")}))
        reconciler = RecordReconciler(engine, catalog)
        await reconciler.upsert_by_logical_key(
            COHORT_MEMBER, self.KEY, {"CohortMemberID": "m-1"}, ()
        )
        captured = {}

        async def fake_update(conn, patch):
            captured.update(patch.columns)
            return 1

        reconciler._update = fake_update
        await reconciler.update_columns_by_key(
            COHORT_MEMBER, {"CohortMemberID": "m-1"}, {"Subject": "Maths"}, allowed=COHORT_MEMBER_CUSTOM_COLUMNS
        )
        assert captured == {"Subject": ["Maths"]}


def lies_once(original, first_result):
    """Envuelve un método async: la primera llamada devuelve `first_result`, las demás delegan."""
    calls = []

    async def wrapper(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            return first_result
        return await original(*args, **kwargs)

    wrapper.calls = calls
    return wrapper


class TestConcurrentInserts:
    """Otro escritor inserta la misma clave entre la lectura y el insert."""

    async def test_apply_patch_retries_as_update(self, engine, reconciler):
        key = {**ATTENDANCE_KEY, "TenantID": None}
        await reconciler.apply_patch(ATTENDANCE_TRACKER, key, {"day01": {"attendance": "present"}})
        reconciler._update = lies_once(reconciler._update, 0)

        outcome = await reconciler.apply_patch(ATTENDANCE_TRACKER, key, {"day02": {"attendance": "absent"}})

        assert outcome is ReconcileOutcome.UPDATED
        assert len(reconciler._update.calls) == 2
        [row] = await fetch_all(engine, ATTENDANCE_TRACKER)
        assert row["day01"] == {"attendance": "present"}
        assert row["day02"] == {"attendance": "absent"}

    async def test_apply_patch_gives_up_when_retry_finds_nothing(self, engine, reconciler):
        await reconciler.apply_patch(ATTENDANCE_TRACKER, ATTENDANCE_KEY, {"day01": {"attendance": "present"}})

        async def never_matches(conn, patch):
            return 0

        reconciler._update = never_matches
        with pytest.raises(PersistenceConflictException):
            await reconciler.apply_patch(ATTENDANCE_TRACKER, ATTENDANCE_KEY, {"day02": {"attendance": "absent"}})
        assert await count(engine, ATTENDANCE_TRACKER) == 1

    async def test_insert_if_absent_loses_the_race(self, engine, reconciler):
        row = {"ProjectId": "p-1", "ProjectTaskId": "X", "CohortId": None}
        await reconciler.insert_if_absent(PROJECT_TASK_TRACKING, TRACKING_DEDUP_COLUMNS, dict(row))
        reconciler._exists = lies_once(reconciler._exists, False)

        outcome = await reconciler.insert_if_absent(PROJECT_TASK_TRACKING, TRACKING_DEDUP_COLUMNS, dict(row))

        assert outcome is ReconcileOutcome.UNCHANGED
        assert len(reconciler._exists.calls) == 2
        assert await count(engine, PROJECT_TASK_TRACKING) == 1

    async def test_upsert_by_logical_key_retries(self, engine, reconciler):
        key = {"UserID": "u-1", "CohortID": "c-1"}
        await reconciler.upsert_by_logical_key(COHORT_MEMBER, key, {"MemberStatus": "active"}, ("MemberStatus",))
        reconciler._select_compared = lies_once(reconciler._select_compared, None)

        outcome = await reconciler.upsert_by_logical_key(
            COHORT_MEMBER, key, {"MemberStatus": "dropout"}, ("MemberStatus",)
        )

        assert outcome is ReconcileOutcome.UPDATED
        [stored] = await fetch_all(engine, COHORT_MEMBER)
        assert stored["MemberStatus"] == "dropout"


class TestNullSafeUniqueKeys:

    async def insert_raw(self, engine, spec, row):
        async with engine.begin() as conn:
            await conn.execute(insert(spec.table).values(row))

    async def test_attendance_keys_with_null_collide(self, engine):
        row = {**ATTENDANCE_KEY, "TenantID": None, "Context": None}
        await self.insert_raw(engine, ATTENDANCE_TRACKER, row)

        with pytest.raises(IntegrityError):
            await self.insert_raw(engine, ATTENDANCE_TRACKER, row)
        assert await count(engine, ATTENDANCE_TRACKER) == 1

    async def test_tracking_triple_with_null_cohort_collides(self, engine):
        row = {"ProjectId": "p-1", "ProjectTaskId": "X", "CohortId": None}
        await self.insert_raw(engine, PROJECT_TASK_TRACKING, {**row, "ProjectTaskTrackingId": "a"})

        with pytest.raises(IntegrityError):
            await self.insert_raw(engine, PROJECT_TASK_TRACKING, {**row, "ProjectTaskTrackingId": "b"})

    async def test_distinct_values_do_not_collide(self, engine):
        await self.insert_raw(engine, ATTENDANCE_TRACKER, {**ATTENDANCE_KEY, "TenantID": None})
        await self.insert_raw(engine, ATTENDANCE_TRACKER, ATTENDANCE_KEY)
        assert await count(engine, ATTENDANCE_TRACKER) == 2


class TestUpdateMatchingAndDelete:

    async def test_update_matching_reaches_every_row(self, engine, reconciler):
        for role in ("r-1", "r-2"):
            await reconciler.apply_patch(
                REGISTRATION_TRACKER, {"UserID": "u-1", "RoleID": role, "TenantID": "t-1"}, {"IsActive": True}
            )

        affected = await reconciler.update_matching(
            REGISTRATION_TRACKER, {"UserID": "u-1", "TenantID": "t-1"}, {"IsActive": False}
        )

        assert affected == 2
        assert [r["IsActive"] for r in await fetch_all(engine, REGISTRATION_TRACKER)] == [False, False]

    async def test_update_matching_never_inserts(self, engine, reconciler):
        affected = await reconciler.update_matching(
            REGISTRATION_TRACKER, {"UserID": "u-1", "TenantID": "t-1"}, {"IsActive": False}
        )
        assert affected == 0
        assert await count(engine, REGISTRATION_TRACKER) == 0

    async def test_update_matching_requires_filter(self, reconciler):
        with pytest.raises(ValidationException):
            await reconciler.update_matching(REGISTRATION_TRACKER, {}, {"IsActive": False})
        with pytest.raises(UnknownColumnException):
            await reconciler.update_matching(REGISTRATION_TRACKER, {"UserID": "u-1"}, {"Nope": 1})

    async def test_delete_by_key(self, engine, reconciler):
        await reconciler.upsert_rows(USERS, [{"UserID": "u-1", "UserName": "a"}])

        assert await reconciler.delete_by_key(USERS, {"UserID": "u-1"}) is ReconcileOutcome.DELETED
        assert await reconciler.delete_by_key(USERS, {"UserID": "u-1"}) is ReconcileOutcome.UNCHANGED
        assert await count(engine, USERS) == 0


async def test_fetch_value(reconciler):
    await reconciler.upsert_rows(PROJECT, [{"ProjectId": "p-1", "ProjectName": "Plan"}])

    assert await reconciler.fetch_value(PROJECT, {"ProjectId": "p-1"}, "ProjectName") == "Plan"
    assert await reconciler.fetch_value(PROJECT, {"ProjectId": "p-2"}, "ProjectName") is None
    with pytest.raises(UnknownColumnException):
        await reconciler.fetch_value(PROJECT, {"ProjectId": "p-1"}, "Secret")
