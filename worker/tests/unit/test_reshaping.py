"""
Tests unitarios para la reorganización de asistencia y árboles de tareas.
"""
from datetime import date

import pytest

from datasync.application.services.reshaping import (
    AttendanceKey,
    build_day_value,
    day_column_for,
    extract_completed_tasks,
    flatten_task_tree,
    flatten_template_tasks,
    group_attendance_rows,
    reshape_attendance_event,
)
from datasync.shared.exceptions.domain import ValidationException


def attendance_event(**overrides):
    event = {
        "attendanceDate": "2024-03-10T09:15:00.000Z",
        "attendance": "present",
        "userId": "user-1",
        "tenantId": "tenant-1",
        "context": "cohort",
        "contextId": "cohort-1",
        "remark": None,
        "latitude": 18.5,
        "longitude": 73.8,
        "scope": "student",
        "lateMark": False,
        "absentReason": None,
        "validLocation": True,
    }
    event.update(overrides)
    return event


class TestAttendanceEvent:

    def test_single_day_column(self):
        patch = reshape_attendance_event(attendance_event())

        assert list(patch.days) == ["day10"]
        assert patch.days["day10"]["attendance"] == "present"
        assert patch.key == AttendanceKey("tenant-1", "cohort", "cohort-1", "user-1", 2024, 3)

    def test_day_uses_utc_date(self):
        patch = reshape_attendance_event(attendance_event(attendanceDate="2024-03-10T23:30:00-05:00"))
        assert list(patch.days) == ["day11"]

    def test_day_first_date(self):
        patch = reshape_attendance_event(attendance_event(attendanceDate="05-03-2024"))
        assert list(patch.days) == ["day05"]
        assert (patch.key.year, patch.key.month) == (2024, 3)

    def test_key_columns(self):
        columns = reshape_attendance_event(attendance_event()).key.as_columns()
        assert columns == {
            "TenantID": "tenant-1",
            "Context": "cohort",
            "ContextID": "cohort-1",
            "UserID": "user-1",
            "Year": 2024,
            "Month": 3,
        }

    @pytest.mark.parametrize("missing", ["userId", "contextId", "attendanceDate"])
    def test_missing_required_field(self, missing):
        with pytest.raises(ValidationException) as exc:
            reshape_attendance_event(attendance_event(**{missing: None}))
        assert exc.value.field == missing

    def test_invalid_date(self):
        with pytest.raises(ValidationException):
            reshape_attendance_event(attendance_event(attendanceDate="31-02-2024"))


class TestDayValue:

    def test_metadata_is_merged(self):
        value = build_day_value(attendance_event(metaData={"device": "tablet"}))
        assert value["device"] == "tablet"
        assert value["attendance"] == "present"

    def test_fixed_keys_win_over_metadata(self):
        value = build_day_value(attendance_event(metaData={"attendance": "absent", "extra": 1}))
        assert value["attendance"] == "present"
        assert value["extra"] == 1

    def test_metadata_json_string(self):
        value = build_day_value(attendance_event(metaData='{"device": "phone"}'))
        assert value["device"] == "phone"

    def test_invalid_metadata_string_is_ignored(self):
        value = build_day_value(attendance_event(metaData="{not json"))
        assert "device" not in value
        assert value["scope"] == "student"

    def test_absent_fixed_keys_are_not_written(self):
        value = build_day_value({"attendance": "absent"})
        assert value == {"attendance": "absent"}

    def test_absent_fixed_key_keeps_metadata_value(self):
        value = build_day_value({"attendance": "present", "metaData": {"remark": "late bus"}})
        assert value == {"remark": "late bus", "attendance": "present"}

    def test_explicit_null_fixed_key_still_wins(self):
        value = build_day_value(attendance_event(metaData={"remark": "late bus"}))
        assert value["remark"] is None


def test_day_column_for_pads():
    assert day_column_for(date(2024, 3, 1)) == "day01"
    assert day_column_for(date(2024, 3, 31)) == "day31"


class TestGroupAttendanceRows:

    def test_groups_by_key_and_month(self):
        rows = [
            attendance_event(attendanceDate="2024-03-01T08:00:00Z"),
            attendance_event(attendanceDate="2024-03-05T08:00:00Z", attendance="absent"),
            attendance_event(attendanceDate="2024-04-02T08:00:00Z"),
            attendance_event(attendanceDate="2024-03-01T08:00:00Z", userId="user-2"),
        ]
        patches = group_attendance_rows(rows)

        assert len(patches) == 3
        march = next(p for p in patches if p.key.user_id == "user-1" and p.key.month == 3)
        assert sorted(march.columns()) == ["day01", "day05"]
        assert march.days["day05"]["attendance"] == "absent"

    def test_invalid_rows_are_skipped(self):
        rows = [attendance_event(), attendance_event(userId=None), attendance_event(attendanceDate="nope")]
        assert len(group_attendance_rows(rows)) == 1

    def test_last_row_for_same_day_wins(self):
        rows = [attendance_event(attendance="absent"), attendance_event(attendance="present")]
        [patch] = group_attendance_rows(rows)
        assert patch.days["day10"]["attendance"] == "present"


TASKS = [
    {
        "_id": "a",
        "referenceId": "T1",
        "name": "Unidad 1",
        "status": "completed",
        "updatedBy": "teacher-1",
        "metaInformation": {"startDate": "2024-06-01T00:00:00Z", "endDate": "15-06-2024"},
        "children": [
            {"_id": "b", "referenceId": "T2", "name": "Leccion 1", "status": "completed", "updatedBy": "teacher-1"},
            {"_id": "c", "name": "Sin referencia", "status": "completed"},
            {"_id": "d", "referenceId": "T4", "name": "Leccion 2", "status": "inProgress"},
        ],
    },
    {"_id": "e", "name": "Padre sin referencia", "children": [{"referenceId": "T9"}]},
    {"_id": "f", "referenceId": "T3", "name": "Unidad 2", "status": "notStarted"},
]


class TestFlattenTaskTree:

    def test_parents_and_children(self):
        rows = flatten_task_tree("project-1", TASKS)
        by_id = {r["ProjectTaskId"]: r for r in rows}

        assert sorted(by_id) == ["T1", "T2", "T3", "T4"]
        assert by_id["T1"]["ParentId"] is None
        assert by_id["T3"]["ParentId"] is None
        assert by_id["T2"]["ParentId"] == "T1"
        assert by_id["T4"]["ParentId"] == "T1"
        assert all(r["ProjectId"] == "project-1" for r in rows)

    def test_dates_from_meta_information(self):
        [t1] = [r for r in flatten_task_tree("project-1", TASKS) if r["ProjectTaskId"] == "T1"]
        assert t1["StartDate"] == "2024-06-01"
        assert t1["EndDate"] == "2024-06-15"

    def test_parent_without_reference_drops_children(self):
        rows = flatten_task_tree("project-1", TASKS)
        assert "T9" not in {r["ProjectTaskId"] for r in rows}

    def test_empty_task_list(self):
        assert flatten_task_tree("project-1", []) == []

    def test_requires_project_and_tasks(self):
        with pytest.raises(ValidationException):
            flatten_task_tree(None, TASKS)
        with pytest.raises(ValidationException):
            flatten_task_tree("project-1", None)


class TestFlattenTemplateTasks:

    def test_children_before_parents(self):
        tasks = [
            {"_id": "child-1", "name": "Hijo", "parentTaskId": "EXT-1"},
            {"_id": "parent-1", "name": "Padre", "externalId": "EXT-1"},
        ]
        rows = {r["ProjectTaskId"]: r for r in flatten_template_tasks("project-1", tasks)}

        assert rows["child-1"]["ParentId"] == "parent-1"
        assert rows["parent-1"]["ParentId"] is None

    def test_unknown_parent_reference(self):
        rows = flatten_template_tasks("project-1", [{"_id": "x", "parentTaskId": "EXT-404"}])
        assert rows[0]["ParentId"] is None

    def test_tasks_without_id_are_skipped(self):
        rows = flatten_template_tasks("project-1", [{"name": "sin id"}, {"_id": "ok"}])
        assert [r["ProjectTaskId"] for r in rows] == ["ok"]

    def test_authorship_is_not_carried(self):
        [row] = flatten_template_tasks("project-1", [{"_id": "x", "createdBy": "someone"}])
        assert row["CreatedBy"] is None
        assert row["UpdatedBy"] is None


class TestCompletedTasks:

    def test_only_completed_with_reference(self):
        rows = extract_completed_tasks("project-1", "cohort-1", TASKS)

        assert [r["ProjectTaskId"] for r in rows] == ["T1", "T2"]
        assert all(r["CohortId"] == "cohort-1" for r in rows)
        assert rows[0]["CreatedBy"] == "teacher-1"
        assert rows[0]["ProjectTaskTrackingId"] != rows[1]["ProjectTaskTrackingId"]

    def test_status_is_case_insensitive(self):
        rows = extract_completed_tasks("project-1", None, [{"referenceId": "T1", "status": "Completed"}])
        assert len(rows) == 1

    def test_requires_project(self):
        with pytest.raises(ValidationException):
            extract_completed_tasks("", "cohort-1", TASKS)
