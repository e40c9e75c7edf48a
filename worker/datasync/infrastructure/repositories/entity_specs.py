"""
Especificación por entidad para la reconciliación.

Cada EntitySpec fija:
- clave natural (columnas de matching)
- columnas que un patch puede nombrar (lista permitida)
- columnas que un upsert refresca en conflicto
- columnas que solo se escriben al insertar

Un Patch se valida contra la EntitySpec antes de construir cualquier sentencia.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from sqlalchemy import Table

from datasync.infrastructure.database.models import (
    DAY_COLUMNS,
    AssessmentTrackerModel,
    AttendanceTrackerModel,
    CohortMemberModel,
    CohortModel,
    ContentModel,
    ContentTrackerModel,
    CourseTrackerModel,
    ProjectModel,
    ProjectTaskModel,
    ProjectTaskTrackingModel,
    RegistrationTrackerModel,
    UserModel,
)
from datasync.shared.exceptions.domain import UnknownColumnException, ValidationException


@dataclass(frozen=True)
class EntitySpec:
    name: str
    table: Table
    key_columns: Tuple[str, ...]
    patchable: FrozenSet[str]
    upsert_update_columns: Tuple[str, ...] = ()
    insert_only: FrozenSet[str] = field(default_factory=frozenset)
    updated_column: Optional[str] = None
    generated_id_column: Optional[str] = None

    @property
    def allowed(self) -> FrozenSet[str]:
        return self.patchable | frozenset(self.key_columns)

    def validate_columns(self, columns: Mapping[str, Any]) -> None:
        unknown = [c for c in columns if c not in self.allowed]
        if unknown:
            raise UnknownColumnException(self.name, unknown)

    def key_of(self, row: Mapping[str, Any]) -> Tuple[Any, ...]:
        return tuple(row.get(c) for c in self.key_columns)

    def split(self, row: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Separa una fila completa en (clave, columnas)."""
        key = {c: row.get(c) for c in self.key_columns}
        columns = {c: v for c, v in row.items() if c not in self.key_columns}
        return key, columns


@dataclass(frozen=True)
class Patch:
    """Mapping columna -> valor validado contra la lista permitida de la entidad."""

    spec: EntitySpec
    key: Dict[str, Any]
    columns: Dict[str, Any]

    @classmethod
    def build(cls, spec: EntitySpec, key: Mapping[str, Any], columns: Mapping[str, Any]) -> "Patch":
        missing = [c for c in spec.key_columns if c not in key]
        extra = [c for c in key if c not in spec.key_columns]
        if missing:
            raise ValidationException(
                f"Clave natural incompleta para {spec.name}: faltan {', '.join(missing)}",
                field=missing[0],
            )
        if extra:
            raise UnknownColumnException(spec.name, extra)
        spec.validate_columns(columns)
        overlap = [c for c in columns if c in spec.key_columns]
        if overlap:
            raise UnknownColumnException(spec.name, overlap)
        return cls(spec=spec, key=dict(key), columns=dict(columns))

    def update_values(self) -> Dict[str, Any]:
        return {c: v for c, v in self.columns.items() if c not in self.spec.insert_only}

    def insert_values(self) -> Dict[str, Any]:
        return {**self.key, **self.columns}


def _columns_of(table: Table, *exclude: str) -> FrozenSet[str]:
    return frozenset(c.name for c in table.columns if c.name not in exclude)


_users = UserModel.__table__
_cohort = CohortModel.__table__
_member = CohortMemberModel.__table__
_attendance = AttendanceTrackerModel.__table__
_registration = RegistrationTrackerModel.__table__
_project = ProjectModel.__table__
_task = ProjectTaskModel.__table__
_tracking = ProjectTaskTrackingModel.__table__
_content = ContentModel.__table__
_content_tracker = ContentTrackerModel.__table__
_assessment = AssessmentTrackerModel.__table__
_course_tracker = CourseTrackerModel.__table__


USERS = EntitySpec(
    name="Users",
    table=_users,
    key_columns=("UserID",),
    patchable=_columns_of(_users, "UserID"),
    upsert_update_columns=tuple(sorted(_columns_of(_users, "UserID", "CreatedAt", "CreatedBy"))),
    insert_only=frozenset({"CreatedAt", "CreatedBy"}),
    updated_column="UpdatedAt",
)

COHORT = EntitySpec(
    name="Cohort",
    table=_cohort,
    key_columns=("CohortID",),
    patchable=_columns_of(_cohort, "CohortID"),
    upsert_update_columns=tuple(sorted(_columns_of(_cohort, "CohortID", "createdAt"))),
    insert_only=frozenset({"createdAt"}),
    updated_column="updatedAt",
)

# Columnas de custom fields que se pueden actualizar en una membresía
COHORT_MEMBER_CUSTOM_COLUMNS: FrozenSet[str] = frozenset({"Subject", "Fees", "Registration", "Board", "MemberStatus"})

COHORT_MEMBER = EntitySpec(
    name="CohortMember",
    table=_member,
    key_columns=("CohortMemberID",),
    patchable=_columns_of(_member, "CohortMemberID", "CreatedAt"),
    upsert_update_columns=("CohortID", "UserID", "MemberStatus", "AcademicYearID", "Slot"),
    updated_column="UpdatedAt",
    generated_id_column="CohortMemberID",
)

ATTENDANCE_TRACKER = EntitySpec(
    name="AttendanceTracker",
    table=_attendance,
    key_columns=("TenantID", "Context", "ContextID", "UserID", "Year", "Month"),
    patchable=frozenset(DAY_COLUMNS),
)

REGISTRATION_TRACKER = EntitySpec(
    name="RegistrationTracker",
    table=_registration,
    key_columns=("UserID", "RoleID", "TenantID"),
    patchable=frozenset({"PlatformRegnDate", "TenantRegnDate", "IsActive", "Reason"}),
)

PROJECT = EntitySpec(
    name="Project",
    table=_project,
    key_columns=("ProjectId",),
    patchable=_columns_of(_project, "ProjectId"),
    # TenantId y AcademicYear nunca se pisan una vez fijados
    upsert_update_columns=(
        "ProjectName", "Board", "Medium", "Subject", "Grade", "Type", "StartDate", "EndDate", "CreatedBy",
    ),
)

PROJECT_TASK = EntitySpec(
    name="ProjectTask",
    table=_task,
    key_columns=("ProjectTaskId",),
    patchable=_columns_of(_task, "ProjectTaskId", "CreatedAt"),
    upsert_update_columns=(
        "ProjectId", "TaskName", "ParentId", "StartDate", "EndDate", "LearningResource", "CreatedBy", "UpdatedBy",
    ),
    updated_column="UpdatedAt",
)

PROJECT_TASK_TRACKING = EntitySpec(
    name="ProjectTaskTracking",
    table=_tracking,
    key_columns=("ProjectTaskTrackingId",),
    patchable=_columns_of(_tracking, "ProjectTaskTrackingId", "CreatedAt", "UpdatedAt"),
    generated_id_column="ProjectTaskTrackingId",
)

TRACKING_DEDUP_COLUMNS: Tuple[str, ...] = ("ProjectId", "ProjectTaskId", "CohortId")

CONTENT = EntitySpec(
    name="Content",
    table=_content,
    key_columns=("identifier",),
    patchable=_columns_of(_content, "identifier"),
    upsert_update_columns=tuple(sorted(_columns_of(_content, "identifier"))),
)

CONTENT_TRACKER = EntitySpec(
    name="ContentTracker",
    table=_content_tracker,
    key_columns=("userId", "contentId", "tenantId"),
    patchable=_columns_of(_content_tracker, "userId", "contentId", "tenantId"),
    insert_only=frozenset({"contentTrackerId", "createdAt"}),
    updated_column="updatedAt",
    generated_id_column="contentTrackerId",
)

ASSESSMENT_TRACKER = EntitySpec(
    name="AssessmentTracker",
    table=_assessment,
    key_columns=("assessTrackingId",),
    patchable=_columns_of(_assessment, "assessTrackingId", "createdAt"),
    # En conflicto solo se refrescan puntajes, resumen y evaluador
    upsert_update_columns=(
        "totalMaxScore", "totalScore", "timeSpent", "assessmentSummary", "assessmentType", "evaluatedBy",
    ),
    updated_column="updatedAt",
)

COURSE_TRACKER = EntitySpec(
    name="CourseTracker",
    table=_course_tracker,
    key_columns=("userId", "courseId", "tenantId", "certificateId"),
    patchable=_columns_of(_course_tracker, "userId", "courseId", "tenantId", "certificateId", "createdAt"),
    insert_only=frozenset({"courseTrackerId"}),
    updated_column="updatedAt",
    generated_id_column="courseTrackerId",
)
