"""
Orquestador de transformaciones.

Compone resolución de custom fields, coerción, clasificación jerárquica y
reorganización de forma para producir filas con la forma del destino
(nombres de columna -> valores). No escribe en el destino.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from datasync.application.services.coercion import (
    first_or_self,
    object_id,
    status_to_boolean,
    to_date,
    to_date_only,
    to_number,
    to_text,
    to_uuid,
)
from datasync.application.services.cohort_type import CohortTypeResolver, classify_cohort_type
from datasync.application.services.custom_field_resolver import (
    LABEL_KEYS,
    apply_mappings,
    extract_value,
    resolve,
)
from datasync.application.services.field_mappings import (
    COHORT_FIELD_INDEX,
    COHORT_FIELD_MAPPINGS,
    COHORT_MEMBER_LABEL_TO_COLUMN,
    COHORT_TYPE_FIELD_ID,
    USER_FIELD_MAPPINGS,
    USER_GENDER_FIELD_ID,
)
from datasync.application.services.reshaping import (
    AttendancePatch,
    extract_completed_tasks,
    flatten_task_tree,
    flatten_template_tasks,
    reshape_attendance_event,
)
from datasync.domain.entities.custom_field import parse_selected_value
from datasync.shared.exceptions.domain import ValidationException
from datasync.shared.utils.datetime_utils import utc_now


def _require(value: Any, field: str, entity: str) -> Any:
    if value is None or value == "":
        raise ValidationException(f"{entity}: falta campo obligatorio '{field}'", field=field)
    return value


def _drop_none(row: Dict[str, Any], *columns: str) -> Dict[str, Any]:
    """Quita columnas con None para que apliquen los defaults del destino."""
    for column in columns:
        if row.get(column) is None:
            row.pop(column, None)
    return row


def compose_full_name(first: Optional[str], middle: Optional[str], last: Optional[str]) -> Optional[str]:
    """first + middle + last, recortado; None si queda vacío."""
    parts = [p.strip() for p in (first, middle, last) if isinstance(p, str) and p.strip()]
    return " ".join(parts) or None


class TransformService:
    """
    Transformaciones por tipo de evento / registro de origen.

    El resolvedor de tipos de cohorte es opcional: sin el, las cohortes
    hijas mantienen su tipo crudo.
    """

    def __init__(self, cohort_type_resolver: Optional[CohortTypeResolver] = None) -> None:
        self._cohort_types = cohort_type_resolver

    # ------------------------------------------------------------------
    # Usuarios
    # ------------------------------------------------------------------
    def transform_user(self, data: Dict[str, Any]) -> Dict[str, Any]:
        user_id = _require(data.get("userId"), "userId", "Users")
        custom_fields = data.get("customFields") if isinstance(data.get("customFields"), list) else []

        row: Dict[str, Any] = {
            "UserID": user_id,
            "UserName": data.get("username"),
            "UserFullName": compose_full_name(data.get("firstName"), data.get("middleName"), data.get("lastName")),
            "UserEmail": data.get("email"),
            "UserMobile": to_text(data.get("mobile")),
            "UserDoB": to_date_only(data.get("dob")),
            "UserGender": data.get("gender") or resolve(custom_fields, USER_GENDER_FIELD_ID),
            "UserIsActive": status_to_boolean(data.get("status")),
            "CreatedAt": to_date(data.get("createdAt")),
            "UpdatedAt": to_date(data.get("updatedAt")),
            "CreatedBy": data.get("createdBy"),
            "UpdatedBy": data.get("updatedBy"),
            "UserCustomField": custom_fields or None,
        }
        row.update(apply_mappings(custom_fields, USER_FIELD_MAPPINGS))
        return _drop_none(row, "CreatedAt", "UpdatedAt", "UserIsActive")

    def transform_user_login(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """(clave, columnas) para registrar el último login."""
        user_id = _require(data.get("userId"), "userId", "Users")
        last_login = to_date(data.get("lastLogin") or data.get("loginTime") or data.get("timestamp")) or utc_now()
        return {"UserID": user_id}, {"UserLastLogin": last_login}

    def transform_cohort_members(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Filas CohortMember desde user.cohorts[]."""
        user_id = _require(data.get("userId"), "userId", "CohortMember")
        rows: List[Dict[str, Any]] = []
        cohorts = data.get("cohorts") if isinstance(data.get("cohorts"), list) else []
        for cohort in cohorts:
            if not isinstance(cohort, dict) or not cohort.get("batchId"):
                logger.warning(f"Membresía sin batchId omitida para usuario {user_id}: {cohort!r}")
                continue
            row = {
                "UserID": user_id,
                "CohortID": cohort["batchId"],
                "MemberStatus": cohort.get("cohortMemberStatus") or "active",
                "AcademicYearID": cohort.get("academicYearId"),
                "CohortMemberID": cohort.get("cohortMemberId"),
            }
            rows.append(_drop_none(row, "CohortMemberID"))
        return rows

    def transform_registrations(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Filas RegistrationTracker desde tenantData[].roles[]."""
        user_id = _require(data.get("userId"), "userId", "RegistrationTracker")
        platform_date = to_date(data.get("createdAt")) or utc_now()
        rows: List[Dict[str, Any]] = []
        tenants = data.get("tenantData") if isinstance(data.get("tenantData"), list) else []
        for tenant in tenants:
            if not isinstance(tenant, dict):
                continue
            roles = tenant.get("roles") if isinstance(tenant.get("roles"), list) else []
            for role in roles:
                if not isinstance(role, dict) or not role.get("roleId") or not tenant.get("tenantId"):
                    logger.warning(f"Registro sin roleId/tenantId omitido para usuario {user_id}")
                    continue
                rows.append({
                    "UserID": user_id,
                    "RoleID": role["roleId"],
                    "TenantID": tenant["tenantId"],
                    "PlatformRegnDate": platform_date,
                    "TenantRegnDate": platform_date,
                    "IsActive": True,
                    "Reason": tenant.get("reason") or role.get("reason") or data.get("reason"),
                })
        return rows

    def transform_registration_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fila RegistrationTracker desde UserTenantMapping x UserRolesMapping
        (backfill). Sin fecha de tenant se usa la de asignación del rol.
        """
        for field in ("userId", "roleId", "tenantId"):
            _require(row.get(field), field, "RegistrationTracker")
        regn_date = to_date(row.get("tenant_regn_date")) or to_date(row.get("role_assigned_date"))
        return {
            "UserID": row["userId"],
            "RoleID": row["roleId"],
            "TenantID": row["tenantId"],
            "PlatformRegnDate": regn_date,
            "TenantRegnDate": regn_date,
            "IsActive": True,
        }

    def transform_user_tenant_status(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        (filtro, columnas) de RegistrationTracker para USER_TENANT_STATUS_UPDATE.

        El filtro es (UserID, TenantID) y alcanza a todos los roles del
        usuario en el tenant. status 'active' -> IsActive True.
        """
        where = {
            "UserID": _require(data.get("userId"), "userId", "RegistrationTracker"),
            "TenantID": _require(data.get("tenantId"), "tenantId", "RegistrationTracker"),
        }
        columns = {
            "IsActive": status_to_boolean(data.get("status")),
            "Reason": to_text(data.get("reason")),
            "TenantRegnDate": to_date(data.get("tenantRegnDate")),
            "PlatformRegnDate": to_date(data.get("platformRegnDate")),
        }
        return where, _drop_none(columns, *list(columns))

    # ------------------------------------------------------------------
    # Cohortes
    # ------------------------------------------------------------------
    async def transform_cohort(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fila Cohort con tipo derivado. El tipo crudo sale del campo
        "center type"; si no existe se usa `type` del evento.
        """
        cohort_id = _require(data.get("cohortId"), "cohortId", "Cohort")
        custom_fields = data.get("customFields") if isinstance(data.get("customFields"), list) else []
        parent_id = data.get("parentId") or None

        raw_type = resolve(custom_fields, COHORT_TYPE_FIELD_ID) or data.get("type")
        derived_type = await self.derive_cohort_type(cohort_id, raw_type, parent_id)

        row: Dict[str, Any] = {
            "CohortID": cohort_id,
            "TenantID": data.get("tenantId"),
            "CohortName": data.get("name"),
            "CreatedOn": to_date(data.get("createdAt")),
            "ParentID": parent_id,
            "Type": derived_type,
            "Status": data.get("status"),
        }
        row.update(apply_mappings(custom_fields, COHORT_FIELD_MAPPINGS))
        logger.info(f"Cohorte {cohort_id}: tipo original {raw_type!r} -> {derived_type!r}")
        return _drop_none(row, "Status")

    async def derive_cohort_type(
        self,
        cohort_id: Optional[str],
        raw_type: Optional[str],
        parent_id: Optional[str],
    ) -> Optional[str]:
        if self._cohort_types is None:
            return classify_cohort_type(raw_type, bool(parent_id), None)
        return await self._cohort_types.resolve(cohort_id, raw_type, parent_id)

    async def transform_cohort_field_values(
        self,
        cohort_id: str,
        parent_id: Optional[str],
        field_values: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Columnas de Cohort desde filas FieldValues del origen (backfill).

        Solo se incluyen columnas con algún fieldId mapeado presente. Si la
        cohorte es hija y no trae campo de tipo, igual se sintetiza el tipo
        de batch a partir del padre.
        """
        custom_fields = [
            {"fieldId": fv.get("fieldId"), "selectedValues": _as_selected_values(fv.get("value"))}
            for fv in field_values
        ]
        present_ids = {fv.get("fieldId") for fv in field_values}
        mapped = [m for m in COHORT_FIELD_MAPPINGS if present_ids.intersection(m.field_ids)]
        columns = apply_mappings(custom_fields, tuple(mapped))

        unknown = sorted(fid for fid in present_ids if fid not in COHORT_FIELD_INDEX and fid != COHORT_TYPE_FIELD_ID)
        if unknown:
            logger.debug(f"Cohorte {cohort_id}: fieldIds sin mapeo ignorados: {unknown}")

        raw_type = resolve(custom_fields, COHORT_TYPE_FIELD_ID)
        if raw_type is not None or COHORT_TYPE_FIELD_ID in present_ids or parent_id:
            derived = await self.derive_cohort_type(cohort_id, raw_type, parent_id)
            if derived is not None or COHORT_TYPE_FIELD_ID in present_ids:
                columns["Type"] = derived
        return columns

    def transform_cohort_core(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Fila base de Cohort desde la tabla Cohort del origen (backfill)."""
        cohort_id = _require(row.get("cohortId"), "cohortId", "Cohort")
        return {
            "CohortID": cohort_id,
            "TenantID": row.get("tenantId"),
            "CohortName": row.get("name"),
            "CreatedOn": to_date(row.get("createdAt")),
            # ParentID es uuid en el destino; valores no-uuid se descartan
            "ParentID": to_uuid(row.get("parentId")) if row.get("parentId") else None,
        }

    def transform_cohort_member_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Columnas de custom fields de una membresía.

        Fuentes (en orden, la última gana):
        - status -> MemberStatus
        - mapa directo `fields` ({"Subject": ..., ...}), claves case-insensitive
        - customFields por label (subject/fees/registration/board)
        """
        updates: Dict[str, Any] = {}
        status = data.get("status") or data.get("MemberStatus")
        if status:
            updates["MemberStatus"] = status

        fields = data.get("fields")
        if isinstance(fields, dict):
            for name, value in fields.items():
                column = COHORT_MEMBER_LABEL_TO_COLUMN.get(str(name or "").strip().lower())
                if column:
                    updates[column] = None if value is None else str(value)

        custom_fields = data.get("customFields") if isinstance(data.get("customFields"), list) else []
        for field in custom_fields:
            if not isinstance(field, dict):
                continue
            column = COHORT_MEMBER_LABEL_TO_COLUMN.get(str(field.get("label") or "").strip().lower())
            if not column:
                continue
            if "value" in field:
                updates[column] = field.get("value")
            else:
                values = field.get("selectedValues") if isinstance(field.get("selectedValues"), list) else []
                updates[column] = extract_value(parse_selected_value(values[0]), LABEL_KEYS) if values else None
        return updates

    def transform_cohort_member_row(self, row: Dict[str, Any], slot: Any = None) -> Dict[str, Any]:
        """Fila CohortMember desde CohortMembers del origen (backfill)."""
        member_id = _require(row.get("cohortMembershipId"), "cohortMembershipId", "CohortMember")
        return {
            "CohortMemberID": member_id,
            "CohortID": row.get("cohortId"),
            "UserID": row.get("userId"),
            "MemberStatus": row.get("status") or None,
            "AcademicYearID": row.get("academicYearId") or None,
            "Slot": to_text(first_or_self(slot)),
        }

    # ------------------------------------------------------------------
    # Asistencia
    # ------------------------------------------------------------------
    def transform_attendance(self, data: Dict[str, Any]) -> AttendancePatch:
        return reshape_attendance_event(data)

    # ------------------------------------------------------------------
    # Contenido
    # ------------------------------------------------------------------
    def transform_content(self, data: Dict[str, Any]) -> Dict[str, Any]:
        identifier = _require(data.get("identifier"), "identifier", "Content")
        return {
            "identifier": identifier,
            "name": data.get("name") or None,
            "author": data.get("author") or None,
            "primaryCategory": data.get("primaryCategory") or None,
            "channel": data.get("channel") or None,
            "status": data.get("status") or None,
            "contentType": data.get("contentType") or None,
            "contentLanguage": to_text(data.get("contentLanguage")),
            "domains": to_text(data.get("domains")),
            "subdomains": to_text(data.get("subdomains")),
            "subjects": to_text(data.get("subjects")),
            "targetAgeGroup": to_text(data.get("targetAgeGroup")),
            "audience": to_text(data.get("audience")),
            "program": to_text(data.get("program")),
            "keywords": to_text(data.get("keywords")),
            "description": data.get("description") or None,
            "createdBy": data.get("createdBy") or None,
            "lastPublishedOn": to_date(data.get("lastPublishedOn")),
            "createdOn": to_date(data.get("createdOn")),
        }

    def transform_content_tracker(
        self,
        data: Dict[str, Any],
        content_name: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        (clave, columnas) de ContentTracker.

        Estado según details[].eid: END -> completed, START -> started,
        si no inprogress. timeSpent = suma de duration.
        """
        user_id = _require(data.get("userId"), "userId", "ContentTracker")
        content_id = _require(data.get("contentId"), "contentId", "ContentTracker")

        status = "inprogress"
        time_spent = 0
        details = data.get("details") if isinstance(data.get("details"), list) else []
        eids = {d.get("eid") for d in details if isinstance(d, dict)}
        for detail in details:
            if isinstance(detail, dict) and isinstance(detail.get("duration"), (int, float)):
                time_spent += detail["duration"]
        if "END" in eids:
            status = "completed"
        elif "START" in eids:
            status = "started"

        key = {"userId": user_id, "contentId": content_id, "tenantId": data.get("tenantId")}
        columns = {
            "contentTrackerId": data.get("contentTrackingId"),
            "courseId": data.get("courseId"),
            "contentName": content_name or data.get("contentName"),
            "contentType": data.get("contentType"),
            "contentTrackingStatus": status,
            "timeSpent": int(round(time_spent)),
        }
        return key, columns

    # ------------------------------------------------------------------
    # Evaluaciones
    # ------------------------------------------------------------------
    def transform_assessment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fila AssessmentTracker desde ASSESSMENT_CREATED / ASSESSMENT_UPDATED.

        assessmentId es el contentId o, si falta, el courseId. El resumen se
        guarda serializado como JSON.
        """
        tracking_id = _require(
            data.get("assessmentTrackingId") or data.get("assessTrackingId"),
            "assessmentTrackingId",
            "AssessmentTracker",
        )
        summary = data.get("assessmentSummary")
        return {
            "assessTrackingId": tracking_id,
            "assessmentId": data.get("contentId") or data.get("courseId"),
            "courseId": data.get("courseId"),
            "assessmentName": to_text(data.get("assessmentName")),
            "userId": data.get("userId"),
            "tenantId": data.get("tenantId"),
            "totalMaxScore": to_number(data.get("totalMaxScore")),
            "totalScore": to_number(data.get("totalScore")),
            "timeSpent": to_number(data.get("timeSpent")),
            "assessmentSummary": None if summary is None else json.dumps(summary, ensure_ascii=False, default=str),
            "attemptId": data.get("attemptId"),
            "assessmentType": data.get("assessmentType"),
            "evaluatedBy": data.get("evaluatedBy") or None,
        }

    # ------------------------------------------------------------------
    # Cursos
    # ------------------------------------------------------------------
    def transform_course_enrollment(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        (clave, columnas) de CourseTracker desde COURSE_ENROLLMENT_CREATED.

        La clave es (userId, courseId, tenantId, certificateId). Nombre, estado
        y fechas ausentes no se escriben, para no pisar lo ya guardado.
        """
        user_id = _require(data.get("userId"), "userId", "CourseTracker")
        course_id = _require(data.get("courseId"), "courseId", "CourseTracker")
        key = {
            "userId": user_id,
            "courseId": course_id,
            "tenantId": data.get("tenantId"),
            "certificateId": data.get("certificateId") or None,
        }
        columns = {
            "courseTrackerId": data.get("courseTrackerId"),
            "courseName": to_text(data.get("courseName") or data.get("name")),
            "courseTrackingStatus": data.get("status") or None,
            "courseTrackingStartDate": to_date(data.get("createdOn")),
            "courseTrackingEndDate": to_date(data.get("completedOn")),
        }
        return key, _drop_none(columns, *list(columns))

    def transform_course_status(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        (filtro, columnas) para COURSE_STATUS_UPDATED.

        El filtro es (tenantId, userId, courseId); solo se escriben los campos
        que trae el evento. completedOn en null limpia la fecha de fin.
        """
        where = {
            "userId": _require(data.get("userId"), "userId", "CourseTracker"),
            "courseId": _require(data.get("courseId"), "courseId", "CourseTracker"),
        }
        if "tenantId" in data:
            where["tenantId"] = data["tenantId"]

        columns: Dict[str, Any] = {}
        if "status" in data:
            columns["courseTrackingStatus"] = data["status"]
        if data.get("createdOn") is not None:
            started = to_date(data["createdOn"])
            if started is not None:
                columns["courseTrackingStartDate"] = started
        if "completedOn" in data:
            columns["courseTrackingEndDate"] = to_date(data["completedOn"])
        if "certificateId" in data:
            columns["certificateId"] = data["certificateId"] or None
        return where, columns

    # ------------------------------------------------------------------
    # Proyectos
    # ------------------------------------------------------------------
    def transform_project(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Proyecto desde COURSE_PLANNER_PROJECT_CREATED."""
        solution = data.get("solution") if isinstance(data.get("solution"), dict) else {}
        project_id = _require(solution.get("solutionId"), "solution.solutionId", "Project")
        template = _require(data.get("projectTemplate"), "projectTemplate", "Project")
        meta = template.get("metaData") if isinstance(template.get("metaData"), dict) else {}
        program = data.get("program") if isinstance(data.get("program"), dict) else {}
        return {
            "ProjectId": project_id,
            "ProjectName": template.get("title") or None,
            "Board": meta.get("board") or None,
            "Medium": meta.get("medium") or None,
            "Subject": meta.get("subject") or None,
            "Grade": meta.get("class") or None,
            "Type": meta.get("type") or None,
            "StartDate": to_date_only(program.get("startDate")),
            "EndDate": to_date_only(program.get("endDate")),
            "CreatedBy": None,
        }

    def transform_project_template_tasks(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        solution = data.get("solution") if isinstance(data.get("solution"), dict) else {}
        return flatten_template_tasks(solution.get("solutionId"), data.get("projectTemplateTasks"))

    def transform_project_task_update(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        return flatten_task_tree(data.get("solutionId"), data.get("tasks"))

    def transform_project_task_tracking(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        return extract_completed_tasks(data.get("solutionId"), data.get("entityId") or None, data.get("tasks"))

    def transform_solution(self, solution: Dict[str, Any]) -> Dict[str, Any]:
        """Proyecto desde un documento de la colección solutions (backfill)."""
        project_id = _require(object_id(solution.get("_id")), "_id", "Project")
        scope = solution.get("scope") if isinstance(solution.get("scope"), dict) else {}
        return {
            "ProjectId": project_id,
            "ProjectName": solution.get("name") or None,
            "Board": first_or_self(scope.get("board")) or None,
            "Medium": first_or_self(scope.get("medium")) or None,
            "Subject": first_or_self(scope.get("subject")) or None,
            "Grade": first_or_self(scope.get("class")) or None,
            "Type": first_or_self(scope.get("courseType")) or None,
            "StartDate": to_date_only(solution.get("startDate")),
            "EndDate": to_date_only(solution.get("endDate")),
            "CreatedBy": solution.get("createdBy") or None,
            "TenantId": solution.get("tenantId") or None,
            "AcademicYear": solution.get("academicYear") or None,
        }

    def transform_project_document_tasks(self, project: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Árbol de tareas de un documento de la colección projects (backfill)."""
        return flatten_task_tree(object_id(project.get("solutionId")), project.get("tasks"))

    def transform_project_document_tracking(self, project: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Tareas completadas de un documento projects; exige entityId."""
        entity_id = _require(object_id(project.get("entityId")), "entityId", "ProjectTaskTracking")
        return extract_completed_tasks(object_id(project.get("solutionId")), entity_id, project.get("tasks"))


def _as_selected_values(value: Any) -> List[Any]:
    """Valor de FieldValues (text[] o escalar) como lista selectedValues."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
