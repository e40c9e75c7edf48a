"""
Reorganización de forma para el esquema destino.

- Asistencia: evento diario -> patch parcial de la fila mensual (una columna dayNN)
- Backfill de asistencia: filas de origen agrupadas por clave natural y mes
- Árbol de tareas: padres/hijos -> filas planas con ParentId explícito
- Tareas de plantilla: enlace padre/hijo via externalId, sin asumir orden
- Tareas completadas: filas de tracking solo para status 'completed'
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from datasync.application.services.coercion import to_date, to_date_only
from datasync.shared.exceptions.domain import ValidationException

ATTENDANCE_FIXED_KEYS: Tuple[str, ...] = (
    "attendance",
    "remark",
    "latitude",
    "longitude",
    "scope",
    "lateMark",
    "absentReason",
    "validLocation",
)

COMPLETED = "completed"


@dataclass(frozen=True)
class AttendanceKey:
    """Clave natural de AttendanceTracker."""

    tenant_id: Optional[str]
    context: Optional[str]
    context_id: Optional[str]
    user_id: Optional[str]
    year: int
    month: int

    def as_columns(self) -> Dict[str, Any]:
        return {
            "TenantID": self.tenant_id,
            "Context": self.context,
            "ContextID": self.context_id,
            "UserID": self.user_id,
            "Year": self.year,
            "Month": self.month,
        }


@dataclass
class AttendancePatch:
    """Patch parcial: clave natural + columnas dayNN a escribir."""

    key: AttendanceKey
    days: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def columns(self) -> Dict[str, Any]:
        return dict(self.days)


def day_column_for(day: date) -> str:
    """Nombre de columna para el día del mes: day01 ... day31."""
    return f"day{day.day:02d}"


def build_day_value(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Valor estructurado del día.

    Los metadatos libres se aplican primero y los atributos fijos al final,
    de modo que en colisión de claves ganan los fijos. Un atributo fijo que
    el evento no trae no se escribe.
    """
    metadata = event.get("metaData")
    if isinstance(metadata, str) and metadata.strip():
        try:
            metadata = json.loads(metadata)
        except ValueError:
            logger.warning(f"metaData de asistencia no es JSON válido, se ignora: {metadata!r}")
            metadata = None
    value: Dict[str, Any] = dict(metadata) if isinstance(metadata, dict) else {}
    for key in ATTENDANCE_FIXED_KEYS:
        if key in event:
            value[key] = event[key]
    return value


def _attendance_date(event: Dict[str, Any]) -> date:
    parsed = to_date(event.get("attendanceDate"))
    if parsed is None:
        raise ValidationException(
            f"attendanceDate ausente o inválida: {event.get('attendanceDate')!r}",
            field="attendanceDate",
        )
    return parsed.date()


def _attendance_key(event: Dict[str, Any], day: date) -> AttendanceKey:
    for required in ("userId", "contextId"):
        if not event.get(required):
            raise ValidationException(f"Falta campo obligatorio de asistencia: {required}", field=required)
    return AttendanceKey(
        tenant_id=event.get("tenantId"),
        context=event.get("context"),
        context_id=event.get("contextId"),
        user_id=event.get("userId"),
        year=day.year,
        month=day.month,
    )


def reshape_attendance_event(event: Dict[str, Any]) -> AttendancePatch:
    """
    Convierte un evento de asistencia en un patch que nombra una sola columna dayNN.
    """
    day = _attendance_date(event)
    key = _attendance_key(event, day)
    return AttendancePatch(key=key, days={day_column_for(day): build_day_value(event)})


def group_attendance_rows(rows: Iterable[Dict[str, Any]]) -> List[AttendancePatch]:
    """
    Agrupa filas de asistencia de origen en un patch por (clave natural, mes).

    Filas sin fecha o sin clave se omiten con warning; si el mismo día aparece
    dos veces gana la última fila.
    """
    grouped: Dict[AttendanceKey, AttendancePatch] = {}
    for row in rows:
        try:
            day = _attendance_date(row)
            key = _attendance_key(row, day)
        except ValidationException as e:
            logger.warning(f"Fila de asistencia omitida (userId={row.get('userId')}, contextId={row.get('contextId')}): {e.message}")
            continue
        patch = grouped.setdefault(key, AttendancePatch(key=key))
        patch.days[day_column_for(day)] = build_day_value(row)
    return list(grouped.values())


def _task_dates(task: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    meta = task.get("metaInformation") if isinstance(task.get("metaInformation"), dict) else {}
    start = to_date_only(meta.get("startDate") or task.get("startDate"))
    end = to_date_only(meta.get("endDate") or task.get("endDate"))
    return start, end


def _task_row(task: Dict[str, Any], project_id: str, task_id: str, parent_id: Optional[str]) -> Dict[str, Any]:
    start, end = _task_dates(task)
    return {
        "ProjectTaskId": task_id,
        "ProjectId": project_id,
        "TaskName": task.get("name") or None,
        "ParentId": parent_id,
        "StartDate": start,
        "EndDate": end,
        "LearningResource": task.get("learningResources") or None,
        "CreatedBy": task.get("createdBy") or None,
        "UpdatedBy": task.get("updatedBy") or None,
    }


def flatten_task_tree(project_id: Optional[str], tasks: Any) -> List[Dict[str, Any]]:
    """
    Aplana el árbol de tareas de dos niveles.

    - Padres -> ParentId None
    - Hijos -> ParentId = referenceId del padre
    - Tareas sin referenceId se omiten con warning (un padre omitido arrastra a sus hijos)
    """
    if not project_id:
        raise ValidationException("Falta solutionId para actualizar tareas de proyecto", field="solutionId")
    if not isinstance(tasks, list):
        raise ValidationException("Falta el arreglo de tareas", field="tasks")

    rows: List[Dict[str, Any]] = []
    for task in tasks:
        if not isinstance(task, dict):
            continue
        parent_ref = task.get("referenceId")
        if not parent_ref:
            logger.warning(f"Tarea sin referenceId omitida: {task.get('name') or task.get('_id')} (proyecto {project_id})")
            continue
        rows.append(_task_row(task, project_id, parent_ref, None))

        children = task.get("children")
        if not isinstance(children, list):
            continue
        for child in children:
            if not isinstance(child, dict):
                continue
            child_ref = child.get("referenceId")
            if not child_ref:
                logger.warning(
                    f"Subtarea sin referenceId omitida: {child.get('name') or child.get('_id')} "
                    f"(padre {parent_ref}, proyecto {project_id})"
                )
                continue
            rows.append(_task_row(child, project_id, child_ref, parent_ref))
    return rows


def flatten_template_tasks(project_id: Optional[str], tasks: Any) -> List[Dict[str, Any]]:
    """
    Aplana tareas de plantilla enlazadas por parentTaskId -> externalId.

    El mapa externalId -> _id se construye una vez para todo el lote antes de
    emitir filas, por lo que el orden de padres e hijos no importa.
    """
    if not project_id:
        raise ValidationException("Falta solutionId para tareas de proyecto", field="solution.solutionId")
    if not isinstance(tasks, list):
        raise ValidationException("Falta el arreglo projectTemplateTasks", field="projectTemplateTasks")

    external_to_id = {
        t["externalId"]: t["_id"]
        for t in tasks
        if isinstance(t, dict) and t.get("externalId") and t.get("_id")
    }

    rows: List[Dict[str, Any]] = []
    for task in tasks:
        if not isinstance(task, dict):
            continue
        task_id = task.get("_id")
        if not task_id:
            logger.warning(f"Tarea de plantilla sin _id omitida: {task.get('name')} (proyecto {project_id})")
            continue
        parent_ref = task.get("parentTaskId")
        parent_id = external_to_id.get(parent_ref) if parent_ref else None
        if parent_ref and parent_id is None:
            logger.warning(f"parentTaskId {parent_ref} sin tarea padre en el lote (tarea {task_id})")
        row = _task_row(task, project_id, task_id, parent_id)
        # Las tareas de plantilla no traen autoria
        row["CreatedBy"] = None
        row["UpdatedBy"] = None
        rows.append(row)
    return rows


def _is_completed(node: Dict[str, Any]) -> bool:
    status = node.get("status")
    return isinstance(status, str) and status.strip().lower() == COMPLETED and bool(node.get("referenceId"))


def _tracking_row(node: Dict[str, Any], project_id: str, cohort_id: Optional[str]) -> Dict[str, Any]:
    return {
        "ProjectTaskTrackingId": str(uuid.uuid4()),
        "ProjectId": project_id,
        "ProjectTaskId": node["referenceId"],
        "CohortId": cohort_id,
        "CreatedBy": node.get("updatedBy") or None,
        "UpdatedBy": node.get("updatedBy") or None,
    }


def extract_completed_tasks(project_id: Optional[str], cohort_id: Optional[str], tasks: Any) -> List[Dict[str, Any]]:
    """
    Filas de tracking solo para nodos (padre o hijo) con status 'completed'
    y referenceId. Los demas estados no generan fila.
    """
    if not project_id:
        raise ValidationException("Falta solutionId para tracking de tareas", field="solutionId")
    if not isinstance(tasks, list):
        raise ValidationException("Falta el arreglo de tareas", field="tasks")

    rows: List[Dict[str, Any]] = []
    for task in tasks:
        if not isinstance(task, dict):
            continue
        if _is_completed(task):
            rows.append(_tracking_row(task, project_id, cohort_id))
        children = task.get("children")
        if isinstance(children, list):
            for child in children:
                if isinstance(child, dict) and _is_completed(child):
                    rows.append(_tracking_row(child, project_id, cohort_id))
    return rows
