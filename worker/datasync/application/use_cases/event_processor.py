"""
Casos de uso para eventos en vivo.

Enruta cada mensaje por topic y eventType hacia su transformación y la
operación de reconciliación correspondiente. Los fallos se propagan al
llamador; el loop de consumo los registra y sigue con el siguiente mensaje.
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import select

from datasync.application.services.coercion import to_date
from datasync.application.services.cohort_type import classify_cohort_type, raw_type_from_stored
from datasync.application.services.transform_service import TransformService
from datasync.domain.entities.reconcile import BatchSummary, ReconcileOutcome
from datasync.infrastructure.repositories.entity_specs import (
    ASSESSMENT_TRACKER,
    ATTENDANCE_TRACKER,
    COHORT,
    COHORT_MEMBER,
    COHORT_MEMBER_CUSTOM_COLUMNS,
    CONTENT,
    CONTENT_TRACKER,
    COURSE_TRACKER,
    PROJECT,
    PROJECT_TASK,
    PROJECT_TASK_TRACKING,
    REGISTRATION_TRACKER,
    TRACKING_DEDUP_COLUMNS,
    USERS,
)
from datasync.infrastructure.repositories.reconciler import RecordReconciler
from datasync.shared.exceptions.base import SyncException
from datasync.shared.exceptions.domain import UnsupportedEventException, ValidationException
from datasync.shared.utils.datetime_utils import within_seconds

PROJECT_SYNC_TOPIC = "project-sync-topic"
PROJECT_UPDATE_TOPIC = "project-update-topic"

# Columnas que deciden si una membresía cambió
MEMBERSHIP_COMPARE_COLUMNS = ("MemberStatus", "AcademicYearID")

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


def infer_project_sync_event_type(message: Dict[str, Any]) -> str:
    """createdAt y updatedAt a menos de un segundo -> creación; si no, actualización."""
    created = to_date(message.get("createdAt"))
    updated = to_date(message.get("updatedAt"))
    if created and updated and within_seconds(created, updated, 1):
        return "PROJECT_SYNC_CREATED"
    return "PROJECT_SYNC_UPDATED"


def _required_id(data: Dict[str, Any], field: str, entity: str) -> Any:
    value = data.get(field)
    if not value:
        raise ValidationException(f"{entity}: falta campo obligatorio '{field}'", field=field)
    return value


class EventProcessor:
    """
    Despachador de eventos de dominio.

    Un mensaje envuelto trae {eventType, data}; los mensajes directos de los
    topics de proyectos no traen envoltorio y el tipo se infiere.
    """

    def __init__(self, reconciler: RecordReconciler, transformer: TransformService):
        self.reconciler = reconciler
        self.transformer = transformer
        self._handlers: Dict[str, Handler] = {
            "USER_CREATED": self.handle_user_created,
            "USER_UPDATED": self.handle_user_updated,
            "USER_LOGIN": self.handle_user_login,
            "USER_DELETED": self.handle_user_deleted,
            "USER_TENANT_STATUS_UPDATE": self.handle_user_tenant_status,
            "COHORT_CREATED": self.handle_cohort_upsert,
            "COHORT_UPDATED": self.handle_cohort_upsert,
            "COHORT_DELETED": self.handle_cohort_deleted,
            "COHORT_MEMBER_CREATED": self.handle_cohort_member_upsert,
            "COHORT_MEMBER_UPDATED": self.handle_cohort_member_upsert,
            "ATTENDANCE_CREATED": self.handle_attendance_upsert,
            "ATTENDANCE_UPDATED": self.handle_attendance_upsert,
            "ATTENDANCE_DELETED": self.handle_attendance_deleted,
            "ASSESSMENT_CREATED": self.handle_assessment_upsert,
            "ASSESSMENT_UPDATED": self.handle_assessment_upsert,
            "ASSESSMENT_DELETED": self.handle_assessment_deleted,
            "COURSE_ENROLLMENT_CREATED": self.handle_course_enrollment,
            "COURSE_STATUS_UPDATED": self.handle_course_status,
            "CONTENT_TRACKING_CREATED": self.handle_content_tracking,
            "COURSE_PLANNER_PROJECT_CREATED": self.handle_project_created,
            "PROJECT_SYNC_CREATED": self.handle_project_sync,
            "PROJECT_SYNC_UPDATED": self.handle_project_sync,
            "PROJECT_TASK_UPDATED": self.handle_project_task_update,
        }

    @property
    def event_types(self) -> Tuple[str, ...]:
        return tuple(self._handlers)

    async def process(self, topic: str, message: Dict[str, Any]) -> Any:
        """
        Procesa un mensaje ya decodificado.

        Raises:
            UnsupportedEventException: topic/eventType sin handler
            ValidationException: falta un campo obligatorio
            PersistenceConflictException: el destino rechazó la escritura
        """
        if not isinstance(message, dict):
            raise ValidationException(f"Mensaje inválido en {topic}: se esperaba un objeto")

        event_type = message.get("eventType")
        data = message.get("data")
        if event_type and isinstance(data, dict):
            return await self.dispatch(topic, event_type, data)

        if topic == PROJECT_SYNC_TOPIC:
            inferred = infer_project_sync_event_type(message)
            logger.info(f"Mensaje directo en {topic}; tipo inferido {inferred}")
            return await self.dispatch(topic, inferred, message)
        if topic == PROJECT_UPDATE_TOPIC:
            return await self.dispatch(topic, "PROJECT_TASK_UPDATED", message)

        raise UnsupportedEventException(topic, event_type)

    async def dispatch(self, topic: str, event_type: str, data: Dict[str, Any]) -> Any:
        handler = self._handlers.get(event_type)
        if handler is None:
            raise UnsupportedEventException(topic, event_type)
        logger.debug(f"[{topic}] {event_type}")
        return await handler(data)

    # ------------------------------------------------------------------
    # Usuarios
    # ------------------------------------------------------------------
    async def handle_user_created(self, data: Dict[str, Any]) -> Dict[str, Any]:
        result = await self.handle_user_updated(data)
        registrations = self.transformer.transform_registrations(data)
        outcomes = []
        for row in registrations:
            key, columns = REGISTRATION_TRACKER.split(row)
            outcomes.append(await self.reconciler.apply_patch(REGISTRATION_TRACKER, key, columns))
        result["registrations"] = outcomes
        return result

    async def handle_user_updated(self, data: Dict[str, Any]) -> Dict[str, Any]:
        row = self.transformer.transform_user(data)
        await self.reconciler.upsert_rows(USERS, [row])
        logger.info(f"Usuario {row['UserID']} sincronizado")

        memberships = []
        for member in self.transformer.transform_cohort_members(data):
            logical_key = {"UserID": member.pop("UserID"), "CohortID": member.pop("CohortID")}
            memberships.append(
                await self.reconciler.upsert_by_logical_key(
                    COHORT_MEMBER, logical_key, member, MEMBERSHIP_COMPARE_COLUMNS
                )
            )
        return {"user": row["UserID"], "memberships": memberships}

    async def handle_user_login(self, data: Dict[str, Any]) -> ReconcileOutcome:
        key, columns = self.transformer.transform_user_login(data)
        return await self.reconciler.update_columns_by_key(USERS, key, columns, allowed=columns)

    async def handle_user_deleted(self, data: Dict[str, Any]) -> ReconcileOutcome:
        user_id = _required_id(data, "userId", "Users")
        outcome = await self.reconciler.delete_by_key(USERS, {"UserID": user_id})
        logger.info(f"Usuario {user_id} borrado -> {outcome.value}")
        return outcome

    async def handle_user_tenant_status(self, data: Dict[str, Any]) -> ReconcileOutcome:
        """
        Actualiza estado, motivo y fechas de registro en todos los roles del
        usuario en el tenant. Nunca inserta: sin filas se omite con warning.
        """
        where, columns = self.transformer.transform_user_tenant_status(data)
        if not columns:
            logger.debug(f"RegistrationTracker {where}: evento sin columnas para actualizar")
            return ReconcileOutcome.UNCHANGED

        affected = await self.reconciler.update_matching(REGISTRATION_TRACKER, where, columns)
        if affected == 0:
            logger.warning(f"RegistrationTracker {where}: sin registros; no se crea uno sin roleId")
            return ReconcileOutcome.UNCHANGED
        logger.info(f"RegistrationTracker {where}: {affected} roles actualizados ({', '.join(sorted(columns))})")
        return ReconcileOutcome.UPDATED

    # ------------------------------------------------------------------
    # Cohortes
    # ------------------------------------------------------------------
    async def handle_cohort_upsert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        row = await self.transformer.transform_cohort(data)
        await self.reconciler.upsert_rows(COHORT, [row])
        logger.info(f"Cohorte {row['CohortID']} sincronizada (Type={row.get('Type')!r})")
        return row

    async def handle_cohort_deleted(self, data: Dict[str, Any]) -> ReconcileOutcome:
        cohort_id = _required_id(data, "cohortId", "Cohort")
        outcome = await self.reconciler.delete_by_key(COHORT, {"CohortID": cohort_id})
        logger.info(f"Cohorte {cohort_id} borrada -> {outcome.value}")
        return outcome

    async def handle_cohort_member_upsert(self, data: Dict[str, Any]) -> ReconcileOutcome:
        """
        Actualiza columnas de custom fields de una membresía existente.

        Si no viene cohortMembershipId se resuelve por (userId, cohortId).
        Nunca inserta: una membresía desconocida se omite con warning.
        """
        membership_id = data.get("cohortMembershipId")
        user_id = data.get("userId") or data.get("UserID")
        cohort_id = data.get("cohortId") or data.get("CohortID")

        if not membership_id and user_id and cohort_id:
            membership_id = await self.reconciler.find_key(
                COHORT_MEMBER, {"UserID": user_id, "CohortID": cohort_id}
            )
        if not membership_id:
            logger.warning(
                f"Membresía sin cohortMembershipId y no resoluble (userId={user_id}, cohortId={cohort_id})"
            )
            return ReconcileOutcome.UNCHANGED

        updates = self.transformer.transform_cohort_member_fields(data)
        if not updates:
            logger.debug(f"Membresía {membership_id}: sin columnas para actualizar")
            return ReconcileOutcome.UNCHANGED

        outcome = await self.reconciler.update_columns_by_key(
            COHORT_MEMBER,
            {"CohortMemberID": membership_id},
            updates,
            allowed=COHORT_MEMBER_CUSTOM_COLUMNS,
        )
        logger.info(f"Membresía {membership_id}: {', '.join(sorted(updates))} -> {outcome.value}")
        return outcome

    async def repropagate_child_types(self, parent_ids: Optional[Iterable[str]] = None) -> int:
        """
        Re-deriva el Type de las cohortes hijas a partir del Type guardado
        de su padre. Retorna la cantidad de hijas actualizadas.
        """
        return await repropagate_child_types(self.reconciler, parent_ids)

    # ------------------------------------------------------------------
    # Asistencia
    # ------------------------------------------------------------------
    async def handle_attendance_upsert(self, data: Dict[str, Any]) -> ReconcileOutcome:
        patch = self.transformer.transform_attendance(data)
        outcome = await self.reconciler.apply_patch(ATTENDANCE_TRACKER, patch.key.as_columns(), patch.days)
        logger.info(f"Asistencia {patch.key} {', '.join(patch.days)} -> {outcome.value}")
        return outcome

    async def handle_attendance_deleted(self, data: Dict[str, Any]) -> ReconcileOutcome:
        """Limpia la columna dayNN del evento; la fila mensual se conserva."""
        patch = self.transformer.transform_attendance(data)
        cleared = {day: None for day in patch.days}
        affected = await self.reconciler.update_matching(ATTENDANCE_TRACKER, patch.key.as_columns(), cleared)
        if affected == 0:
            logger.info(f"Asistencia {patch.key} no existe; nada que borrar")
            return ReconcileOutcome.UNCHANGED
        logger.info(f"Asistencia {patch.key} {', '.join(cleared)} borrada")
        return ReconcileOutcome.DELETED

    # ------------------------------------------------------------------
    # Evaluaciones
    # ------------------------------------------------------------------
    async def handle_assessment_upsert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        row = self.transformer.transform_assessment(data)
        await self.reconciler.upsert_rows(ASSESSMENT_TRACKER, [row])
        logger.info(f"Evaluación {row['assessTrackingId']} sincronizada (usuario {row.get('userId')})")
        return row

    async def handle_assessment_deleted(self, data: Dict[str, Any]) -> ReconcileOutcome:
        tracking_id = data.get("assessmentTrackingId") or data.get("assessTrackingId")
        if not tracking_id:
            raise ValidationException(
                "AssessmentTracker: falta campo obligatorio 'assessmentTrackingId'", field="assessmentTrackingId"
            )
        outcome = await self.reconciler.delete_by_key(ASSESSMENT_TRACKER, {"assessTrackingId": tracking_id})
        logger.info(f"Evaluación {tracking_id} borrada -> {outcome.value}")
        return outcome

    # ------------------------------------------------------------------
    # Cursos
    # ------------------------------------------------------------------
    async def handle_course_enrollment(self, data: Dict[str, Any]) -> ReconcileOutcome:
        key, columns = self.transformer.transform_course_enrollment(data)
        outcome = await self.reconciler.apply_patch(COURSE_TRACKER, key, columns)
        logger.info(f"CourseTracker {key['userId']}/{key['courseId']} -> {outcome.value}")
        return outcome

    async def handle_course_status(self, data: Dict[str, Any]) -> ReconcileOutcome:
        """
        Actualiza el estado de la primera inscripción que coincide con
        (tenantId, userId, courseId). Sin inscripción es un no-op.
        """
        where, columns = self.transformer.transform_course_status(data)
        tracker_id = await self.reconciler.fetch_value(COURSE_TRACKER, where, "courseTrackerId")
        if tracker_id is None:
            logger.warning(f"CourseTracker {where} no existe; estado ignorado")
            return ReconcileOutcome.UNCHANGED
        if not columns:
            return ReconcileOutcome.UNCHANGED

        await self.reconciler.update_matching(COURSE_TRACKER, {"courseTrackerId": tracker_id}, columns)
        logger.info(f"CourseTracker {tracker_id}: {', '.join(sorted(columns))} actualizado")
        return ReconcileOutcome.UPDATED

    # ------------------------------------------------------------------
    # Contenido
    # ------------------------------------------------------------------
    async def handle_content_tracking(self, data: Dict[str, Any]) -> ReconcileOutcome:
        """
        Actualiza el catálogo de contenido si el evento lo trae y luego el
        tracker del usuario. El nombre del contenido se toma del catálogo.
        """
        content_name = None
        content = data.get("content")
        if isinstance(content, dict):
            content_row = self.transformer.transform_content(content)
            await self.reconciler.upsert_rows(CONTENT, [content_row])
            content_name = content_row.get("name")
        elif data.get("contentId"):
            content_name = await self.reconciler.fetch_value(CONTENT, {"identifier": data["contentId"]}, "name")

        key, columns = self.transformer.transform_content_tracker(data, content_name)
        outcome = await self.reconciler.apply_patch(CONTENT_TRACKER, key, columns)
        logger.info(
            f"ContentTracker {key['userId']}/{key['contentId']}: "
            f"{columns['contentTrackingStatus']} ({columns['timeSpent']}s) -> {outcome.value}"
        )
        return outcome

    # ------------------------------------------------------------------
    # Proyectos
    # ------------------------------------------------------------------
    async def handle_project_created(self, data: Dict[str, Any]) -> Dict[str, Any]:
        project = self.transformer.transform_project(data)
        await self.reconciler.upsert_rows(PROJECT, [project])
        tasks = self.transformer.transform_project_template_tasks(data)
        upserted = await self.reconciler.upsert_rows(PROJECT_TASK, tasks)
        logger.success(f"Proyecto {project['ProjectId']} creado con {upserted} tareas")
        return {"project": project["ProjectId"], "tasks": upserted}

    async def handle_project_sync(self, data: Dict[str, Any]) -> List[ReconcileOutcome]:
        """Inserta tracking de tareas completadas (dedup por proyecto/tarea/cohorte)."""
        for field in ("_id", "solutionId", "tasks"):
            if not data.get(field):
                raise ValidationException(f"ProjectTaskTracking: falta campo obligatorio '{field}'", field=field)

        rows = self.transformer.transform_project_task_tracking(data)
        outcomes = [
            await self.reconciler.insert_if_absent(PROJECT_TASK_TRACKING, TRACKING_DEDUP_COLUMNS, row)
            for row in rows
        ]
        inserted = sum(1 for o in outcomes if o is ReconcileOutcome.INSERTED)
        logger.info(
            f"Tracking de proyecto {data['solutionId']} (cohorte {data.get('entityId')}): "
            f"{inserted} insertadas, {len(outcomes) - inserted} existentes"
        )
        return outcomes

    async def handle_project_task_update(self, data: Dict[str, Any]):
        """Reconcilia el conjunto completo de tareas del proyecto."""
        project_id = data.get("solutionId")
        if not project_id:
            raise ValidationException("ProjectTask: falta campo obligatorio 'solutionId'", field="solutionId")
        if not isinstance(data.get("tasks"), list):
            raise ValidationException("ProjectTask: falta campo obligatorio 'tasks'", field="tasks")

        rows = self.transformer.transform_project_task_update(data)
        return await self.reconciler.reconcile_set(PROJECT_TASK, "ProjectId", project_id, rows)


async def repropagate_child_types(
    reconciler: RecordReconciler,
    parent_ids: Optional[Iterable[str]] = None,
) -> int:
    """
    Recalcula el Type de cohortes hijas desde el Type guardado del padre.

    Sirve cuando hijas se migraron antes que su padre y quedaron con el tipo
    crudo. Solo toca hijas cuyo tipo derivado difiere del guardado.
    """
    table = COHORT.table
    engine = reconciler.engine
    parent = table.alias("parent")
    stmt = (
        select(table.c.CohortID, table.c.Type, parent.c.Type.label("ParentType"))
        .join(parent, parent.c.CohortID == table.c.ParentID)
    )
    if parent_ids is not None:
        stmt = stmt.where(table.c.ParentID.in_(list(parent_ids)))

    async with engine.connect() as conn:
        children = (await conn.execute(stmt)).all()

    updated = 0
    for cohort_id, current_type, parent_type in children:
        derived = classify_cohort_type(current_type, True, raw_type_from_stored(parent_type))
        if derived == current_type:
            continue
        await reconciler.apply_patch(COHORT, {"CohortID": cohort_id}, {"Type": derived})
        logger.info(f"Cohorte {cohort_id}: Type {current_type!r} -> {derived!r}")
        updated += 1

    logger.info(f"Re-propagación de tipos: {updated} de {len(children)} hijas actualizadas")
    return updated


async def consume(
    processor: EventProcessor,
    messages: Iterable[Tuple[str, Dict[str, Any]]],
) -> BatchSummary:
    """
    Loop de consumo: procesa mensajes en orden, registra cada fallo con su
    topic y continua. La re-entrega queda a cargo del transporte.
    """
    summary = BatchSummary(name="eventos")
    for topic, message in messages:
        summary.processed += 1
        try:
            await processor.process(topic, message)
        except UnsupportedEventException as e:
            summary.skipped += 1
            logger.warning(e.message)
        except SyncException as e:
            summary.errors += 1
            logger.error(f"[{topic}] {e.error_code}: {e.message}")
        except Exception as e:
            summary.errors += 1
            logger.exception(f"[{topic}] Error inesperado procesando mensaje: {e}")
    logger.info(str(summary))
    return summary
