"""
Modelos de base de datos (ORM) del esquema destino.

Los nombres de atributo coinciden con los nombres de columna del destino,
de modo que los patches se construyen directamente con nombres de columna.
"""
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator

from datasync.infrastructure.database.session import Base


# JSONB en Postgres, JSON genérico en otros motores (tests con SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")

DAY_COLUMNS = tuple(f"day{d:02d}" for d in range(1, 32))


class DateOnly(TypeDecorator):
    """
    Columna DATE que intercambia strings YYYY-MM-DD con la capa de transformación.
    """

    impl = Date
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.isoformat()


class UserModel(Base):
    """Usuarios con sus custom fields resueltos a columnas fijas."""

    __tablename__ = "Users"

    UserID = Column(String(64), primary_key=True)
    UserName = Column(String(100), nullable=True)
    UserFullName = Column(String(200), nullable=True)
    UserEmail = Column(String(150), nullable=True)
    UserDoB = Column(DateOnly, nullable=True)
    UserMobile = Column(String(20), nullable=True)
    UserGender = Column(String(20), nullable=True)
    UserIsActive = Column(Boolean, nullable=True, default=True)
    UserStateID = Column(String(50), nullable=True)
    UserDistrictID = Column(String(50), nullable=True)
    UserBlockID = Column(String(50), nullable=True)
    UserVillageID = Column(String(50), nullable=True)
    UserPreferredModeOfLearning = Column(String(100), nullable=True)
    UserMotherName = Column(String(150), nullable=True)
    UserWorkDomain = Column(String(150), nullable=True)
    UserFatherName = Column(String(150), nullable=True)
    UserSpouseName = Column(String(150), nullable=True)
    UserPhoneType = Column(String(50), nullable=True)
    UserWhatDoYouWantToBecome = Column(String(200), nullable=True)
    UserClass = Column(String(50), nullable=True)
    UserPreferredLanguage = Column(String(100), nullable=True)
    UserParentPhone = Column(String(20), nullable=True)
    UserGuardianRelation = Column(String(100), nullable=True)
    UserSubjectTaught = Column(String(200), nullable=True)
    UserMaritalStatus = Column(String(50), nullable=True)
    UserGrade = Column(String(50), nullable=True)
    UserTrainingCheck = Column(Boolean, nullable=True)
    UserDropOutReason = Column(Text, nullable=True)
    UserOwnPhoneCheck = Column(Boolean, nullable=True)
    UserEnrollmentNumber = Column(String(100), nullable=True)
    UserDesignation = Column(String(100), nullable=True)
    UserBoard = Column(String(100), nullable=True)
    UserSubject = Column(String(150), nullable=True)
    UserMainSubject = Column(String(150), nullable=True)
    UserMedium = Column(String(100), nullable=True)
    UserGuardianName = Column(String(150), nullable=True)
    UserNumOfChildrenWorkingWith = Column(String(50), nullable=True)
    JobFamily = Column(String(100), nullable=True)
    PSU = Column(String(100), nullable=True)
    GroupMembership = Column(String(200), nullable=True)
    EMPManager = Column(Text, nullable=True)
    ERPUserID = Column(Text, nullable=True)
    IsManager = Column(Boolean, nullable=True)
    UserLastLogin = Column(DateTime(timezone=True), nullable=True)
    UserCustomField = Column(JSONType, nullable=True)
    UserAccessToWhatsApp = Column(Text, nullable=True)
    UserProgram = Column(Text, nullable=True)
    UserDateOfJoining = Column(DateOnly, nullable=True)
    UserTeacherID = Column(Text, nullable=True)
    UserCEFRLevel = Column(Text, nullable=True)
    UserSubprograms = Column(Text, nullable=True)
    UserOldTeacherID = Column(Text, nullable=True)
    UserRole = Column(Text, nullable=True)
    UserClusterId = Column(Text, nullable=True)
    UserSupervisors = Column(Text, nullable=True)
    UserDateOfLeaving = Column(DateOnly, nullable=True)
    UserReasonForLeaving = Column(Text, nullable=True)
    UserDepartment = Column(Text, nullable=True)
    CreatedAt = Column(DateTime(timezone=True), server_default=func.now())
    UpdatedAt = Column(DateTime(timezone=True), server_default=func.now())
    CreatedBy = Column(String(100), nullable=True)
    UpdatedBy = Column(String(100), nullable=True)

    def __repr__(self):
        return f"<User(UserID={self.UserID}, UserName={self.UserName})>"


class CohortModel(Base):
    """Cohortes (centros y batches) con tipo derivado de la jerarquía."""

    __tablename__ = "Cohort"

    CohortID = Column(String(64), primary_key=True)
    TenantID = Column(String(64), nullable=True)
    CohortName = Column(Text, nullable=True)
    CreatedOn = Column(DateTime(timezone=True), nullable=True)
    ParentID = Column(String(64), nullable=True, index=True)
    Type = Column(Text, nullable=True)
    CoStateID = Column(BigInteger, nullable=True)
    CoDistrictID = Column(BigInteger, nullable=True)
    CoBlockID = Column(BigInteger, nullable=True)
    CoVillageID = Column(BigInteger, nullable=True)
    CoBoard = Column(Text, nullable=True)
    CoSubject = Column(Text, nullable=True)
    CoGrade = Column(Text, nullable=True)
    CoMedium = Column(Text, nullable=True)
    CoIndustry = Column(Text, nullable=True)
    CoGoogleMapLink = Column(Text, nullable=True)
    CoProgram = Column(Text, nullable=True)
    CoCluster = Column(Text, nullable=True)
    CoLongitude = Column(Text, nullable=True)
    CoLatitude = Column(Text, nullable=True)
    CoSchoolType = Column(Text, nullable=True)
    Status = Column(Text, nullable=True, default="active")
    createdAt = Column(DateTime(timezone=True), server_default=func.now())
    updatedAt = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Cohort(CohortID={self.CohortID}, Type={self.Type})>"


class CohortMemberModel(Base):
    """Membresías usuario-cohorte."""

    __tablename__ = "CohortMember"
    __table_args__ = (UniqueConstraint("UserID", "CohortID", name="uq_cohort_member_user_cohort"),)

    CohortMemberID = Column(String(64), primary_key=True)
    UserID = Column(String(64), nullable=False)
    CohortID = Column(String(64), nullable=False)
    MemberStatus = Column(String(50), nullable=True)
    AcademicYearID = Column(String(64), nullable=True)
    Slot = Column(Text, nullable=True)
    # Pueden ser text[] en el destino; el catálogo de columnas decide la codificación
    Subject = Column(Text, nullable=True)
    Fees = Column(Text, nullable=True)
    Registration = Column(Text, nullable=True)
    Board = Column(Text, nullable=True)
    CreatedAt = Column(DateTime(timezone=True), server_default=func.now())
    UpdatedAt = Column(DateTime(timezone=True), server_default=func.now())


class AttendanceTrackerModel(Base):
    """Fila mensual de asistencia con una columna JSON por día."""

    __table__ = Table(
        "AttendanceTracker",
        Base.metadata,
        Column("AttendanceTrackerID", Integer, primary_key=True, autoincrement=True),
        Column("TenantID", String(64), nullable=True),
        Column("Context", String(50), nullable=True),
        Column("ContextID", String(64), nullable=True),
        Column("UserID", String(64), nullable=False),
        Column("Year", Integer, nullable=False),
        Column("Month", Integer, nullable=False),
        *[Column(day, JSONType, nullable=True) for day in DAY_COLUMNS],
    )


class RegistrationTrackerModel(Base):
    """Primer registro de plataforma/tenant por (usuario, rol, tenant)."""

    __tablename__ = "RegistrationTracker"
    __table_args__ = (UniqueConstraint("UserID", "RoleID", "TenantID", name="uq_registration_tracker_key"),)

    REGID = Column(Integer, primary_key=True, autoincrement=True)
    UserID = Column(String(64), nullable=False)
    RoleID = Column(String(64), nullable=False)
    TenantID = Column(String(64), nullable=False)
    PlatformRegnDate = Column(DateTime(timezone=True), nullable=True)
    TenantRegnDate = Column(DateTime(timezone=True), nullable=True)
    IsActive = Column(Boolean, nullable=True, default=True)
    Reason = Column(Text, nullable=True)


class ProjectModel(Base):
    """Proyectos (soluciones) del course planner."""

    __tablename__ = "Project"

    ProjectId = Column(String(64), primary_key=True)
    ProjectName = Column(Text, nullable=True)
    Board = Column(Text, nullable=True)
    Medium = Column(Text, nullable=True)
    Subject = Column(Text, nullable=True)
    Grade = Column(Text, nullable=True)
    Type = Column(Text, nullable=True)
    StartDate = Column(DateOnly, nullable=True)
    EndDate = Column(DateOnly, nullable=True)
    CreatedBy = Column(String(64), nullable=True)
    TenantId = Column(String(64), nullable=True)
    AcademicYear = Column(String(64), nullable=True)


class ProjectTaskModel(Base):
    """Tareas de proyecto aplanadas (padre/hijo via ParentId)."""

    __tablename__ = "ProjectTask"

    ProjectTaskId = Column(String(64), primary_key=True)
    ProjectId = Column(String(64), nullable=False, index=True)
    TaskName = Column(Text, nullable=True)
    ParentId = Column(String(64), nullable=True)
    StartDate = Column(DateOnly, nullable=True)
    EndDate = Column(DateOnly, nullable=True)
    LearningResource = Column(JSONType, nullable=True)
    CreatedBy = Column(String(64), nullable=True)
    UpdatedBy = Column(String(64), nullable=True)
    CreatedAt = Column(DateTime(timezone=True), server_default=func.now())
    UpdatedAt = Column(DateTime(timezone=True), server_default=func.now())


class ProjectTaskTrackingModel(Base):
    """Eventos de tarea completada, deduplicados por (proyecto, tarea, cohorte)."""

    __tablename__ = "ProjectTaskTracking"

    ProjectTaskTrackingId = Column(String(64), primary_key=True)
    ProjectId = Column(String(64), nullable=False)
    ProjectTaskId = Column(String(64), nullable=False)
    CohortId = Column(String(64), nullable=True)
    CreatedBy = Column(String(64), nullable=True)
    UpdatedBy = Column(String(64), nullable=True)
    CreatedAt = Column(DateTime(timezone=True), server_default=func.now())
    UpdatedAt = Column(DateTime(timezone=True), server_default=func.now())


class ContentModel(Base):
    """Catálogo de contenidos externos."""

    __tablename__ = "Content"

    identifier = Column(String(128), primary_key=True)
    name = Column(Text, nullable=True)
    author = Column(Text, nullable=True)
    primaryCategory = Column(Text, nullable=True)
    channel = Column(Text, nullable=True)
    status = Column(Text, nullable=True)
    contentType = Column(Text, nullable=True)
    contentLanguage = Column(Text, nullable=True)
    domains = Column(Text, nullable=True)
    subdomains = Column(Text, nullable=True)
    subjects = Column(Text, nullable=True)
    targetAgeGroup = Column(Text, nullable=True)
    audience = Column(Text, nullable=True)
    program = Column(Text, nullable=True)
    keywords = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    createdBy = Column(Text, nullable=True)
    lastPublishedOn = Column(DateTime(timezone=True), nullable=True)
    createdOn = Column(DateTime(timezone=True), nullable=True)


class ContentTrackerModel(Base):
    """Seguimiento de consumo de contenido por usuario."""

    __tablename__ = "ContentTracker"

    contentTrackerId = Column(String(64), primary_key=True)
    userId = Column(String(64), nullable=False)
    tenantId = Column(String(64), nullable=True)
    contentId = Column(String(128), nullable=False)
    courseId = Column(String(128), nullable=True)
    contentName = Column(Text, nullable=True)
    contentType = Column(Text, nullable=True)
    contentTrackingStatus = Column(String(50), nullable=True)
    timeSpent = Column(Integer, nullable=True)
    createdAt = Column(DateTime(timezone=True), server_default=func.now())
    updatedAt = Column(DateTime(timezone=True), server_default=func.now())


class AssessmentTrackerModel(Base):
    """Intentos de evaluación por usuario."""

    __tablename__ = "AssessmentTracker"

    assessTrackingId = Column(String(64), primary_key=True)
    assessmentId = Column(String(128), nullable=True)
    courseId = Column(String(128), nullable=True)
    assessmentName = Column(Text, nullable=True)
    userId = Column(String(64), nullable=True, index=True)
    tenantId = Column(String(64), nullable=True)
    totalMaxScore = Column(Float, nullable=True)
    totalScore = Column(Float, nullable=True)
    timeSpent = Column(Float, nullable=True)
    assessmentSummary = Column(Text, nullable=True)
    attemptId = Column(String(64), nullable=True)
    assessmentType = Column(Text, nullable=True)
    evaluatedBy = Column(Text, nullable=True)
    createdAt = Column(DateTime(timezone=True), server_default=func.now())
    updatedAt = Column(DateTime(timezone=True), server_default=func.now())


class CourseTrackerModel(Base):
    """Inscripción y estado de un usuario en un curso (por certificado)."""

    __tablename__ = "CourseTracker"

    courseTrackerId = Column(String(64), primary_key=True)
    userId = Column(String(64), nullable=False)
    tenantId = Column(String(64), nullable=True)
    courseId = Column(String(128), nullable=False)
    certificateId = Column(String(128), nullable=True)
    courseName = Column(Text, nullable=True)
    courseTrackingStatus = Column(String(50), nullable=True)
    courseTrackingStartDate = Column(DateTime(timezone=True), nullable=True)
    courseTrackingEndDate = Column(DateTime(timezone=True), nullable=True)
    createdAt = Column(DateTime(timezone=True), server_default=func.now())
    updatedAt = Column(DateTime(timezone=True), server_default=func.now())


def null_safe_unique_index(name: str, table: Table, *columns: str) -> Index:
    """
    Índice único sobre una clave natural con columnas nullable.

    Las columnas nullable se indexan como coalesce(columna, '') para que dos
    claves con NULL en la misma posición choquen entre sí, igual que el
    matching null-safe del reconciliador.
    """
    elements = [
        func.coalesce(table.c[c], "") if table.c[c].nullable else table.c[c]
        for c in columns
    ]
    return Index(name, *elements, unique=True)


null_safe_unique_index(
    "uq_attendance_tracker_natural_key",
    AttendanceTrackerModel.__table__,
    "TenantID", "Context", "ContextID", "UserID", "Year", "Month",
)
null_safe_unique_index(
    "uq_project_task_tracking_triple",
    ProjectTaskTrackingModel.__table__,
    "ProjectId", "ProjectTaskId", "CohortId",
)
null_safe_unique_index(
    "uq_content_tracker_key",
    ContentTrackerModel.__table__,
    "userId", "contentId", "tenantId",
)
null_safe_unique_index(
    "uq_course_tracker_key",
    CourseTrackerModel.__table__,
    "userId", "courseId", "tenantId", "certificateId",
)
