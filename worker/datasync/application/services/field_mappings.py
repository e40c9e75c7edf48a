"""
Tablas versionadas fieldId -> columna destino.

Los fieldIds que no aparecen aquí se ignoran. Cuando varios fieldIds apuntan
a la misma columna se declaran en orden de prioridad (el primero no nulo gana).
Cualquier cambio de columnas o fieldIds debe incrementar MAPPING_VERSION.
"""

from __future__ import annotations

from typing import Dict, Tuple

from datasync.application.services.coercion import (
    to_boolean,
    to_date_only,
    to_location_code,
    to_text,
)
from datasync.application.services.custom_field_resolver import CustomFieldMapping

MAPPING_VERSION = 3

# Campo "center type" (regular / remote) de las cohortes
COHORT_TYPE_FIELD_ID = "000a7469-2721-4c7b-8180-52812a0f6fe7"

# Campo "slot" de las membresías (solo backfill)
COHORT_MEMBER_SLOT_FIELD_ID = "f3658b23-1394-48a9-afc5-7589874465af"

STATE_FIELD_IDS = ("800265b1-9058-482a-94f4-726197e1dfe4", "b4ad6f2a-f4b3-4f66-b1be-fcbe8ff607e3")
DISTRICT_FIELD_IDS = ("d4ad6f2a-f4b3-4f66-b1be-fcbe8ff607f3", "62340eaa-40fb-48b9-ba90-dcaa78be778e")
BLOCK_FIELD_IDS = ("1e3e76e2-7f77-4fd7-a79f-abe5c33d4d08", "e4bc6f2a-f4b3-4f66-b1be-fcbe8ff607f3")
VILLAGE_FIELD_IDS = (
    "e4de6f2a-f4b3-4f66-b1be-fcbe8ff607d3",
    "5cfacade-9d56-4a1e-b4e9-cc8e8c6b04c5",
    "2f7e6930-0bc2-4e69-8bd4-dde205fa5471",
)

BOARD_FIELD_ID = "f93c0ac3-f827-4794-9457-441fa1057b42"
SUBJECT_FIELD_ID = "69a9dba2-e05e-40cd-a39c-047b9b676b5c"
GRADE_FIELD_ID = "5a2dbb89-bbe6-4aa8-b541-93e01ab07b70"
MEDIUM_FIELD_ID = "7b214a17-5a07-4ee0-bedc-271429862d30"
PROGRAM_FIELD_ID = "5fce49b6-cd23-44f5-b87b-4ae0cbe2e328"
CLUSTER_FIELD_ID = "c3357b23-1394-48a9-afc5-7589873365ae"


def _yes(raw):
    return to_boolean(raw, truthy="yes")


USER_FIELD_MAPPINGS: Tuple[CustomFieldMapping, ...] = (
    # Ubicación: fieldIds en orden de prioridad y luego label
    CustomFieldMapping("UserStateID", field_ids=STATE_FIELD_IDS, labels=("STATE",)),
    CustomFieldMapping("UserDistrictID", field_ids=DISTRICT_FIELD_IDS, labels=("DISTRICT",)),
    CustomFieldMapping("UserBlockID", field_ids=BLOCK_FIELD_IDS, labels=("BLOCK",)),
    CustomFieldMapping("UserVillageID", field_ids=VILLAGE_FIELD_IDS, labels=("VILLAGE",)),
    # Por label (lectura de `id` en valores objeto)
    CustomFieldMapping("UserGuardianName", labels=("NAME_OF_GUARDIAN",)),
    CustomFieldMapping("JobFamily", labels=("JOB_FAMILY",)),
    CustomFieldMapping("PSU", labels=("PSU",)),
    # Por fieldId (lectura de `value` y luego `id`)
    CustomFieldMapping("ERPUserID", field_ids=("93de5cc5-9437-4ca7-95f3-3b2f31b24093",)),
    CustomFieldMapping("IsManager", field_ids=("8e8ab9b7-8ce0-4e6e-bf7e-0477a80734c8",), coerce=_yes),
    CustomFieldMapping("EMPManager", field_ids=("27589b6d-6ece-457a-8d50-d15a3db02bf6",)),
    CustomFieldMapping("UserPreferredModeOfLearning", field_ids=("7b43db0a-f4c3-4c77-919f-622509ca7add",)),
    CustomFieldMapping("UserWorkDomain", field_ids=("2914814c-2a0f-4422-aff8-6bd3b09d3069",)),
    CustomFieldMapping("UserSpouseName", field_ids=("0dd4cf0b-b774-439a-9997-5437cd78bfcd",)),
    CustomFieldMapping("UserWhatDoYouWantToBecome", field_ids=("a8d3d878-9b92-4231-b25c-b22726985238",)),
    CustomFieldMapping("UserClass", field_ids=("9a4ad601-023b-467f-bbbe-bda1885f87c7",)),
    CustomFieldMapping("UserPreferredLanguage", field_ids=("4b9d798d-e8f2-4ae5-b177-a57655aa5d1c",)),
    CustomFieldMapping("UserParentPhone", field_ids=("7ecaa845-901a-4ac7-a136-eed087f3b85b",)),
    CustomFieldMapping("UserGuardianRelation", field_ids=("3a7bf305-6bac-4377-bf09-f38af866105c",)),
    CustomFieldMapping("UserSubjectTaught", field_ids=("abb7f3fe-f7fa-47be-9d28-5747dd3159f2",)),
    CustomFieldMapping("UserMaritalStatus", field_ids=("ff472647-6c40-42e6-b200-dc74b241e915",)),
    CustomFieldMapping("UserGrade", field_ids=(GRADE_FIELD_ID,)),
    CustomFieldMapping("UserTrainingCheck", field_ids=("0be5a8c6-92e9-4b7c-ac01-345131b06118",), coerce=_yes),
    CustomFieldMapping("UserDropOutReason", field_ids=("4f48571b-88fd-43b9-acb3-91afda7901ac",)),
    CustomFieldMapping("UserOwnPhoneCheck", field_ids=("d119d92f-fab7-4c7d-8370-8b40b5ed23dc",), coerce=_yes),
    CustomFieldMapping("UserEnrollmentNumber", field_ids=("e2f1fcbc-a76a-4b51-a092-ae4823bc45fd",)),
    CustomFieldMapping("UserDesignation", field_ids=("4fc098c5-bec5-4afc-a15d-093805b05119",)),
    CustomFieldMapping("UserBoard", field_ids=(BOARD_FIELD_ID,)),
    CustomFieldMapping("UserSubject", field_ids=(SUBJECT_FIELD_ID,)),
    CustomFieldMapping("UserMainSubject", field_ids=("935bfb34-9be7-4676-b9cc-cec1ec4c0a2c",)),
    CustomFieldMapping("UserMedium", field_ids=(MEDIUM_FIELD_ID,)),
    CustomFieldMapping("UserPhoneType", field_ids=("da594b2e-c645-4a96-af15-6e2d24587c9a",)),
    CustomFieldMapping("UserNumOfChildrenWorkingWith", field_ids=("a4c2dace-e052-4e78-b6ad-9ffcc035c578",)),
    CustomFieldMapping("GroupMembership", field_ids=("29c36dd1-315c-46d9-bf6a-f1858ae71c33",)),
    CustomFieldMapping("UserFatherName", field_ids=("679f4a27-09f9-4f78-85a0-9fe8bfd3ef18",)),
    CustomFieldMapping("UserMotherName", field_ids=("d3644b9e-e9df-4f08-ae7b-1a6b4413fedf",)),
    CustomFieldMapping("UserAccessToWhatsApp", field_ids=("53a44ba9-c8ed-43db-9fee-c2c81ae707b9",)),
    CustomFieldMapping("UserProgram", field_ids=(PROGRAM_FIELD_ID,)),
    CustomFieldMapping("UserDateOfJoining", field_ids=("cec6c953-71b6-4c53-98b8-582aaa6008b5",), coerce=to_date_only),
    CustomFieldMapping("UserTeacherID", field_ids=("f9f17574-4227-4ba3-a485-f8b1269ff086",)),
    CustomFieldMapping("UserCEFRLevel", field_ids=("e2395f11-a53d-4fb6-ab89-eae6367156f5",)),
    CustomFieldMapping("UserSubprograms", field_ids=("074643e8-8d53-4f14-956b-f7d0216f63e7",)),
    CustomFieldMapping("UserOldTeacherID", field_ids=("434fcadb-8508-42a9-bbed-03be19e8dfdb",)),
    CustomFieldMapping("UserRole", field_ids=("4e4864d3-7049-49d0-b52a-4c9fbe7774b8",)),
    CustomFieldMapping("UserClusterId", field_ids=(CLUSTER_FIELD_ID,)),
    CustomFieldMapping("UserSupervisors", field_ids=("26c55f7f-c691-440d-8c7f-88480c72f07b",)),
    CustomFieldMapping("UserDateOfLeaving", field_ids=("4fa37e71-bbd6-4dd1-9523-510edf63afb7",), coerce=to_date_only),
    CustomFieldMapping("UserReasonForLeaving", field_ids=("11fe3a6b-3b32-43e4-bc50-1fc72bf5dd54",)),
    CustomFieldMapping("UserDepartment", field_ids=("0d501559-3bb2-44ed-8e33-850f6ed22666",)),
)

# Fallback de género cuando el evento no trae `gender`
USER_GENDER_FIELD_ID = "08ab0a4e-4a72-498b-ad43-38fcb5e47586"

COHORT_FIELD_MAPPINGS: Tuple[CustomFieldMapping, ...] = (
    CustomFieldMapping("CoBoard", field_ids=(BOARD_FIELD_ID,)),
    CustomFieldMapping("CoSubject", field_ids=(SUBJECT_FIELD_ID,)),
    CustomFieldMapping("CoGrade", field_ids=(GRADE_FIELD_ID,)),
    CustomFieldMapping("CoMedium", field_ids=(MEDIUM_FIELD_ID,)),
    CustomFieldMapping("CoIndustry", field_ids=("e5277d7b-e7ef-4a11-9a54-a8e6e7975383",)),
    CustomFieldMapping("CoGoogleMapLink", field_ids=("e9f8acbb-b10d-4b46-9584-f5ec453c250e",)),
    CustomFieldMapping("CoProgram", field_ids=(PROGRAM_FIELD_ID,)),
    CustomFieldMapping("CoCluster", field_ids=(CLUSTER_FIELD_ID,)),
    CustomFieldMapping("CoLongitude", field_ids=("fe466e4e-193b-4d01-863d-cf861d8d5bf5",), coerce=to_text),
    CustomFieldMapping("CoLatitude", field_ids=("fd466e4e-193b-4d01-863d-cf861d8d5bf4",), coerce=to_text),
    CustomFieldMapping("CoSchoolType", field_ids=("c4ad6f2a-f4b3-4f66-b1be-fcbe8ff607e3",)),
    CustomFieldMapping("CoDistrictID", field_ids=DISTRICT_FIELD_IDS, coerce=to_location_code),
    CustomFieldMapping("CoStateID", field_ids=("b4ad6f2a-f4b3-4f66-b1be-fcbe8ff607e3", "800265b1-9058-482a-94f4-726197e1dfe4"), coerce=to_location_code),
    CustomFieldMapping("CoBlockID", field_ids=BLOCK_FIELD_IDS, coerce=to_location_code),
    CustomFieldMapping("CoVillageID", field_ids=VILLAGE_FIELD_IDS, coerce=to_location_code),
)


def _build_field_index(mappings: Tuple[CustomFieldMapping, ...]) -> Dict[str, CustomFieldMapping]:
    """fieldId -> mapeo, para filas sueltas de FieldValues (backfill)."""
    index: Dict[str, CustomFieldMapping] = {}
    for mapping in mappings:
        for field_id in mapping.field_ids:
            index.setdefault(field_id, mapping)
    return index


COHORT_FIELD_INDEX: Dict[str, CustomFieldMapping] = _build_field_index(COHORT_FIELD_MAPPINGS)

# Label de custom field de membresía -> columna de CohortMember
COHORT_MEMBER_LABEL_TO_COLUMN: Dict[str, str] = {
    "subject": "Subject",
    "fees": "Fees",
    "registration": "Registration",
    "board": "Board",
}
