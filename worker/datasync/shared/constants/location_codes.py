"""
Tabla estática código -> UUID para jerarquía de ubicaciones.

Indexada por el fieldId de origen (estado, distrito, bloque, aldea).
Solo contiene los codigos fijos conocidos; el resto se resuelve por
extracción de dígitos.
"""
from typing import Dict

STATE_FIELD_ID = "6469c3ac-8c46-49d7-852a-00f9589737c5"
DISTRICT_FIELD_ID = "b61edfc6-3787-4079-86d3-37262bf23a9e"
BLOCK_FIELD_ID = "4aab68ae-8382-43aa-a45a-e9b239319857"
VILLAGE_FIELD_ID = "8e9bb321-ff99-4e2e-9269-61e863dd0c54"

LOCATION_CODE_TO_UUID: Dict[str, Dict[str, str]] = {
    STATE_FIELD_ID: {"24": "cc737326-7d1f-4f4e-88cf-39f48df2c280"},
    DISTRICT_FIELD_ID: {"473": "c168bb3c-4c2d-4321-b1b7-4c1c19dc54e7"},
    BLOCK_FIELD_ID: {"3613": "359e1a0a-d7c8-4e03-b022-938f0f6f7f83"},
    VILLAGE_FIELD_ID: {"737311": "8eb4f5c2-c0b9-4191-94e3-14c738246f82"},
}

# Índice inverso UUID -> código, sin importar el fieldId
LOCATION_UUID_TO_CODE: Dict[str, str] = {
    uuid: code
    for table in LOCATION_CODE_TO_UUID.values()
    for code, uuid in table.items()
}
