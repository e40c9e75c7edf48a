"""
Capa de coerción de tipos por columna destino.

Todas las funciones son puras y totales: nunca lanzan, retornan None cuando
el valor no se puede convertir y dejan un warning con el valor crudo.
"""

from __future__ import annotations

import json
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Optional

from loguru import logger

from datasync.shared.constants.location_codes import LOCATION_CODE_TO_UUID, LOCATION_UUID_TO_CODE
from datasync.shared.utils.datetime_utils import ensure_utc

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)
DMY_RE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")
_NON_DIGITS = re.compile(r"[^0-9]")

_OBJECT_KEYS = ("id", "uuid", "value", "identifier")


def first_or_self(value: Any) -> Any:
    """Primer elemento si es lista (o None si está vacía); si no, el valor."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def object_id(value: Any) -> Optional[str]:
    """Id de documento: desenvuelve {"$oid": ...}; vacío -> None."""
    if isinstance(value, dict):
        value = value.get("$oid")
    return str(value) if value not in (None, "") else None


def to_boolean(raw: Any, *, truthy: str = "yes", default: Optional[bool] = None) -> Optional[bool]:
    """
    Convierte un string a booleano comparando con `truthy` (case-insensitive).

    None -> default. Booleanos nativos se respetan.
    """
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() == truthy
    return False


def status_to_boolean(raw: Any) -> Optional[bool]:
    """'active' -> True; cualquier otro string -> False; vacío -> None."""
    if raw is None or raw == "":
        return None
    return to_boolean(raw, truthy="active")


def to_date(raw: Any) -> Optional[datetime]:
    """
    Convierte a datetime aware en UTC.

    Acepta:
    - strings ISO (incluye sufijo Z)
    - strings DD-MM-YYYY (día primero, validados antes de construir)
    - envoltorio {"$date": ...} de exportes de documentos
    - datetime/date nativos y epoch en milisegundos
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        logger.warning(f"Fecha inválida (booleano): {raw!r}")
        return None
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day, tzinfo=timezone.utc)
    if isinstance(raw, dict):
        if "$date" in raw:
            return to_date(raw["$date"])
        if "$numberLong" in raw:
            return to_date(_safe_int(raw["$numberLong"]))
        logger.warning(f"Fecha inválida (objeto sin $date): {raw!r}")
        return None
    if isinstance(raw, (int, float)):
        try:
            return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning(f"Fecha inválida (epoch fuera de rango): {raw!r}")
            return None
    if isinstance(raw, str):
        return _parse_date_string(raw.strip())

    logger.warning(f"Fecha inválida (tipo {type(raw).__name__}): {raw!r}")
    return None


def _parse_date_string(value: str) -> Optional[datetime]:
    if not value:
        return None
    match = DMY_RE.match(value)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return datetime(year, month, day, tzinfo=timezone.utc)
        except ValueError:
            logger.warning(f"Fecha DD-MM-YYYY inválida: {value!r}")
            return None

    iso = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        return ensure_utc(datetime.fromisoformat(iso))
    except ValueError:
        logger.warning(f"Fecha no parseable: {value!r}")
        return None


def _safe_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def format_date_only(value: Any) -> Optional[str]:
    """
    Formatea como YYYY-MM-DD usando la fecha calendario UTC.
    Nunca usa la hora local del proceso.
    """
    if isinstance(value, datetime):
        return ensure_utc(value).date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return None


def to_date_only(raw: Any) -> Optional[str]:
    """to_date + format_date_only."""
    return format_date_only(to_date(raw))


def to_location_code(raw: Any) -> Optional[int]:
    """
    Código numérico de ubicación (estado/distrito/bloque/aldea).

    Primero consulta la tabla estática de UUIDs conocidos; luego extrae los
    dígitos del valor y los parsea como entero.
    """
    value = first_or_self(raw)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        logger.warning(f"Código de ubicación inválido: {raw!r}")
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        logger.warning(f"Código de ubicación no entero: {raw!r}")
        return None
    if isinstance(value, dict):
        for key in _OBJECT_KEYS:
            if value.get(key):
                return to_location_code(value[key])
        return None

    text = str(value).strip()
    known = LOCATION_UUID_TO_CODE.get(text.lower())
    if known is not None:
        return int(known)

    digits = _NON_DIGITS.sub("", text)
    if not digits:
        logger.warning(f"Sin dígitos para código de ubicación: {raw!r}")
        return None
    return int(digits)


def to_uuid(raw: Any, *, field_id: Optional[str] = None) -> Optional[str]:
    """
    Extrae un UUID de un valor, código numérico o JSON/objeto con id.

    Si se indica `field_id` y el valor es un código conocido para ese campo,
    retorna el UUID de la tabla estática.
    """
    value = first_or_self(raw)
    if value is None or value == "" or isinstance(value, bool):
        return None

    if field_id and not isinstance(value, dict):
        digits = _NON_DIGITS.sub("", str(value))
        table = LOCATION_CODE_TO_UUID.get(field_id, {})
        if digits and digits in table:
            return table[digits]

    if isinstance(value, dict):
        for key in _OBJECT_KEYS:
            candidate = value.get(key)
            if isinstance(candidate, str) and UUID_RE.match(candidate.strip()):
                return candidate.strip()
        return None

    if isinstance(value, str):
        text = value.strip()
        if UUID_RE.match(text):
            return text
        if text.startswith(("{", "[")):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, (dict, list)):
                return to_uuid(parsed)

    logger.warning(f"Valor sin UUID resoluble: {raw!r}")
    return None


def to_text(raw: Any) -> Optional[str]:
    """
    Normaliza a texto:
    - strings -> recortados
    - números -> str
    - listas -> unidas con ", "
    - dicts -> JSON
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        text = raw.strip()
        return text or None
    if isinstance(raw, (int, float)):
        return str(raw)
    if isinstance(raw, (list, tuple)):
        if not raw:
            return None
        return ", ".join(str(item) for item in raw)
    if isinstance(raw, dict):
        return json.dumps(raw, ensure_ascii=False, default=str)
    return None


def to_number(raw: Any) -> Optional[float]:
    """
    Convierte a float números y strings numéricos.

    NaN e infinito se rechazan; cualquier otro valor -> None con warning.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        logger.warning(f"Número inválido (booleano): {raw!r}")
        return None
    try:
        value = float(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError):
        logger.warning(f"Número inválido: {raw!r}")
        return None
    if math.isnan(value) or math.isinf(value):
        logger.warning(f"Número no finito: {raw!r}")
        return None
    return value
