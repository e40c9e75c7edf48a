"""
Resolución de custom fields a columnas fijas del destino.

Reglas:
- Se busca el primer field cuyo label (exacto, case-sensitive) o fieldId coincida
- Sin match o sin selectedValues -> None
- Solo se consume selectedValues[0]; el resto se descarta
- String -> se retorna tal cual
- Objeto -> primer atributo presente según el orden de claves del llamador
- Nunca lanza excepciones con input malformado
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple

from datasync.domain.entities.custom_field import (
    CustomField,
    PrimitiveValue,
    ReferenceObject,
    SelectedValue,
    parse_custom_fields,
)

# Asimetria deliberada: por label se lee `id`; por fieldId se lee `value` y luego `id`.
LABEL_KEYS: Tuple[str, ...] = ("id",)
FIELD_ID_KEYS: Tuple[str, ...] = ("value", "id")


class LookupMode(str, Enum):
    LABEL = "label"
    FIELD_ID = "field_id"


def default_keys(mode: LookupMode) -> Tuple[str, ...]:
    return LABEL_KEYS if mode == LookupMode.LABEL else FIELD_ID_KEYS


def find_field(fields: Iterable[CustomField], selector: str, mode: LookupMode) -> Optional[CustomField]:
    """Primer field que coincide con el selector (first wins)."""
    for field in fields:
        key = field.label if mode == LookupMode.LABEL else field.field_id
        if key == selector:
            return field
    return None


def extract_value(value: Optional[SelectedValue], keys: Sequence[str]) -> Any:
    if isinstance(value, PrimitiveValue):
        return value.text
    if isinstance(value, ReferenceObject):
        return value.first_present(keys)
    return None


def resolve(
    fields: Any,
    selector: str,
    *,
    by: LookupMode = LookupMode.FIELD_ID,
    keys: Optional[Sequence[str]] = None,
) -> Any:
    """
    Resuelve un custom field por label o fieldId.

    Args:
        fields: colección `customFields` (dicts crudos o CustomField)
        selector: label o fieldId buscado
        by: modo de busqueda
        keys: orden de prioridad de atributos para valores objeto

    Returns:
        El valor extraido o None
    """
    normalized = parse_custom_fields(fields)
    field = find_field(normalized, selector, by)
    if field is None:
        return None
    return extract_value(field.first_value, keys or default_keys(by))


def has_field(fields: Any, selector: str, *, by: LookupMode = LookupMode.FIELD_ID) -> bool:
    """True si el field existe en la colección (aunque no tenga valores)."""
    return find_field(parse_custom_fields(fields), selector, by) is not None


Coerce = Callable[[Any], Any]


@dataclass(frozen=True)
class CustomFieldMapping:
    """
    Mapeo versionado de custom fields a una columna destino.

    - column: columna destino
    - field_ids: fieldIds en orden de prioridad (el primer no-None gana)
    - labels: labels a consultar si ningún fieldId resolvió
    - coerce: coerción opcional aplicada al valor resuelto
    - keys: override del orden de atributos para valores objeto
    """

    column: str
    field_ids: Tuple[str, ...] = ()
    labels: Tuple[str, ...] = ()
    coerce: Optional[Coerce] = None
    keys: Optional[Tuple[str, ...]] = None

    def resolve(self, fields: list[CustomField]) -> Any:
        raw = None
        for field_id in self.field_ids:
            raw = extract_value(
                _first_value(fields, field_id, LookupMode.FIELD_ID),
                self.keys or FIELD_ID_KEYS,
            )
            if raw is not None:
                break
        if raw is None:
            for label in self.labels:
                raw = extract_value(
                    _first_value(fields, label, LookupMode.LABEL),
                    self.keys or LABEL_KEYS,
                )
                if raw is not None:
                    break
        return self.coerce(raw) if self.coerce else raw


def _first_value(fields: list[CustomField], selector: str, mode: LookupMode) -> Optional[SelectedValue]:
    field = find_field(fields, selector, mode)
    return field.first_value if field is not None else None


def apply_mappings(fields: Any, mappings: Sequence[CustomFieldMapping]) -> dict[str, Any]:
    """
    Aplica una tabla de mapeos y retorna {columna: valor}.
    Los fieldIds sin mapeo se ignoran.
    """
    normalized = parse_custom_fields(fields)
    return {m.column: m.resolve(normalized) for m in mappings}
