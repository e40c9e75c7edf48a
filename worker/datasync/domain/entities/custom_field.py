"""
Entidades para la colección de custom fields de usuarios y cohortes.

Cada custom field llega como:
    {"fieldId": "...", "label": "...", "selectedValues": [str | {id, value, uuid, identifier}]}

Los valores seleccionados se modelan como un tipo suma explícito
(PrimitiveValue | ReferenceObject). Cualquier otra forma (número, booleano,
null) se conserva como None y resuelve a None.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class PrimitiveValue:
    """Valor seleccionado como string plano."""

    text: str


@dataclass(frozen=True)
class ReferenceObject:
    """Valor seleccionado como objeto de referencia."""

    id: Any = None
    value: Any = None
    uuid: Any = None
    identifier: Any = None

    def first_present(self, keys: Sequence[str]) -> Any:
        """
        Retorna el primer atributo presente (no None ni string vacío)
        siguiendo el orden de prioridad `keys`.
        """
        for key in keys:
            candidate = getattr(self, key, None)
            if candidate is None or candidate == "":
                continue
            return candidate
        return None


SelectedValue = Union[PrimitiveValue, ReferenceObject]


def parse_selected_value(raw: Any) -> Optional[SelectedValue]:
    """Convierte un valor crudo a la variante correspondiente (o None)."""
    if isinstance(raw, str):
        return PrimitiveValue(text=raw)
    if isinstance(raw, dict):
        return ReferenceObject(
            id=raw.get("id"),
            value=raw.get("value"),
            uuid=raw.get("uuid"),
            identifier=raw.get("identifier"),
        )
    return None


@dataclass(frozen=True)
class CustomField:
    """Custom field normalizado."""

    field_id: Optional[str]
    label: Optional[str]
    selected_values: Tuple[Optional[SelectedValue], ...] = ()

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["CustomField"]:
        """Construye desde el dict del evento; None si la forma no es válida."""
        if not isinstance(raw, dict):
            return None
        values = raw.get("selectedValues")
        if not isinstance(values, list):
            values = []
        return cls(
            field_id=raw.get("fieldId"),
            label=raw.get("label"),
            selected_values=tuple(parse_selected_value(v) for v in values),
        )

    @property
    def first_value(self) -> Optional[SelectedValue]:
        """Primer valor seleccionado (politica "first wins")."""
        if not self.selected_values:
            return None
        return self.selected_values[0]


def parse_custom_fields(raw: Any) -> list[CustomField]:
    """
    Normaliza la colección `customFields` de un payload.

    Acepta lista de dicts o de CustomField ya construidos; cualquier otra
    cosa produce lista vacía.
    """
    if not isinstance(raw, (list, tuple)):
        return []
    fields: list[CustomField] = []
    for item in raw:
        if isinstance(item, CustomField):
            fields.append(item)
            continue
        parsed = CustomField.from_payload(item)
        if parsed is not None:
            fields.append(parsed)
    return fields
