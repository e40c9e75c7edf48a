"""
Tests unitarios para la resolución de custom fields.
"""
import pytest

from datasync.application.services.custom_field_resolver import (
    CustomFieldMapping,
    LookupMode,
    apply_mappings,
    has_field,
    resolve,
)
from datasync.domain.entities.custom_field import (
    CustomField,
    PrimitiveValue,
    ReferenceObject,
    parse_custom_fields,
    parse_selected_value,
)


FIELDS = [
    {"fieldId": "f-1", "label": "SUBJECT", "selectedValues": ["a", "b"]},
    {"fieldId": "f-2", "label": "EMPTY", "selectedValues": []},
    {"fieldId": "f-3", "label": "STATE", "selectedValues": [{"id": "24", "value": "Maharashtra"}]},
    {"fieldId": "f-4", "label": "ODD", "selectedValues": [42]},
    {"fieldId": "f-5", "label": "NO_VALUES"},
]


class TestResolve:
    """Politica first-wins y formas de valor."""

    def test_first_selected_value_wins(self):
        assert resolve(FIELDS, "f-1") == "a"

    def test_absent_field_is_none(self):
        assert resolve(FIELDS, "missing") is None

    def test_empty_selected_values_is_none(self):
        assert resolve(FIELDS, "f-2") is None

    def test_missing_selected_values_is_none(self):
        assert resolve(FIELDS, "f-5") is None

    def test_field_id_lookup_prefers_value_over_id(self):
        assert resolve(FIELDS, "f-3") == "Maharashtra"

    def test_label_lookup_reads_id(self):
        assert resolve(FIELDS, "STATE", by=LookupMode.LABEL) == "24"

    def test_label_lookup_is_exact(self):
        assert resolve(FIELDS, "state", by=LookupMode.LABEL) is None

    def test_custom_key_order(self):
        assert resolve(FIELDS, "f-3", keys=("id",)) == "24"

    def test_unknown_shape_is_none(self):
        assert resolve(FIELDS, "f-4") is None

    @pytest.mark.parametrize("payload", [None, "not-a-list", 12, {"fieldId": "f-1"}])
    def test_malformed_collection_never_raises(self, payload):
        assert resolve(payload, "f-1") is None

    def test_first_matching_field_wins(self):
        fields = [
            {"fieldId": "dup", "selectedValues": ["first"]},
            {"fieldId": "dup", "selectedValues": ["second"]},
        ]
        assert resolve(fields, "dup") == "first"

    def test_object_skips_empty_attributes(self):
        fields = [{"fieldId": "x", "selectedValues": [{"id": "7", "value": ""}]}]
        assert resolve(fields, "x") == "7"

    def test_has_field(self):
        assert has_field(FIELDS, "f-2") is True
        assert has_field(FIELDS, "nope") is False


class TestSelectedValueVariants:

    def test_string_is_primitive(self):
        assert parse_selected_value("x") == PrimitiveValue(text="x")

    def test_dict_is_reference(self):
        parsed = parse_selected_value({"id": "1", "uuid": "u"})
        assert isinstance(parsed, ReferenceObject)
        assert parsed.first_present(("value", "uuid")) == "u"

    def test_other_shapes_are_none(self):
        assert parse_selected_value(3) is None
        assert parse_selected_value(None) is None

    def test_parse_custom_fields_skips_non_dicts(self):
        parsed = parse_custom_fields([FIELDS[0], "junk", None])
        assert len(parsed) == 1
        assert isinstance(parsed[0], CustomField)
        assert parsed[0].first_value == PrimitiveValue(text="a")


class TestCustomFieldMapping:

    def test_field_ids_in_priority_order(self):
        mapping = CustomFieldMapping("Col", field_ids=("missing", "f-2", "f-1"))
        assert apply_mappings(FIELDS, (mapping,)) == {"Col": "a"}

    def test_label_fallback_after_field_ids(self):
        mapping = CustomFieldMapping("Col", field_ids=("missing",), labels=("STATE",))
        assert apply_mappings(FIELDS, (mapping,)) == {"Col": "24"}

    def test_coercion_applied(self):
        mapping = CustomFieldMapping("Col", field_ids=("f-1",), coerce=str.upper)
        assert apply_mappings(FIELDS, (mapping,)) == {"Col": "A"}

    def test_unresolved_column_is_none(self):
        mapping = CustomFieldMapping("Col", field_ids=("missing",))
        assert apply_mappings(FIELDS, (mapping,)) == {"Col": None}
