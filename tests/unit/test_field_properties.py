"""
Unit tests for field properties validation.

Tests cover:
- Schemas for every data type
- Valid and invalid payloads
- Default properties
"""

import pytest

from appgen.entity_server.errors import FieldPropertiesError
from appgen.entity_server.schema.properties import (
    DATA_TYPE_SCHEMAS,
    FieldPropertiesValidator,
    default_properties,
)
from appgen.entity_server.schema.types import DataType

TYPES_WITHOUT_FULL_DEFAULTS = {
    DataType.LOOKUP,
    DataType.OPTION_SET,
    DataType.MULTI_SELECT_OPTION_SET,
}


class TestFieldPropertiesValidator:
    """Tests for FieldPropertiesValidator."""

    @pytest.fixture
    def validator(self):
        """Create validator with the built-in schemas."""
        return FieldPropertiesValidator()

    def test_every_data_type_has_a_schema(self):
        """Schemas cover the closed set of data types."""
        assert set(DATA_TYPE_SCHEMAS) == set(DataType)

    def test_schemas_are_immutable(self):
        """The schema table cannot be modified."""
        with pytest.raises(TypeError):
            DATA_TYPE_SCHEMAS[DataType.EMAIL] = {}

    def test_valid_single_line_text(self, validator):
        """maxLength within bounds is accepted."""
        validator.validate(DataType.SINGLE_LINE_TEXT, {"maxLength": 42})
        assert validator.errors(DataType.SINGLE_LINE_TEXT, {"maxLength": 1000}) == []

    def test_wrong_type_is_rejected(self, validator):
        """A string maxLength is rejected with its location."""
        with pytest.raises(FieldPropertiesError) as exc_info:
            validator.validate(DataType.SINGLE_LINE_TEXT, {"maxLength": "x"})

        error = exc_info.value
        assert error.data_type == "SingleLineText"
        assert len(error.errors) == 1
        assert error.errors[0].startswith("maxLength:")
        assert "Invalid properties for data type SingleLineText" in str(error)

    def test_missing_required_property(self, validator):
        """Required properties must be present."""
        errors = validator.errors(DataType.SINGLE_LINE_TEXT, {})
        assert errors == ["'maxLength' is a required property"]

    def test_unknown_property_is_rejected(self, validator):
        """Schemas reject properties they do not declare."""
        errors = validator.errors(DataType.SINGLE_LINE_TEXT, {"maxLength": 10, "color": "red"})
        assert len(errors) == 1
        assert "color" in errors[0]

    def test_out_of_range(self, validator):
        """Bounds are enforced."""
        assert validator.errors(DataType.SINGLE_LINE_TEXT, {"maxLength": 0})
        assert validator.errors(
            DataType.DECIMAL_NUMBER,
            {"minimumValue": 0, "maximumValue": 10, "precision": 9},
        )

    def test_empty_schemas_accept_none(self, validator):
        """Types without properties accept an empty or missing payload."""
        validator.validate(DataType.BOOLEAN, None)
        validator.validate(DataType.EMAIL, {})

    def test_option_set(self, validator):
        """Option sets need at least one labelled option."""
        validator.validate(
            DataType.OPTION_SET, {"options": [{"label": "Open", "value": "open"}]}
        )
        assert validator.errors(DataType.OPTION_SET, {"options": []})
        assert validator.errors(DataType.OPTION_SET, {"options": [{"label": "Open"}]})

    def test_lookup(self, validator):
        """Lookups reference a related entity."""
        validator.validate(
            DataType.LOOKUP, {"relatedEntityId": "e1", "allowMultipleSelection": False}
        )
        assert validator.errors(DataType.LOOKUP, {"allowMultipleSelection": True})

    def test_validation_does_not_mutate_payload(self, validator):
        """The payload passed in is left untouched."""
        payload = {"maxLength": 5}
        validator.validate(DataType.SINGLE_LINE_TEXT, payload)
        assert payload == {"maxLength": 5}

    def test_custom_schemas(self):
        """A validator can be built from a custom schema table."""
        validator = FieldPropertiesValidator(
            {DataType.EMAIL: {"type": "object", "properties": {"domain": {"type": "string"}}}}
        )
        validator.validate(DataType.EMAIL, {"domain": "example.com"})
        assert validator.errors(DataType.BOOLEAN, {}) == [
            "No properties schema for data type Boolean"
        ]


class TestDefaultProperties:
    """Tests for default_properties."""

    def test_single_line_text_default(self):
        """SingleLineText defaults to 256 characters."""
        assert default_properties(DataType.SINGLE_LINE_TEXT) == {"maxLength": 256}

    def test_decimal_default(self):
        """DecimalNumber defaults include the precision."""
        assert default_properties(DataType.DECIMAL_NUMBER)["precision"] == 2

    @pytest.mark.parametrize(
        "data_type", [t for t in DataType if t not in TYPES_WITHOUT_FULL_DEFAULTS]
    )
    def test_defaults_are_valid(self, data_type):
        """Default payloads pass validation wherever defaults are complete."""
        validator = FieldPropertiesValidator()
        assert validator.errors(data_type, default_properties(data_type)) == []
