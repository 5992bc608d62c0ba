"""
Field properties validation.

Every data type has a JSON schema describing its `properties` payload
(e.g. maxLength for SingleLineText, options for OptionSet). The validator
is invoked synchronously before a field is created or updated.

Invariants:
    - Every DataType has exactly one schema
    - Schemas reject unknown properties
    - Validation never mutates the payload

How to change safely:
    - Adding an optional property is backward compatible
    - Adding a required property invalidates stored fields on next update
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Mapping

from jsonschema import Draft7Validator

from ..errors import FieldPropertiesError
from .types import DataType

logger = logging.getLogger(__name__)

_OPTIONS_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "label": {"type": "string", "minLength": 1},
            "value": {"type": "string", "minLength": 1},
        },
        "required": ["label", "value"],
        "additionalProperties": False,
    },
    "minItems": 1,
}

_EMPTY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {},
    "additionalProperties": False,
}


def _object_schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": required or [],
        "additionalProperties": False,
    }


DATA_TYPE_SCHEMAS: Mapping[DataType, dict[str, Any]] = MappingProxyType(
    {
        DataType.SINGLE_LINE_TEXT: _object_schema(
            {"maxLength": {"type": "integer", "minimum": 1, "maximum": 1000, "default": 256}},
            required=["maxLength"],
        ),
        DataType.MULTI_LINE_TEXT: _object_schema(
            {"maxLength": {"type": "integer", "minimum": 1, "maximum": 65535, "default": 1000}},
            required=["maxLength"],
        ),
        DataType.EMAIL: _EMPTY_SCHEMA,
        DataType.WHOLE_NUMBER: _object_schema(
            {
                "minimumValue": {"type": "integer", "default": -999999999},
                "maximumValue": {"type": "integer", "default": 999999999},
            },
            required=["minimumValue", "maximumValue"],
        ),
        DataType.DATE_TIME: _object_schema(
            {
                "timeZone": {
                    "type": "string",
                    "enum": ["localTime", "serverTime"],
                    "default": "localTime",
                },
                "dateOnly": {"type": "boolean", "default": False},
            },
            required=["timeZone", "dateOnly"],
        ),
        DataType.DECIMAL_NUMBER: _object_schema(
            {
                "minimumValue": {"type": "number", "default": -999999999},
                "maximumValue": {"type": "number", "default": 999999999},
                "precision": {"type": "integer", "minimum": 0, "maximum": 8, "default": 2},
            },
            required=["minimumValue", "maximumValue", "precision"],
        ),
        DataType.LOOKUP: _object_schema(
            {
                "relatedEntityId": {"type": "string", "minLength": 1},
                "allowMultipleSelection": {"type": "boolean", "default": False},
            },
            required=["relatedEntityId", "allowMultipleSelection"],
        ),
        DataType.MULTI_SELECT_OPTION_SET: _object_schema(
            {"options": _OPTIONS_SCHEMA}, required=["options"]
        ),
        DataType.OPTION_SET: _object_schema({"options": _OPTIONS_SCHEMA}, required=["options"]),
        DataType.BOOLEAN: _EMPTY_SCHEMA,
        DataType.GEOGRAPHIC_LOCATION: _EMPTY_SCHEMA,
        DataType.ID: _EMPTY_SCHEMA,
        DataType.CREATED_AT: _EMPTY_SCHEMA,
        DataType.UPDATED_AT: _EMPTY_SCHEMA,
        DataType.ROLES: _EMPTY_SCHEMA,
        DataType.USERNAME: _EMPTY_SCHEMA,
        DataType.PASSWORD: _EMPTY_SCHEMA,
    }
)


def default_properties(data_type: DataType) -> dict[str, Any]:
    """Build the default properties payload of a data type.

    Only properties with a schema default are included; data types with
    properties that have no sensible default (Lookup, option sets) yield an
    incomplete payload that the caller must fill in.
    """
    schema = DATA_TYPE_SCHEMAS[data_type]
    return {
        name: prop["default"]
        for name, prop in schema.get("properties", {}).items()
        if "default" in prop
    }


class FieldPropertiesValidator:
    """Validates field properties against the schema of their data type.

    Validators are compiled once per data type and reused.

    Example:
        >>> validator = FieldPropertiesValidator()
        >>> validator.validate(DataType.SINGLE_LINE_TEXT, {"maxLength": 42})
        >>> validator.validate(DataType.SINGLE_LINE_TEXT, {"maxLength": "x"})
        Traceback (most recent call last):
        ...
        FieldPropertiesError: Invalid properties for data type SingleLineText: ...
    """

    def __init__(self, schemas: Mapping[DataType, dict[str, Any]] | None = None) -> None:
        schemas = schemas if schemas is not None else DATA_TYPE_SCHEMAS
        for schema in schemas.values():
            Draft7Validator.check_schema(schema)
        self._validators = {
            data_type: Draft7Validator(schema) for data_type, schema in schemas.items()
        }

    def errors(self, data_type: DataType, properties: Mapping[str, Any] | None) -> list[str]:
        """Collect validation errors for a payload.

        Returns:
            List of error messages with their location, empty if valid
        """
        validator = self._validators.get(data_type)
        if validator is None:
            return [f"No properties schema for data type {data_type.value}"]

        payload = dict(properties) if properties is not None else {}
        messages = []
        for error in sorted(validator.iter_errors(payload), key=lambda e: list(e.path)):
            location = ".".join(str(p) for p in error.path)
            messages.append(f"{location}: {error.message}" if location else error.message)
        return messages

    def validate(self, data_type: DataType, properties: Mapping[str, Any] | None) -> None:
        """Validate a payload.

        Raises:
            FieldPropertiesError: If the payload does not match the schema
        """
        messages = self.errors(data_type, properties)
        if messages:
            logger.debug(
                "Field properties rejected",
                extra={"data_type": data_type.value, "errors": messages},
            )
            raise FieldPropertiesError(data_type.value, messages)
