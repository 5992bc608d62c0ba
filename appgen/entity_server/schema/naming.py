"""
Naming rules for entities and fields.

Names become identifiers in generated application code, so they must be
identifier-safe. Some field names collide with the generated authentication
code and are reserved on the user entity only.

Example:
    >>> is_name_valid("firstName")
    True
    >>> is_name_valid("2fast")
    False
    >>> is_reserved_name("User", "Password")
    True
    >>> is_reserved_name("Customer", "password")
    False
"""

from __future__ import annotations

import re

from ..errors import NameValidationError, ReservedNameError
from .constants import RESERVED_FIELD_NAMES, USER_ENTITY_NAME

NAME_REGEX = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

NAME_VALIDATION_ERROR_MESSAGE = (
    "Name must only contain letters, numbers and underscores, "
    "and must not start with a number"
)


def is_name_valid(name: str) -> bool:
    """Check that a name is an identifier-safe string."""
    return bool(NAME_REGEX.match(name))


def validate_name(name: str) -> None:
    """Validate an entity or field name.

    Raises:
        NameValidationError: If the name is not identifier-safe
    """
    if not is_name_valid(name):
        raise NameValidationError(NAME_VALIDATION_ERROR_MESSAGE, name)


def is_reserved_name(entity_name: str, name: str) -> bool:
    """Check whether a name is reserved on the given entity.

    Reserved names only apply to the user entity; other entities are
    unrestricted.
    """
    return entity_name == USER_ENTITY_NAME and name.lower() in RESERVED_FIELD_NAMES


def validate_reserved_name(entity_name: str, name: str) -> None:
    """Validate a field name against the reserved names of its entity.

    Raises:
        ReservedNameError: If the name is reserved on the entity
    """
    if is_reserved_name(entity_name, name):
        raise ReservedNameError(name, entity_name)


def name_from_display_name(display_name: str) -> str:
    """Derive a camelCase identifier from a display name.

    Example:
        >>> name_from_display_name("Date of Birth")
        'dateOfBirth'
        >>> name_from_display_name("2nd address")
        'field2ndAddress'
    """
    words = re.findall(r"[A-Za-z0-9]+", display_name)
    if not words:
        return "field"
    name = words[0].lower() + "".join(w[:1].upper() + w[1:].lower() for w in words[1:])
    if not name[0].isalpha():
        name = "field" + name[:1].upper() + name[1:]
    return name
