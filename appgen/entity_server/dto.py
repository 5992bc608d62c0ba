"""
Input models for the entity facade.

Inputs are validated by pydantic on construction; business rules (naming,
reserved names, system data types, properties schemas) are enforced by
EntityService.

Update models carry only the attributes the caller sets; unset attributes
are left untouched (see `changes()`).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .schema.types import DataType


class EntityCreateInput(BaseModel):
    """Create an entity."""
    app_id: str = Field(..., description="Owning application ID")
    name: str = Field(..., description="Identifier-safe entity name")
    display_name: str = Field(..., description="Human-readable name")
    plural_display_name: str = Field(..., description="Human-readable plural name")
    description: str = Field("", description="Entity description")


class EntityUpdateInput(BaseModel):
    """Update an entity (and its current version names)."""
    name: str | None = Field(None, description="New entity name")
    display_name: str | None = Field(None, description="New display name")
    plural_display_name: str | None = Field(None, description="New plural display name")
    description: str | None = Field(None, description="New description")

    def changes(self) -> dict[str, Any]:
        """Attributes the caller set, skipping None values."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class EntityFieldCreateInput(BaseModel):
    """Create a field on the current version of an entity."""
    name: str = Field(..., description="Identifier-safe field name")
    display_name: str = Field(..., description="Human-readable name")
    data_type: DataType = Field(..., description="Field data type")
    properties: dict[str, Any] = Field(default_factory=dict, description="Type-specific properties")
    required: bool = Field(False, description="Whether a value is required")
    searchable: bool = Field(False, description="Whether the field is searchable")
    description: str = Field("", description="Field description")
    entity_version_id: str | None = Field(
        None, description="Ignored; fields are always created on the current version"
    )


class EntityFieldUpdateInput(BaseModel):
    """Update a field of the current version."""
    name: str | None = Field(None, description="New field name")
    display_name: str | None = Field(None, description="New display name")
    data_type: DataType | None = Field(None, description="New data type")
    properties: dict[str, Any] | None = Field(None, description="New properties")
    required: bool | None = Field(None, description="New required flag")
    searchable: bool | None = Field(None, description="New searchable flag")
    description: str | None = Field(None, description="New description")

    def changes(self) -> dict[str, Any]:
        """Attributes the caller set, skipping None values."""
        return self.model_dump(exclude_unset=True, exclude_none=True)
