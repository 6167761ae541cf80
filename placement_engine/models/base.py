# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields, camelCase serialisation and
optimistic versioning.
"""

from datetime import datetime, timezone
from typing import ClassVar, Optional
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from bson import ObjectId


def generate_object_id() -> str:
    """Generate a new MongoDB ObjectId as string."""
    return str(ObjectId())


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored on every entity."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DomainModel(BaseModel):
    """Base for value objects embedded in entities."""

    model_config = ConfigDict(
        # Store documents use camelCase keys, Python code uses snake_case
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True
    )


class BaseEntity(BaseModel):
    """Base entity with common fields for all domain objects."""

    entity_type: ClassVar[str] = ""

    model_config = ConfigDict(
        alias_generator=to_camel,
        # Allow population by field name or alias
        populate_by_name=True,
        # Use enum values instead of enum objects
        use_enum_values=True,
        # Validate assignment
        validate_assignment=True,
        # Arbitrary types allowed
        arbitrary_types_allowed=True
    )

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update timestamp")
    created_by: str = Field(..., description="Actor ID who created this entity")
    updated_by: str = Field(..., description="Actor ID who last updated this entity")
    version: int = Field(default=0, ge=0, description="Optimistic lock version, 0 until first stored")
    schema_version: int = Field(default=1, description="Schema version for migrations")

    def update_timestamp(self, updated_by: str, now: Optional[datetime] = None) -> None:
        """Update the timestamp and updated_by fields."""
        self.updated_at = now or utcnow()
        self.updated_by = updated_by

    def to_document(self) -> dict:
        """Serialise to the camelCase document shape used by the stores."""
        return self.model_dump(by_alias=True, mode="python")

    @classmethod
    def from_document(cls, document: dict):
        """Rebuild an entity from a stored document."""
        return cls.model_validate(document)
