"""Pydantic v2 models for parsed model attributes.

An attribute string such as ``title:string,owner:ref(users)`` is parsed into
a list of :class:`AttributeDescriptor` objects which the module generator
projects into a Sequelize model, CRUD services and a migration file.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class AttributeKind(str, Enum):
    """Kind of a model attribute."""
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    FLOAT = "float"
    DATE = "date"
    REFERENCE = "reference"
    ENUM = "enum"


# Sequelize DataTypes member for every kind.
STORAGE_TYPES: dict[AttributeKind, str] = {
    AttributeKind.STRING: "STRING",
    AttributeKind.NUMBER: "BIGINT",
    AttributeKind.INTEGER: "INTEGER",
    AttributeKind.BOOLEAN: "BOOLEAN",
    AttributeKind.FLOAT: "FLOAT",
    AttributeKind.DATE: "DATE",
    AttributeKind.REFERENCE: "INTEGER",
    AttributeKind.ENUM: "ENUM",
}


class ReferentialAction(str, Enum):
    """``onDelete`` / ``onUpdate`` policy of a foreign key."""
    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"


# ---------------------------------------------------------------------------
# Attribute models
# ---------------------------------------------------------------------------

class ReferenceTarget(BaseModel):
    """Foreign key target of a ``ref(model)`` attribute."""
    model_config = ConfigDict(frozen=True)

    model: str = Field(..., description="Referenced table / model name")
    on_delete: ReferentialAction = Field(default=ReferentialAction.CASCADE)
    on_update: ReferentialAction = Field(default=ReferentialAction.CASCADE)


class AttributeDescriptor(BaseModel):
    """A single column of a generated model."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Column name")
    kind: AttributeKind = Field(..., description="Attribute kind")
    reference: Optional[ReferenceTarget] = Field(
        default=None, description="Foreign key target, only for reference attributes"
    )
    enum_values: tuple[str, ...] = Field(
        default=(), description="Allowed values, only for enum attributes"
    )

    @property
    def storage_type(self) -> str:
        """Sequelize type code, e.g. ``INTEGER`` or ``BIGINT``."""
        return STORAGE_TYPES[self.kind]

    def to_template_dict(self) -> dict[str, Any]:
        """Plain dict handed to Jinja2 templates."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "storage_type": self.storage_type,
            "reference": (
                {
                    "model": self.reference.model,
                    "on_delete": self.reference.on_delete.value,
                    "on_update": self.reference.on_update.value,
                }
                if self.reference
                else None
            ),
            "enum_values": list(self.enum_values),
        }
