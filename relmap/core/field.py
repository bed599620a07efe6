"""Scalar field definitions."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ScalarType = Literal["int", "bigint", "string", "boolean", "float", "decimal", "datetime", "date", "json"]


class ScalarField(BaseModel):
    """Scalar (column-backed) field of an entity."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique field name within entity")
    type: ScalarType = Field(..., description="Scalar type")
    column: str | None = Field(None, description="Physical column name (defaults to name)")
    optional: bool = Field(False, description="Whether the column accepts NULL")
    autoincrement: bool = Field(False, description="Identifier generated by the store")
    default: str | int | float | bool | None = Field(None, description="Literal default value")
    default_sql: str | None = Field(None, description="Raw SQL default expression (e.g. now())")
    description: str | None = Field(None, description="Human-readable description")

    def __hash__(self) -> int:
        return hash((self.name, self.type, self.column))

    @property
    def column_name(self) -> str:
        """Get physical column name, defaulting to name if not specified."""
        return self.column or self.name
