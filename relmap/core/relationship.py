"""Relation field definitions for entities."""

from pydantic import BaseModel, ConfigDict, Field


class RelationField(BaseModel):
    """A field whose type is another entity (or a list of them).

    Shapes:
    - many=True, no fields: list side of a one-to-many, or one side of an
      implicit many-to-many
    - many=False with fields: this entity holds the foreign key
    - many=False without fields: back side of a one-to-one
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Field name on the owning entity")
    target: str = Field(description="Name of the related entity")
    many: bool = Field(default=False, description="List-typed relation field")
    relation: str | None = Field(
        default=None,
        description="Relation name; disambiguates multiple relations and overrides implicit join table names",
    )
    fields: list[str] | None = Field(default=None, description="Foreign key scalar field(s) on this entity")
    references: list[str] | None = Field(
        default=None, description="Referenced field(s) on the target entity (defaults to its primary key)"
    )
    optional: bool = Field(default=False, description="Whether a to-one relation may be empty")

    def __hash__(self) -> int:
        return hash((self.name, self.target, self.relation))

    @property
    def has_foreign_key(self) -> bool:
        """Whether this side stores the foreign key scalars."""
        return bool(self.fields)

    @property
    def foreign_key_columns(self) -> list[str]:
        """Get foreign key fields as a list (empty when the other side owns the key)."""
        return list(self.fields or [])

    def matches(self, other: "RelationField", owner: str) -> bool:
        """Check whether `other` is the back-relation of this field.

        Args:
            other: Candidate field declared on `self.target`
            owner: Name of the entity owning this field

        Returns:
            True if `other` points back at `owner` under the same relation name
        """
        if other is self:
            return False
        return other.target == owner and other.relation == self.relation
