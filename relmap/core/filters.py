"""Translate relation filters (some / every / none) into physical predicates.

The result is a correlated sqlglot condition over the outer entity's table,
ready to be attached to a WHERE clause by the query engine:

    some   EXISTS (related rows of the outer row matching the predicate)
    none   NOT EXISTS (related rows of the outer row matching the predicate)
    every  NOT EXISTS (related rows of the outer row NOT matching the predicate)

``every`` is vacuously true when the outer row has no related rows, and a
predicate evaluating to NULL counts as not matching.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import sqlglot
from sqlglot import exp

from relmap.core.descriptor import RelationDescriptor, RelationKind, RelationSide
from relmap.core.entity import Entity
from relmap.core.join_table import synthesize_join_table
from relmap.validation import RelationValidationError

Predicate = str | dict[str, Any] | exp.Expression


class Quantifier(str, Enum):
    """Quantifier applied to a to-many relation filter."""

    SOME = "some"
    EVERY = "every"
    NONE = "none"


@dataclass
class RelationFilter:
    """Filter on a relation field of an entity."""

    field: str
    quantifier: Quantifier | str
    where: Predicate | None = None
    join_where: Predicate | None = None


def _identifier(name: str) -> exp.Identifier:
    return exp.to_identifier(name, quoted=True)


def _table(name: str, alias: str) -> exp.Table:
    return exp.Table(this=_identifier(name), alias=exp.TableAlias(this=_identifier(alias)))


def _column(alias: str, column: str) -> exp.Column:
    return exp.Column(this=_identifier(column), table=_identifier(alias))


def _keys_equal(left_alias: str, left: list[str], right_alias: str, right: list[str]) -> exp.Expression:
    return exp.and_(
        *(exp.EQ(this=_column(left_alias, a), expression=_column(right_alias, b)) for a, b in zip(left, right))
    )


def _dict_predicate(where: dict[str, Any]) -> exp.Expression:
    conditions = []
    for name, value in where.items():
        column = exp.column(name)
        if value is None:
            conditions.append(exp.Is(this=column, expression=exp.Null()))
        elif isinstance(value, (list, tuple, set)):
            conditions.append(exp.In(this=column, expressions=[exp.convert(v) for v in value]))
        else:
            conditions.append(exp.EQ(this=column, expression=exp.convert(value)))
    if not conditions:
        return exp.true()
    return exp.and_(*conditions)


def qualify_predicate(
    predicate: Predicate | None, entity: Entity, alias: str, dialect: str = "duckdb"
) -> exp.Expression | None:
    """Parse a predicate and bind its columns to an aliased entity.

    Unqualified columns, and columns qualified with the entity name, its table
    or ``alias`` itself, are mapped from field names to physical columns and
    qualified with ``alias``.
    Columns qualified with any other name are left alone, so a predicate can
    still correlate with outer queries.

    Args:
        predicate: SQL condition string, dict of field equalities, or sqlglot expression
        entity: Entity the predicate is written against
        alias: Table alias the entity is bound to
        dialect: SQL dialect used to parse string predicates

    Returns:
        Qualified expression, or None if no predicate was given
    """
    if predicate is None:
        return None
    if isinstance(predicate, dict):
        parsed = _dict_predicate(predicate)
    elif isinstance(predicate, exp.Expression):
        parsed = predicate.copy()
    else:
        parsed = sqlglot.parse_one(predicate, read=dialect)

    for column in list(parsed.find_all(exp.Column)):
        if column.table and column.table not in (entity.name, entity.table_name, alias):
            continue
        column.set("this", _identifier(entity.column_for(column.name)))
        column.set("table", _identifier(alias))
    return parsed


def _quantify(quantifier: Quantifier, subquery: exp.Select, link: exp.Expression, match: exp.Expression | None):
    if quantifier is Quantifier.EVERY:
        if match is None:
            return exp.true()
        missed = exp.not_(exp.Coalesce(this=exp.paren(match, copy=False), expressions=[exp.false()]))
        return exp.not_(exp.Exists(this=subquery.where(exp.and_(link, missed))))

    condition = exp.and_(link, match) if match is not None else link
    exists = exp.Exists(this=subquery.where(condition))
    if quantifier is Quantifier.NONE:
        return exp.not_(exists)
    return exists


def _join_table_source(
    descriptor: RelationDescriptor, this: RelationSide, other: RelationSide, outer: str, related: str, link_alias: str
) -> tuple[exp.Select, exp.Expression]:
    spec = synthesize_join_table(descriptor)
    this_column = spec.column_for(this.entity.name, this.field.name)
    other_column = spec.other_column(this_column)
    this_reference = spec.references_a if this_column == spec.column_a else spec.references_b
    other_reference = spec.references_b if this_column == spec.column_a else spec.references_a

    subquery = (
        exp.select("1")
        .from_(_table(spec.table_name, link_alias))
        .join(
            _table(other.entity.table_name, related),
            on=exp.EQ(this=_column(related, other_reference), expression=_column(link_alias, other_column)),
        )
    )
    link = exp.EQ(this=_column(link_alias, this_column), expression=_column(outer, this_reference))
    return subquery, link


def _join_entity_source(
    descriptor: RelationDescriptor, this: RelationSide, other: RelationSide, outer: str, related: str, link_alias: str
) -> tuple[exp.Select, exp.Expression]:
    join = descriptor.join
    join_entity = join.entity
    this_is_a = descriptor.is_side_a(this)
    _, this_key = join.for_side(this_is_a)
    _, far_key = join.for_side(not this_is_a)

    subquery = (
        exp.select("1")
        .from_(_table(join_entity.table_name, link_alias))
        .join(
            _table(other.entity.table_name, related),
            on=_keys_equal(
                related,
                [other.entity.column_for(name) for name in far_key.references],
                link_alias,
                [join_entity.column_for(name) for name in far_key.fields],
            ),
        )
    )
    link = _keys_equal(
        link_alias,
        [join_entity.column_for(name) for name in this_key.fields],
        outer,
        [this.entity.column_for(name) for name in this_key.references],
    )
    return subquery, link


def _foreign_key_source(
    descriptor: RelationDescriptor, this: RelationSide, other: RelationSide, outer: str, related: str
) -> tuple[exp.Select, exp.Expression]:
    key = descriptor.foreign_key
    subquery = exp.select("1").from_(_table(other.entity.table_name, related))
    if descriptor.is_side_a(this):
        # Children hold the foreign key
        link = _keys_equal(
            related,
            [other.entity.column_for(name) for name in key.fields],
            outer,
            [this.entity.column_for(name) for name in key.references],
        )
    else:
        link = _keys_equal(
            related,
            [other.entity.column_for(name) for name in key.references],
            outer,
            [this.entity.column_for(name) for name in key.fields],
        )
    return subquery, link


def translate_filter(
    descriptor: RelationDescriptor,
    quantifier: Quantifier | str,
    where: Predicate | None = None,
    *,
    entity: str | None = None,
    field: str | None = None,
    join_where: Predicate | None = None,
    outer_alias: str | None = None,
    dialect: str = "duckdb",
) -> exp.Expression:
    """Translate a quantified relation filter into a correlated predicate.

    Args:
        descriptor: Relation the filter traverses
        quantifier: some, every or none
        where: Predicate over the related entity's fields
        entity: Entity the filter is attached to (defaults to ``side_a``'s entity)
        field: Relation field traversed (needed for self relations)
        join_where: Predicate over the join entity's own attributes (explicit relations only)
        outer_alias: Alias of the outer entity's table (defaults to its table name)
        dialect: SQL dialect used to parse string predicates

    Returns:
        sqlglot condition; render with ``.sql(dialect=...)``

    Raises:
        RelationValidationError: ``join_where`` given for a relation without a join entity

    Example:
        >>> translate_filter(descriptor, "some", "name = 'news'", entity="Post").sql("duckdb")
        'EXISTS(SELECT 1 FROM "_CategoryToPost" AS "categories_link" JOIN "Category" AS "categories" ...)'
    """
    quantifier = Quantifier(quantifier)
    if entity is None:
        sides = [side for side in (descriptor.side_a, descriptor.side_b) if field in (None, side.field.name)]
        if not sides:
            raise KeyError(f"Relation field {field} is not part of {descriptor.describe()}")
        entity, field = sides[0].entity.name, sides[0].field.name
    this, other = descriptor.sides_for(entity, field)

    outer = outer_alias or this.entity.table_name
    related = f"{this.field.name}_related" if this.field.name == outer else this.field.name
    link_alias = f"{this.field.name}_link"

    if descriptor.kind is RelationKind.MANY_TO_MANY_EXPLICIT:
        subquery, link = _join_entity_source(descriptor, this, other, outer, related, link_alias)
        join_match = qualify_predicate(join_where, descriptor.join.entity, link_alias, dialect)
    else:
        if join_where is not None:
            raise RelationValidationError(
                f"{this} has no join entity attributes to filter on ({descriptor.kind.value})"
            )
        join_match = None
        if descriptor.kind is RelationKind.MANY_TO_MANY_IMPLICIT:
            subquery, link = _join_table_source(descriptor, this, other, outer, related, link_alias)
        else:
            subquery, link = _foreign_key_source(descriptor, this, other, outer, related)

    related_match = qualify_predicate(where, other.entity, related, dialect)
    matches = [m for m in (join_match, related_match) if m is not None]
    match = exp.and_(*matches) if matches else None

    return _quantify(quantifier, subquery, link, match)
