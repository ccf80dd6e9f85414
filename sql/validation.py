"""
=======================================
Payload validation for write statements.
=======================================

Every insert/update/upsert payload is checked against the table's column
descriptors before any statement text is built. There is no coercion: a
value either has the runtime shape of its logical type or the call fails
with a ValidationError naming the table and column.

Functions:
    validate_insert: Required columns present, types match
    validate_update: Types match, NOT NULL columns not cleared
"""

import logging
from typing import Any, Mapping, Optional

from core.exceptions import ValidationError
from core.type_registry import TypeRegistry, default_registry
from models.schema_models import TableSchema
from sql.expressions import is_node

logger = logging.getLogger(__name__)


def _fail(schema: TableSchema, column: Optional[str], message: str) -> ValidationError:
    logger.debug(f"Validation failed on {schema.name}.{column}: {message}")
    return ValidationError(message, table=schema.name, column=column)


def _check_columns(schema: TableSchema, values: Mapping[str, Any]) -> None:
    if not isinstance(values, Mapping):
        raise _fail(schema, None, f"Payload for '{schema.name}' must be a mapping")

    for name in values:
        if schema.computed_column(name) is not None:
            raise _fail(schema, name, f"Computed column '{schema.name}.{name}' is not writable")
        if schema.virtual and name == 'rowid':
            continue
        if schema.column(name) is None:
            raise _fail(schema, name, f"Unknown column '{schema.name}.{name}'")


def _check_value(schema: TableSchema, name: str, value: Any, registry: TypeRegistry) -> None:
    type_name = schema.type_of(name)
    column = schema.column(name)

    if value is None:
        if column is not None and column.not_null and not column.auto_increment:
            raise _fail(schema, name, f"Column '{schema.name}.{name}' cannot be null")
        return

    if not registry.matches(type_name, value):
        expected = registry.get(type_name).description
        raise _fail(
            schema, name,
            f"Column '{schema.name}.{name}' expects {expected}, got {type(value).__name__}"
        )

    try:
        registry.to_storage(type_name, value)
    except ValidationError as e:
        raise _fail(schema, name, f"Column '{schema.name}.{name}': {e}") from e


def validate_insert(
    schema: TableSchema,
    values: Mapping[str, Any],
    registry: Optional[TypeRegistry] = None
) -> None:
    """Validate an insert (or upsert insert) payload.

    Raises:
        ValidationError: On unknown or computed columns, a missing required
            column, a null in a NOT NULL column, or a value of the wrong type
    """
    registry = registry or default_registry
    _check_columns(schema, values)

    for column in schema.columns:
        if column.required and values.get(column.name) is None:
            raise _fail(
                schema, column.name,
                f"Missing required column '{schema.name}.{column.name}'"
            )

    for name, value in values.items():
        if is_node(value) or callable(value):
            raise _fail(schema, name, f"Insert values must be plain values, not expressions ('{name}')")
        _check_value(schema, name, value, registry)


def validate_update(
    schema: TableSchema,
    values: Mapping[str, Any],
    registry: Optional[TypeRegistry] = None
) -> None:
    """Validate an update payload; expressions and callbacks skip the type test.

    Raises:
        ValidationError: On an empty payload, unknown or computed columns,
            a null in a NOT NULL column, or a value of the wrong type
    """
    registry = registry or default_registry
    _check_columns(schema, values)
    if not values:
        raise _fail(schema, None, f"Update on '{schema.name}' has no values")

    for name, value in values.items():
        if is_node(value) or callable(value):
            continue
        _check_value(schema, name, value, registry)
