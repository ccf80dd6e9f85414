"""
===========================================================
Type registry: logical column types and value conversion.
===========================================================

Maps the logical column types understood by the schema builder to SQLite
storage types and provides both directions of value conversion:

    +----------+---------+-------------------------------------------+
    | logical  | storage | python value                              |
    +----------+---------+-------------------------------------------+
    | integer  | INTEGER | int (never bool)                          |
    | real     | REAL    | int or float (never bool, never NaN)      |
    | text     | TEXT    | str                                       |
    | blob     | BLOB    | bytes, bytearray or memoryview            |
    | boolean  | INTEGER | bool, stored as 1/0                       |
    | date     | TEXT    | datetime, stored as ISO-8601 UTC with ms  |
    | json     | BLOB    | dict or list, stored through jsonb()      |
    +----------+---------+-------------------------------------------+

The registry is an instance, not a module global: every Database owns
one, and new logical types are registered on it.

Example:
    >>> from core.type_registry import TypeRegistry
    >>> registry = TypeRegistry()
    >>> registry.to_storage('boolean', True)
    1
    >>> registry.register(
    ...     'decimal',
    ...     storage='text',
    ...     test=lambda v: isinstance(v, Decimal),
    ...     to_storage=str,
    ...     from_storage=Decimal
    ... )
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import SchemaError, ValidationError

STORAGE_TYPES = ('integer', 'real', 'text', 'blob')


@dataclass(frozen=True)
class LogicalType:
    """A registered logical type.

    Attributes:
        name: Logical type name used in column declarations
        storage: SQLite storage class (integer, real, text, blob)
        test: Predicate telling whether a python value belongs to the type
        to_storage: Converter applied before a value is bound
        from_storage: Converter applied to values read back from the driver
        check: Optional CHECK template with a '{column}' slot
        description: Human readable expectation used in validation errors
    """

    name: str
    storage: str
    test: Callable[[Any], bool]
    to_storage: Callable[[Any], Any]
    from_storage: Callable[[Any], Any]
    check: Optional[str] = None
    description: str = ''


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_real(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and math.isnan(value))


def _is_blob(value: Any) -> bool:
    return isinstance(value, (bytes, bytearray, memoryview))


def date_to_storage(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with millisecond precision.

    Naive datetimes are taken to already be UTC.

    Example:
        >>> date_to_storage(datetime(2024, 5, 1, 12, 30, 0, 250000))
        '2024-05-01T12:30:00.250Z'
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f"{value.microsecond // 1000:03d}Z"


def date_from_storage(value: Any) -> Optional[datetime]:
    """Parse stored ISO-8601 text back into an aware UTC datetime."""
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def json_to_storage(value: Any) -> str:
    """Serialize a structured value to compact JSON text.

    Raises:
        ValidationError: If the value holds NaN or infinity, which JSON cannot encode
    """
    try:
        return json.dumps(value, separators=(',', ':'), allow_nan=False)
    except ValueError as e:
        raise ValidationError(f"JSON value cannot be encoded: {e}") from e


def json_from_storage(value: Any) -> Any:
    """Decode JSON text (or bytes) read back through json()."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).decode('utf-8')
    if isinstance(value, str):
        return json.loads(value)
    return value


def _nullable(converter: Callable[[Any], Any]) -> Callable[[Any], Any]:
    """Wrap a converter so None passes through untouched."""
    def convert(value):
        if value is None:
            return None
        return converter(value)
    convert.__name__ = getattr(converter, '__name__', 'convert')
    return convert


class TypeRegistry:
    """Registry of logical column types owned by one Database instance.

    Attributes:
        types: Mapping of logical type name to LogicalType

    Example:
        >>> registry = TypeRegistry()
        >>> registry.storage_type('json')
        'blob'
        >>> registry.from_storage('date', '2024-01-01T00:00:00.000Z').year
        2024
    """

    # Order used by infer_storage when no column type is known
    INFERENCE_ORDER = ('boolean', 'integer', 'real', 'text', 'date', 'blob', 'json')

    def __init__(self):
        self.types: Dict[str, LogicalType] = {}
        self._register_builtins()

    def _register_builtins(self) -> None:
        self.register('integer', storage='integer', test=_is_integer,
                      to_storage=int, from_storage=int,
                      description='an integer')
        self.register('real', storage='real', test=_is_real,
                      to_storage=float, from_storage=float,
                      description='a real number')
        self.register('text', storage='text', test=lambda v: isinstance(v, str),
                      to_storage=str, from_storage=str,
                      description='a string')
        self.register('blob', storage='blob', test=_is_blob,
                      to_storage=bytes, from_storage=bytes,
                      description='bytes')
        self.register('boolean', storage='integer', test=lambda v: isinstance(v, bool),
                      to_storage=lambda v: 1 if v else 0, from_storage=bool,
                      check='"{column}" IN (0, 1)',
                      description='a boolean')
        self.register('date', storage='text', test=lambda v: isinstance(v, datetime),
                      to_storage=date_to_storage, from_storage=date_from_storage,
                      description='a datetime')
        self.register('json', storage='blob', test=lambda v: isinstance(v, (dict, list)),
                      to_storage=json_to_storage, from_storage=json_from_storage,
                      description='a dict or list')

    def register(
        self,
        names: str,
        storage: str,
        test: Callable[[Any], bool],
        to_storage: Callable[[Any], Any],
        from_storage: Callable[[Any], Any],
        check: Optional[str] = None,
        description: str = ''
    ) -> None:
        """Register one or more logical type names sharing a definition.

        Args:
            names: Type name, or several comma-separated names
            storage: SQLite storage class (integer, real, text, blob)
            test: Predicate for python values of the type
            to_storage: Python -> storage converter
            from_storage: Storage -> python converter
            check: Optional CHECK template with a '{column}' slot
            description: Expectation text used in validation errors

        Raises:
            SchemaError: If the storage class is not a SQLite storage class
        """
        if storage not in STORAGE_TYPES:
            raise SchemaError(f"Unknown storage type '{storage}' for logical type '{names}'")

        for name in (part.strip() for part in names.split(',')):
            if not name:
                continue
            self.types[name] = LogicalType(
                name=name,
                storage=storage,
                test=test,
                to_storage=_nullable(to_storage),
                from_storage=_nullable(from_storage),
                check=check,
                description=description or f"a value of type '{name}'"
            )

    def __contains__(self, name: str) -> bool:
        return name in self.types

    @property
    def names(self) -> List[str]:
        return list(self.types)

    def get(self, name: str) -> LogicalType:
        """Look up a logical type.

        Raises:
            SchemaError: If the type has not been registered
        """
        try:
            return self.types[name]
        except KeyError:
            raise SchemaError(f"Unknown column type '{name}'") from None

    def storage_type(self, name: str) -> str:
        return self.get(name).storage

    def matches(self, name: str, value: Any) -> bool:
        """Return True when a python value belongs to the logical type."""
        return self.get(name).test(value)

    def to_storage(self, name: str, value: Any) -> Any:
        return self.get(name).to_storage(value)

    def from_storage(self, name: str, value: Any) -> Any:
        return self.get(name).from_storage(value)

    def infer_type(self, value: Any) -> Optional[str]:
        """Find the first registered logical type whose test accepts a value."""
        for name in self.INFERENCE_ORDER + tuple(n for n in self.types if n not in self.INFERENCE_ORDER):
            logical = self.types.get(name)
            if logical is not None and logical.test(value):
                return name
        return None

    def infer_storage(self, value: Any) -> Any:
        """Convert a value with no known column type to its storage form.

        Lists and dicts become JSON text; unrecognized values pass through.
        """
        if value is None:
            return None
        name = self.infer_type(value)
        if name is None:
            return value
        return self.types[name].to_storage(value)


# Registry with the built-in types only, for callers working without a Database
default_registry = TypeRegistry()
