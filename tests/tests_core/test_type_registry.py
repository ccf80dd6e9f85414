"""
==================================================
Comprehensive pytest suite for core/type_registry.py
==================================================

Sections:
---------
1. Unit tests - Built-in conversions and type tests
2. Edge case tests - NaN, bool/int overlap, naive datetimes
3. Integration tests - Custom types registered on an instance

Available markers:
------------------
unit, edge_case, integration

How to Execute:
---------------
All tests:          python -m pytest tests/tests_core/test_type_registry.py -v
By category:        python -m pytest tests/tests_core/test_type_registry.py -m unit
With coverage:      python -m pytest tests/tests_core/test_type_registry.py --cov=core.type_registry

Note: Use 'python -m pytest' (not just 'pytest') to ensure correct Python path resolution.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from pytest import mark, raises

from core.exceptions import SchemaError, ValidationError
from core.type_registry import (
    TypeRegistry,
    date_from_storage,
    date_to_storage,
    default_registry,
)

# ===============
# 1. UNIT TESTS
# ===============


@mark.unit
def test_builtin_storage_types():
    """Unit test: Verify every built-in logical type maps to its SQLite storage class."""
    registry = TypeRegistry()

    assert registry.storage_type('integer') == 'integer'
    assert registry.storage_type('real') == 'real'
    assert registry.storage_type('text') == 'text'
    assert registry.storage_type('blob') == 'blob'
    assert registry.storage_type('boolean') == 'integer'
    assert registry.storage_type('date') == 'text'
    assert registry.storage_type('json') == 'blob'


@mark.unit
def test_boolean_round_trip():
    """Unit test: Verify booleans are stored as 1/0 and read back as bool."""
    registry = TypeRegistry()

    assert registry.to_storage('boolean', True) == 1
    assert registry.to_storage('boolean', False) == 0
    assert registry.from_storage('boolean', 0) is False
    assert registry.from_storage('boolean', 1) is True


@mark.unit
def test_date_to_storage_millisecond_precision():
    """Unit test: Verify dates are rendered as ISO-8601 UTC with milliseconds."""
    value = datetime(2024, 5, 1, 12, 30, 0, 250000, tzinfo=timezone.utc)

    assert date_to_storage(value) == '2024-05-01T12:30:00.250Z'


@mark.unit
def test_date_from_storage_is_aware():
    """Unit test: Verify stored text is parsed back into an aware UTC datetime."""
    parsed = date_from_storage('2024-05-01T12:30:00.250Z')

    assert parsed == datetime(2024, 5, 1, 12, 30, 0, 250000, tzinfo=timezone.utc)
    assert parsed.tzinfo is not None


@mark.unit
def test_json_round_trip():
    """Unit test: Verify JSON values are serialized compactly and parsed back."""
    registry = TypeRegistry()

    stored = registry.to_storage('json', {'leaf': 'oval', 'sizes': [1, 2]})

    assert stored == '{"leaf":"oval","sizes":[1,2]}'
    assert registry.from_storage('json', stored) == {'leaf': 'oval', 'sizes': [1, 2]}
    assert registry.from_storage('json', b'[1,2]') == [1, 2]


@mark.unit
def test_none_passes_through_converters():
    """Unit test: Verify None is never handed to a converter."""
    registry = TypeRegistry()

    for name in registry.names:
        assert registry.to_storage(name, None) is None
        assert registry.from_storage(name, None) is None


@mark.unit
def test_infer_type_order():
    """Unit test: Verify inference prefers boolean over integer and integer over real."""
    registry = TypeRegistry()

    assert registry.infer_type(True) == 'boolean'
    assert registry.infer_type(3) == 'integer'
    assert registry.infer_type(3.5) == 'real'
    assert registry.infer_type('oak') == 'text'
    assert registry.infer_type(b'\x00') == 'blob'
    assert registry.infer_type([1]) == 'json'
    assert registry.infer_type(object()) is None


@mark.unit
def test_infer_storage_converts_structured_values():
    """Unit test: Verify values without a column type are converted by their inferred type."""
    registry = TypeRegistry()

    assert registry.infer_storage(True) == 1
    assert registry.infer_storage({'a': 1}) == '{"a":1}'
    assert registry.infer_storage(None) is None


@mark.unit
def test_unknown_type_raises_schema_error():
    """Unit test: Verify looking up an unregistered type raises SchemaError."""
    registry = TypeRegistry()

    with raises(SchemaError, match="Unknown column type 'money'"):
        registry.get('money')


# ====================
# 2. EDGE CASE TESTS
# ====================


@mark.edge_case
def test_bool_is_not_an_integer_or_real():
    """Edge case: Verify bool values are rejected by the integer and real tests."""
    registry = TypeRegistry()

    assert registry.matches('integer', True) is False
    assert registry.matches('real', False) is False
    assert registry.matches('integer', 3) is True
    assert registry.matches('real', 3) is True


@mark.edge_case
def test_nan_is_not_a_real():
    """Edge case: Verify NaN is rejected by the real test."""
    assert default_registry.matches('real', float('nan')) is False


@mark.edge_case
def test_json_rejects_nan_and_infinity():
    """Edge case: Verify JSON documents holding NaN or infinity are not stored as invalid JSON."""
    with raises(ValidationError, match='JSON value cannot be encoded'):
        default_registry.to_storage('json', {'ratio': float('nan')})
    with raises(ValidationError, match='JSON value cannot be encoded'):
        default_registry.to_storage('json', [1.0, float('inf')])


@mark.edge_case
def test_naive_and_offset_datetimes_are_stored_as_utc():
    """Edge case: Verify naive datetimes are taken as UTC and offsets are normalized."""
    naive = datetime(2024, 1, 1, 8, 0, 0)
    offset = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone(timedelta(hours=2)))

    assert date_to_storage(naive) == '2024-01-01T08:00:00.000Z'
    assert date_to_storage(offset) == '2024-01-01T08:00:00.000Z'


@mark.edge_case
def test_register_rejects_unknown_storage():
    """Edge case: Verify a storage class outside integer/real/text/blob is rejected."""
    registry = TypeRegistry()

    with raises(SchemaError, match="Unknown storage type 'varchar'"):
        registry.register('name', storage='varchar', test=lambda v: True,
                          to_storage=str, from_storage=str)


# ======================
# 3. INTEGRATION TESTS
# ======================


@mark.integration
def test_custom_type_is_registered_per_instance():
    """
    Integration test: Verify custom types live on one registry only.

    Test Strategy:
    - Register 'decimal' on one registry
    - Convert a Decimal through it
    - Confirm a second registry does not know the type
    """
    registry = TypeRegistry()
    registry.register(
        'decimal',
        storage='text',
        test=lambda v: isinstance(v, Decimal),
        to_storage=str,
        from_storage=Decimal
    )

    assert registry.to_storage('decimal', Decimal('1.50')) == '1.50'
    assert registry.from_storage('decimal', '1.50') == Decimal('1.50')
    assert registry.infer_type(Decimal('2')) == 'decimal'
    assert 'decimal' not in TypeRegistry()
    assert 'decimal' not in default_registry


@mark.integration
def test_register_several_names_at_once():
    """Integration test: Verify comma-separated names share one definition."""
    registry = TypeRegistry()
    registry.register('uuid, slug', storage='text', test=lambda v: isinstance(v, str),
                      to_storage=str, from_storage=str)

    assert registry.storage_type('uuid') == 'text'
    assert registry.storage_type('slug') == 'text'
