"""
=========================================
Canonical table schema records.
=========================================

Immutable dataclasses produced by the schema builder and consumed by the
DDL renderer, the statement generators and the migration differ.

Classes:
    ColumnSource: Provenance of a column mirrored from a base table (FTS)
    ColumnDescriptor: One physical column
    ComputedColumn: A generated column, never writable
    ForeignKeyDescriptor: A foreign key owned by one column
    IndexDescriptor: A single or multi-column index, or an expression index
    TableSchema: A complete table description

Snapshots:
    TableSchema.to_dict()/from_dict() and schemas_to_json()/schemas_from_json()
    give the JSON form used as the "previous" side of a migration.

Example:
    >>> snapshot = schemas_to_json(db.schemas)
    >>> previous = schemas_from_json(snapshot)
    >>> diff_schemas(previous, db.schemas)
    ''
"""

import hashlib
import json
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple


class _Now:
    """Sentinel default meaning 'the current UTC timestamp'."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'NOW'

    def __reduce__(self):
        return (_Now, ())


NOW = _Now()


def _encode_default(value: Any) -> Any:
    if value is NOW:
        return {'sentinel': 'now'}
    if isinstance(value, bytes):
        return {'hex': value.hex()}
    return value


def _decode_default(value: Any) -> Any:
    if isinstance(value, dict):
        if value.get('sentinel') == 'now':
            return NOW
        if 'hex' in value:
            return bytes.fromhex(value['hex'])
    return value


@dataclass(frozen=True)
class ColumnSource:
    """Column X of table Y, mirrored by a full-text table."""

    table: str
    column: str


@dataclass(frozen=True)
class ColumnDescriptor:
    """Canonical metadata for one table column.

    Attributes:
        name: Column name
        type: Logical type name (see core.type_registry)
        not_null: True when the column is declared NOT NULL
        default: Storage-form default, NOW sentinel, or None for no default
        primary_key: True when the column is (part of) the primary key
        unindexed: FTS only, column stored but not indexed
        source: Base table column mirrored by an FTS column
    """

    name: str
    type: str
    not_null: bool = False
    default: Any = None
    primary_key: bool = False
    unindexed: bool = False
    source: Optional[ColumnSource] = None

    @property
    def auto_increment(self) -> bool:
        """Integer primary keys are rowid aliases and may be omitted on insert."""
        return self.primary_key and self.type == 'integer'

    @property
    def required(self) -> bool:
        """True when an insert must supply a value for this column."""
        return self.not_null and self.default is None and not self.auto_increment

    def shape(self) -> Dict[str, Any]:
        """Every attribute except the name, used for rename detection."""
        data = self.to_dict()
        data.pop('name')
        return data

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['default'] = _encode_default(self.default)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColumnDescriptor':
        source = data.get('source')
        return cls(
            name=data['name'],
            type=data['type'],
            not_null=data.get('not_null', False),
            default=_decode_default(data.get('default')),
            primary_key=data.get('primary_key', False),
            unindexed=data.get('unindexed', False),
            source=ColumnSource(**source) if source else None
        )


@dataclass(frozen=True)
class ComputedColumn:
    """A column generated from a SQL expression over other columns.

    Attributes:
        name: Column name
        type: Logical type of the computed value
        expression: SQL expression with literals inlined
        stored: STORED when True, VIRTUAL otherwise
    """

    name: str
    type: str
    expression: str
    stored: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ForeignKeyDescriptor:
    """Foreign key owned by one column.

    Attributes:
        column: Owning column in this table
        references_table: Referenced table name
        references_column: Referenced column (the target's primary key by default)
        on_delete: ON DELETE action (e.g. 'cascade'), or None
        on_update: ON UPDATE action, or None
        indexed: Whether the builder created a supporting index
    """

    column: str
    references_table: str
    references_column: str
    on_delete: Optional[str] = None
    on_update: Optional[str] = None
    indexed: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IndexDescriptor:
    """Index over columns or over one SQL expression.

    Attributes:
        on: Indexed column names (empty for expression indexes)
        expression: SQL expression for expression indexes
        unique: True for UNIQUE indexes
        where: Partial-index predicate (SQL with literals inlined), or None
    """

    on: Tuple[str, ...] = ()
    expression: Optional[str] = None
    unique: bool = False
    where: Optional[str] = None

    @property
    def target(self) -> str:
        if self.expression:
            return self.expression
        return ', '.join(f'"{name}"' for name in self.on)

    def content_hash(self) -> str:
        """Stable hash of type + target + predicate."""
        content = '|'.join([
            'unique' if self.unique else 'index',
            self.target,
            self.where or ''
        ])
        return hashlib.sha1(content.encode('utf-8')).hexdigest()[:10]

    def name_for(self, table: str) -> str:
        return f"{table}_{self.content_hash()}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['on'] = list(self.on)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IndexDescriptor':
        return cls(
            on=tuple(data.get('on') or ()),
            expression=data.get('expression'),
            unique=data.get('unique', False),
            where=data.get('where')
        )


@dataclass(frozen=True)
class TableSchema:
    """Complete description of one table.

    Attributes:
        name: Table name
        columns: Ordered physical columns
        indexes: Table indexes (FK supporting indexes included)
        foreign_keys: Foreign keys
        checks: Raw SQL boolean CHECK expressions
        computed: Generated columns
        primary_keys: Primary key column names (more than one for composite keys)
        virtual: True for FTS5 virtual tables
        soft_delete: True when rows carry a deleted_at timestamp
        tokenizer: FTS5 tokenize argument
        prefix: FTS5 prefix index sizes
        content: External content table name for FTS tables
        content_rowid: Rowid column of the external content table
    """

    name: str
    columns: Tuple[ColumnDescriptor, ...]
    indexes: Tuple[IndexDescriptor, ...] = ()
    foreign_keys: Tuple[ForeignKeyDescriptor, ...] = ()
    checks: Tuple[str, ...] = ()
    computed: Tuple[ComputedColumn, ...] = ()
    primary_keys: Tuple[str, ...] = ()
    virtual: bool = False
    soft_delete: bool = False
    tokenizer: Optional[str] = None
    prefix: Tuple[int, ...] = ()
    content: Optional[str] = None
    content_rowid: Optional[str] = None

    DELETED_AT = 'deleted_at'

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def all_column_names(self) -> List[str]:
        """Physical columns followed by computed ones, as rows are returned."""
        return self.column_names + [column.name for column in self.computed]

    @property
    def primary_key(self) -> str:
        """Primary key used for RETURNING and cursor defaults ('rowid' for FTS)."""
        if self.virtual:
            return 'rowid'
        return self.primary_keys[0]

    def column(self, name: str) -> Optional[ColumnDescriptor]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def computed_column(self, name: str) -> Optional[ComputedColumn]:
        for column in self.computed:
            if column.name == name:
                return column
        return None

    def has_column(self, name: str) -> bool:
        if self.virtual and name == 'rowid':
            return True
        return self.column(name) is not None or self.computed_column(name) is not None

    def type_of(self, name: str) -> Optional[str]:
        """Logical type of a physical or computed column."""
        if self.virtual and name == 'rowid':
            return 'integer'
        column = self.column(name)
        if column is not None:
            return column.type
        computed = self.computed_column(name)
        return computed.type if computed is not None else None

    def foreign_key(self, column: str) -> Optional[ForeignKeyDescriptor]:
        for fk in self.foreign_keys:
            if fk.column == column:
                return fk
        return None

    @property
    def blob_columns(self) -> List[str]:
        return [c.name for c in self.columns if c.type == 'blob']

    def with_name(self, name: str) -> 'TableSchema':
        return replace(self, name=name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'columns': [c.to_dict() for c in self.columns],
            'indexes': [i.to_dict() for i in self.indexes],
            'foreign_keys': [f.to_dict() for f in self.foreign_keys],
            'checks': list(self.checks),
            'computed': [c.to_dict() for c in self.computed],
            'primary_keys': list(self.primary_keys),
            'virtual': self.virtual,
            'soft_delete': self.soft_delete,
            'tokenizer': self.tokenizer,
            'prefix': list(self.prefix),
            'content': self.content,
            'content_rowid': self.content_rowid,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TableSchema':
        return cls(
            name=data['name'],
            columns=tuple(ColumnDescriptor.from_dict(c) for c in data.get('columns', [])),
            indexes=tuple(IndexDescriptor.from_dict(i) for i in data.get('indexes', [])),
            foreign_keys=tuple(ForeignKeyDescriptor(**f) for f in data.get('foreign_keys', [])),
            checks=tuple(data.get('checks', [])),
            computed=tuple(ComputedColumn(**c) for c in data.get('computed', [])),
            primary_keys=tuple(data.get('primary_keys', [])),
            virtual=data.get('virtual', False),
            soft_delete=data.get('soft_delete', False),
            tokenizer=data.get('tokenizer'),
            prefix=tuple(data.get('prefix', [])),
            content=data.get('content'),
            content_rowid=data.get('content_rowid'),
        )


def schemas_to_json(schemas: Iterable[TableSchema], indent: Optional[int] = 2) -> str:
    """Serialize schemas into a JSON snapshot."""
    return json.dumps([schema.to_dict() for schema in schemas], indent=indent)


def schemas_from_json(snapshot: str) -> List[TableSchema]:
    """Load schemas from a JSON snapshot produced by schemas_to_json()."""
    if not snapshot or not snapshot.strip():
        return []
    return [TableSchema.from_dict(item) for item in json.loads(snapshot)]
