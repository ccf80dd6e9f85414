"""
==========================================================
Schema builder: declarative table descriptions to TableSchema.
==========================================================

Fields are declared by calling constructor functions that return a
FieldDeclaration holding a concrete ColumnDescriptor; there is no side
table and no global registry. A SchemaBuilder instance owns the tables it
has already built so later tables can reference them.

Description shape:
    {
        'name': 'trees',
        'fields': {
            'name': text(not_null=True),
            'forest_id': references('forests'),
            'alive': boolean(default=True),
            'planted_at': now(),
            'height': real(check={'gte': 0}),
        },
        'attributes': {
            'indexes': [index('forest_id', 'name', unique=True)],
            'checks': [{'height': {'lt': 200}}],
        },
        'soft_delete': True,
    }

Full-text tables add an 'fts' section:
    {
        'name': 'trees_search',
        'fields': {'name': text(), 'notes': text(unindexed=True)},
        'fts': {'tokenizer': Unicode61(), 'prefix': [2, 3], 'content': 'trees'},
    }

Example:
    >>> builder = SchemaBuilder()
    >>> forests = builder.build({'name': 'forests', 'fields': {'name': text(not_null=True)}})
    >>> forests.primary_keys
    ('id',)
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import CompilationError, SchemaError
from core.type_registry import TypeRegistry, default_registry
from models.schema_models import (
    NOW,
    ColumnDescriptor,
    ColumnSource,
    ComputedColumn,
    ForeignKeyDescriptor,
    IndexDescriptor,
    TableSchema,
)
from sql.expressions import ExpressionCompiler, IDENTIFIER_PATTERN, is_node

logger = logging.getLogger(__name__)

FK_ACTIONS = ('cascade', 'restrict', 'set null', 'set default', 'no action')


@dataclass(frozen=True)
class Reference:
    """Foreign key part of a field declaration."""

    table: str
    column: Optional[str] = None
    on_delete: Optional[str] = None
    on_update: Optional[str] = None
    index: bool = True


@dataclass(frozen=True)
class FieldDeclaration:
    """One declared field.

    Attributes:
        column: The concrete column descriptor (type is None until a
            reference is resolved)
        unique: Create a single-column UNIQUE index
        index: Create a single-column index
        check: Condition on this field, compiled into a CHECK constraint
        reference: Foreign key target
        expression: Generated column expression (computed fields only)
        stored: Generated column storage
    """

    column: ColumnDescriptor
    unique: bool = False
    index: Any = False
    check: Any = None
    reference: Optional[Reference] = None
    expression: Any = None
    stored: bool = False

    @property
    def computed(self) -> bool:
        return self.expression is not None


@dataclass(frozen=True)
class IndexDeclaration:
    """Table-level index declaration (see index())."""

    columns: Tuple[str, ...] = ()
    unique: bool = False
    where: Any = None
    expression: Any = None


def field(
    type: str,
    not_null: bool = False,
    default: Any = None,
    primary_key: bool = False,
    unique: bool = False,
    index: Any = False,
    check: Any = None,
    unindexed: bool = False
) -> FieldDeclaration:
    """Declare a field of any registered logical type.

    Args:
        type: Logical type name
        not_null: Declare NOT NULL
        default: Default value (python value or NOW)
        primary_key: Part of the primary key
        unique: Single-column UNIQUE index
        index: Single-column index (multi-column indexes go in attributes)
        check: Condition on this field, e.g. {'gte': 0}
        unindexed: FTS column stored but not indexed

    Returns:
        FieldDeclaration
    """
    column = ColumnDescriptor(
        name='',
        type=type,
        not_null=not_null or primary_key,
        default=default,
        primary_key=primary_key,
        unindexed=unindexed
    )
    return FieldDeclaration(column=column, unique=unique, index=index, check=check)


def integer(**options) -> FieldDeclaration:
    return field('integer', **options)


def real(**options) -> FieldDeclaration:
    return field('real', **options)


def text(**options) -> FieldDeclaration:
    return field('text', **options)


def blob(**options) -> FieldDeclaration:
    return field('blob', **options)


def boolean(**options) -> FieldDeclaration:
    return field('boolean', **options)


def date(**options) -> FieldDeclaration:
    return field('date', **options)


def json(**options) -> FieldDeclaration:
    return field('json', **options)


def now(**options) -> FieldDeclaration:
    """A NOT NULL date column defaulting to the current UTC time."""
    options.setdefault('not_null', True)
    return field('date', default=NOW, **options)


def references(
    table: str,
    column: Optional[str] = None,
    not_null: bool = True,
    on_delete: Optional[str] = None,
    on_update: Optional[str] = None,
    index: bool = True
) -> FieldDeclaration:
    """Declare a foreign key field; its type is copied from the target column.

    Args:
        table: Referenced table
        column: Referenced column (the target's primary key when omitted)
        not_null: Whether the relationship is mandatory
        on_delete: ON DELETE action
        on_update: ON UPDATE action
        index: Auto-create a supporting index
    """
    declaration = field('', not_null=not_null)
    return replace(declaration, reference=Reference(table, column, on_delete, on_update, index))


def cascade(table: str, column: Optional[str] = None, **options) -> FieldDeclaration:
    """Foreign key deleting this row when the referenced row is deleted."""
    options.setdefault('on_delete', 'cascade')
    return references(table, column, **options)


def computed(type: str, expression: Any, stored: bool = False) -> FieldDeclaration:
    """Declare a generated column; never writable.

    Example:
        >>> computed('real', FunctionCall('multiply', (Column('height'), Literal(0.3048))))
    """
    declaration = field(type)
    return replace(declaration, expression=expression, stored=stored)


def index(*columns: str, unique: bool = False, where: Any = None, expression: Any = None) -> IndexDeclaration:
    """Declare a table-level index over one or more columns or an expression."""
    return IndexDeclaration(columns=tuple(columns), unique=unique, where=where, expression=expression)


def unique(*columns: str, where: Any = None) -> IndexDeclaration:
    return index(*columns, unique=True, where=where)


class SchemaBuilder:
    """Builds TableSchema records and remembers them for FK resolution.

    Attributes:
        registry: TypeRegistry used to validate types and convert defaults
        tables: Tables built so far, by name
    """

    def __init__(self, registry: Optional[TypeRegistry] = None):
        self.registry = registry or default_registry
        self.tables: Dict[str, TableSchema] = {}

    def build_all(self, *descriptions: Dict[str, Any]) -> List[TableSchema]:
        return [self.build(description) for description in descriptions]

    def build(self, description: Dict[str, Any]) -> TableSchema:
        """Convert one declarative description into a TableSchema.

        Raises:
            SchemaError: On any structural violation; nothing is recorded
        """
        name = description.get('name')
        if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
            raise SchemaError(f"Invalid table name {name!r}", table=name if isinstance(name, str) else None)
        if name in self.tables:
            raise SchemaError(f"Table '{name}' is already defined", table=name)

        fts = description.get('fts')
        if fts is not None:
            schema = self._build_fts(name, description, fts)
        else:
            schema = self._build_table(name, description)

        self.tables[name] = schema
        logger.debug(
            f"Built schema '{name}' with {len(schema.columns)} column(s), "
            f"{len(schema.indexes)} index(es)"
        )
        return schema

    # ------------------------------------------------------------------

    def _error(self, table: str, message: str, column: Optional[str] = None) -> SchemaError:
        logger.debug(f"Schema error on '{table}': {message}")
        return SchemaError(message, table=table, column=column)

    def _declarations(self, table: str, fields: Any) -> List[Tuple[str, FieldDeclaration]]:
        if isinstance(fields, dict):
            pairs = list(fields.items())
        elif isinstance(fields, (list, tuple)):
            pairs = list(fields)
        else:
            raise self._error(table, "'fields' must be a dict or a list of (name, field) pairs")

        seen = set()
        for field_name, declaration in pairs:
            if not isinstance(field_name, str) or not IDENTIFIER_PATTERN.match(field_name):
                raise self._error(table, f"Invalid column name {field_name!r}", column=str(field_name))
            if field_name in seen:
                raise self._error(table, f"Duplicate column '{field_name}'", column=field_name)
            if not isinstance(declaration, FieldDeclaration):
                raise self._error(
                    table, f"Field '{field_name}' must be declared with a field constructor",
                    column=field_name
                )
            seen.add(field_name)
        return pairs

    def _convert_default(self, table: str, column: ColumnDescriptor) -> Any:
        default = column.default
        if default is None:
            return None
        if default is NOW:
            if column.type not in ('date', 'text'):
                raise self._error(table, "NOW default needs a date column", column=column.name)
            return NOW
        if not self.registry.matches(column.type, default):
            raise self._error(
                table,
                f"Default for '{column.name}' must be {self.registry.get(column.type).description}",
                column=column.name
            )
        return self.registry.to_storage(column.type, default)

    def _resolve_reference(
        self, table: str, field_name: str, reference: Reference,
        own_columns: Dict[str, ColumnDescriptor], own_keys: List[str]
    ) -> Tuple[ColumnDescriptor, ForeignKeyDescriptor]:
        if reference.table == table:
            target_columns, target_keys = own_columns, own_keys
        elif reference.table in self.tables:
            target = self.tables[reference.table]
            if target.virtual:
                raise self._error(table, f"Cannot reference virtual table '{target.name}'", field_name)
            target_columns = {c.name: c for c in target.columns}
            target_keys = list(target.primary_keys)
        else:
            raise self._error(
                table, f"Foreign key '{field_name}' references unknown table '{reference.table}'",
                column=field_name
            )

        target_column = reference.column
        if target_column is None:
            if len(target_keys) != 1:
                raise self._error(
                    table,
                    f"Foreign key '{field_name}' needs an explicit column: "
                    f"'{reference.table}' has no single primary key",
                    column=field_name
                )
            target_column = target_keys[0]
        if target_column not in target_columns:
            raise self._error(
                table,
                f"Foreign key '{field_name}' references unknown column "
                f"'{reference.table}.{target_column}'",
                column=field_name
            )

        for action in (reference.on_delete, reference.on_update):
            if action is not None and action.lower() not in FK_ACTIONS:
                raise self._error(table, f"Unknown foreign key action '{action}'", column=field_name)

        return target_columns[target_column], ForeignKeyDescriptor(
            column=field_name,
            references_table=reference.table,
            references_column=target_column,
            on_delete=reference.on_delete.lower() if reference.on_delete else None,
            on_update=reference.on_update.lower() if reference.on_update else None,
            indexed=reference.index
        )

    def _inline(self, provisional: TableSchema, condition: Any, field_name: Optional[str] = None) -> str:
        """Compile a condition or expression with literals inlined."""
        if isinstance(condition, str):
            return condition
        compiler = ExpressionCompiler(
            {**self.tables, provisional.name: provisional},
            registry=self.registry,
            table=provisional.name,
            inline=True
        )
        try:
            if is_node(condition) and field_name is None:
                return compiler.compile_node(condition)
            if field_name is not None:
                return compiler.compile_where({field_name: condition})
            return compiler.compile_where(condition)
        except CompilationError as exc:
            raise self._error(provisional.name, str(exc), column=exc.column or field_name) from exc

    def _build_table(self, name: str, description: Dict[str, Any]) -> TableSchema:
        declarations = self._declarations(name, description.get('fields', {}))
        attributes = description.get('attributes') or {}
        soft_delete = bool(description.get('soft_delete', False))

        composite_key = attributes.get('primary_key')
        if isinstance(composite_key, str):
            composite_key = [composite_key]
        composite_key = list(composite_key or [])

        columns: Dict[str, ColumnDescriptor] = {}
        keys: List[str] = [
            field_name for field_name, decl in declarations if decl.column.primary_key
        ]
        for key in composite_key:
            if key not in dict(declarations):
                raise self._error(name, f"Primary key column '{key}' is not declared", column=key)
            if key not in keys:
                keys.append(key)

        if not keys:
            if 'id' in dict(declarations):
                raise self._error(name, "Column 'id' exists but no primary key is declared", column='id')
            columns['id'] = ColumnDescriptor('id', 'integer', not_null=True, primary_key=True)
            keys = ['id']

        foreign_keys: List[ForeignKeyDescriptor] = []
        indexes: List[IndexDescriptor] = []
        pending_computed: List[Tuple[str, FieldDeclaration]] = []

        # Physical columns first; references are resolved after own keys are known
        for field_name, decl in declarations:
            if decl.computed:
                pending_computed.append((field_name, decl))
                continue
            column = replace(decl.column, name=field_name)
            if decl.reference is None:
                if column.type not in self.registry:
                    raise self._error(name, f"Unknown column type '{column.type}'", column=field_name)
                if field_name in keys:
                    column = replace(column, primary_key=True, not_null=True)
                column = replace(column, default=self._convert_default(name, column))
            columns[field_name] = column

        for field_name, decl in declarations:
            if decl.reference is None:
                continue
            target, fk = self._resolve_reference(name, field_name, decl.reference, columns, keys)
            columns[field_name] = replace(
                target,
                name=field_name,
                primary_key=field_name in keys,
                not_null=decl.column.not_null or field_name in keys,
                default=None,
                unindexed=False,
                source=None
            )
            foreign_keys.append(fk)
            if fk.indexed and field_name not in keys[:1]:
                indexes.append(IndexDescriptor(on=(field_name,)))

        if soft_delete:
            if TableSchema.DELETED_AT in columns:
                raise self._error(
                    name, f"Soft-delete tables reserve the '{TableSchema.DELETED_AT}' column",
                    column=TableSchema.DELETED_AT
                )
            columns[TableSchema.DELETED_AT] = ColumnDescriptor(TableSchema.DELETED_AT, 'date')

        for field_name, decl in pending_computed:
            if field_name in columns:
                raise self._error(name, f"Duplicate column '{field_name}'", column=field_name)

        provisional = TableSchema(name=name, columns=tuple(columns.values()), primary_keys=tuple(keys))

        computed_columns = []
        for field_name, decl in pending_computed:
            if decl.column.type not in self.registry:
                raise self._error(name, f"Unknown column type '{decl.column.type}'", column=field_name)
            computed_columns.append(ComputedColumn(
                name=field_name,
                type=decl.column.type,
                expression=self._inline(provisional, decl.expression),
                stored=decl.stored
            ))
        provisional = replace(provisional, computed=tuple(computed_columns))

        checks: List[str] = []
        for field_name, decl in declarations:
            column = columns.get(field_name)
            if column is not None:
                logical = self.registry.get(column.type)
                if logical.check:
                    checks.append(logical.check.format(column=field_name))
            if decl.check is not None:
                checks.append(self._inline(provisional, decl.check, field_name=field_name))
        for check in attributes.get('checks', []) or []:
            checks.append(self._inline(provisional, check))

        for field_name, decl in declarations:
            if isinstance(decl.index, (list, tuple)) or (
                decl.index not in (True, False, None)
            ):
                raise self._error(
                    name,
                    f"Field '{field_name}' declares a multi-column index; "
                    "declare it in attributes['indexes']",
                    column=field_name
                )
            if decl.unique or decl.index:
                if decl.computed:
                    raise self._error(name, "Computed columns cannot be indexed per field", field_name)
                indexes.append(IndexDescriptor(on=(field_name,), unique=decl.unique))

        for declared in attributes.get('indexes', []) or []:
            indexes.append(self._table_index(provisional, declared))

        unique_indexes = []
        seen_hashes = set()
        for descriptor in indexes:
            content_hash = descriptor.content_hash()
            if content_hash not in seen_hashes:
                seen_hashes.add(content_hash)
                unique_indexes.append(descriptor)

        return replace(
            provisional,
            indexes=tuple(unique_indexes),
            foreign_keys=tuple(foreign_keys),
            checks=tuple(checks),
            soft_delete=soft_delete
        )

    def _table_index(self, provisional: TableSchema, declared: Any) -> IndexDescriptor:
        name = provisional.name
        if isinstance(declared, dict):
            declared = IndexDeclaration(
                columns=tuple(declared.get('on') or declared.get('columns') or ()),
                unique=declared.get('unique', False),
                where=declared.get('where'),
                expression=declared.get('expression')
            )
        if not isinstance(declared, IndexDeclaration):
            raise self._error(name, f"Invalid index declaration {declared!r}")

        if declared.expression is not None:
            if declared.columns:
                raise self._error(name, "An index takes either columns or an expression, not both")
            target = dict(expression=self._inline(provisional, declared.expression))
        else:
            if not declared.columns:
                raise self._error(name, "Index declares no columns")
            for column in declared.columns:
                if not provisional.has_column(column):
                    raise self._error(name, f"Index references unknown column '{column}'", column=column)
            target = dict(on=tuple(declared.columns))

        where = self._inline(provisional, declared.where) if declared.where is not None else None
        return IndexDescriptor(unique=declared.unique, where=where, **target)

    def _build_fts(self, name: str, description: Dict[str, Any], fts: Dict[str, Any]) -> TableSchema:
        declarations = self._declarations(name, description.get('fields', {}))
        if not declarations:
            raise self._error(name, "Full-text tables need at least one column")
        if description.get('soft_delete'):
            raise self._error(name, "Full-text tables cannot be soft-deletable")
        if (description.get('attributes') or {}).get('indexes'):
            raise self._error(name, "Full-text tables cannot declare indexes")

        content = fts.get('content')
        base: Optional[TableSchema] = None
        if content is not None:
            base = self.tables.get(content)
            if base is None or base.virtual:
                raise self._error(name, f"Full-text content table '{content}' is not defined")
            if len(base.primary_keys) != 1 or base.column(base.primary_keys[0]).type != 'integer':
                raise self._error(name, f"Content table '{content}' needs an integer primary key")

        columns = []
        for field_name, decl in declarations:
            if decl.reference is not None or decl.computed or decl.column.primary_key:
                raise self._error(
                    name, "Full-text columns cannot be keys, references or computed", column=field_name
                )
            if decl.unique or decl.index or decl.check is not None:
                raise self._error(name, "Full-text columns cannot carry indexes or checks", column=field_name)
            source = None
            if base is not None:
                if base.column(field_name) is None:
                    raise self._error(
                        name, f"Column '{field_name}' does not exist on content table '{content}'",
                        column=field_name
                    )
                source = ColumnSource(table=content, column=field_name)
            columns.append(ColumnDescriptor(
                name=field_name,
                type=decl.column.type if decl.column.type in self.registry else 'text',
                unindexed=decl.column.unindexed,
                source=source
            ))

        tokenizer = fts.get('tokenizer')
        if tokenizer is not None and not isinstance(tokenizer, str):
            tokenizer = tokenizer.to_sql()

        prefix = fts.get('prefix') or ()
        if isinstance(prefix, int):
            prefix = (prefix,)
        for size in prefix:
            if not isinstance(size, int) or isinstance(size, bool) or not 1 <= size <= 999:
                raise self._error(name, f"Invalid prefix index size {size!r}")

        return TableSchema(
            name=name,
            columns=tuple(columns),
            virtual=True,
            tokenizer=tokenizer,
            prefix=tuple(prefix),
            content=content,
            content_rowid=base.primary_keys[0] if base is not None else None
        )
