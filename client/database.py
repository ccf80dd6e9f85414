"""
=========================================================
Database client: schemas, statements, driver and cache.
=========================================================

The Database object owns everything stateful for one database: the type
registry, the schema builder, the query cache, the lifecycle hooks and the
query logger. Nothing is global, so two Database instances never share
types, tables, hooks or cached results.

Table access goes through TableClient, which compiles statements with the
sql package and executes them through the Database:

    - Reads (get, many, first, exists, aggregates, group_by, match,
      pagination) go through the query cache
    - Writes (insert, insert_many, update, upsert, delete, soft_delete,
      restore) invalidate every cached result reading the written tables
    - explain returns the EXPLAIN QUERY PLAN rows of a read and is never cached

Example:
    >>> from client import Database
    >>> from sql.schema_builder import boolean, references, text
    >>>
    >>> db = Database()
    >>> db.define(
    ...     {'name': 'forests', 'fields': {'name': text(not_null=True)}},
    ...     {'name': 'trees', 'fields': {'forest_id': references('forests'),
    ...                                  'alive': boolean(default=True)}},
    ... )
    >>> db.migrate(db.diff())
    >>> forest_id = db['forests'].insert({'name': 'Sherwood'})
    >>> db['trees'].insert_many([{'forest_id': forest_id}, {'forest_id': forest_id}])
    [1, 2]
    >>> db['trees'].count({'alive': True})
    2
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from cache.query_cache import MISSING, QueryCache, extract_tables
from client.hooks import HookContext, HookRegistry
from core.config import Config, config
from core.exceptions import MigrationError, SchemaError
from core.logger import get_logger
from core.type_registry import TypeRegistry
from logs.query_logger import QueryLogger
from migrations.differ import SchemaSet, analyze_migration, diff_schemas
from models.expression_models import CompiledStatement, RowProcessor
from models.migration_models import FOREIGN_KEY_CHECK
from models.schema_models import TableSchema, schemas_to_json
from sql.dml import (
    compile_delete,
    compile_insert,
    compile_insert_many,
    compile_restore,
    compile_soft_delete,
    compile_update,
    compile_upsert,
)
from sql.fulltext import compile_match
from sql.pagination import CursorPage, Page, cursor_paginate, paginate
from sql.query_builder import (
    compile_aggregate,
    compile_exists,
    compile_get,
    compile_group,
    compile_query,
    compile_select,
)
from sql.schema_builder import SchemaBuilder
from utils.database_utils import Driver, Rows, SQLAlchemyDriver

logger = get_logger(__name__)


class Database:
    """
    Entry point owning the registries and the driver for one database.

    Attributes:
        driver: Driver executing compiled SQL
        settings: Config the cache and query logger are set up from
        registry: TypeRegistry (built-in types plus registered ones)
        builder: SchemaBuilder holding the defined tables
        cache: QueryCache for read results
        hooks: HookRegistry for lifecycle hooks
        query_logger: QueryLogger recording executed statements
    """

    def __init__(self, driver: Optional[Driver] = None, settings: Optional[Config] = None):
        self.settings = settings or config
        self.driver = driver if driver is not None else SQLAlchemyDriver()
        self.registry = TypeRegistry()
        self.builder = SchemaBuilder(self.registry)
        self.cache = QueryCache(
            ttl=self.settings.cache_ttl,
            max_entries=self.settings.cache_max_entries,
            enabled=self.settings.cache_enabled
        )
        self.hooks = HookRegistry()
        self.query_logger = QueryLogger(self.settings.slow_query_ms)
        self._transaction_depth = 0

    # ------------------------------------------------------------------
    # Schemas and migrations

    def define(self, *descriptions: Dict[str, Any]) -> List[TableSchema]:
        """Build tables from declarative descriptions (in dependency order)."""
        return self.builder.build_all(*descriptions)

    def register_type(self, names: str, **definition) -> None:
        """Register a custom logical type on this database's registry."""
        self.registry.register(names, **definition)

    @property
    def schemas(self) -> Dict[str, TableSchema]:
        return dict(self.builder.tables)

    def snapshot(self) -> str:
        """JSON snapshot of the defined tables, the 'previous' side of the next diff."""
        return schemas_to_json(self.builder.tables.values())

    def diff(self, previous: SchemaSet = None) -> str:
        """Migration script from previous schemas (or an empty database) to the defined ones."""
        return diff_schemas(previous, list(self.builder.tables.values()), self.registry)

    def migrate(self, script: str) -> Dict[str, Any]:
        """
        Apply a migration script produced by diff().

        Foreign key enforcement is switched off while the script runs so
        tables can be rebuilt; the script itself ends rebuilds with a
        foreign key check. The whole cache is cleared afterwards.

        Returns:
            analyze_migration() report for the script

        Raises:
            MigrationError: If a rebuilt table left rows violating foreign keys
                (the script stays applied; the error lists the violations)
        """
        report = analyze_migration(script)
        if not script.strip():
            return report
        if report['is_destructive']:
            logger.warning(
                f"⚠️  Destructive migration: dropped tables {report['dropped_tables']}, "
                f"dropped columns {report['dropped_columns']}, "
                f"recreated tables {report['recreated_tables']}"
            )

        with self.query_logger.track(script):
            self.driver.execute_script(
                "PRAGMA foreign_keys = OFF;\n" + script.rstrip('\n') + "\nPRAGMA foreign_keys = ON;\n"
            )
        self.cache.clear()

        if FOREIGN_KEY_CHECK in script:
            # executescript discards result rows, so the check runs again here
            violations = self.driver.execute(FOREIGN_KEY_CHECK, {})
            if violations:
                logger.error(f"❌ Migration left {len(violations)} foreign key violation(s): {violations}")
                raise MigrationError(
                    f"Migration left {len(violations)} foreign key violation(s)", violations=violations
                )

        logger.info(f"✅ Migration applied ({len(script.splitlines())} lines)")
        return report

    # ------------------------------------------------------------------
    # Execution

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    def _dependent_tables(self, tables: Sequence[str]) -> set:
        """Written tables plus the external-content FTS tables indexing them."""
        written = {table.lower() for table in tables}
        for schema in self.builder.tables.values():
            if schema.virtual and schema.content and schema.content.lower() in written:
                written.add(schema.name.lower())
        return written

    def execute(self, statement: CompiledStatement, cache: bool = True) -> Rows:
        """
        Execute a compiled statement and return the driver rows.

        Reads are served from the cache when possible (outside
        transactions, unless cache=False); writes invalidate the tables
        they touch.
        """
        sql, params = statement
        use_cache = cache and not statement.write and not self.in_transaction
        if use_cache:
            cached = self.cache.get(sql, params)
            if cached is not MISSING:
                return cached

        with self.query_logger.track(sql, params) as record:
            rows = self.driver.execute(sql, params)
            record.rows = len(rows)

        if statement.write:
            self.cache.invalidate_tables(self._dependent_tables(statement.tables + tuple(extract_tables(sql))))
        elif use_cache:
            self.cache.set(sql, params, rows)
        return rows

    def run(self, statement: CompiledStatement) -> Any:
        """Execute a statement and shape its rows with its processor."""
        return statement.process(self.execute(statement))

    def run_batch(self, statements: Sequence[CompiledStatement]) -> List[Any]:
        """Execute write statements atomically; returns each processed result."""
        if not statements:
            return []
        with self.query_logger.track(f"-- batch of {len(statements)} statements") as record:
            results = self.driver.execute_batch([tuple(statement) for statement in statements])
            record.rows = sum(len(rows) for rows in results)

        tables = set()
        for statement in statements:
            tables.update(statement.tables)
            tables.update(extract_tables(statement.sql))
        self.cache.invalidate_tables(self._dependent_tables(tuple(tables)))
        return [statement.process(rows) for statement, rows in zip(statements, results)]

    def query(self, description: Dict[str, Any]) -> Any:
        """Compile and run a query description (see sql.query_builder)."""
        return self.run(compile_query(description, self.builder.tables, self.registry))

    @contextmanager
    def transaction(self):
        """
        Run a block in one transaction; rolls back when the block raises.

        Example:
            >>> with db.transaction():
            ...     db['trees'].update({'alive': False}, where={'forest_id': 1})
            ...     db['forests'].delete({'id': 1})
        """
        if self.in_transaction:
            # Nested blocks join the outer transaction
            self._transaction_depth += 1
            try:
                yield self
            finally:
                self._transaction_depth -= 1
            return

        self.driver.begin()
        self._transaction_depth = 1
        try:
            yield self
        except Exception:
            self.driver.rollback()
            logger.debug("Transaction rolled back")
            raise
        else:
            self.driver.commit()
        finally:
            self._transaction_depth = 0

    # ------------------------------------------------------------------
    # Tables and hooks

    def table(self, name: str) -> 'TableClient':
        if name not in self.builder.tables:
            raise SchemaError(f"Unknown table '{name}'", table=name)
        return TableClient(self, name)

    def __getitem__(self, name: str) -> 'TableClient':
        return self.table(name)

    def add_hook(self, table: str, event: str, hook: Callable) -> Callable:
        """Register a lifecycle hook (see client.hooks)."""
        if table not in self.builder.tables:
            raise SchemaError(f"Unknown table '{table}'", table=table)
        return self.hooks.register(table, event, hook)

    def close(self) -> None:
        close = getattr(self.driver, 'close', None)
        if close is not None:
            close()


class TableClient:
    """
    Statement shortcuts for one table.

    Read methods accept extra query description keys (select, order_by,
    limit, offset, ...) as keyword arguments.
    """

    def __init__(self, db: Database, name: str, with_deleted: bool = False, only_deleted: bool = False):
        self.db = db
        self.name = name
        self._with_deleted = with_deleted
        self._only_deleted = only_deleted

    def __repr__(self) -> str:
        return f"TableClient({self.name!r})"

    @property
    def schema(self) -> TableSchema:
        return self.db.builder.tables[self.name]

    @property
    def _schemas(self) -> Dict[str, TableSchema]:
        return self.db.builder.tables

    @property
    def _registry(self) -> TypeRegistry:
        return self.db.registry

    def with_deleted(self) -> 'TableClient':
        """Reads include soft-deleted rows."""
        return TableClient(self.db, self.name, with_deleted=True)

    def only_deleted(self) -> 'TableClient':
        """Reads return soft-deleted rows only."""
        return TableClient(self.db, self.name, only_deleted=True)

    def _read_options(self, options: Dict[str, Any]) -> Dict[str, Any]:
        if self._with_deleted:
            options.setdefault('with_deleted', True)
        if self._only_deleted:
            options.setdefault('only_deleted', True)
        return options

    def _description(self, where: Any, options: Dict[str, Any]) -> Dict[str, Any]:
        return self._read_options(dict(options, table=self.name, where=where))

    # ------------------------------------------------------------------
    # Writes

    def insert(self, values: Mapping[str, Any]) -> Any:
        """Insert one row; returns its primary key."""
        context = HookContext(self.name, 'insert')
        payload = self.db.hooks.run_before(self.name, 'insert', dict(values), context)
        statement = compile_insert(self.schema, payload, self._registry, self._schemas)
        result = self.db.run(statement)
        self.db.hooks.run_after(self.name, 'insert', result, payload, context)
        return result

    def insert_many(self, items: Sequence[Mapping[str, Any]]) -> List[Any]:
        """Insert rows in one round trip; returns their primary keys in order."""
        context = HookContext(self.name, 'insert')
        payloads = [self.db.hooks.run_before(self.name, 'insert', dict(item), context) for item in items]
        statements = compile_insert_many(self.schema, payloads, self._registry, self._schemas)
        if not statements:
            return []

        if len(statements) == 1 and statements[0].processor.mode in ('values', 'rows'):
            # Single JSON-array statement returning every key
            keys = self.db.run(statements[0])
        else:
            keys = self.db.run_batch(statements)

        for key, payload in zip(keys, payloads):
            self.db.hooks.run_after(self.name, 'insert', key, payload, context)
        return keys

    def update(self, values: Mapping[str, Any], where: Any = None) -> Optional[int]:
        """Update matching rows; values may be expression nodes or callbacks.

        Returns:
            Number of rows changed (None on FTS tables, which have no RETURNING)
        """
        context = HookContext(self.name, 'update', where)
        payload = self.db.hooks.run_before(self.name, 'update', dict(values), context)
        statement = compile_update(self.schema, payload, where, self._registry, self._schemas)
        result = self.db.run(statement)
        self.db.hooks.run_after(self.name, 'update', result, payload, context)
        return result

    def upsert(self, values: Mapping[str, Any], target: Any = None, set: Optional[Mapping[str, Any]] = None) -> Any:
        """Insert or update on conflict; returns the primary key of the resulting row."""
        context = HookContext(self.name, 'upsert')
        payload = self.db.hooks.run_before(self.name, 'upsert', dict(values), context)
        statement = compile_upsert(self.schema, payload, target, set, self._registry, self._schemas)
        result = self.db.run(statement)
        self.db.hooks.run_after(self.name, 'upsert', result, payload, context)
        return result

    def delete(self, where: Any = None) -> Optional[int]:
        """Delete matching rows; returns how many were removed."""
        context = HookContext(self.name, 'delete', where)
        where = self.db.hooks.run_before(self.name, 'delete', where, context)
        context.where = where
        result = self.db.run(compile_delete(self.schema, where, self._registry, self._schemas))
        self.db.hooks.run_after(self.name, 'delete', result, where, context)
        return result

    def soft_delete(self, where: Any = None) -> int:
        """Mark matching rows deleted (soft-delete tables only); returns how many were marked."""
        return self.db.run(compile_soft_delete(self.schema, where, registry=self._registry, schemas=self._schemas))

    def restore(self, where: Any = None) -> int:
        """Clear deleted_at on matching deleted rows; returns how many were restored."""
        return self.db.run(compile_restore(self.schema, where, self._registry, self._schemas))

    # ------------------------------------------------------------------
    # Reads

    def get(self, where: Any = None, **options) -> Any:
        """First matching row, or None (a bare value when select names one column)."""
        options = self._read_options(options)
        return self.db.run(compile_get(self.schema, where, self._schemas, self._registry, **options))

    def many(self, where: Any = None, **options) -> List[Any]:
        """All matching rows (bare values when select names one column)."""
        options = self._read_options(options)
        return self.db.run(compile_select(self.schema, where, self._schemas, self._registry, **options))

    def explain(self, where: Any = None, **options) -> List[Dict[str, Any]]:
        """
        Query plan for many(where, **options) as EXPLAIN QUERY PLAN rows.

        Plans are never cached; each row has 'id', 'parent', 'notused' and
        'detail' columns.

        Example:
            >>> db['trees'].explain({'forest_id': 1})[0]['detail']
            'SCAN trees'
        """
        statement = compile_select(self.schema, where, self._schemas, self._registry, **self._read_options(options))
        plan = CompiledStatement(
            sql='EXPLAIN QUERY PLAN ' + statement.sql,
            params=statement.params,
            tables=statement.tables,
            processor=RowProcessor(mode='rows')
        )
        return self.db.execute(plan, cache=False)

    def first(self, where: Any = None, order_by: Any = None, **options) -> Optional[Dict[str, Any]]:
        """First matching row in order_by order (primary key by default)."""
        options = self._read_options(options)
        order_by = order_by if order_by is not None else self.schema.primary_key
        return self.db.run(
            compile_get(self.schema, where, self._schemas, self._registry, order_by=order_by, **options)
        )

    def exists(self, where: Any = None, **options) -> bool:
        options = self._read_options(options)
        return bool(self.db.run(compile_exists(self.schema, where, self._schemas, self._registry, **options)))

    def _aggregate(self, method: str, column: Optional[str], where: Any, distinct: bool,
                   options: Dict[str, Any]) -> Any:
        options = self._read_options(options)
        statement = compile_aggregate(
            self.schema, method, column, where, distinct, self._schemas, self._registry, **options
        )
        return self.db.run(statement)

    def count(self, where: Any = None, column: Optional[str] = None, distinct: bool = False, **options) -> int:
        return self._aggregate('count', column, where, distinct, options) or 0

    def sum(self, column: str, where: Any = None, distinct: bool = False, **options) -> float:
        return self._aggregate('sum', column, where, distinct, options)

    def avg(self, column: str, where: Any = None, distinct: bool = False, **options) -> Optional[float]:
        return self._aggregate('avg', column, where, distinct, options)

    def min(self, column: str, where: Any = None, **options) -> Any:
        return self._aggregate('min', column, where, False, options)

    def max(self, column: str, where: Any = None, **options) -> Any:
        return self._aggregate('max', column, where, False, options)

    def group_by(self, by: Any, method: str = 'count', column: Optional[str] = None,
                 where: Any = None, having: Any = None, distinct: bool = False, **options) -> List[Dict[str, Any]]:
        """One row per group with '<method>_result' (see sql.query_builder.compile_group)."""
        options = self._read_options(options)
        statement = compile_group(
            self.schema, by, method, column, where, having, distinct,
            self._schemas, self._registry, **options
        )
        return self.db.run(statement)

    def match(self, query: Any, **options) -> List[Dict[str, Any]]:
        """Full-text search on an FTS table (see sql.fulltext.compile_match)."""
        return self.db.run(compile_match(self.schema, query, registry=self._registry, **options))

    def paginate(self, where: Any = None, page: int = 1, page_size: Optional[int] = None,
                 **options) -> Page:
        """Offset pagination with a total count."""
        plan = paginate(self._description(where, options), self._schemas, page, page_size, self._registry)
        return plan.finish(self.db.execute(plan.count_statement), self.db.execute(plan.data_statement))

    def cursor_paginate(self, where: Any = None, cursor: Any = None, limit: Optional[int] = None,
                        direction: str = 'after', cursor_column: Optional[str] = None,
                        **options) -> CursorPage:
        """Keyset pagination on cursor_column (the primary key by default)."""
        plan = cursor_paginate(
            self._description(where, options), self._schemas,
            cursor=cursor, limit=limit, direction=direction,
            cursor_column=cursor_column, registry=self._registry
        )
        return plan.finish(self.db.execute(plan.statement))
