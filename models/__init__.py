"""
========================================
Data models for sqlshape
========================================

Plain dataclass records shared by the builder, compiler, differ and client.
Kept free of compilation logic so every other package can import them
without circular dependencies.

Modules:
    schema_models: TableSchema and its column/index/foreign-key descriptors
    expression_models: ExpressionNode variants and CompiledStatement
    migration_models: MigrationOperation variants

Example:
    >>> from models import Column, Compare, Literal, TableSchema
    >>> node = Compare('gte', Column('height', table='trees'), Literal(3))
"""

__version__ = "0.1.0"
__all__ = [
    # Schema records
    'NOW', 'ColumnSource', 'ColumnDescriptor', 'ComputedColumn',
    'ForeignKeyDescriptor', 'IndexDescriptor', 'TableSchema',
    'schemas_to_json', 'schemas_from_json',
    # Expression nodes
    'Column', 'Literal', 'Compare', 'Logical', 'FunctionCall', 'Subquery',
    'Window', 'RowProcessor', 'CompiledStatement',
    # Migration operations
    'MigrationOperation', 'CreateTable', 'DropTable', 'AddColumn', 'DropColumn',
    'RenameColumn', 'RecreateTable', 'AddIndex', 'DropIndex', 'RebuildFullText',
]

from .expression_models import (
    Column,
    Compare,
    CompiledStatement,
    FunctionCall,
    Literal,
    Logical,
    RowProcessor,
    Subquery,
    Window,
)
from .migration_models import (
    AddColumn,
    AddIndex,
    CreateTable,
    DropColumn,
    DropIndex,
    DropTable,
    MigrationOperation,
    RebuildFullText,
    RecreateTable,
    RenameColumn,
)
from .schema_models import (
    NOW,
    ColumnDescriptor,
    ColumnSource,
    ComputedColumn,
    ForeignKeyDescriptor,
    IndexDescriptor,
    TableSchema,
    schemas_from_json,
    schemas_to_json,
)
