"""
=====================================
Migration operation records.
=====================================

Each operation knows how to render its own statements. The differ builds
an ordered list of them; joining their statements gives the script.

Classes:
    CreateTable, DropTable, AddColumn, DropColumn, RenameColumn,
    RecreateTable, AddIndex, DropIndex, RebuildFullText
"""

from dataclasses import dataclass
from typing import List, Tuple

FOREIGN_KEY_CHECK = "PRAGMA foreign_key_check;"


def quote(name: str) -> str:
    return f'"{name}"'


@dataclass(frozen=True)
class MigrationOperation:
    """Base class; subclasses implement statements()."""

    table: str

    destructive = False

    def statements(self) -> List[str]:
        raise NotImplementedError

    def to_sql(self) -> str:
        return '\n'.join(self.statements())


@dataclass(frozen=True)
class CreateTable(MigrationOperation):
    """Create a table with its indexes (and FTS triggers)."""

    ddl: Tuple[str, ...] = ()

    def statements(self) -> List[str]:
        return list(self.ddl)


@dataclass(frozen=True)
class DropTable(MigrationOperation):
    """Drop a table and any triggers kept on other tables for it."""

    triggers: Tuple[str, ...] = ()

    destructive = True

    def statements(self) -> List[str]:
        drops = [f"DROP TRIGGER IF EXISTS {quote(name)};" for name in self.triggers]
        return drops + [f"DROP TABLE {quote(self.table)};"]


@dataclass(frozen=True)
class AddColumn(MigrationOperation):
    column_clause: str = ''

    def statements(self) -> List[str]:
        return [f"ALTER TABLE {quote(self.table)} ADD COLUMN {self.column_clause};"]


@dataclass(frozen=True)
class DropColumn(MigrationOperation):
    column: str = ''

    destructive = True

    def statements(self) -> List[str]:
        return [f"ALTER TABLE {quote(self.table)} DROP COLUMN {quote(self.column)};"]


@dataclass(frozen=True)
class RenameColumn(MigrationOperation):
    old: str = ''
    new: str = ''

    def statements(self) -> List[str]:
        return [
            f"ALTER TABLE {quote(self.table)} RENAME COLUMN {quote(self.old)} TO {quote(self.new)};"
        ]


@dataclass(frozen=True)
class RecreateTable(MigrationOperation):
    """Rebuild a table under a temporary name and copy shared columns.

    Attributes:
        create_temp: CREATE TABLE statement for the temporary table (no indexes)
        shared_columns: Columns present in both the old and new shape
        index_ddl: CREATE INDEX statements re-created after the rename
    """

    create_temp: str = ''
    shared_columns: Tuple[str, ...] = ()
    index_ddl: Tuple[str, ...] = ()

    destructive = True

    @property
    def temp_name(self) -> str:
        return f"temp_{self.table}"

    def statements(self) -> List[str]:
        columns = ', '.join(quote(name) for name in self.shared_columns)
        statements = [self.create_temp]
        if self.shared_columns:
            statements.append(
                f"INSERT INTO {quote(self.temp_name)} ({columns}) "
                f"SELECT {columns} FROM {quote(self.table)};"
            )
        statements.append(f"DROP TABLE {quote(self.table)};")
        statements.append(f"ALTER TABLE {quote(self.temp_name)} RENAME TO {quote(self.table)};")
        statements.extend(self.index_ddl)
        statements.append(FOREIGN_KEY_CHECK)
        return statements


@dataclass(frozen=True)
class AddIndex(MigrationOperation):
    name: str = ''
    ddl: str = ''

    def statements(self) -> List[str]:
        return [self.ddl]


@dataclass(frozen=True)
class DropIndex(MigrationOperation):
    name: str = ''

    def statements(self) -> List[str]:
        return [f"DROP INDEX IF EXISTS {quote(self.name)};"]


@dataclass(frozen=True)
class RebuildFullText(MigrationOperation):
    """Repopulate an external-content FTS index from its base table."""

    def statements(self) -> List[str]:
        return [f"INSERT INTO {quote(self.table)}({quote(self.table)}) VALUES('rebuild');"]
