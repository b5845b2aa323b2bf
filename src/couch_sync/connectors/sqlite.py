"""
SQLite Source Connector.

Replicates the tables of a local SQLite database:
- Schema introspection (tables, columns, row counts)
- Paged row iteration (memory efficient)
- Rows pushed as documents, primary key as document id
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generator, Iterator

from couch_sync.connectors.base import (
    FetchDone,
    FetchStatus,
    PushRecords,
    Record,
    SourceConnector,
    Table,
)

if TYPE_CHECKING:
    from couch_sync.core.context import RunContext


@dataclass
class ColumnInfo:
    """Information about a table column."""

    name: str
    type: str
    notnull: bool
    is_primary_key: bool


@dataclass
class TableInfo:
    """Information about a database table."""

    name: str
    columns: list[ColumnInfo] = field(default_factory=list)
    row_count: int = 0

    @property
    def primary_key(self) -> str | None:
        """The primary key column, when the key is a single column."""
        keys = [c.name for c in self.columns if c.is_primary_key]
        return keys[0] if len(keys) == 1 else None


class SQLiteSourceConnector(SourceConnector):
    """
    Source connector for SQLite databases.

    Opens the file read-only and streams each table in pages.

    Example:
        connector = SQLiteSourceConnector(Path("database.db"))

        # Tables offered to the pipe
        tables = connector.get_tables()
    """

    id = "sqlite"
    label = "SQLite"

    def __init__(
        self,
        path: Path | str,
        page_size: int = 500,
        limit: int | None = None,
        table_prefix: str | None = None,
    ) -> None:
        """
        Initialize SQLite connector.

        Args:
            path: Path to local SQLite database file
            page_size: Rows per page pushed to the engine
            limit: Maximum rows to fetch per table
            table_prefix: Prefix for target database names
        """
        super().__init__()
        self.path = Path(path)
        self.page_size = page_size
        self.limit = limit
        self.table_prefix = table_prefix
        self._connection: sqlite3.Connection | None = None

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with proper cleanup."""
        if self._connection is None:
            self._connection = self._create_connection()
        yield self._connection

    def _create_connection(self) -> sqlite3.Connection:
        if not self.path.exists():
            raise FileNotFoundError(f"Database not found: {self.path}")

        conn = sqlite3.connect(
            f"file:{self.path}?mode=ro",
            uri=True,
            check_same_thread=False,
            timeout=30.0,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "SQLiteSourceConnector":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_table_infos(self) -> list[TableInfo]:
        """Get list of all tables with their metadata."""
        tables: list[TableInfo] = []

        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT name FROM sqlite_master
                WHERE type = 'table'
                AND name NOT LIKE 'sqlite_%'
                ORDER BY name
                """
            )
            for row in cursor.fetchall():
                table_name = row["name"]
                count_row = conn.execute(
                    f'SELECT COUNT(*) as count FROM "{table_name}"'
                ).fetchone()
                tables.append(
                    TableInfo(
                        name=table_name,
                        columns=self._get_column_info(conn, table_name),
                        row_count=count_row["count"] if count_row else 0,
                    )
                )

        return tables

    def _get_column_info(
        self, conn: sqlite3.Connection, table: str
    ) -> list[ColumnInfo]:
        """Get column information for a table."""
        return [
            ColumnInfo(
                name=row["name"],
                type=row["type"],
                notnull=bool(row["notnull"]),
                is_primary_key=bool(row["pk"]),
            )
            for row in conn.execute(f'PRAGMA table_info("{table}")')
        ]

    def get_table_info(self, name: str) -> TableInfo | None:
        for table in self.get_table_infos():
            if table.name == name:
                return table
        return None

    def get_tables(self) -> list[Table]:
        return [
            Table(name=info.name, label=info.name, label_plural=info.name)
            for info in self.get_table_infos()
        ]

    def get_table_prefix(self) -> str | None:
        return self.table_prefix

    def iter_records(self, info: TableInfo) -> Iterator[list[Record]]:
        """
        Iterate over table rows in pages of documents.

        Yields:
            Lists of at most ``page_size`` documents
        """
        key = info.primary_key
        with self.connection() as conn:
            query = f'SELECT * FROM "{info.name}"'
            if key:
                query += f' ORDER BY "{key}"'

            fetched = 0
            offset = 0
            while True:
                size = self.page_size
                if self.limit is not None:
                    size = min(size, self.limit - fetched)
                    if size <= 0:
                        break

                rows = conn.execute(
                    f"{query} LIMIT ? OFFSET ?", (size, offset)
                ).fetchall()
                if not rows:
                    break

                page = [self._to_document(row, key) for row in rows]
                fetched += len(page)
                offset += len(page)
                yield page

    def _to_document(self, row: sqlite3.Row, key: str | None) -> Record:
        doc: Record = {}
        for column in row.keys():
            value = row[column]
            if isinstance(value, bytes):
                value = value.hex()
            doc[column] = value
        if key and row[key] is not None:
            doc["_id"] = str(row[key])
        return doc

    # =========================================================================
    # Connector hooks
    # =========================================================================

    async def connect(self, context: "RunContext") -> None:
        """Check the file opens and size the run for progress reporting."""
        infos = {info.name: info for info in self.get_table_infos()}
        selected = [t.name for t in context.get_source_tables()]
        expected = 0
        for name in selected:
            if name in infos:
                count = infos[name].row_count
                expected += min(count, self.limit) if self.limit else count
        context.run_stats.expected_total_records = expected
        context.logger.info(
            "Connected to %s: %d tables, %d records to copy",
            self.path.name,
            len(selected),
            expected,
        )

    async def fetch_records(
        self,
        table: Table,
        push: PushRecords,
        done: FetchDone,
        context: "RunContext",
    ) -> None:
        info = self.get_table_info(table.name)
        if info is None:
            done(f"Table not found: {table.name}")
            return

        try:
            for page in self.iter_records(info):
                push(page)
                # Let sibling tables and pending writes run
                await asyncio.sleep(0)
        except sqlite3.Error as e:
            done(FetchStatus(error_status=f"Failed reading {table.name}: {e}"))
            return

        if self.limit is not None and info.row_count > self.limit:
            done(
                FetchStatus(
                    info_status=(
                        f"Partial fetch: {self.limit} of {info.row_count} rows"
                    )
                )
            )
        else:
            done()
