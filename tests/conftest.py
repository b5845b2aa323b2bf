"""Shared fixtures: an in-memory document store and a list-backed connector."""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from couch_sync.config import Settings
from couch_sync.connectors.base import SourceConnector, Table
from couch_sync.core.context import RunContext
from couch_sync.core.pipes import Pipe
from couch_sync.core.provisioner import DesignDocument
from couch_sync.core.stats import RunStats


class FakeStore:
    """In-memory stand-in for the CouchDB client."""

    def __init__(self) -> None:
        self.databases: dict[str, dict[str, dict[str, Any]]] = {}
        self.design_documents: dict[str, list[DesignDocument]] = {}
        self.writes: dict[str, list[int]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_initialize: set[str] = set()
        self.fail_recreate: set[str] = set()
        self.fail_list: set[str] = set()
        # Database name -> indexes of bulk writes that raise
        self.fail_writes: dict[str, set[int]] = {}
        self.write_delay = 0.0

    def seed(self, name: str, docs: dict[str, str]) -> None:
        """Pre-populate ``name`` with documents mapped to revisions."""
        self.databases[name] = {
            doc_id: {"_id": doc_id, "_rev": rev} for doc_id, rev in docs.items()
        }

    async def initialize_database(
        self, name: str, design_documents: Sequence[DesignDocument] = ()
    ) -> None:
        self.calls.append(("initialize", name))
        if name in self.fail_initialize:
            raise ConnectionError(f"cannot reach {name}")
        self.databases.setdefault(name, {})
        self.design_documents[name] = list(design_documents)

    async def destroy_and_recreate(
        self, name: str, design_documents: Sequence[DesignDocument] = ()
    ) -> None:
        self.calls.append(("recreate", name))
        if name in self.fail_recreate:
            raise RuntimeError(f"delete of {name} refused")
        self.databases[name] = {}
        self.design_documents[name] = list(design_documents)

    async def list_revisions(self, name: str) -> dict[str, str]:
        self.calls.append(("list", name))
        if name in self.fail_list:
            raise RuntimeError(f"cannot list {name}")
        return {
            doc_id: doc["_rev"] for doc_id, doc in self.databases.get(name, {}).items()
        }

    async def bulk_write(self, name: str, docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        index = len(self.writes.setdefault(name, []))
        self.writes[name].append(len(docs))
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if index in self.fail_writes.get(name, set()):
            raise RuntimeError(f"bulk write {index} to {name} failed")
        db = self.databases.setdefault(name, {})
        for doc in docs:
            db[doc.get("_id", f"auto-{len(db)}")] = dict(doc)
        return [{"id": doc.get("_id"), "ok": True} for doc in docs]


class ListConnector(SourceConnector):
    """Pushes predefined records, in chunks, for every table."""

    id = "list"
    label = "List"

    def __init__(
        self,
        records: dict[str, list[dict[str, Any]]],
        chunk_size: int = 150,
        statuses: dict[str, Any] | None = None,
    ) -> None:
        super().__init__()
        self.records = records
        self.chunk_size = chunk_size
        self.statuses = statuses or {}

    def get_tables(self) -> list[Table]:
        return [Table(name=name) for name in self.records]

    async def connect(self, context: RunContext) -> None:
        context.run_stats.expected_total_records = sum(
            len(self.records.get(t.name, [])) for t in context.get_source_tables()
        )

    async def fetch_records(self, table, push, done, context) -> None:
        rows = self.records.get(table.name, [])
        for start in range(0, len(rows), self.chunk_size):
            push([dict(r) for r in rows[start:start + self.chunk_size]])
            await asyncio.sleep(0)
        done(self.statuses.get(table.name))


def make_records(count: int, prefix: str = "doc") -> list[dict[str, Any]]:
    return [{"_id": f"{prefix}-{i}", "value": i} for i in range(count)]


def make_context(tables: list[str], expected: int = 0) -> RunContext:
    pipe = Pipe(id="test", tables=[Table(name=name) for name in tables])
    return RunContext(pipe, RunStats(expected_total_records=expected))


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(pipes_file=tmp_path / "pipes.json")


@pytest.fixture
def sample_db(tmp_path: Path) -> Path:
    """Create a sample SQLite database for testing."""
    db_path = tmp_path / "test.db"
    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT,
            avatar BLOB
        )
    """)
    cursor.executemany(
        "INSERT INTO users (id, name, email, avatar) VALUES (?, ?, ?, ?)",
        [
            (1, "Alice", "alice@example.com", b"\x01\x02"),
            (2, "Bob", "bob@example.com", None),
            (3, "Charlie", "charlie@example.com", None),
            (4, "Diana", "diana@example.com", None),
            (5, "Eve", "eve@example.com", None),
        ],
    )

    cursor.execute("CREATE TABLE tags (label TEXT)")
    cursor.executemany("INSERT INTO tags (label) VALUES (?)", [("a",), ("b",)])

    conn.commit()
    conn.close()

    return db_path
