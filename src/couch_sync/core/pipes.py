"""
Pipe Store - Persistent pipe configuration.

A pipe ties a source connector to the tables selected for replication.
Pipes are kept in a single JSON file:
- Look up a pipe by id
- Create or update a pipe atomically through a mutator
- Refresh the table list from a connector
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel, Field, ValidationError

from couch_sync.connectors.base import Table

if TYPE_CHECKING:
    from couch_sync.connectors.base import SourceConnector


logger = logging.getLogger(__name__)


class Pipe(BaseModel):
    """Replication pipe configuration."""

    id: str = Field(min_length=1)
    name: str = ""
    connector_id: str = ""
    tables: list[Table] = Field(default_factory=list)
    options: dict[str, Any] = Field(default_factory=dict)
    updated_at: str | None = None

    def select_tables(
        self,
        include: list[str] | None = None,
        exclude: list[str] | None = None,
    ) -> list[Table]:
        """Tables of this pipe filtered by name."""
        tables = self.tables
        if include:
            tables = [t for t in tables if t.name in include]
        if exclude:
            tables = [t for t in tables if t.name not in exclude]
        return tables


class PipeStore:
    """
    JSON-file persistence for pipes.

    Example:
        store = PipeStore(Path(".couch-sync-pipes.json"))

        pipe = store.upsert("orders", lambda p: p.model_copy(update={"name": "Orders"}))
        store.connect_data_source("orders", connector)
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._pipes: dict[str, Pipe] | None = None

    def load(self) -> dict[str, Pipe]:
        """Load all pipes, an empty mapping when the file does not exist."""
        if self._pipes is not None:
            return self._pipes

        pipes: dict[str, Pipe] = {}
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text())
                for pipe_id, pipe_data in data.get("pipes", {}).items():
                    pipes[pipe_id] = Pipe.model_validate(pipe_data)
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("Could not load pipe file %s: %s", self.path, e)
        self._pipes = pipes
        return pipes

    def save(self) -> None:
        """Write all pipes back to the file."""
        pipes = self.load()
        data = {
            "pipes": {
                pipe_id: pipe.model_dump(mode="json", by_alias=True)
                for pipe_id, pipe in pipes.items()
            }
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))

    def get_pipe(self, pipe_id: str) -> Pipe:
        """
        Raises:
            KeyError: if no pipe has this id
        """
        pipes = self.load()
        if pipe_id not in pipes:
            raise KeyError(f"Pipe not found: {pipe_id}")
        return pipes[pipe_id]

    def list_pipes(self) -> list[Pipe]:
        return list(self.load().values())

    def save_pipe(self, pipe: Pipe) -> Pipe:
        pipe = pipe.model_copy(
            update={"updated_at": datetime.now(timezone.utc).isoformat()}
        )
        self.load()[pipe.id] = pipe
        self.save()
        return pipe

    def upsert(self, pipe_id: str, mutate: Callable[[Pipe], Pipe]) -> Pipe:
        """Apply ``mutate`` to the stored pipe (or a new one) and save it."""
        current = self.load().get(pipe_id) or Pipe(id=pipe_id)
        return self.save_pipe(mutate(current))

    def delete_pipe(self, pipe_id: str) -> None:
        if self.load().pop(pipe_id, None) is not None:
            self.save()

    def connect_data_source(
        self, pipe_id: str, connector: "SourceConnector"
    ) -> Pipe:
        """Store the connector's tables as the pipe's table selection."""
        tables = connector.get_tables()
        logger.info(
            "Pipe %s connected to %s (%d tables)", pipe_id, connector.label, len(tables)
        )
        return self.upsert(
            pipe_id,
            lambda pipe: pipe.model_copy(
                update={"tables": tables, "connector_id": connector.id}
            ),
        )
