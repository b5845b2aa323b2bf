"""
Source Connector contract.

A source connector knows how to enumerate the tables of a data source and how
to fetch their records. Records are pushed into the replication engine through
a callback, and the connector signals end-of-stream through a second callback:

    async def fetch_records(self, table, push, done, context):
        async for page in self.api.pages(table.name):
            push(page)              # a single record, a list, or None
        done()                      # or done("error text"),
                                    # or done(FetchStatus(info_status="..."))

Pushes for one table must be serialized: a connector may not call ``push``
for the same table from several threads.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from couch_sync.core.context import RunContext
    from couch_sync.core.pipes import Pipe
    from couch_sync.core.provisioner import DesignDocument


logger = logging.getLogger(__name__)

Record = dict[str, Any]


class Table(BaseModel):
    """A named record set to replicate. Immutable for the duration of a run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1)
    label: str | None = None
    label_plural: str | None = Field(default=None, alias="labelPlural")

    @property
    def display_label(self) -> str:
        return self.label or self.name


@dataclass(frozen=True)
class FetchStatus:
    """End-of-stream status reported by a connector."""

    error_status: str | None = None
    info_status: str | None = None

    @classmethod
    def coerce(cls, value: Any) -> "FetchStatus | None":
        """
        Normalize whatever a connector passed to ``done``.

        A plain string is the legacy way of reporting an error and becomes
        ``FetchStatus(error_status=...)``. Mappings may use the camelCase
        ``errorStatus``/``infoStatus`` keys or their snake_case forms.
        """
        if value is None or value == "":
            return None
        if isinstance(value, FetchStatus):
            return value
        if isinstance(value, Mapping):
            error = value.get("errorStatus", value.get("error_status"))
            info = value.get("infoStatus", value.get("info_status"))
            if error is None and info is None:
                return cls(error_status=str(dict(value)))
            return cls(
                error_status=str(error) if error else None,
                info_status=str(info) if info else None,
            )
        return cls(error_status=str(value))


PushRecords = Callable[[Union[Record, Sequence[Record], None]], None]
FetchDone = Callable[..., None]
DbNameFunction = Callable[["Pipe", Table], str]


class SourceConnector(ABC):
    """
    Base class for all source connectors.

    Subclasses implement ``fetch_records`` and usually ``get_tables``; every
    other hook has a working default.
    """

    id: ClassVar[str] = "connector"
    label: ClassVar[str] = "Data Source"

    # Copy behavior. Settings override these per run.
    recreate_target_db: bool = True
    update_existing_docs: bool = False

    # Optional capability: compute the target database name for a table.
    # Left unset, the table name is used.
    get_db_name: DbNameFunction | None = None

    def __init__(self) -> None:
        self.extra_steps: list[Any] = []

    async def connect(self, context: "RunContext") -> None:
        """Verify the data source can be reached."""
        context.logger.info("Calling the default implementation of connect.")

    def get_table_prefix(self) -> str | None:
        """Prefix added to every target database name."""
        return None

    def get_design_docs(
        self, pipe: "Pipe"
    ) -> "DesignDocument | Sequence[DesignDocument] | None":
        """Extra views and indexes to create in every target database."""
        return None

    def get_tables(self) -> list[Table]:
        """Tables this source can provide."""
        return [Table(name="demotable", label_plural="demotable")]

    @abstractmethod
    async def fetch_records(
        self,
        table: Table,
        push: PushRecords,
        done: FetchDone,
        context: "RunContext",
    ) -> None:
        """
        Fetch all records of ``table``.

        Args:
            table: The table being replicated
            push: Ingests one record, a list of records or None
            done: Must be called once when fetching is over, optionally with
                an error string, a ``FetchStatus`` or a status mapping
            context: Run context (logger, pipe, run stats)
        """
        ...
