"""
Target Provisioner - One document database per table.

Establishes the destination of a table before any record is written:
- Computes the database name (prefix + override or table name)
- Installs the default view plus connector-declared views and indexes
- Recreates the database, or snapshots existing revisions for in-place updates
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Protocol, Union

from couch_sync.config import DEFAULT_TYPE_FIELD
from couch_sync.connectors.base import Record, Table


logger = logging.getLogger(__name__)

DEFAULT_VIEW_VERSION = 2
DESIGN_PREFIX = "_design/"
VERSIONS_FIELD = "couch_sync_versions"


class ProvisionError(Exception):
    """Raised when a target database cannot be created or initialized."""

    def __init__(self, message: str, db_name: str | None = None) -> None:
        super().__init__(message)
        self.db_name = db_name


class ProvisionMode(str, Enum):
    """How an existing target database is treated."""

    RECREATE = "recreate"
    UPDATE_EXISTING = "update-existing"
    DEFAULT = "default"

    @classmethod
    def from_options(
        cls, recreate: bool, update_existing: bool
    ) -> "ProvisionMode":
        """Recreate wins when both flags are set."""
        if recreate:
            return cls.RECREATE
        if update_existing:
            return cls.UPDATE_EXISTING
        return cls.DEFAULT


@dataclass(frozen=True)
class ViewDefinition:
    """A map/reduce view. ``code`` is a map function or a full view body."""

    name: str
    code: Any
    version: int = 1

    @property
    def definition(self) -> dict[str, Any]:
        if isinstance(self.code, str):
            return {"map": self.code}
        return dict(self.code)


@dataclass(frozen=True)
class IndexDefinition:
    """A search index stored in a design document."""

    name: str
    code: Any
    version: int = 1

    @property
    def definition(self) -> Any:
        if isinstance(self.code, str):
            return {"index": self.code}
        return dict(self.code)


@dataclass(frozen=True)
class DesignDocument:
    """Views and indexes sharing one design document."""

    name: str
    views: tuple[ViewDefinition, ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()

    @property
    def id(self) -> str:
        if self.name.startswith(DESIGN_PREFIX):
            return self.name
        return DESIGN_PREFIX + self.name

    @property
    def versions(self) -> dict[str, int]:
        """Version tag of every view and index, keyed by kind and name."""
        versions = {f"views/{v.name}": v.version for v in self.views}
        versions.update({f"indexes/{i.name}": i.version for i in self.indexes})
        return versions

    def to_document(self) -> Record:
        doc: Record = {"_id": self.id, "language": "javascript"}
        if self.views:
            doc["views"] = {v.name: v.definition for v in self.views}
        if self.indexes:
            doc["indexes"] = {i.name: i.definition for i in self.indexes}
        doc[VERSIONS_FIELD] = self.versions
        return doc

    def is_current(self, stored: Mapping[str, Any] | None) -> bool:
        """True if ``stored`` was written from the same view/index versions."""
        return stored is not None and stored.get(VERSIONS_FIELD) == self.versions

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DesignDocument":
        """Build from the ``{name, views: [...], indexes: [...]}`` shape."""
        return cls(
            name=data["name"],
            views=tuple(
                ViewDefinition(v["name"], v["code"], v.get("version", 1))
                for v in data.get("views") or ()
            ),
            indexes=tuple(
                IndexDefinition(i["name"], i["code"], i.get("version", 1))
                for i in data.get("indexes") or ()
            ),
        )


class DocumentStore(Protocol):
    """Operations the provisioner and the replicators need from the store."""

    async def initialize_database(
        self, name: str, design_documents: Sequence[DesignDocument]
    ) -> None: ...

    async def destroy_and_recreate(
        self, name: str, design_documents: Sequence[DesignDocument]
    ) -> None: ...

    async def list_revisions(self, name: str) -> dict[str, str]: ...

    async def bulk_write(self, name: str, docs: list[Record]) -> list[dict[str, Any]]: ...


def build_db_name(
    table: Table,
    prefix: str | None = None,
    override: str | None = None,
) -> str:
    """
    Target database name for a table.

    Example:
        build_db_name(Table(name="Sales Orders"), prefix="crm")
        # -> "crm_sales_orders"
    """
    name = (f"{prefix}_" if prefix else "") + (override or table.name)
    return name.lower().replace(" ", "_")


def view_name_for_table(table: Table) -> str:
    return table.label_plural or table.label or table.name


def default_design_document(
    table: Table, type_field: str = DEFAULT_TYPE_FIELD
) -> DesignDocument:
    """Design document with the view listing every record of ``table``."""
    map_function = (
        "function(doc){"
        f"if ( doc.{type_field} === {json.dumps(table.name)}){{"
        "emit( doc._id, {'_id': doc._id, 'rev': doc._rev } );"
        "}"
        "}"
    )
    return DesignDocument(
        name=table.name,
        views=(
            ViewDefinition(
                view_name_for_table(table), map_function, DEFAULT_VIEW_VERSION
            ),
        ),
    )


CustomDesignDocs = Union[
    DesignDocument,
    Mapping[str, Any],
    Sequence[Union[DesignDocument, Mapping[str, Any]]],
    None,
]


def build_design_documents(
    table: Table,
    custom: CustomDesignDocs = None,
    type_field: str = DEFAULT_TYPE_FIELD,
) -> list[DesignDocument]:
    """Default design document of ``table`` followed by connector-declared ones."""
    docs = [default_design_document(table, type_field)]
    if custom is None:
        return docs
    if isinstance(custom, (DesignDocument, Mapping)):
        custom = [custom]
    for item in custom:
        if isinstance(item, DesignDocument):
            docs.append(item)
        else:
            docs.append(DesignDocument.from_dict(item))
    return docs


class TargetDatabase:
    """Handle to the per-table destination database."""

    def __init__(
        self,
        store: DocumentStore,
        name: str,
        design_documents: Sequence[DesignDocument] = (),
    ) -> None:
        self.store = store
        self.name = name
        self.design_documents = tuple(design_documents)

    async def bulk_write(self, docs: list[Record]) -> list[dict[str, Any]]:
        return await self.store.bulk_write(self.name, docs)

    def __repr__(self) -> str:
        return f"TargetDatabase({self.name!r})"


@dataclass(frozen=True)
class ProvisionedTarget:
    """
    Result of provisioning a table.

    ``revisions`` maps document id to revision for documents that existed
    before the run. It is read-only and empty unless updating in place.
    """

    database: TargetDatabase
    revisions: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )


class TargetProvisioner:
    """
    Creates and prepares target databases.

    Example:
        provisioner = TargetProvisioner(client, ProvisionMode.UPDATE_EXISTING)
        target = await provisioner.provision(table)
        target.revisions.get("doc-1")
    """

    def __init__(
        self,
        store: DocumentStore,
        mode: ProvisionMode = ProvisionMode.RECREATE,
        prefix: str | None = None,
        db_name_override: Callable[[Table], str | None] | None = None,
        custom_design_docs: CustomDesignDocs = None,
        type_field: str = DEFAULT_TYPE_FIELD,
    ) -> None:
        self.store = store
        self.mode = mode
        self.prefix = prefix
        self.db_name_override = db_name_override
        self.custom_design_docs = custom_design_docs
        self.type_field = type_field

    def db_name_for(self, table: Table) -> str:
        override = self.db_name_override(table) if self.db_name_override else None
        return build_db_name(table, self.prefix, override)

    async def provision(self, table: Table) -> ProvisionedTarget:
        """
        Prepare the target database of ``table``.

        Raises:
            ProvisionError: if the database cannot be initialized, recreated
                or listed. Only this table is affected.
        """
        db_name = self.db_name_for(table)
        design_docs = build_design_documents(
            table, self.custom_design_docs, self.type_field
        )

        try:
            await self.store.initialize_database(db_name, design_docs)
        except Exception as e:
            message = f"Fatal error from document store: unable to initialize {db_name}"
            logger.error("%s (%s)", message, e)
            raise ProvisionError(message, db_name) from e

        logger.info("Target database (%s) ready", db_name)
        revisions: dict[str, str] = {}

        if self.mode == ProvisionMode.RECREATE:
            logger.info(
                "Delete all documents for table %s in database %s",
                table.name,
                db_name,
            )
            try:
                await self.store.destroy_and_recreate(db_name, design_docs)
            except Exception as e:
                logger.error("Unable to recreate db %s: %s", db_name, e)
                raise ProvisionError(
                    f"Unable to recreate db {db_name}: {e}", db_name
                ) from e

        elif self.mode == ProvisionMode.UPDATE_EXISTING:
            try:
                revisions = await self.store.list_revisions(db_name)
            except Exception as e:
                logger.error("Unable to list documents of %s: %s", db_name, e)
                raise ProvisionError(
                    f"Unable to list documents of {db_name}: {e}", db_name
                ) from e
            logger.info(
                "Found %d existing documents in database %s", len(revisions), db_name
            )

        return ProvisionedTarget(
            database=TargetDatabase(self.store, db_name, design_docs),
            revisions=MappingProxyType(dict(revisions)),
        )
