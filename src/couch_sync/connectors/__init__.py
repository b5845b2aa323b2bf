"""Source connectors and the document store client for Couch Sync."""

from couch_sync.connectors.base import FetchStatus, SourceConnector, Table
from couch_sync.connectors.couchdb_client import CouchDBClient, CouchDBError
from couch_sync.connectors.sqlite import SQLiteSourceConnector

__all__ = [
    "FetchStatus",
    "SourceConnector",
    "Table",
    "CouchDBClient",
    "CouchDBError",
    "SQLiteSourceConnector",
]
