"""
CouchDB / Cloudant HTTP API Client.

Provides the document store operations used by the replication engine:
- Database creation, deletion and recreation
- Design document installation with version tracking
- Revision listing through _all_docs
- Bulk writes through _bulk_docs
- Rate limiting and retry logic
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from couch_sync.config import Settings, StoreConfig

if TYPE_CHECKING:
    from couch_sync.core.provisioner import DesignDocument


logger = logging.getLogger(__name__)


class CouchDBError(Exception):
    """Base exception for CouchDB API errors."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class CouchDBRateLimitError(CouchDBError):
    """Raised when the server keeps answering 429."""

    def __init__(self, retry_after: float = 1.0) -> None:
        super().__init__(
            f"Rate limit exceeded. Retry after {retry_after}s", status=429
        )
        self.retry_after = retry_after


class CouchDBClient:
    """
    Asynchronous CouchDB client.

    Example:
        async with CouchDBClient("http://localhost:5984", "admin", "secret") as client:
            await client.initialize_database("orders", design_docs)
            await client.bulk_write("orders", [{"_id": "1", "total": 10}])
    """

    def __init__(
        self,
        url: str,
        username: str = "",
        password: str = "",
        timeout_seconds: float = 60.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize CouchDB client.

        Args:
            url: Server base URL
            username: Basic auth user (empty = anonymous)
            password: Basic auth password
            timeout_seconds: Read timeout per request
            max_retries: Attempts on 429 and transport errors
            transport: Optional httpx transport (tests)
        """
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay = 1.0
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _db_url(self, name: str, *parts: str) -> str:
        path = "/".join([quote(name, safe="")] + [quote(p, safe="/") for p in parts])
        return f"{self.url}/{path}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            auth = (self.username, self.password) if self.username else None
            self._client = httpx.AsyncClient(
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=self.timeout_seconds,
                    write=30.0,
                    pool=10.0,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CouchDBClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        allowed: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an API request with error handling and retry logic.

        Handles:
        - Rate limiting (429) with Retry-After backoff
        - Transient transport errors with retry
        - Error bodies ({"error": ..., "reason": ...})

        Args:
            allowed: Error statuses returned to the caller instead of raised
        """
        client = await self._get_client()

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                    continue
                raise CouchDBError(f"Connection error: {e}") from e

            if response.status_code == 429:
                retry_after = float(response.headers.get("Retry-After", self.retry_delay))
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(retry_after)
                    continue
                raise CouchDBRateLimitError(retry_after)

            if response.is_success or response.status_code in allowed:
                return response

            error, reason = _error_fields(response)
            raise CouchDBError(
                f"{method} {url} failed ({response.status_code}): {error}: {reason}",
                status=response.status_code,
                reason=reason,
            )

        raise CouchDBError("Max retries exceeded")

    # =========================================================================
    # Databases
    # =========================================================================

    async def database_exists(self, name: str) -> bool:
        response = await self._request("HEAD", self._db_url(name), allowed=(404,))
        return response.status_code != 404

    async def create_database(self, name: str) -> bool:
        """Create a database. Returns False if it already existed."""
        response = await self._request("PUT", self._db_url(name), allowed=(412,))
        created = response.status_code != 412
        if created:
            logger.debug("Created database %s", name)
        return created

    async def delete_database(self, name: str) -> bool:
        """Delete a database. Returns False if it did not exist."""
        response = await self._request("DELETE", self._db_url(name), allowed=(404,))
        return response.status_code != 404

    async def initialize_database(
        self,
        name: str,
        design_documents: Sequence["DesignDocument"] = (),
    ) -> None:
        """Create the database if needed and install its design documents."""
        await self.create_database(name)
        for design_doc in design_documents:
            await self.ensure_design_document(name, design_doc)

    async def destroy_and_recreate(
        self,
        name: str,
        design_documents: Sequence["DesignDocument"] = (),
    ) -> None:
        """Drop every document of the database and reinstall its design docs."""
        await self.delete_database(name)
        await self.initialize_database(name, design_documents)

    # =========================================================================
    # Documents
    # =========================================================================

    async def get_document(self, name: str, doc_id: str) -> dict[str, Any] | None:
        response = await self._request(
            "GET", self._db_url(name, doc_id), allowed=(404,)
        )
        if response.status_code == 404:
            return None
        return response.json()

    async def put_document(self, name: str, doc: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "PUT", self._db_url(name, doc["_id"]), json=doc
        )
        return response.json()

    async def ensure_design_document(
        self, name: str, design_doc: "DesignDocument"
    ) -> bool:
        """
        Install a design document unless the stored one has the same versions.

        Returns:
            True if the design document was written
        """
        stored = await self.get_document(name, design_doc.id)
        if design_doc.is_current(stored):
            return False

        doc = design_doc.to_document()
        if stored is not None:
            doc["_rev"] = stored["_rev"]
        await self.put_document(name, doc)
        logger.debug("Installed %s in %s", design_doc.id, name)
        return True

    async def list_revisions(self, name: str) -> dict[str, str]:
        """Map every document id of the database to its current revision."""
        response = await self._request("GET", self._db_url(name, "_all_docs"))
        revisions: dict[str, str] = {}
        for row in response.json().get("rows", []):
            rev = (row.get("value") or {}).get("rev")
            if row.get("id") and rev:
                revisions[row["id"]] = rev
        return revisions

    async def bulk_write(
        self, name: str, docs: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """
        Write documents in one request.

        Per-document rejections (conflicts, validation) are returned in the
        result list, they do not raise.
        """
        response = await self._request(
            "POST", self._db_url(name, "_bulk_docs"), json={"docs": docs}
        )
        results = response.json()
        rejected = [r for r in results if "error" in r]
        if rejected:
            logger.warning(
                "%d of %d documents rejected by %s (first: %s)",
                len(rejected),
                len(docs),
                name,
                rejected[0].get("reason") or rejected[0].get("error"),
            )
        return results


def _error_fields(response: httpx.Response) -> tuple[str, str]:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase, response.text
    if not isinstance(body, dict):
        return response.reason_phrase, str(body)
    return str(body.get("error", response.reason_phrase)), str(body.get("reason", ""))


def create_couchdb_client(
    settings: Settings | StoreConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CouchDBClient:
    """Create a CouchDBClient from settings."""
    store = settings.store if isinstance(settings, Settings) else settings
    return CouchDBClient(
        url=store.url,
        username=store.username,
        password=store.password.get_secret_value(),
        timeout_seconds=store.timeout_seconds,
        max_retries=store.max_retries,
        transport=transport,
    )
