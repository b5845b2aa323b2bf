"""Tests for the CouchDB HTTP client, against a mocked transport."""

import json

import httpx
import pytest

from couch_sync.config import Settings, StoreConfig
from couch_sync.connectors.couchdb_client import (
    CouchDBClient,
    CouchDBError,
    CouchDBRateLimitError,
    create_couchdb_client,
)
from couch_sync.connectors.base import Table
from couch_sync.core.provisioner import default_design_document


class FakeCouch:
    """Minimal CouchDB server behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.dbs: dict[str, dict[str, dict]] = {}
        self.requests: list[tuple[str, str]] = []
        self.responses: list[httpx.Response] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.strip("/").split("/", 1)
        db = path[0]
        rest = path[1] if len(path) > 1 else ""
        self.requests.append((request.method, request.url.path))

        if self.responses:
            return self.responses.pop(0)

        if not rest:
            if request.method == "HEAD":
                return httpx.Response(200 if db in self.dbs else 404)
            if request.method == "PUT":
                if db in self.dbs:
                    return httpx.Response(
                        412, json={"error": "file_exists", "reason": "exists"}
                    )
                self.dbs[db] = {}
                return httpx.Response(201, json={"ok": True})
            if request.method == "DELETE":
                if self.dbs.pop(db, None) is None:
                    return httpx.Response(404, json={"error": "not_found"})
                return httpx.Response(200, json={"ok": True})

        if db not in self.dbs:
            return httpx.Response(
                404, json={"error": "not_found", "reason": "Database does not exist."}
            )
        docs = self.dbs[db]

        if rest == "_all_docs":
            rows = [
                {"id": k, "key": k, "value": {"rev": v["_rev"]}}
                for k, v in sorted(docs.items())
            ]
            return httpx.Response(200, json={"total_rows": len(rows), "rows": rows})

        if rest == "_bulk_docs":
            results = []
            for doc in json.loads(request.content)["docs"]:
                doc_id = doc["_id"]
                stored = docs.get(doc_id)
                if stored and doc.get("_rev") != stored["_rev"]:
                    results.append(
                        {"id": doc_id, "error": "conflict", "reason": "Document update conflict."}
                    )
                    continue
                doc["_rev"] = _next_rev(stored)
                docs[doc_id] = doc
                results.append({"ok": True, "id": doc_id, "rev": doc["_rev"]})
            return httpx.Response(201, json=results)

        if request.method == "GET":
            if rest not in docs:
                return httpx.Response(404, json={"error": "not_found", "reason": "missing"})
            return httpx.Response(200, json=docs[rest])
        if request.method == "PUT":
            doc = json.loads(request.content)
            stored = docs.get(rest)
            if stored and doc.get("_rev") != stored["_rev"]:
                return httpx.Response(409, json={"error": "conflict", "reason": "rev"})
            doc["_rev"] = _next_rev(stored)
            docs[rest] = doc
            return httpx.Response(201, json={"ok": True, "id": rest, "rev": doc["_rev"]})

        return httpx.Response(405)


def _next_rev(stored: dict | None) -> str:
    generation = int(stored["_rev"].split("-")[0]) + 1 if stored else 1
    return f"{generation}-x"


@pytest.fixture
def couch() -> FakeCouch:
    return FakeCouch()


@pytest.fixture
def client(couch: FakeCouch) -> CouchDBClient:
    client = CouchDBClient(
        "http://couch.test:5984/", "admin", "secret", transport=httpx.MockTransport(couch)
    )
    client.retry_delay = 0
    return client


class TestDatabases:
    """Tests for database operations."""

    async def test_create_and_exists(self, client: CouchDBClient) -> None:
        async with client:
            assert await client.database_exists("orders") is False
            assert await client.create_database("orders") is True
            assert await client.create_database("orders") is False
            assert await client.database_exists("orders") is True

    async def test_delete_missing(self, client: CouchDBClient) -> None:
        async with client:
            assert await client.delete_database("nope") is False

    async def test_initialize_installs_design_doc(
        self, client: CouchDBClient, couch: FakeCouch
    ) -> None:
        design = default_design_document(Table(name="orders"))
        async with client:
            await client.initialize_database("orders", [design])
            # Same versions: no second write
            written = await client.ensure_design_document("orders", design)

        assert written is False
        stored = couch.dbs["orders"]["_design/orders"]
        assert stored["couch_sync_versions"] == {"views/orders": 2}

    async def test_design_doc_upgrade_keeps_rev(
        self, client: CouchDBClient, couch: FakeCouch
    ) -> None:
        couch.dbs["orders"] = {
            "_design/orders": {"_id": "_design/orders", "_rev": "1-old", "views": {}}
        }
        design = default_design_document(Table(name="orders"))
        async with client:
            assert await client.ensure_design_document("orders", design) is True

        assert couch.dbs["orders"]["_design/orders"]["_rev"] == "2-x"

    async def test_destroy_and_recreate(
        self, client: CouchDBClient, couch: FakeCouch
    ) -> None:
        couch.dbs["orders"] = {"a": {"_id": "a", "_rev": "1-a"}}
        design = default_design_document(Table(name="orders"))
        async with client:
            await client.destroy_and_recreate("orders", [design])

        assert list(couch.dbs["orders"]) == ["_design/orders"]


class TestDocuments:
    """Tests for document operations."""

    async def test_list_revisions(self, client: CouchDBClient, couch: FakeCouch) -> None:
        couch.dbs["orders"] = {
            "a": {"_id": "a", "_rev": "1-a"},
            "b": {"_id": "b", "_rev": "5-b"},
        }
        async with client:
            revisions = await client.list_revisions("orders")
        assert revisions == {"a": "1-a", "b": "5-b"}

    async def test_bulk_write_reports_conflicts(
        self, client: CouchDBClient, couch: FakeCouch
    ) -> None:
        couch.dbs["orders"] = {"a": {"_id": "a", "_rev": "1-a"}}
        async with client:
            results = await client.bulk_write(
                "orders", [{"_id": "a", "v": 1}, {"_id": "b", "v": 2}]
            )

        assert results[0]["error"] == "conflict"
        assert results[1]["ok"] is True
        assert couch.dbs["orders"]["b"]["v"] == 2

    async def test_bulk_write_reconciled_update(
        self, client: CouchDBClient, couch: FakeCouch
    ) -> None:
        couch.dbs["orders"] = {"a": {"_id": "a", "_rev": "1-a"}}
        async with client:
            results = await client.bulk_write("orders", [{"_id": "a", "_rev": "1-a"}])
        assert results == [{"ok": True, "id": "a", "rev": "2-x"}]

    async def test_missing_database_raises(self, client: CouchDBClient) -> None:
        async with client:
            with pytest.raises(CouchDBError) as exc_info:
                await client.bulk_write("nope", [{"_id": "a"}])
        assert exc_info.value.status == 404
        assert exc_info.value.reason == "Database does not exist."

    async def test_get_missing_document(self, client: CouchDBClient) -> None:
        async with client:
            await client.create_database("orders")
            assert await client.get_document("orders", "nope") is None


class TestRetries:
    """Tests for rate limiting and retry logic."""

    async def test_retries_after_rate_limit(
        self, client: CouchDBClient, couch: FakeCouch
    ) -> None:
        couch.responses.append(httpx.Response(429, headers={"Retry-After": "0"}))
        async with client:
            assert await client.create_database("orders") is True
        assert len(couch.requests) == 2

    async def test_rate_limit_exhausted(
        self, client: CouchDBClient, couch: FakeCouch
    ) -> None:
        couch.responses.extend(
            httpx.Response(429, headers={"Retry-After": "0"}) for _ in range(3)
        )
        async with client:
            with pytest.raises(CouchDBRateLimitError):
                await client.create_database("orders")

    async def test_transport_error_retried(self) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(201, json={"ok": True})

        client = CouchDBClient("http://couch.test", transport=httpx.MockTransport(handler))
        client.retry_delay = 0
        async with client:
            assert await client.create_database("orders") is True
        assert len(attempts) == 2

    async def test_transport_error_exhausted(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = CouchDBClient(
            "http://couch.test", max_retries=2, transport=httpx.MockTransport(handler)
        )
        client.retry_delay = 0
        async with client:
            with pytest.raises(CouchDBError, match="Connection error"):
                await client.create_database("orders")


class TestFactory:
    """Tests for create_couchdb_client()."""

    def test_from_settings(self) -> None:
        settings = Settings(
            store=StoreConfig(url="https://x.cloudant.com/", username="u", password="p")
        )
        client = create_couchdb_client(settings)
        assert client.url == "https://x.cloudant.com"
        assert client.username == "u"
        assert client.password == "p"

    def test_from_store_config(self) -> None:
        client = create_couchdb_client(StoreConfig(max_retries=5))
        assert client.max_retries == 5
