"""Tests for the table replicator."""

import asyncio
import logging

import pytest

from conftest import FakeStore, ListConnector, make_context, make_records

from couch_sync.connectors.base import FetchStatus, SourceConnector, Table
from couch_sync.core.provisioner import ProvisionError, ProvisionMode, TargetProvisioner
from couch_sync.core.replicator import TableReplicator, TableState
from couch_sync.core.stats import ProgressReporter


def make_replicator(
    connector: SourceConnector,
    store: FakeStore,
    mode: ProvisionMode = ProvisionMode.RECREATE,
    tables: tuple[str, ...] = ("orders",),
    batch_size: int = 200,
) -> TableReplicator:
    context = make_context(list(tables), expected=1000)
    return TableReplicator(
        connector,
        context,
        TargetProvisioner(store, mode),
        ProgressReporter(context.run_stats, context),
        batch_size=batch_size,
    )


class StatusConnector(SourceConnector):
    """Pushes a few records then reports a fixed status."""

    def __init__(self, status, count: int = 3) -> None:
        super().__init__()
        self.status = status
        self.count = count

    async def fetch_records(self, table, push, done, context) -> None:
        push(make_records(self.count))
        done(self.status)


class TestTableReplicator:
    """Tests for TableReplicator.replicate()."""

    async def test_copies_and_tags_records(self, store: FakeStore) -> None:
        """Test every record lands in the table's database with its type tag."""
        connector = ListConnector({"orders": make_records(5)})
        replicator = make_replicator(connector, store)

        stats = await replicator.replicate(Table(name="orders"))

        assert stats.num_records == 5
        assert stats.errors == []
        assert replicator.state == TableState.DONE
        docs = store.databases["orders"]
        assert len(docs) == 5
        assert all(doc["pt_type"] == "orders" for doc in docs.values())

    async def test_single_record_and_none_pushes(self, store: FakeStore) -> None:
        class OddPusher(SourceConnector):
            async def fetch_records(self, table, push, done, context) -> None:
                push({"_id": "one"})
                push(None)
                push([{"_id": "two"}])
                done()

        stats = await make_replicator(OddPusher(), store).replicate(Table(name="orders"))
        assert stats.num_records == 2
        assert set(store.databases["orders"]) == {"one", "two"}

    async def test_flushes_at_threshold(self, store: FakeStore) -> None:
        """Test 450 records in pushes of 150 flush as 300, then the remaining 150."""
        connector = ListConnector({"orders": make_records(450)}, chunk_size=150)
        replicator = make_replicator(connector, store)

        stats = await replicator.replicate(Table(name="orders"))

        assert stats.num_records == 450
        assert store.writes["orders"] == [300, 150]
        assert replicator.context.run_stats.copied == 450

    async def test_reconciles_existing_revisions(self, store: FakeStore) -> None:
        """Test known ids carry the stored revision and an updated-from marker."""
        store.seed("orders", {"doc-0": "4-abc"})
        connector = ListConnector({"orders": make_records(2)})
        replicator = make_replicator(connector, store, ProvisionMode.UPDATE_EXISTING)

        await replicator.replicate(Table(name="orders"))

        updated = store.databases["orders"]["doc-0"]
        assert updated["_rev"] == "4-abc"
        assert updated["updated_from_rev"] == "4-abc"
        fresh = store.databases["orders"]["doc-1"]
        assert "_rev" not in fresh
        assert "updated_from_rev" not in fresh

    async def test_no_reconcile_when_recreating(self, store: FakeStore) -> None:
        store.seed("orders", {"doc-0": "4-abc"})
        connector = ListConnector({"orders": make_records(1)})

        await make_replicator(connector, store).replicate(Table(name="orders"))

        assert "_rev" not in store.databases["orders"]["doc-0"]

    async def test_provision_failure_recorded(self, store: FakeStore) -> None:
        """Test a provisioning failure is raised and kept in the table stats."""
        store.fail_initialize.add("orders")
        connector = ListConnector({"orders": make_records(3)})
        replicator = make_replicator(connector, store)

        with pytest.raises(ProvisionError):
            await replicator.replicate(Table(name="orders"))

        stats = replicator.context.run_stats.table_stats["orders"]
        assert stats.num_records == 0
        assert len(stats.errors) == 1
        assert replicator.state == TableState.DONE
        assert "orders" not in store.writes

    async def test_write_failure_continues(self, store: FakeStore) -> None:
        store.fail_writes["orders"] = {0}
        connector = ListConnector({"orders": make_records(5)}, chunk_size=1)
        replicator = make_replicator(connector, store, batch_size=2)

        stats = await replicator.replicate(Table(name="orders"))

        assert store.writes["orders"] == [2, 2, 1]
        assert len(stats.errors) == 1
        assert stats.num_records == 5
        assert replicator.context.run_stats.copied == 5

    @pytest.mark.parametrize(
        "status",
        [
            "source unavailable",
            {"errorStatus": "source unavailable"},
            {"error_status": "source unavailable"},
            FetchStatus(error_status="source unavailable"),
        ],
    )
    async def test_error_status_normalized(
        self, store: FakeStore, caplog: pytest.LogCaptureFixture, status
    ) -> None:
        """Test every way of reporting an error ends up the same."""
        replicator = make_replicator(StatusConnector(status), store)

        with caplog.at_level(logging.INFO, logger="couch_sync"):
            stats = await replicator.replicate(Table(name="orders"))

        assert stats.status_message == "source unavailable"
        assert stats.errors == []
        # Remaining records are still written
        assert store.writes["orders"] == [3]
        warnings = [r for r in caplog.records if "source unavailable" in r.getMessage()]
        assert [r.levelno for r in warnings] == [logging.WARNING]

    async def test_info_status(
        self, store: FakeStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        replicator = make_replicator(
            StatusConnector({"infoStatus": "rate-limited, partial fetch"}), store
        )

        with caplog.at_level(logging.INFO, logger="couch_sync"):
            stats = await replicator.replicate(Table(name="orders"))

        assert stats.status_message == "rate-limited, partial fetch"
        assert not stats.has_errors
        levels = [
            r.levelno for r in caplog.records if "partial fetch" in r.getMessage()
        ]
        assert levels == [logging.INFO]

    async def test_done_twice_ignored(
        self, store: FakeStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        class Twice(SourceConnector):
            async def fetch_records(self, table, push, done, context) -> None:
                push({"_id": "x"})
                done({"infoStatus": "first"})
                done("second")

        with caplog.at_level(logging.WARNING, logger="couch_sync"):
            stats = await make_replicator(Twice(), store).replicate(Table(name="orders"))

        assert stats.status_message == "first"
        assert any("twice" in r.getMessage() for r in caplog.records)

    async def test_waits_for_deferred_done(self, store: FakeStore) -> None:
        """Test records pushed after fetch_records returns are still stored."""

        class Deferred(SourceConnector):
            async def fetch_records(self, table, push, done, context) -> None:
                async def produce() -> None:
                    await asyncio.sleep(0.01)
                    push(make_records(10))
                    done()

                self.task = asyncio.create_task(produce())

        connector = Deferred()
        replicator = make_replicator(connector, store)

        stats = await replicator.replicate(Table(name="orders"))

        assert stats.num_records == 10
        assert len(store.databases["orders"]) == 10
        assert store.writes["orders"] == [10]
        assert replicator.state == TableState.DONE

    async def test_push_after_done_ignored(
        self, store: FakeStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        class Late(SourceConnector):
            async def fetch_records(self, table, push, done, context) -> None:
                push({"_id": "early"})
                done()
                push(make_records(2))

        with caplog.at_level(logging.WARNING, logger="couch_sync"):
            stats = await make_replicator(Late(), store).replicate(Table(name="orders"))

        assert stats.num_records == 1
        assert set(store.databases["orders"]) == {"early"}
        assert sum(store.writes["orders"]) == 1
        assert any(
            "after signalling completion" in r.getMessage() for r in caplog.records
        )

    async def test_fetch_exception_recorded(self, store: FakeStore) -> None:
        class Broken(SourceConnector):
            async def fetch_records(self, table, push, done, context) -> None:
                push(make_records(2))
                raise RuntimeError("socket closed")

        stats = await make_replicator(Broken(), store).replicate(Table(name="orders"))

        assert stats.status_message == "socket closed"
        assert stats.errors == ["socket closed"]
        assert store.writes["orders"] == [2]
