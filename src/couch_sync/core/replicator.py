"""
Table Replicator - Copies one table into its target database.

Each table goes through: provisioning -> streaming records pushed by the
connector -> draining the last batch -> done.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from couch_sync.config import DEFAULT_BATCH_SIZE, DEFAULT_TYPE_FIELD
from couch_sync.connectors.base import FetchStatus, Record, SourceConnector, Table
from couch_sync.core.batch import BatchAccumulator
from couch_sync.core.context import RunContext
from couch_sync.core.provisioner import (
    ProvisionError,
    ProvisionMode,
    TargetProvisioner,
)
from couch_sync.core.stats import ProgressReporter, TableStats


UPDATED_FROM_REV_FIELD = "updated_from_rev"


class TableState(str, Enum):
    """Lifecycle of a table within a run."""

    PROVISIONING = "provisioning"
    STREAMING = "streaming"
    DRAINING = "draining"
    DONE = "done"


class TableReplicator:
    """
    Replicates a single table.

    Example:
        replicator = TableReplicator(connector, context, provisioner, progress)
        stats = await replicator.replicate(table)
    """

    def __init__(
        self,
        connector: SourceConnector,
        context: RunContext,
        provisioner: TargetProvisioner,
        progress: ProgressReporter,
        batch_size: int = DEFAULT_BATCH_SIZE,
        type_field: str = DEFAULT_TYPE_FIELD,
    ) -> None:
        self.connector = connector
        self.context = context
        self.provisioner = provisioner
        self.progress = progress
        self.batch_size = batch_size
        self.type_field = type_field
        self.state = TableState.PROVISIONING
        self.batch: BatchAccumulator | None = None

    @property
    def logger(self) -> logging.Logger | logging.LoggerAdapter:
        return self.context.logger

    async def replicate(self, table: Table) -> TableStats:
        """
        Copy every record the connector produces for ``table``.

        Raises:
            ProvisionError: if the target database could not be prepared.
                The failure is also recorded in the table's stats.
        """
        run_stats = self.context.run_stats
        self.state = TableState.PROVISIONING

        try:
            target = await self.provisioner.provision(table)
        except ProvisionError as e:
            run_stats.add_table_stats(
                TableStats(
                    table_name=table.name,
                    table_label=table.display_label,
                    db_name=e.db_name or "",
                    errors=[str(e)],
                    status_message=str(e),
                )
            )
            self.state = TableState.DONE
            raise

        stats = TableStats(
            table_name=table.name,
            table_label=table.display_label,
            db_name=target.database.name,
        )
        run_stats.add_table_stats(stats)

        def on_flushed(count: int, error: Exception | None) -> None:
            if error is not None:
                stats.errors.append(str(error))
            self.progress.record_flush(count)

        batch = BatchAccumulator(
            target.database.bulk_write,
            threshold=self.batch_size,
            on_flushed=on_flushed,
        )
        self.batch = batch
        revisions = target.revisions
        reconcile = self.provisioner.mode == ProvisionMode.UPDATE_EXISTING

        finished: asyncio.Future[FetchStatus | None] = (
            asyncio.get_running_loop().create_future()
        )

        def push(records: Any) -> None:
            if records is None:
                return
            if isinstance(records, Mapping):
                records = [records]
            else:
                records = list(records)
            if finished.done():
                self.logger.warning(
                    "Fetch operation for data set %s pushed records after "
                    "signalling completion; %d records ignored",
                    table.name,
                    len(records),
                )
                return
            for record in records:
                if not isinstance(record, dict):
                    record = dict(record)
                if reconcile:
                    doc_id = record.get("_id")
                    if doc_id and doc_id in revisions:
                        record["_rev"] = revisions[doc_id]
                        record[UPDATED_FROM_REV_FIELD] = revisions[doc_id]
                stats.num_records += 1
                record[self.type_field] = table.name
                batch.push(record)
            # Threshold is checked once per push call
            batch.flush()

        def done(status: Any = None) -> None:
            if finished.done():
                self.logger.warning(
                    "Fetch operation for data set %s signalled completion twice",
                    table.name,
                )
                return
            finished.set_result(FetchStatus.coerce(status))

        self.state = TableState.STREAMING
        try:
            await self.connector.fetch_records(table, push, done, self.context)
        except Exception as e:
            self.logger.exception(
                "Fetch operation for data set %s raised an error", table.name
            )
            stats.errors.append(str(e))
            if not finished.done():
                finished.set_result(FetchStatus(error_status=str(e)))

        if not finished.done():
            # Producer finishes in the background; it still owes a done() call
            self.logger.debug(
                "Fetch operation for data set %s returned, waiting for completion",
                table.name,
            )
        status = await finished

        self.state = TableState.DRAINING
        self._apply_status(table, stats, status)

        # Remaining records are stored whatever the status
        batch.flush(force=True)
        await batch.drain()

        self.state = TableState.DONE
        run_stats.add_table_stats(stats)
        return stats

    def _apply_status(
        self, table: Table, stats: TableStats, status: FetchStatus | None
    ) -> None:
        if status is None:
            return
        if status.error_status:
            self.logger.warning(
                'Fetch operation for data set "%s" returned error status message: %s',
                table.name,
                status.error_status,
            )
            stats.status_message = status.error_status
        elif status.info_status:
            self.logger.info(
                "Fetch operation for data set %s returned status message: %s",
                table.name,
                status.info_status,
            )
            stats.status_message = status.info_status
