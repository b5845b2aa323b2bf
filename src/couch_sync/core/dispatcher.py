"""
Run Dispatcher - Replicates every table of a run concurrently.

All tables start at once and interleave on the event loop. A table that fails
does not stop its siblings: the dispatcher waits for every table, then
reports the first failure it observed as the run's outcome.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from couch_sync.config import Settings
from couch_sync.connectors.base import SourceConnector, Table
from couch_sync.core.context import RunContext
from couch_sync.core.provisioner import (
    DocumentStore,
    ProvisionMode,
    TargetProvisioner,
)
from couch_sync.core.replicator import TableReplicator
from couch_sync.core.stats import (
    STATUS_TEXT_FAILURE,
    STATUS_TEXT_SUCCESS,
    STATUS_TEXT_WITH_MESSAGES,
    ProgressReporter,
    RunStatus,
    TableStats,
)


@dataclass
class RunResult:
    """Outcome of a run."""

    status: RunStatus
    status_text: str
    message: str
    copied: int = 0
    table_stats: dict[str, TableStats] = field(default_factory=dict)
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (RunStatus.SUCCEEDED, RunStatus.SUCCEEDED_WITH_ERRORS)

    @property
    def num_records(self) -> int:
        return sum(s.num_records for s in self.table_stats.values())


class RunDispatcher:
    """
    Launches one ``TableReplicator`` per table and aggregates the result.

    Example:
        dispatcher = RunDispatcher(connector, context, client, settings)
        result = await dispatcher.run()
        print(result.status_text)
    """

    def __init__(
        self,
        connector: SourceConnector,
        context: RunContext,
        store: DocumentStore,
        settings: Settings | None = None,
    ) -> None:
        self.connector = connector
        self.context = context
        self.store = store
        self.settings = settings or Settings()
        self.progress = ProgressReporter(context.run_stats, context)

    @property
    def logger(self) -> logging.Logger | logging.LoggerAdapter:
        return self.context.logger

    def build_provisioner(self) -> TargetProvisioner:
        options = self.settings.replication
        pipe = self.context.get_pipe()
        name_fn = self.connector.get_db_name

        mode = ProvisionMode.from_options(
            options.recreate_target_db and self.connector.recreate_target_db,
            options.update_existing_docs or self.connector.update_existing_docs,
        )
        return TargetProvisioner(
            self.store,
            mode=mode,
            prefix=self.connector.get_table_prefix(),
            db_name_override=(lambda table: name_fn(pipe, table)) if name_fn else None,
            custom_design_docs=self.connector.get_design_docs(pipe),
            type_field=options.type_field,
        )

    async def run(self, tables: list[Table] | None = None) -> RunResult:
        """
        Replicate ``tables`` (default: the pipe's selected tables).

        Returns:
            RunResult; never raises for table-level failures
        """
        run_stats = self.context.run_stats
        run_stats.num_records = 0
        run_stats.status = RunStatus.RUNNING
        run_stats.start_time = time.time()

        if tables is None:
            tables = self.context.get_source_tables()

        provisioner = self.build_provisioner()
        first_error: list[BaseException] = []

        async def replicate(table: Table) -> TableStats:
            self.logger.info("Starting processing table : %s", table.name)
            replicator = TableReplicator(
                self.connector,
                self.context,
                provisioner,
                self.progress,
                batch_size=self.settings.replication.batch_size,
                type_field=self.settings.replication.type_field,
            )
            try:
                stats = await replicator.replicate(table)
            except Exception as e:
                if not first_error:
                    first_error.append(e)
                self.logger.error("Processing of table %s failed: %s", table.name, e)
                raise
            self.logger.info(
                "Finished processing table %s",
                table.name,
                extra={"stats": stats.to_dict()},
            )
            run_stats.num_records += stats.num_records
            return stats

        results = await asyncio.gather(
            *(replicate(table) for table in tables),
            return_exceptions=True,
        )
        return self._finish(results, first_error[0] if first_error else None)

    def _finish(self, results: list[Any], error: BaseException | None) -> RunResult:
        run_stats = self.context.run_stats
        run_stats.end_time = time.time()

        has_errors = any(
            isinstance(stats, TableStats) and stats.has_errors for stats in results
        )

        if error is not None:
            run_stats.status = RunStatus.FAILED
            run_stats.status_text = STATUS_TEXT_FAILURE.format(error=error)
        elif has_errors:
            run_stats.status = RunStatus.SUCCEEDED_WITH_ERRORS
            run_stats.status_text = STATUS_TEXT_WITH_MESSAGES
        else:
            run_stats.status = RunStatus.SUCCEEDED
            run_stats.status_text = STATUS_TEXT_SUCCESS

        message = (
            f"Copied {run_stats.copied} records from "
            f"{self.connector.label} to CouchDB"
        )
        self.logger.info(message)
        self.context.set_step_message(message)

        return RunResult(
            status=run_stats.status,
            status_text=run_stats.status_text,
            message=message,
            copied=run_stats.copied,
            table_stats=dict(run_stats.table_stats),
            error=error,
        )
