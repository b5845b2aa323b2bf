"""
Replication Engine - Main orchestration for a pipe run.

Runs the steps of a pipe in order:
- Connect to the data source
- Copy every selected table to the document store
- Any extra steps declared by the connector
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

from couch_sync.config import Settings
from couch_sync.connectors.base import SourceConnector
from couch_sync.connectors.couchdb_client import create_couchdb_client
from couch_sync.core.context import ProgressCallback, RunContext
from couch_sync.core.dispatcher import RunDispatcher, RunResult
from couch_sync.core.pipes import Pipe
from couch_sync.core.provisioner import DocumentStore
from couch_sync.core.stats import STATUS_TEXT_FAILURE, RunStats, RunStatus
from couch_sync.utils.logger import get_run_logger


class PipelineStep(ABC):
    """One step of a pipe run."""

    label: str = ""

    @abstractmethod
    async def run(self, context: RunContext) -> RunResult | None:
        """Execute the step. Raising marks the run as failed."""
        ...


class ConnectStep(PipelineStep):
    """Verify the data source can be reached."""

    def __init__(self, connector: SourceConnector) -> None:
        self.connector = connector
        self.label = f"Connecting to {connector.label}"

    async def run(self, context: RunContext) -> None:
        context.set_step_message(f"{self.label}...")
        await self.connector.connect(context)


class CopyToStoreStep(PipelineStep):
    """Replicate every selected table into the document store."""

    def __init__(
        self,
        connector: SourceConnector,
        store: DocumentStore,
        settings: Settings,
    ) -> None:
        self.connector = connector
        self.store = store
        self.settings = settings
        self.label = f"Moving data from {connector.label} to CouchDB"

    async def run(self, context: RunContext) -> RunResult:
        context.set_step_message(f"{self.label}...")
        dispatcher = RunDispatcher(self.connector, context, self.store, self.settings)
        return await dispatcher.run()


class ReplicationEngine:
    """
    Runs a pipe end to end.

    Example:
        engine = ReplicationEngine(settings, SQLiteSourceConnector("app.db"))

        result = await engine.run(
            pipe,
            on_progress=lambda pct, msg: print(f"{pct:.1f}% {msg}"),
        )
    """

    def __init__(
        self,
        settings: Settings,
        connector: SourceConnector,
        store: DocumentStore | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            settings: Application settings
            connector: Source of the records
            store: Document store; a CouchDB client built from settings if None
        """
        self.settings = settings
        self.connector = connector
        self.store = store

    def build_steps(self, store: DocumentStore) -> list[PipelineStep]:
        steps: list[PipelineStep] = [
            ConnectStep(self.connector),
            CopyToStoreStep(self.connector, store, self.settings),
        ]
        steps.extend(self.connector.extra_steps)
        return steps

    def build_context(
        self,
        pipe: Pipe,
        on_progress: ProgressCallback | None = None,
    ) -> RunContext:
        options = self.settings.replication
        tables = pipe.select_tables(options.tables, options.exclude_tables)
        return RunContext(
            pipe.model_copy(update={"tables": tables}),
            RunStats(),
            logger=get_run_logger(pipe.id),
            on_progress=on_progress,
        )

    async def run(
        self,
        pipe: Pipe,
        on_progress: ProgressCallback | None = None,
    ) -> RunResult:
        """
        Run every step of ``pipe``.

        Args:
            pipe: Pipe configuration (table selection)
            on_progress: Optional callback receiving (percent, message)

        Returns:
            RunResult of the copy step, or a failed result if a step raised
        """
        context = self.build_context(pipe, on_progress)
        context.run_stats.start_time = time.time()

        if self.store is not None:
            return await self._run_steps(context, self.store)

        async with create_couchdb_client(self.settings) as client:
            return await self._run_steps(context, client)

    async def _run_steps(self, context: RunContext, store: DocumentStore) -> RunResult:
        result: RunResult | None = None

        for step in self.build_steps(store):
            context.logger.info("Running step: %s", step.label)
            try:
                outcome: Any = await step.run(context)
            except Exception as e:
                context.logger.exception("Step '%s' failed", step.label)
                return self._failed(context, e)

            if isinstance(outcome, RunResult):
                result = outcome
                if result.status == RunStatus.FAILED:
                    break

        if result is None:
            return self._failed(context, RuntimeError("No copy step ran"))
        return result

    def _failed(self, context: RunContext, error: BaseException) -> RunResult:
        run_stats = context.run_stats
        run_stats.end_time = time.time()
        run_stats.status = RunStatus.FAILED
        run_stats.status_text = STATUS_TEXT_FAILURE.format(error=error)
        return RunResult(
            status=RunStatus.FAILED,
            status_text=run_stats.status_text,
            message=run_stats.status_text,
            copied=run_stats.copied,
            table_stats=dict(run_stats.table_stats),
            error=error,
        )
