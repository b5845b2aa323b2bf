"""Run context handed to connectors and replication steps."""

from __future__ import annotations

import logging
from typing import Callable

from couch_sync.connectors.base import Table
from couch_sync.core.pipes import Pipe
from couch_sync.core.stats import RunStats


# Receives (percent complete, step message)
ProgressCallback = Callable[[float, str], None]


class RunContext:
    """
    What a step sees of the run it belongs to.

    Example:
        context = RunContext(pipe, RunStats(), on_progress=display.update)
        context.set_step_message("Connecting...")
    """

    def __init__(
        self,
        pipe: Pipe,
        run_stats: RunStats,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.pipe = pipe
        self.run_stats = run_stats
        self.logger = logger or logging.getLogger("couch_sync.run")
        self.on_progress = on_progress
        self.percent_completion = 0.0
        self.step_message = ""

    def get_pipe(self) -> Pipe:
        return self.pipe

    def get_source_tables(self) -> list[Table]:
        """Tables selected for this run."""
        return list(self.pipe.tables)

    def set_percent_completion(self, percent: float) -> None:
        self.percent_completion = percent
        self._publish()

    def set_step_message(self, message: str) -> None:
        self.step_message = message
        self._publish()

    def _publish(self) -> None:
        if self.on_progress:
            self.on_progress(self.percent_completion, self.step_message)
