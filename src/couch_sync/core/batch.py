"""
Batch Accumulator - Groups records into bulk writes.

Records are pushed synchronously; once ``threshold`` records are pending the
batch is detached and written in the background, so the producer never waits
on the document store. Detached batches are written one at a time, in the
order they were filled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from couch_sync.config import DEFAULT_BATCH_SIZE
from couch_sync.connectors.base import Record


logger = logging.getLogger(__name__)

# Writes one detached batch to the store
BatchWriter = Callable[[list[Record]], Awaitable[Any]]

# Called after every write with (record count, error or None)
FlushCallback = Callable[[int, Exception | None], None]


class BatchAccumulator:
    """
    Pending records of one table.

    Not thread safe: all pushes for a table must come from the event loop
    thread.

    Example:
        batch = BatchAccumulator(db.bulk_write, on_flushed=record_flush)
        batch.push(record)
        batch.flush()               # writes only once threshold is reached
        batch.flush(force=True)     # writes whatever is pending
        await batch.drain()
    """

    def __init__(
        self,
        writer: BatchWriter,
        threshold: int = DEFAULT_BATCH_SIZE,
        on_flushed: FlushCallback | None = None,
    ) -> None:
        if threshold < 1:
            raise ValueError(f"Batch threshold must be positive: {threshold}")
        self.writer = writer
        self.threshold = threshold
        self.on_flushed = on_flushed
        self._records: list[Record] = []
        self._writes: list[asyncio.Task[None]] = []
        self._write_lock = asyncio.Lock()
        self.flush_count = 0

    @property
    def pending(self) -> int:
        """Number of records waiting for the next flush."""
        return len(self._records)

    @property
    def batch(self) -> tuple[Record, ...]:
        """Read-only view of the records waiting for the next flush."""
        return tuple(self._records)

    @property
    def writes_in_flight(self) -> int:
        return sum(1 for task in self._writes if not task.done())

    def push(self, record: Record) -> None:
        self._records.append(record)

    def flush(self, force: bool = False) -> int:
        """
        Detach the pending records and schedule their write.

        Args:
            force: Flush even if the threshold has not been reached

        Returns:
            Number of records scheduled, 0 if nothing was flushed
        """
        if not self._records:
            return 0
        if not force and len(self._records) < self.threshold:
            return 0

        batch, self._records = self._records, []
        self.flush_count += 1
        task = asyncio.get_running_loop().create_task(self._write(batch))
        self._writes.append(task)
        return len(batch)

    async def drain(self) -> None:
        """Wait until every scheduled write has completed."""
        while self._writes:
            writes, self._writes = self._writes, []
            await asyncio.gather(*writes)

    async def _write(self, batch: list[Record]) -> None:
        async with self._write_lock:
            error: Exception | None = None
            try:
                await self.writer(batch)
            except Exception as e:
                logger.warning("Bulk write of %d records failed: %s", len(batch), e)
                error = e
            if self.on_flushed:
                self.on_flushed(len(batch), error)
