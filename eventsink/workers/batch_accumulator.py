"""
Batch accumulator - buffers normalized events and writes them in one
transaction per flush.

A flush starts when the buffer reaches batch_size or when the periodic timer
fires with a non-empty buffer. Producers are never blocked: add() only
appends, and a flush swaps the buffer out before awaiting the database, so
events arriving mid-flush land in a fresh buffer.

On failure the whole snapshot is put back in front of anything that arrived
since, so it is retried as a unit ahead of newer events. There is no retry
cap and no backoff; the next size or timer trigger retries it.
"""
import asyncio
import logging
from typing import Optional

from eventsink.schemas.event_records import EventRecord, WebhookSource
from eventsink.services.persistence import PersistenceGateway
from eventsink.utils.errors import AccumulatorClosedError, BatchFlushError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_FLUSH_INTERVAL_MS = 5000

BufferedEvent = tuple[WebhookSource, EventRecord]


class BatchAccumulator:
    def __init__(
        self,
        gateway: PersistenceGateway,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if flush_interval_ms <= 0:
            raise ValueError("flush_interval_ms must be positive")
        self._gateway = gateway
        self.batch_size = batch_size
        self.flush_interval_ms = flush_interval_ms

        self._buffer: list[BufferedEvent] = []
        self._flush_lock = asyncio.Lock()
        self._flush_requested = False
        self._inflight: set[asyncio.Task] = set()
        self._timer_task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._closed = False
        self.consecutive_failures = 0

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def buffered(self) -> list[BufferedEvent]:
        return list(self._buffer)

    @property
    def state(self) -> str:
        if self._flush_lock.locked():
            return "flushing"
        return "accumulating" if self._buffer else "idle"

    @property
    def running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def closed(self) -> bool:
        """True from the moment stop() begins until the next start()."""
        return self._closed

    # === Producers ===

    def add(self, source: WebhookSource | str, record: EventRecord) -> None:
        """Buffer one record. Schedules a background flush once batch_size is reached.

        Raises:
            AccumulatorClosedError: stop() has been called; the record would never be flushed.
        """
        if self._closed:
            raise AccumulatorClosedError(
                f"accumulator stopped, {record.event_id} was not buffered"
            )
        self._buffer.append((WebhookSource(source), record))
        if len(self._buffer) >= self.batch_size and not self._flush_requested:
            self._flush_requested = True
            task = asyncio.get_running_loop().create_task(self.flush())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    # === Flushing ===

    async def _flush(self) -> int:
        """Write the current buffer. Re-queues the snapshot and raises on failure."""
        async with self._flush_lock:
            self._flush_requested = False
            if not self._buffer:
                return 0

            batch = self._buffer
            self._buffer = []
            for _, record in batch:
                record.mark_processed()

            try:
                written = await self._gateway.insert_batch(batch)
            except BaseException:
                self._buffer = batch + self._buffer
                self.consecutive_failures += 1
                raise

            self.consecutive_failures = 0
            return written

    async def flush(self) -> int:
        """Flush now. Failures are logged and re-queued, never raised."""
        try:
            return await self._flush()
        except Exception as e:
            logger.error(
                "Batch flush failed, %d events buffered for retry (consecutive failures: %d): %s",
                len(self._buffer), self.consecutive_failures, str(e),
                exc_info=True,
                extra={"batch_size": len(self._buffer)},
            )
            return 0

    async def _run_timer(self) -> None:
        interval = self.flush_interval_ms / 1000
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                if self._buffer:
                    await self.flush()

    # === Lifecycle ===

    async def start(self) -> None:
        """Start the periodic flush timer."""
        if self.running:
            return
        self._closed = False
        self._stopping = asyncio.Event()
        self._timer_task = asyncio.create_task(self._run_timer(), name="batch-flush-timer")
        logger.info(
            "Batch accumulator started (batch_size=%d, flush_interval_ms=%d)",
            self.batch_size, self.flush_interval_ms,
        )

    async def drain(self) -> int:
        """
        Wait for in-flight flushes, then flush whatever is left.
        Raises BatchFlushError if the final flush fails; the events stay buffered.
        """
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        try:
            return await self._flush()
        except Exception as e:
            raise BatchFlushError(len(self._buffer), e) from e

    async def stop(self) -> int:
        """Refuse new records, stop the timer (letting a running flush finish), then drain."""
        self._closed = True
        self._stopping.set()
        if self._timer_task is not None:
            await self._timer_task
            self._timer_task = None
        written = await self.drain()
        logger.info("Batch accumulator stopped, final flush wrote %d events", written)
        return written
