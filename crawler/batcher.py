"""
Bulk Batcher - Accumulate operations and ship them in bounded batches.

    Empty → Accumulating → (Full | TimerElapsed) → Flushing → Empty

The buffer is owned by the event loop: add(), the flush timer and the
sender task all run on it, and a flush takes and replaces the buffer with
no await in between. A flushed batch is an immutable tuple handed to a
single sender task, so at most one batch is in flight and batches reach
the destination in the order they were cut. The walker keeps adding to
the next batch while the previous one is on the wire.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Tuple

from .config import get_config, CrawlerConfig
from .errors import RunAbortedError, TransportError, TransportTimeoutError
from .models import BulkOperation
from .reconciler import BulkResultReconciler
from .retry import RetryCoordinator
from .transport import BaseTransport, serialize_batch


logger = logging.getLogger(__name__)

Batch = Tuple[BulkOperation, ...]


class BulkBatcher:
    """
    Size- and time-bounded bulk buffer with one in-flight batch.

    Usage:
        async with BulkBatcher(transport, coordinator, config) as batcher:
            batcher.add(op)
        # leaving the block flushes and waits for every batch (and retry)
    """

    def __init__(
        self,
        transport: BaseTransport,
        coordinator: RetryCoordinator,
        config: CrawlerConfig | None = None,
        reconciler: Optional[BulkResultReconciler] = None,
    ):
        self.config = config or get_config()
        self._transport = transport
        self._coordinator = coordinator
        self._reconciler = reconciler or BulkResultReconciler()

        # Operations that must share a batch are kept as one group
        self._groups: List[Batch] = []
        self._count = 0

        self._queue: Optional[asyncio.Queue] = None
        self._sender: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight: Optional[Batch] = None
        self._fatal: Optional[RunAbortedError] = None
        self._aborting = False
        self._running = False

        # Batches the destination answered with a usable bulk result
        self.batches_sent = 0

    # ═══════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════

    async def start(self) -> None:
        if self._running:
            return
        self._queue = asyncio.Queue()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bulk")
        self._sender = asyncio.create_task(self._send_loop())
        self._timer = asyncio.create_task(self._timer_loop())
        self._running = True

    async def close(self) -> None:
        """
        Flush everything, including retries, and stop.

        If the wait is interrupted (cancellation, escalation) the batcher
        aborts instead: batches still queued are dropped, not sent.

        Raises:
            RunAbortedError: the sender escalated during the run
        """
        if not self._running:
            return
        try:
            while True:
                self._raise_if_fatal()
                self.flush_all()
                await self._queue.join()
                self._raise_if_fatal()
                if not self._groups:
                    break
        except BaseException:
            await self.abort()
            raise
        await self._shutdown()

    async def abort(self) -> None:
        """
        Stop without sending anything new.

        The in-flight batch still finishes and is reconciled, so what the
        destination acknowledged gets committed. Buffered and queued
        operations are dropped uncommitted.
        """
        if not self._running:
            return
        self._aborting = True
        dropped = self._count
        self._groups.clear()
        self._count = 0
        while not self._queue.empty():
            batch = self._queue.get_nowait()
            dropped += len(batch)
            self._queue.task_done()
        if dropped:
            logger.warning(f"Aborting: {dropped} unsent operations dropped")
        await self._shutdown()

    async def _shutdown(self) -> None:
        self._timer.cancel()
        try:
            await self._timer
        except asyncio.CancelledError:
            pass
        self._queue.put_nowait(None)
        await self._sender
        self._executor.shutdown(wait=False)
        self._running = False

    async def __aenter__(self) -> "BulkBatcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.close()
        else:
            await self.abort()

    # ═══════════════════════════════════════════════════════════════════
    # Add / flush (loop thread only, never awaits)
    # ═══════════════════════════════════════════════════════════════════

    @property
    def pending(self) -> int:
        """Operations buffered and not yet flushed."""
        return self._count

    @property
    def in_flight(self) -> Optional[Batch]:
        return self._in_flight

    def add(self, op: BulkOperation) -> None:
        """Append one operation; flushes immediately when the batch is full."""
        self.add_group((op,))

    def add_group(self, ops: Iterable[BulkOperation]) -> None:
        """
        Append operations that must land in the same batch, in order.

        If the group does not fit in the current batch, the current batch is
        flushed first so the group starts the next one.
        """
        self._raise_if_fatal()
        if not self._running or self._aborting:
            raise RuntimeError("BulkBatcher is not running")

        group = tuple(ops)
        if not group:
            return
        if self._count and self._count + len(group) > self.config.bulk_size:
            self.flush()

        self._groups.append(group)
        self._count += len(group)

        while self._count >= self.config.bulk_size:
            self.flush()

    def requeue(self, ops: Iterable[BulkOperation]) -> None:
        """Put retried operations at the front of the next batch."""
        retried = [(op,) for op in ops]
        if not retried:
            return
        if self._aborting:
            logger.warning(f"Aborting: {len(retried)} retried operations dropped")
            return
        self._groups[:0] = retried
        self._count += len(retried)
        while self._count >= self.config.bulk_size:
            self.flush()

    def flush(self) -> bool:
        """
        Cut one batch of at most bulk_size operations and hand it to the sender.

        Returns:
            False when there was nothing to flush (no request is made)
        """
        if not self._groups:
            return False

        taken = 0
        size = 0
        for group in self._groups:
            if taken and size + len(group) > self.config.bulk_size:
                break
            taken += 1
            size += len(group)

        batch: Batch = tuple(op for group in self._groups[:taken] for op in group)
        self._groups = self._groups[taken:]
        self._count -= len(batch)

        self._queue.put_nowait(batch)
        logger.debug(f"Flushed batch of {len(batch)} ({self._count} still buffered)")
        return True

    def flush_all(self) -> int:
        """Flush until the buffer is empty. Returns the number of batches cut."""
        batches = 0
        while self.flush():
            batches += 1
        return batches

    def _raise_if_fatal(self) -> None:
        if self._fatal is not None:
            raise self._fatal

    # ═══════════════════════════════════════════════════════════════════
    # Background tasks
    # ═══════════════════════════════════════════════════════════════════

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.flush_interval)
            if self._groups and self._fatal is None:
                logger.debug(f"Flush interval elapsed with {self._count} buffered")
                self.flush_all()

    async def _send_loop(self) -> None:
        while True:
            batch = await self._queue.get()
            try:
                if batch is None:
                    return
                if self._fatal is not None or self._aborting:
                    continue
                await self._dispatch(batch)
            except RunAbortedError as e:
                self._fatal = e
            except Exception as e:
                logger.exception("Bulk sender failed")
                self._fatal = RunAbortedError(f"Bulk sender failed: {e}", cause=e)
            finally:
                self._queue.task_done()

    async def _dispatch(self, batch: Batch) -> None:
        loop = asyncio.get_running_loop()
        payload = serialize_batch(batch, self.config.index)
        self._in_flight = batch
        batch_failed = False

        try:
            try:
                raw = await asyncio.wait_for(
                    loop.run_in_executor(self._executor, self._transport.send, payload),
                    timeout=self.config.request_timeout,
                )
            except asyncio.TimeoutError:
                raise TransportTimeoutError(
                    f"Bulk request of {len(batch)} items timed out after {self.config.request_timeout}s"
                )
            outcome = self._reconciler.reconcile(batch, raw)
        except TransportError as e:
            batch_failed = True
            requeue = self._coordinator.on_batch_error(batch, e)
        else:
            self.batches_sent += 1
            requeue = self._coordinator.on_outcome(outcome)
        finally:
            self._in_flight = None

        if not requeue or self._aborting:
            return
        if batch_failed and self.config.retry_backoff > 0:
            attempts = max(op.attempts for op in requeue)
            await asyncio.sleep(self.config.retry_backoff * attempts)
        self.requeue(requeue)
