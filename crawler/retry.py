"""
Retry Coordinator - Decide what happens after a batch came back.

Acknowledged operations commit their crawl state. Transient failures go
back to the batcher with a bumped attempt counter, up to max_retries.
Permanent failures are reported and never committed, so the file is picked
up again by the next crawl. Connectivity loss escalates to the run.
"""

import dataclasses
import logging
import re
from typing import List, Sequence

from .errors import (
    ProtocolError, RunAbortedError, TransportAuthError, TransportConnectionError,
    TransportError, TransportTimeoutError, handle_error
)
from .models import (
    BatchOutcome, BulkOperation, CrawlStats, FailureClass, OpType
)
from .state import CrawlState


logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = {408, 429, 502, 503, 504}

# Matched against the error type only, never against the free-text reason
CONNECTIVITY_TYPES = (
    "connect_transport",
    "node_disconnected",
    "node_not_connected",
    "no_shard_available",
    "unavailable_shards",
)

TRANSIENT_TYPES = (
    "timeout",                      # process_cluster_event_timeout_exception
    "rejected_execution",
    "circuit_breaking",
    "too_many_requests",
)


def normalize_error_type(error_type: str | None) -> str:
    """
    Bring old and new protocol type names to one form.

    "org.elasticsearch.transport.ConnectTransportException" and
    "connect_transport_exception" both become "connect_transport_exception".
    """
    if not error_type:
        return ""
    name = error_type.rsplit(".", 1)[-1]
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", name).lower()


def classify_failure(status: int | None, error_type: str | None) -> FailureClass:
    """Map an item failure to TRANSIENT, CONNECTIVITY or PERMANENT."""
    kind = normalize_error_type(error_type)
    if kind and any(marker in kind for marker in CONNECTIVITY_TYPES):
        return FailureClass.CONNECTIVITY
    if status in TRANSIENT_STATUSES or (kind and any(marker in kind for marker in TRANSIENT_TYPES)):
        return FailureClass.TRANSIENT
    return FailureClass.PERMANENT


class RetryCoordinator:
    """
    Applies batch outcomes to crawl state and run statistics.

    Returns the operations to requeue; the batcher puts them at the front
    of its next batch.
    """

    def __init__(self, state: CrawlState, stats: CrawlStats, max_retries: int = 3):
        self._state = state
        self._stats = stats
        self._max_retries = max_retries
        self._protocol_failures = 0

    @property
    def stats(self) -> CrawlStats:
        return self._stats

    def on_outcome(self, outcome: BatchOutcome) -> List[BulkOperation]:
        """
        Commit successes and sort failures.

        Returns:
            Operations to send again

        Raises:
            RunAbortedError: every item lost connectivity and the retry
                budget is spent
        """
        self._protocol_failures = 0
        self._commit(outcome.succeeded)

        if not outcome.failed:
            return []

        classes = [classify_failure(f.status, f.error_type) for f in outcome.failed]
        if not outcome.succeeded and all(c is FailureClass.CONNECTIVITY for c in classes):
            ops = [f.op for f in outcome.failed]
            return self._retry_all(ops, RunAbortedError(
                f"All {len(ops)} items failed with connectivity errors: {outcome.failed[0].reason}"
            ))

        requeue: List[BulkOperation] = []
        for failure, failure_class in zip(outcome.failed, classes):
            if failure_class is FailureClass.PERMANENT:
                self._report(failure.op, failure.reason)
                continue
            retried = self._next_attempt(failure.op)
            if retried is None:
                self._report(
                    failure.op,
                    f"{failure.reason} (gave up after {failure.op.attempts + 1} attempts)",
                )
                continue
            requeue.append(retried)

        self._count_retries(requeue)
        return requeue

    def on_batch_error(self, batch: Sequence[BulkOperation], error: TransportError) -> List[BulkOperation]:
        """
        Handle a batch that produced no usable per-item result.

        Returns:
            Operations to send again (the whole batch)

        Raises:
            RunAbortedError: credentials rejected, protocol failure repeated,
                or connectivity retry budget spent
        """
        handle_error(error, context="bulk")
        if isinstance(error, ProtocolError) and error.raw is not None:
            logger.error(f"Raw bulk response: {error.raw!r}")

        if isinstance(error, TransportAuthError):
            raise RunAbortedError(str(error), cause=error)

        if isinstance(error, ProtocolError):
            self._protocol_failures += 1
            if self._protocol_failures > 1:
                raise RunAbortedError(f"Repeated malformed bulk responses: {error}", cause=error)
            requeue = [dataclasses.replace(op, attempts=op.attempts + 1) for op in batch]
            self._count_retries(requeue)
            return requeue

        if isinstance(error, (TransportConnectionError, TransportTimeoutError)):
            return self._retry_all(list(batch), RunAbortedError(
                f"Destination unreachable after {self._max_retries} retries: {error}", cause=error
            ))

        raise RunAbortedError(f"Unhandled transport failure: {error}", cause=error)

    def _retry_all(self, ops: List[BulkOperation], escalation: RunAbortedError) -> List[BulkOperation]:
        requeue = []
        for op in ops:
            retried = self._next_attempt(op)
            if retried is None:
                logger.error(str(escalation))
                raise escalation
            requeue.append(retried)
        self._count_retries(requeue)
        return requeue

    def _next_attempt(self, op: BulkOperation) -> BulkOperation | None:
        if op.attempts + 1 > self._max_retries:
            return None
        return dataclasses.replace(op, attempts=op.attempts + 1)

    def _count_retries(self, ops: List[BulkOperation]) -> None:
        if ops:
            self._stats.retried += len(ops)
            logger.info(f"Requeued {len(ops)} operations for retry")

    def _commit(self, ops: List[BulkOperation]) -> None:
        updates = [op.state for op in ops if op.state is not None]
        if updates:
            self._state.commit(updates)

        for op in ops:
            if op.op_type is OpType.DELETE:
                self._stats.deleted += 1
            else:
                self._stats.indexed += 1

    def _report(self, op: BulkOperation, reason: str) -> None:
        logger.warning(f"Not indexed: {op.op_type.value}/{op.id}: {reason}")
        self._stats.failed.append((op.id, op.op_type.value, reason))
