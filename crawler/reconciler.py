"""
Bulk Result Reconciler - Turn a raw bulk response into a BatchOutcome.

The per-item scan is the source of truth. The batch-level "errors" flag is
missing in some protocol versions and stale in others, so it is only
cross-checked. Item errors arrive as a string (older protocol) or as an
object (newer protocol); both are normalized to a reason string here and
nothing downstream looks at the wire shape.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import ProtocolError
from .models import (
    BatchOutcome, BulkItemResult, BulkOperation, ErrorPayload, ItemFailure,
    OpaqueError, OpType, StructuredError
)


logger = logging.getLogger(__name__)

# Keys a per-item entry can be wrapped in; create/update are index-like
ITEM_OP_TYPES = {
    "index": OpType.INDEX,
    "create": OpType.INDEX,
    "update": OpType.INDEX,
    "delete": OpType.DELETE,
}


def to_error_payload(value: Any) -> Optional[ErrorPayload]:
    """Wrap a raw item error in the tagged union, None when absent."""
    if value is None:
        return None
    if isinstance(value, dict):
        return StructuredError(value)
    if isinstance(value, str):
        return OpaqueError(value)
    return OpaqueError(str(value))


def parse_item(raw_item: Any) -> BulkItemResult:
    """Normalize one entry of the response "items" array."""
    if not isinstance(raw_item, dict) or len(raw_item) != 1:
        raise ProtocolError(f"Malformed bulk item: {raw_item!r}", raw=raw_item)

    key, content = next(iter(raw_item.items()))
    op_type = ITEM_OP_TYPES.get(key)
    if op_type is None or not isinstance(content, dict):
        raise ProtocolError(f"Unknown bulk item type: {key!r}", raw=raw_item)

    status = content.get("status")
    payload = to_error_payload(content.get("error"))
    failed = bool(content.get("failed")) or payload is not None

    reason = None
    if failed:
        if payload is not None:
            reason = payload.reason()
        else:
            reason = content.get("failureMessage") or f"failed with status {status}"

    return BulkItemResult(
        op_type=op_type,
        id=content.get("_id"),
        failed=failed,
        failure_reason=reason,
        status=status if isinstance(status, int) else None,
        error=payload,
    )


def parse_response(raw: Any) -> Tuple[Optional[bool], List[BulkItemResult]]:
    """
    Split a raw response into its batch flag and normalized items.

    Raises:
        ProtocolError: not an object, or no items at all
    """
    if not isinstance(raw, dict):
        raise ProtocolError("Bulk response is not an object", raw=raw)

    items = raw.get("items")
    if not isinstance(items, list) or not items:
        raise ProtocolError("Bulk response carries no items", raw=raw)

    flag = raw.get("errors")
    return (flag if isinstance(flag, bool) else None), [parse_item(i) for i in items]


class BulkResultReconciler:
    """Pairs sent operations with per-item results by position."""

    def reconcile(self, sent_ops: Sequence[BulkOperation], raw: Dict[str, Any]) -> BatchOutcome:
        """
        Reconcile one batch.

        Args:
            sent_ops: Operations in the order they were serialized
            raw: Decoded bulk response

        Returns:
            BatchOutcome where every sent op is either succeeded or failed

        Raises:
            ProtocolError: the response does not mirror the request
        """
        errors_flag, items = parse_response(raw)

        if len(items) != len(sent_ops):
            raise ProtocolError(
                f"Bulk response has {len(items)} items for {len(sent_ops)} operations",
                raw=raw,
            )

        outcome = BatchOutcome()
        for op, item in zip(sent_ops, items):
            if item.op_type is not op.op_type:
                raise ProtocolError(
                    f"Item for {op.id} is {item.op_type.value}, sent {op.op_type.value}",
                    raw=raw,
                )
            if item.id is not None and item.id != op.id:
                logger.warning(f"Bulk item id {item.id} does not match sent id {op.id}")

            if item.failed:
                outcome.failed.append(ItemFailure(
                    op=op,
                    reason=item.failure_reason,
                    status=item.status,
                    error_type=item.error.error_type() if item.error is not None else None,
                ))
            else:
                outcome.succeeded.append(op)

        if errors_flag is not None and errors_flag != outcome.has_failures:
            logger.warning(
                f"Bulk errors flag is {errors_flag} but item scan found "
                f"{len(outcome.failed)} failures; trusting the items"
            )

        if outcome.has_failures:
            logger.warning(f"{len(outcome.failed)} of {len(sent_ops)} bulk items failed")
            logger.debug(outcome.failure_summary())

        return outcome
