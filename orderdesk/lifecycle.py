"""Order status state machine and its timeline projection.

Any status may be set from any other status. Admins use the status
selector to correct mistakes (``delivered`` back to ``shipped``, say), so
no forward-only rule is applied here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from .domain import (
    TERMINAL_STATUSES,
    Order,
    OrderStatus,
    StatusHistoryEntry,
    StatusTimeline,
    TimelineStep,
)
from .errors import ValidationError

PROGRESS_SEQUENCE = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

NOT_ON_TIMELINE = -1

STEP_LABELS = {
    OrderStatus.PENDING: "Order Placed",
    OrderStatus.CONFIRMED: "Order Confirmed",
    OrderStatus.PROCESSING: "Processing",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.DELIVERED: "Delivered",
}


def parse_status(value: Union[OrderStatus, str]) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Invalid status: {value}") from exc


def progress_index(status: OrderStatus) -> int:
    try:
        return PROGRESS_SEQUENCE.index(status)
    except ValueError:
        return NOT_ON_TIMELINE


def build_timeline(status: OrderStatus) -> StatusTimeline:
    current = progress_index(status)
    on_timeline = current != NOT_ON_TIMELINE
    steps = []
    for index, step_status in enumerate(PROGRESS_SEQUENCE):
        steps.append(
            TimelineStep(
                status=step_status,
                label=STEP_LABELS[step_status],
                completed=on_timeline and index <= current,
                current=step_status == status,
                upcoming=on_timeline and index > current,
            )
        )
    return StatusTimeline(
        status=status,
        progress_index=current,
        terminal=status in TERMINAL_STATUSES,
        steps=steps,
    )


def set_status(
    order: Order,
    new_status: Union[OrderStatus, str],
    *,
    changed_at: datetime,
    note: Optional[str] = None,
    tracking_number: Optional[str] = None,
) -> Order:
    """Return ``order`` moved to ``new_status``.

    Re-applying the current status returns the same order untouched, so
    no history entry is added and ``updated_at`` does not move.
    """
    status = parse_status(new_status)
    if status == order.status and tracking_number in (None, order.tracking_number):
        return order

    entry = StatusHistoryEntry(
        status=status,
        changed_at=changed_at,
        note=note or f"Status updated to {status.value}",
    )
    update = {
        "status": status,
        "updated_at": changed_at,
        "status_history": [*order.status_history, entry],
    }
    if tracking_number is not None:
        update["tracking_number"] = tracking_number
    updated = order.model_copy(update=update)
    # model_copy skips validation; re-check the items rule for the new status.
    if not updated.items and status != OrderStatus.PENDING:
        raise ValidationError(f"Order {order.order_number} has no items and cannot leave pending")
    return updated
