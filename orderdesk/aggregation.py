"""Display aggregates derived from orders.

Reducers return ``None`` rather than dividing by zero or calling ``max``
on an empty sequence: ``average_order_value`` is ``None`` for no orders
and ``OrderRollup.last_order_at`` is ``None`` for a customer who never
ordered.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from .domain import Order, OrderRollup, OrderStats, OrderStatus, ensure_aware

# Excluded from revenue figures.
NON_REVENUE_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.RETURNED})


def total_item_count(order: Order) -> int:
    return sum(item.quantity for item in order.items)


def collection_item_count(orders: Iterable[Order]) -> int:
    return sum(total_item_count(order) for order in orders)


def average_order_value(orders: Iterable[Order]) -> Optional[float]:
    totals = [order.total for order in orders]
    if not totals:
        return None
    return round(sum(totals) / len(totals), 2)


def rollup(orders: Iterable[Order]) -> OrderRollup:
    collected = list(orders)
    last_order_at = max((order.created_at for order in collected), default=None)
    return OrderRollup(
        total_orders=len(collected),
        total_spent=round(sum(order.total for order in collected), 2),
        average_order_value=average_order_value(collected),
        last_order_at=last_order_at,
    )


def aggregate_by_segment(orders: Iterable[Order], key: Callable[[Order], str]) -> Dict[str, OrderRollup]:
    segments: Dict[str, List[Order]] = {}
    for order in orders:
        segments.setdefault(key(order), []).append(order)
    return {segment: rollup(members) for segment, members in segments.items()}


def by_customer(order: Order) -> str:
    return order.customer_id or order.customer.email.lower()


def by_status(order: Order) -> str:
    return order.status.value


def order_stats(orders: Iterable[Order], *, since: datetime, generated_at: datetime) -> OrderStats:
    window = [order for order in orders if order.created_at >= ensure_aware(since)]
    revenue_orders = [order for order in window if order.status not in NON_REVENUE_STATUSES]
    return OrderStats(
        period_start=since,
        generated_at=generated_at,
        total_orders=len(window),
        total_revenue=round(sum(order.total for order in revenue_orders), 2),
        average_order_value=average_order_value(revenue_orders),
        by_status=aggregate_by_segment(window, by_status),
    )
