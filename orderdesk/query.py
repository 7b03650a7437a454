"""Search, filter and paginate an already-fetched order collection.

Everything here is a pure function of the orders and a ``QueryState``.
Filtering keeps the input order; callers sort beforehand if they want
newest-first pages.
"""

from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from typing import Iterable, List, Optional, Sequence

from .domain import Order, OrderPage, QueryState, ensure_aware


def local_day(moment: datetime, tz: tzinfo) -> date:
    return ensure_aware(moment).astimezone(tz).date()


def matches_search(order: Order, term: str) -> bool:
    needle = term.strip().lower()
    if not needle:
        return True
    haystacks = (order.order_number, order.customer.name, order.customer.email)
    return any(needle in (value or "").lower() for value in haystacks)


def matches_date(order: Order, state: QueryState, tz: tzinfo) -> bool:
    if state.date_filter is None and state.date_from is None and state.date_to is None:
        return True
    day = local_day(order.created_at, tz)
    if state.date_filter is not None and day != state.date_filter:
        return False
    if state.date_from is not None and day < state.date_from:
        return False
    if state.date_to is not None and day > state.date_to:
        return False
    return True


def filter_orders(orders: Iterable[Order], state: QueryState, tz: Optional[tzinfo] = None) -> List[Order]:
    viewer_tz = tz or timezone.utc
    return [
        order
        for order in orders
        if matches_search(order, state.search_term)
        and (state.status_filter is None or order.status == state.status_filter)
        and matches_date(order, state, viewer_tz)
    ]


def total_pages(count: int, page_size: int) -> int:
    size = max(page_size, 1)
    return (count + size - 1) // size


def paginate(orders: Sequence[Order], page: int, page_size: int) -> OrderPage:
    page = max(page, 1)
    page_size = max(page_size, 1)
    start = (page - 1) * page_size
    return OrderPage(
        items=list(orders[start : start + page_size]),
        page=page,
        page_size=page_size,
        total_items=len(orders),
        total_pages=total_pages(len(orders), page_size),
    )


def run_query(orders: Iterable[Order], state: QueryState, tz: Optional[tzinfo] = None) -> OrderPage:
    return paginate(filter_orders(orders, state, tz), state.page, state.page_size)
