"""Per-view order list state.

An ``OrderView`` owns the query state, the selection and the last
fetched orders for one admin or customer screen. Results of calls that
complete after ``close()`` are returned to the caller but never applied
to the view.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional, Union

from .bulk import BulkActionDispatcher
from .clock import Clock
from .domain import BulkAction, BulkActionResult, Order, OrderPage, OrderScope, OrderStatus, QueryState, ViewState
from .errors import NotFoundError
from .id_provider import IdProvider
from .lifecycle import parse_status
from .logging import ServiceLogger
from .query import run_query
from .selection import SelectionSet
from .services import OrderService


class OrderView:
    def __init__(
        self,
        view_id: str,
        scope: OrderScope,
        orders: OrderService,
        dispatcher: BulkActionDispatcher,
        *,
        owner: Optional[str] = None,
        tz: Optional[tzinfo] = None,
        page_size: int = 10,
    ) -> None:
        self.view_id = view_id
        self.scope = scope
        self.owner = owner
        self.query = QueryState(page_size=page_size)
        self.selection = SelectionSet()
        self._service = orders
        self._dispatcher = dispatcher
        self._tz = tz
        self._orders: List[Order] = []
        self._pending: Dict[str, OrderStatus] = {}
        # Newest in-flight status request per order.
        self._latest: Dict[str, int] = {}
        # Orders confirmed by an older request while a newer one is in flight.
        self._settled: Dict[str, Order] = {}
        self._tickets = itertools.count(1)
        self._alive = True
        self._log = ServiceLogger("views").bind(view_id=view_id)

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def orders(self) -> List[Order]:
        return list(self._orders)

    @property
    def pending(self) -> Dict[str, OrderStatus]:
        """Status changes sent to the backend and not yet confirmed."""
        return dict(self._pending)

    def order(self, order_id: str) -> Optional[Order]:
        return next((order for order in self._orders if order.id == order_id), None)

    async def refresh(self) -> List[Order]:
        orders = await self._service.list_orders(self.scope)
        if not self._alive:
            self._discard("refresh")
            return orders
        self._orders = orders
        return self.orders

    def page(self) -> OrderPage:
        return run_query(self._orders, self.query, self._tz)

    def update_query(self, **changes: Any) -> OrderPage:
        data = self.query.model_dump()
        data.update(changes)
        self.query = QueryState(**data)
        return self.page()

    def select_all_visible(self) -> List[str]:
        visible = self.page().visible_ids
        self.selection.select_all(visible)
        return visible

    def toggle(self, order_id: str) -> bool:
        return self.selection.toggle(order_id)

    def clear_selection(self) -> None:
        self.selection.clear()

    def is_all_selected(self) -> bool:
        return self.selection.is_all_selected(self.page().visible_ids)

    async def set_status(
        self,
        order_id: str,
        status: Union[OrderStatus, str],
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Order:
        """Change one order's status.

        The requested status stays in ``pending`` until the backend
        confirms that request. When several requests for the same order
        overlap, only the newest one decides what the view shows; older
        confirmations are kept aside in case the newest one fails. On
        failure the view keeps the last confirmed order and the error
        propagates.
        """
        new_status = parse_status(status)
        ticket = next(self._tickets)
        self._latest[order_id] = ticket
        self._pending[order_id] = new_status
        try:
            confirmed = await self._service.set_status(order_id, new_status, note, tracking_number)
        except Exception:
            if self._finish(order_id, ticket):
                fallback = self._settled.pop(order_id, None)
                if fallback is not None and self._alive:
                    self._merge(fallback)
            raise
        if not self._finish(order_id, ticket):
            self._settled[order_id] = confirmed
            return confirmed
        self._settled.pop(order_id, None)
        if not self._alive:
            self._discard("set_status", order_id=order_id)
            return confirmed
        self._merge(confirmed)
        return confirmed

    async def run_bulk(self, action: BulkAction) -> BulkActionResult:
        known = {order.id: order for order in self._orders}
        result = await self._dispatcher.dispatch(action, self.selection.snapshot(), known)
        if not self._alive:
            self._discard("bulk", kind=result.kind)
            return result
        if result.failed:
            self.selection.retain(result.failed_ids)
        else:
            self.selection.clear()
        await self.refresh()
        return result

    def close(self) -> None:
        self._alive = False

    def state(self) -> ViewState:
        page = self.page()
        return ViewState(
            view_id=self.view_id,
            scope=self.scope,
            query=self.query,
            page=page,
            selected_ids=self.selection.ids,
            all_selected=self.selection.is_all_selected(page.visible_ids),
            pending=self.pending,
        )

    def _finish(self, order_id: str, ticket: int) -> bool:
        """Settle request ``ticket``; True when it was the newest for the order."""
        if self._latest.get(order_id) != ticket:
            return False
        del self._latest[order_id]
        self._pending.pop(order_id, None)
        return True

    def _merge(self, confirmed: Order) -> None:
        self._orders = [confirmed if order.id == confirmed.id else order for order in self._orders]

    def _discard(self, operation: str, **context: Any) -> None:
        self._log.info("Discarding result for closed view", operation=operation, **context)


class ViewRegistry:
    """Open order views of one application instance, keyed by view id.

    Views unused for ``idle_timeout`` are closed the next time a view is
    opened, and an owner never holds more than ``max_views_per_owner``
    views: opening one more closes that owner's least recently used view.
    """

    def __init__(
        self,
        orders: OrderService,
        dispatcher: BulkActionDispatcher,
        ids: IdProvider,
        clock: Clock,
        *,
        tz: Optional[tzinfo] = None,
        page_size: int = 10,
        idle_timeout: timedelta = timedelta(minutes=30),
        max_views_per_owner: int = 20,
    ) -> None:
        self._orders = orders
        self._dispatcher = dispatcher
        self._ids = ids
        self._clock = clock
        self._tz = tz
        self._page_size = page_size
        self._idle_timeout = idle_timeout
        self._max_views_per_owner = max(max_views_per_owner, 1)
        self._views: Dict[str, OrderView] = {}
        self._last_used: Dict[str, datetime] = {}
        self._log = ServiceLogger("views")

    async def open(self, scope: OrderScope, owner: Optional[str] = None, tz: Optional[tzinfo] = None) -> OrderView:
        self.evict_idle()
        self._make_room(owner)
        view = OrderView(
            self._ids.new_id(),
            scope,
            self._orders,
            self._dispatcher,
            owner=owner,
            tz=tz or self._tz,
            page_size=self._page_size,
        )
        self._views[view.view_id] = view
        self._last_used[view.view_id] = self._clock.now()
        await view.refresh()
        return view

    def get(self, view_id: str, owner: Optional[str] = None) -> OrderView:
        view = self._views.get(view_id)
        if view is None or (owner is not None and view.owner != owner):
            raise NotFoundError()
        self._last_used[view_id] = self._clock.now()
        return view

    def close(self, view_id: str, owner: Optional[str] = None) -> None:
        self.get(view_id, owner)
        self._drop(view_id)

    def evict_idle(self) -> List[str]:
        cutoff = self._clock.now() - self._idle_timeout
        idle = [view_id for view_id, used in self._last_used.items() if used < cutoff]
        for view_id in idle:
            self._drop(view_id, reason="idle")
        return idle

    def _make_room(self, owner: Optional[str]) -> None:
        owned = [view_id for view_id, view in self._views.items() if view.owner == owner]
        owned.sort(key=lambda view_id: self._last_used[view_id])
        for view_id in owned[: max(len(owned) - self._max_views_per_owner + 1, 0)]:
            self._drop(view_id, reason="owner limit")

    def _drop(self, view_id: str, reason: Optional[str] = None) -> None:
        view = self._views.pop(view_id)
        self._last_used.pop(view_id, None)
        view.close()
        if reason:
            self._log.info("Closed view", view_id=view_id, owner=view.owner, reason=reason)

    def __contains__(self, view_id: str) -> bool:
        return view_id in self._views

    def __len__(self) -> int:
        return len(self._views)
