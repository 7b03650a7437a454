from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from .clock import Clock
from .domain import ArtifactKind, ArtifactRef, EventMessage, Order, OrderScope, OrderStatus
from .errors import NotFoundError
from .id_provider import IdProvider
from .lifecycle import set_status


class OrderGateway(Protocol):
    async def fetch_orders(self, scope: OrderScope) -> List[Order]: ...

    async def get_order(self, order_id: str) -> Order: ...

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Order: ...

    async def fetch_customer_order_history(self, customer_id: str) -> List[Order]: ...

    async def bulk_export(self, order_ids: Sequence[str]) -> ArtifactRef: ...

    async def bulk_print(self, order_ids: Sequence[str]) -> ArtifactRef: ...


class EventBus(Protocol):
    def publish(self, event: EventMessage) -> None: ...

    def subscribe(self) -> asyncio.Queue: ...

    def unsubscribe(self, queue: asyncio.Queue) -> None: ...


def newest_first(orders: Iterable[Order]) -> List[Order]:
    return sorted(orders, key=lambda order: order.created_at, reverse=True)


class ArtifactFactory:
    """Builds storage references for printed invoices and exports."""

    def __init__(self, prefix: str, clock: Clock, ids: IdProvider) -> None:
        self._prefix = prefix.rstrip("/")
        self._clock = clock
        self._ids = ids

    def build(self, kind: ArtifactKind, order_ids: Sequence[str]) -> ArtifactRef:
        return ArtifactRef(
            kind=kind,
            reference=f"{self._prefix}/{kind.value}/{self._ids.new_id()}",
            order_ids=list(order_ids),
            created_at=self._clock.now(),
        )


class InMemoryOrderGateway(OrderGateway):
    def __init__(self, clock: Clock, artifacts: ArtifactFactory, orders: Iterable[Order] = ()) -> None:
        self._clock = clock
        self._artifacts = artifacts
        self._orders: Dict[str, Order] = {order.id: order for order in orders}

    def add(self, order: Order) -> Order:
        self._orders[order.id] = order
        return order

    async def fetch_orders(self, scope: OrderScope) -> List[Order]:
        return newest_first(order for order in self._orders.values() if scope.includes(order))

    async def get_order(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if not order:
            raise NotFoundError(order_id)
        return order

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Order:
        order = await self.get_order(order_id)
        updated = set_status(
            order, status, changed_at=self._clock.now(), note=note, tracking_number=tracking_number
        )
        self._orders[order_id] = updated
        return updated

    async def fetch_customer_order_history(self, customer_id: str) -> List[Order]:
        return await self.fetch_orders(OrderScope.for_customer(customer_id))

    async def bulk_export(self, order_ids: Sequence[str]) -> ArtifactRef:
        return self._artifacts.build(ArtifactKind.EXPORT, order_ids)

    async def bulk_print(self, order_ids: Sequence[str]) -> ArtifactRef:
        return self._artifacts.build(ArtifactKind.PRINT, order_ids)


class InMemoryEventBus(EventBus):
    def __init__(self) -> None:
        self._subscribers: List[asyncio.Queue] = []

    def publish(self, event: EventMessage) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                continue

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
