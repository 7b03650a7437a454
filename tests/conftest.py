import asyncio
from datetime import datetime, timezone

import pytest

from orderdesk.clock import FixedClock
from orderdesk.domain import CustomerSnapshot, LineItem, Order, OrderStatus
from orderdesk.errors import TransportError
from orderdesk.gateway import ArtifactFactory, InMemoryEventBus, InMemoryOrderGateway
from orderdesk.id_provider import SequentialIdProvider

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def build_order(
    order_id="ord-1",
    *,
    status=OrderStatus.PENDING,
    number=None,
    name="Aarav Sharma",
    email="aarav@example.com",
    customer_id="cust-aarav",
    items=None,
    shipping_cost=0.0,
    tax=0.0,
    created_at=NOW,
):
    if items is None:
        items = [LineItem(product_ref="prod-mug", name="Stoneware Mug", unit_price=250, quantity=2)]
    subtotal = round(sum(item.line_total for item in items), 2)
    return Order(
        id=order_id,
        order_number=number or order_id.upper(),
        customer_id=customer_id,
        status=status,
        items=items,
        customer=CustomerSnapshot(name=name, email=email),
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total=round(subtotal + shipping_cost + tax, 2),
        created_at=created_at,
        updated_at=created_at,
    )


class FlakyGateway(InMemoryOrderGateway):
    """Fails status updates for chosen ids and, on demand, exports."""

    def __init__(self, clock, artifacts, orders=(), failing=()):
        super().__init__(clock, artifacts, orders)
        self.failing = set(failing)
        self.fail_exports = False
        self.exported = []

    async def update_order_status(self, order_id, status, note=None, tracking_number=None):
        if order_id in self.failing:
            raise TransportError("backend unavailable")
        return await super().update_order_status(order_id, status, note, tracking_number)

    async def bulk_export(self, order_ids):
        if self.fail_exports:
            raise TransportError("export service down")
        self.exported.append(list(order_ids))
        return await super().bulk_export(order_ids)


class GatedGateway(InMemoryOrderGateway):
    """Holds status updates and prints until ``release`` is set."""

    def __init__(self, clock, artifacts, orders=()):
        super().__init__(clock, artifacts, orders)
        self.release = None
        self.printed = []

    async def update_order_status(self, order_id, status, note=None, tracking_number=None):
        if self.release is not None:
            await self.release.wait()
        return await super().update_order_status(order_id, status, note, tracking_number)

    async def bulk_print(self, order_ids):
        if self.release is not None:
            await self.release.wait()
        self.printed.append(list(order_ids))
        return await super().bulk_print(order_ids)


class QueuedGateway(InMemoryOrderGateway):
    """Holds every status update on its own gate, in call order.

    Calls whose index is in ``failing_calls`` fail once released.
    """

    def __init__(self, clock, artifacts, orders=()):
        super().__init__(clock, artifacts, orders)
        self.gates = []
        self.failing_calls = set()

    async def update_order_status(self, order_id, status, note=None, tracking_number=None):
        call = len(self.gates)
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        if call in self.failing_calls:
            raise TransportError("backend unavailable")
        return await super().update_order_status(order_id, status, note, tracking_number)


@pytest.fixture
def make_order():
    return build_order


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def ids():
    return SequentialIdProvider("t")


@pytest.fixture
def events():
    return InMemoryEventBus()


@pytest.fixture
def artifacts(clock, ids):
    return ArtifactFactory("artifacts/test", clock, ids)


@pytest.fixture
def gateway(clock, artifacts):
    return InMemoryOrderGateway(clock, artifacts)


@pytest.fixture
def flaky_gateway(clock, artifacts):
    return FlakyGateway(clock, artifacts)


@pytest.fixture
def gated_gateway(clock, artifacts):
    return GatedGateway(clock, artifacts)


@pytest.fixture
def queued_gateway(clock, artifacts):
    return QueuedGateway(clock, artifacts)
