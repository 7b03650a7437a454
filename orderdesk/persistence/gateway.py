from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Sequence

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select

from ..clock import Clock
from ..domain import (
    ArtifactKind,
    ArtifactRef,
    CustomerSnapshot,
    LineItem,
    Order,
    OrderScope,
    OrderStatus,
    PaymentStatus,
    ScopeKind,
    ShippingAddress,
    StatusHistoryEntry,
    ensure_aware,
)
from ..errors import NotFoundError
from ..gateway import ArtifactFactory
from ..lifecycle import set_status
from .db import Database
from .models import OrderItemRecord, OrderRecord, StatusHistoryRecord


def as_utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


def order_from_record(record: OrderRecord) -> Order:
    shipping_address = None
    if record.ship_street is not None:
        shipping_address = ShippingAddress(
            street=record.ship_street,
            city=record.ship_city or "",
            state=record.ship_state or "",
            zip_code=record.ship_zip_code or "",
            country=record.ship_country or "",
            phone=record.ship_phone,
        )
    return Order(
        id=record.id,
        order_number=record.order_number,
        customer_id=record.customer_id,
        status=OrderStatus(record.status),
        items=[
            LineItem(
                product_ref=item.product_ref,
                name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                image_ref=item.image_ref,
            )
            for item in record.items
        ],
        customer=CustomerSnapshot(name=record.customer_name, email=record.customer_email, phone=record.customer_phone),
        shipping_address=shipping_address,
        payment_method=record.payment_method,
        payment_status=PaymentStatus(record.payment_status),
        subtotal=record.subtotal,
        shipping_cost=record.shipping_cost,
        tax=record.tax,
        total=record.total,
        tracking_number=record.tracking_number,
        status_history=[
            StatusHistoryEntry(status=OrderStatus(entry.status), changed_at=entry.changed_at, note=entry.note)
            for entry in record.history
        ],
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def record_from_order(order: Order) -> OrderRecord:
    address = order.shipping_address
    return OrderRecord(
        id=order.id,
        order_number=order.order_number,
        customer_id=order.customer_id,
        status=order.status.value,
        customer_name=order.customer.name,
        customer_email=order.customer.email,
        customer_phone=order.customer.phone,
        ship_street=address.street if address else None,
        ship_city=address.city if address else None,
        ship_state=address.state if address else None,
        ship_zip_code=address.zip_code if address else None,
        ship_country=address.country if address else None,
        ship_phone=address.phone if address else None,
        payment_method=order.payment_method,
        payment_status=order.payment_status.value,
        subtotal=order.subtotal,
        shipping_cost=order.shipping_cost,
        tax=order.tax,
        total=order.total,
        tracking_number=order.tracking_number,
        created_at=as_utc(order.created_at),
        updated_at=as_utc(order.updated_at),
        items=[
            OrderItemRecord(
                position=position,
                product_ref=item.product_ref,
                name=item.name,
                unit_price=float(item.unit_price),
                quantity=item.quantity,
                image_ref=item.image_ref,
            )
            for position, item in enumerate(order.items)
        ],
        history=[
            StatusHistoryRecord(status=entry.status.value, changed_at=as_utc(entry.changed_at), note=entry.note)
            for entry in order.status_history
        ],
    )


class SqlAlchemyOrderGateway:
    """Order gateway over SQLAlchemy.

    Sessions are synchronous, so every call runs in the threadpool and a
    slow query never holds up the event loop.
    """

    def __init__(self, db: Database, clock: Clock, artifacts: ArtifactFactory) -> None:
        self._db = db
        self._clock = clock
        self._artifacts = artifacts

    def add(self, order: Order) -> Order:
        with self._db.session() as session:
            session.add(record_from_order(order))
        return order

    async def fetch_orders(self, scope: OrderScope) -> List[Order]:
        return await run_in_threadpool(self._load_orders, scope)

    async def get_order(self, order_id: str) -> Order:
        return await run_in_threadpool(self._load_order, order_id)

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Order:
        return await run_in_threadpool(self._store_status, order_id, status, note, tracking_number)

    async def fetch_customer_order_history(self, customer_id: str) -> List[Order]:
        return await self.fetch_orders(OrderScope.for_customer(customer_id))

    async def bulk_export(self, order_ids: Sequence[str]) -> ArtifactRef:
        return self._artifacts.build(ArtifactKind.EXPORT, order_ids)

    async def bulk_print(self, order_ids: Sequence[str]) -> ArtifactRef:
        return self._artifacts.build(ArtifactKind.PRINT, order_ids)

    def _load_orders(self, scope: OrderScope) -> List[Order]:
        with self._db.session() as session:
            stmt = select(OrderRecord).order_by(OrderRecord.created_at.desc())
            if scope.kind == ScopeKind.CUSTOMER:
                stmt = stmt.where(OrderRecord.customer_id == scope.customer_id)
            records = session.execute(stmt).scalars().all()
            return [order_from_record(record) for record in records]

    def _load_order(self, order_id: str) -> Order:
        with self._db.session() as session:
            record = session.get(OrderRecord, order_id)
            if not record:
                raise NotFoundError(order_id)
            return order_from_record(record)

    def _store_status(
        self,
        order_id: str,
        status: OrderStatus,
        note: Optional[str],
        tracking_number: Optional[str],
    ) -> Order:
        with self._db.session() as session:
            record = session.get(OrderRecord, order_id)
            if not record:
                raise NotFoundError(order_id)
            current = order_from_record(record)
            updated = set_status(
                current, status, changed_at=self._clock.now(), note=note, tracking_number=tracking_number
            )
            if updated is current:
                return current
            entry = updated.status_history[-1]
            record.status = updated.status.value
            record.tracking_number = updated.tracking_number
            record.updated_at = as_utc(updated.updated_at)
            record.history.append(
                StatusHistoryRecord(status=entry.status.value, changed_at=as_utc(entry.changed_at), note=entry.note)
            )
        return updated
