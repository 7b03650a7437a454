from __future__ import annotations

from typing import Iterable

from sqlalchemy import select

from ..domain import Order
from .db import Database
from .gateway import record_from_order
from .models import OrderRecord


def seed_orders_if_empty(db: Database, orders: Iterable[Order]) -> None:
    records = [record_from_order(order) for order in orders]
    if not records:
        return

    with db.session() as session:
        existing = session.execute(select(OrderRecord.id).limit(1)).first()
        if existing:
            return
        session.add_all(records)
