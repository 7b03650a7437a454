from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..container import Container
from ..deps import get_container
from ..domain import AuthContext, EventMessage
from .rest import auth_context

router = APIRouter()

KEEPALIVE_SECONDS = 15


def concerns_order(event: EventMessage, order_id: Optional[str]) -> bool:
    """True when ``event`` is about ``order_id``; every event matches no filter."""
    if not order_id:
        return True
    payload = event.payload
    if payload.get("order_id") == order_id:
        return True
    return any(order_id in payload.get(key, ()) for key in ("succeeded", "failed", "skipped"))


def visible_to(event: EventMessage, context: AuthContext) -> bool:
    """Admins see every event; customers only status changes of their own orders."""
    if context.is_admin:
        return True
    return event.payload.get("customer_id") == context.sub


async def event_stream(container: Container, context: AuthContext, order_id: Optional[str]) -> AsyncIterator[str]:
    queue = container.event_bus.subscribe()
    try:
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if not visible_to(event, context) or not concerns_order(event, order_id):
                continue
            yield f"event: {event.type}\ndata: {json.dumps(event.model_dump(mode='json'))}\n\n"
    finally:
        container.event_bus.unsubscribe(queue)


@router.get("/stream/orders")
async def stream_orders(
    order_id: Optional[str] = None,
    context: AuthContext = Depends(auth_context),
    container: Container = Depends(get_container),
):
    return StreamingResponse(event_stream(container, context, order_id), media_type="text/event-stream")
