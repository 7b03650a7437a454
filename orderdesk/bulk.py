from __future__ import annotations

from typing import Iterable, Mapping, Optional, Tuple

from opentelemetry import trace

from .clock import Clock
from .domain import (
    BulkAction,
    BulkActionResult,
    BulkFailure,
    EventMessage,
    EventType,
    ExportAction,
    FulfillAction,
    Order,
    OrderStatus,
    PrintAction,
    UpdateStatusAction,
)
from .errors import NotFoundError, TransportError, ValidationError
from .gateway import EventBus, OrderGateway
from .id_provider import IdProvider
from .logging import ServiceLogger

tracer = trace.get_tracer("orderdesk.bulk")


class BulkActionDispatcher:
    """Applies one bulk action to a snapshot of selected order ids.

    Status updates are reported per order: a transport failure on one id
    lands in ``failed`` and the rest of the batch still runs. Ids that no
    longer resolve to an order (deleted, or missing from ``known``) land
    in ``skipped``. Print and export hand the ids over unchanged and let
    transport failures propagate.
    """

    def __init__(self, gateway: OrderGateway, events: EventBus, clock: Clock, ids: IdProvider) -> None:
        self._gateway = gateway
        self._events = events
        self._clock = clock
        self._ids = ids
        self._log = ServiceLogger("bulk")

    async def dispatch(
        self,
        action: BulkAction,
        selection: Iterable[str],
        known: Optional[Mapping[str, Order]] = None,
    ) -> BulkActionResult:
        # Snapshot before the first await so later selection edits cannot leak in.
        order_ids: Tuple[str, ...] = tuple(dict.fromkeys(selection))
        if not order_ids:
            raise ValidationError("Nothing selected")

        with tracer.start_as_current_span("orders.bulk_dispatch") as span:
            span.set_attribute("orders.bulk.kind", action.kind)
            span.set_attribute("orders.bulk.count", len(order_ids))
            if isinstance(action, UpdateStatusAction):
                result = await self._update_status(action, order_ids, known)
            elif isinstance(action, FulfillAction):
                result = await self._fulfill(order_ids, known)
            elif isinstance(action, PrintAction):
                artifact = await self._gateway.bulk_print(list(order_ids))
                result = BulkActionResult(
                    kind=action.kind, requested=list(order_ids), succeeded=list(order_ids), artifact=artifact
                )
            elif isinstance(action, ExportAction):
                artifact = await self._gateway.bulk_export(list(order_ids))
                result = BulkActionResult(
                    kind=action.kind, requested=list(order_ids), succeeded=list(order_ids), artifact=artifact
                )
            else:
                raise ValidationError(f"Unsupported bulk action: {action!r}")
            span.set_attribute("orders.bulk.failed", len(result.failed))

        self._log.info(
            "Bulk action completed",
            kind=result.kind,
            requested=len(result.requested),
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            skipped=len(result.skipped),
        )
        self._events.publish(
            EventMessage(
                id=self._ids.new_id(),
                type=EventType.BULK_ACTION_COMPLETED.value,
                timestamp=self._clock.now(),
                payload={
                    "kind": result.kind,
                    "succeeded": result.succeeded,
                    "failed": result.failed_ids,
                    "skipped": result.skipped,
                },
            )
        )
        return result

    async def _update_status(
        self,
        action: UpdateStatusAction,
        order_ids: Tuple[str, ...],
        known: Optional[Mapping[str, Order]],
    ) -> BulkActionResult:
        result = BulkActionResult(kind=action.kind, requested=list(order_ids))
        note = action.note or f"Bulk status update to {action.status.value}"
        for order_id in order_ids:
            if known is not None and order_id not in known:
                result.skipped.append(order_id)
                continue
            await self._apply(order_id, action.status, note, result)
        return result

    async def _fulfill(
        self,
        order_ids: Tuple[str, ...],
        known: Optional[Mapping[str, Order]],
    ) -> BulkActionResult:
        result = BulkActionResult(kind=FulfillAction().kind, requested=list(order_ids))
        for order_id in order_ids:
            order = await self._resolve(order_id, known)
            if order is None or order.status != OrderStatus.PROCESSING:
                result.skipped.append(order_id)
                continue
            await self._apply(order_id, OrderStatus.SHIPPED, "Bulk fulfillment", result)
        return result

    async def _resolve(self, order_id: str, known: Optional[Mapping[str, Order]]) -> Optional[Order]:
        if known is not None:
            return known.get(order_id)
        try:
            return await self._gateway.get_order(order_id)
        except NotFoundError:
            return None

    async def _apply(self, order_id: str, status: OrderStatus, note: str, result: BulkActionResult) -> None:
        try:
            await self._gateway.update_order_status(order_id, status, note)
        except NotFoundError:
            result.skipped.append(order_id)
        except (TransportError, ValidationError) as exc:
            self._log.warning("Bulk status update failed", order_id=order_id, reason=exc.detail)
            result.failed.append(BulkFailure(order_id=order_id, reason=str(exc.detail)))
        else:
            result.succeeded.append(order_id)
