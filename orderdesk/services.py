from __future__ import annotations

from datetime import timedelta, tzinfo
from typing import Any, Dict, List, Optional, Union

import jwt

from .aggregation import order_stats, rollup, total_item_count
from .clock import Clock
from .domain import (
    AuthContext,
    CustomerSummary,
    EventMessage,
    EventType,
    LoginRequest,
    Order,
    OrderDetail,
    OrderPage,
    OrderScope,
    OrderStats,
    OrderStatus,
    QueryState,
    Role,
    TokenInput,
    TokenResponse,
)
from .errors import NotFoundError, UnauthorizedError
from .gateway import EventBus, OrderGateway
from .id_provider import IdProvider
from .lifecycle import build_timeline, parse_status
from .logging import ServiceLogger
from .query import run_query
from .settings import Settings


class AuthService:
    def __init__(self, settings: Settings, clock: Clock) -> None:
        self._settings = settings
        self._clock = clock

    def login(self, payload: LoginRequest) -> TokenResponse:
        if payload.username != self._settings.admin_user or payload.password != self._settings.admin_password:
            raise UnauthorizedError()
        return self.issue_token(payload.username, Role.ADMIN)

    def issue_token(self, subject: str, role: Role) -> TokenResponse:
        expires = int(self._clock.now().timestamp()) + self._settings.token_ttl_seconds
        payload = {"sub": subject, "iss": self._settings.jwt_issuer, "exp": expires, "role": role.value}
        token = jwt.encode(payload, self._settings.jwt_secret, algorithm="HS256")
        return TokenResponse(access_token=token, expires_in=self._settings.token_ttl_seconds)

    def verify_token(self, payload: TokenInput) -> AuthContext:
        try:
            decoded = jwt.decode(
                payload.token,
                self._settings.jwt_secret,
                algorithms=["HS256"],
                issuer=self._settings.jwt_issuer,
            )
        except jwt.PyJWTError as exc:
            raise UnauthorizedError() from exc
        return AuthContext(**decoded)


class OrderService:
    def __init__(self, gateway: OrderGateway, events: EventBus, clock: Clock, ids: IdProvider) -> None:
        self._gateway = gateway
        self._events = events
        self._clock = clock
        self._ids = ids
        self._log = ServiceLogger("orders")

    async def list_orders(self, scope: OrderScope) -> List[Order]:
        return await self._gateway.fetch_orders(scope)

    async def query_orders(self, scope: OrderScope, state: QueryState, tz: Optional[tzinfo] = None) -> OrderPage:
        orders = await self._gateway.fetch_orders(scope)
        return run_query(orders, state, tz)

    async def get_order(self, order_id: str, scope: Optional[OrderScope] = None) -> Order:
        order = await self._gateway.get_order(order_id)
        if scope is not None and not scope.includes(order):
            # Other customers' orders are reported as missing.
            raise NotFoundError(order_id)
        return order

    async def get_detail(self, order_id: str, scope: Optional[OrderScope] = None) -> OrderDetail:
        order = await self.get_order(order_id, scope)
        return OrderDetail(order=order, timeline=build_timeline(order.status), item_count=total_item_count(order))

    async def set_status(
        self,
        order_id: str,
        status: Union[OrderStatus, str],
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Order:
        """Persist a status change and return the order as confirmed by the backend."""
        new_status = parse_status(status)
        previous = await self._gateway.get_order(order_id)
        updated = await self._gateway.update_order_status(order_id, new_status, note, tracking_number)
        if updated.status != previous.status:
            self._log.info(
                "Order status changed",
                order_id=order_id,
                previous=previous.status.value,
                status=updated.status.value,
            )
            self._publish_event(
                EventType.ORDER_STATUS_CHANGED,
                {
                    "order_id": order_id,
                    "customer_id": updated.customer_id,
                    "previous": previous.status.value,
                    "status": updated.status.value,
                },
            )
        return updated

    def _publish_event(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self._events.publish(
            EventMessage(
                id=self._ids.new_id(),
                type=event_type.value,
                timestamp=self._clock.now(),
                payload=payload,
            )
        )


class CustomerService:
    def __init__(self, gateway: OrderGateway, recent_limit: int = 5) -> None:
        self._gateway = gateway
        self._recent_limit = recent_limit

    async def summary(self, customer_id: str) -> CustomerSummary:
        history = await self._gateway.fetch_customer_order_history(customer_id)
        recent = sorted(history, key=lambda order: order.created_at, reverse=True)[: self._recent_limit]
        return CustomerSummary(customer_id=customer_id, rollup=rollup(history), recent_orders=recent)


class StatsService:
    def __init__(self, gateway: OrderGateway, clock: Clock, period_days: int = 30) -> None:
        self._gateway = gateway
        self._clock = clock
        self._period_days = period_days

    async def stats(self, period_days: Optional[int] = None) -> OrderStats:
        now = self._clock.now()
        days = period_days if period_days and period_days > 0 else self._period_days
        orders = await self._gateway.fetch_orders(OrderScope.all_orders())
        return order_stats(orders, since=now - timedelta(days=days), generated_at=now)
