from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..bulk import BulkActionDispatcher
from ..container import Container
from ..deps import (
    get_auth_service,
    get_container,
    get_customer_service,
    get_dispatcher,
    get_order_service,
    get_settings,
    get_stats_service,
    get_views,
)
from ..domain import (
    AuthContext,
    BulkActionResult,
    BulkRequest,
    CustomerSummary,
    HealthStatus,
    LoginRequest,
    Order,
    OrderDetail,
    OrderPage,
    OrderScope,
    OrderStats,
    QueryState,
    SelectionToggle,
    StatusUpdate,
    TokenInput,
    TokenResponse,
    ViewBulkRequest,
    ViewState,
)
from ..errors import ForbiddenError
from ..lifecycle import parse_status
from ..services import AuthService, CustomerService, OrderService, StatsService
from ..settings import Settings, resolve_timezone
from ..views import OrderView, ViewRegistry

security = HTTPBearer()

router = APIRouter()


def auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    auth: AuthService = Depends(get_auth_service),
) -> AuthContext:
    return auth.verify_token(TokenInput(token=credentials.credentials))


def admin_context(context: AuthContext = Depends(auth_context)) -> AuthContext:
    if not context.is_admin:
        raise ForbiddenError()
    return context


def scope_for(context: AuthContext) -> OrderScope:
    if context.is_admin:
        return OrderScope.all_orders()
    return OrderScope.for_customer(context.sub)


def query_filters(
    search: Optional[str] = None,
    status: Optional[str] = None,
    on: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> Dict[str, Any]:
    """Only the filters the caller actually sent."""
    filters: Dict[str, Any] = {}
    if search is not None:
        filters["search_term"] = search
    if status is not None:
        filters["status_filter"] = parse_status(status) if status else None
    if on is not None:
        filters["date_filter"] = on
    if date_from is not None:
        filters["date_from"] = date_from
    if date_to is not None:
        filters["date_to"] = date_to
    if page is not None:
        filters["page"] = page
    if page_size is not None:
        filters["page_size"] = page_size
    return filters


@router.get("/health", response_model=HealthStatus)
async def health(container: Container = Depends(get_container)):
    return HealthStatus(status="ok", time=container.clock.now())


@router.post("/auth/login", response_model=TokenResponse)
async def login(payload: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.login(payload)


@router.get("/orders", response_model=OrderPage)
async def list_orders(
    filters: Dict[str, Any] = Depends(query_filters),
    tz: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    context: AuthContext = Depends(auth_context),
    service: OrderService = Depends(get_order_service),
):
    state = QueryState(**{"page_size": settings.default_page_size, **filters})
    viewer_tz = resolve_timezone(tz) if tz else settings.viewer_timezone
    return await service.query_orders(scope_for(context), state, viewer_tz)


@router.get("/orders/stats", response_model=OrderStats)
async def order_stats(
    period_days: Optional[int] = None,
    _: AuthContext = Depends(admin_context),
    service: StatsService = Depends(get_stats_service),
):
    return await service.stats(period_days)


@router.post("/orders/bulk", response_model=BulkActionResult)
async def bulk_action(
    payload: BulkRequest,
    _: AuthContext = Depends(admin_context),
    dispatcher: BulkActionDispatcher = Depends(get_dispatcher),
):
    return await dispatcher.dispatch(payload.action, payload.order_ids)


@router.get("/orders/{order_id}", response_model=OrderDetail)
async def get_order(
    order_id: str,
    context: AuthContext = Depends(auth_context),
    service: OrderService = Depends(get_order_service),
):
    return await service.get_detail(order_id, scope_for(context))


@router.put("/orders/{order_id}/status", response_model=Order)
async def update_order_status(
    order_id: str,
    payload: StatusUpdate,
    _: AuthContext = Depends(admin_context),
    service: OrderService = Depends(get_order_service),
):
    return await service.set_status(order_id, payload.status, payload.note, payload.tracking_number)


@router.get("/customers/{customer_id}/summary", response_model=CustomerSummary)
async def customer_summary(
    customer_id: str,
    _: AuthContext = Depends(admin_context),
    service: CustomerService = Depends(get_customer_service),
):
    return await service.summary(customer_id)


@router.get("/me/summary", response_model=CustomerSummary)
async def my_summary(
    context: AuthContext = Depends(auth_context),
    service: CustomerService = Depends(get_customer_service),
):
    return await service.summary(context.sub)


def owned_view(
    view_id: str,
    context: AuthContext = Depends(auth_context),
    views: ViewRegistry = Depends(get_views),
) -> OrderView:
    return views.get(view_id, owner=context.sub)


@router.post("/views", response_model=ViewState)
async def open_view(
    tz: Optional[str] = None,
    context: AuthContext = Depends(auth_context),
    views: ViewRegistry = Depends(get_views),
):
    view = await views.open(scope_for(context), owner=context.sub, tz=resolve_timezone(tz) if tz else None)
    return view.state()


@router.get("/views/{view_id}/orders", response_model=ViewState)
async def view_orders(
    refresh: bool = False,
    filters: Dict[str, Any] = Depends(query_filters),
    view: OrderView = Depends(owned_view),
):
    if refresh:
        await view.refresh()
    if filters:
        view.update_query(**filters)
    return view.state()


@router.post("/views/{view_id}/selection/toggle", response_model=ViewState)
async def toggle_selection(payload: SelectionToggle, view: OrderView = Depends(owned_view)):
    view.toggle(payload.order_id)
    return view.state()


@router.post("/views/{view_id}/selection/all", response_model=ViewState)
async def select_all(view: OrderView = Depends(owned_view)):
    view.select_all_visible()
    return view.state()


@router.delete("/views/{view_id}/selection", response_model=ViewState)
async def clear_selection(view: OrderView = Depends(owned_view)):
    view.clear_selection()
    return view.state()


@router.put("/views/{view_id}/orders/{order_id}/status", response_model=Order)
async def view_update_status(
    order_id: str,
    payload: StatusUpdate,
    _: AuthContext = Depends(admin_context),
    view: OrderView = Depends(owned_view),
):
    return await view.set_status(order_id, payload.status, payload.note, payload.tracking_number)


@router.post("/views/{view_id}/bulk", response_model=BulkActionResult)
async def view_bulk_action(
    payload: ViewBulkRequest,
    _: AuthContext = Depends(admin_context),
    view: OrderView = Depends(owned_view),
):
    return await view.run_bulk(payload.action)


@router.delete("/views/{view_id}", status_code=204)
async def close_view(
    view_id: str,
    context: AuthContext = Depends(auth_context),
    views: ViewRegistry = Depends(get_views),
):
    views.close(view_id, owner=context.sub)
    return Response(status_code=204)
