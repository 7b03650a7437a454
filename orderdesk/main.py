from __future__ import annotations

from typing import Optional

import strawberry
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from strawberry.fastapi import GraphQLRouter

from .aggregation import total_item_count
from .api.rest import auth_context, scope_for
from .api.rest import router as rest_router
from .api.stream import router as stream_router
from .container import build_container
from .domain import AuthContext, Order, OrderStatus, QueryState
from .errors import ForbiddenError, NotFoundError, TransportError, UnauthorizedError, ValidationError
from .lifecycle import build_timeline
from .logging import setup_logging
from .observability import configure_observability
from .services import OrderService, StatsService
from .settings import Settings, load_settings


@strawberry.type
class GraphQLTimelineStep:
    status: str
    label: str
    completed: bool
    current: bool
    upcoming: bool


@strawberry.type
class GraphQLOrder:
    id: str
    order_number: str
    customer_id: Optional[str]
    customer_name: str
    customer_email: str
    status: str
    item_count: int
    total: float
    tracking_number: Optional[str]
    created_at: str
    updated_at: str
    timeline: list[GraphQLTimelineStep]


@strawberry.type
class GraphQLOrderPage:
    items: list[GraphQLOrder]
    page: int
    page_size: int
    total_items: int
    total_pages: int


@strawberry.type
class GraphQLStatusBucket:
    status: str
    count: int
    total: float


@strawberry.type
class GraphQLOrderStats:
    total_orders: int
    total_revenue: float
    average_order_value: Optional[float]
    by_status: list[GraphQLStatusBucket]


def to_graphql_order(order: Order) -> GraphQLOrder:
    timeline = build_timeline(order.status)
    return GraphQLOrder(
        id=order.id,
        order_number=order.order_number,
        customer_id=order.customer_id,
        customer_name=order.customer.name,
        customer_email=order.customer.email,
        status=order.status.value,
        item_count=total_item_count(order),
        total=order.total,
        tracking_number=order.tracking_number,
        created_at=order.created_at.isoformat(),
        updated_at=order.updated_at.isoformat(),
        timeline=[
            GraphQLTimelineStep(
                status=step.status.value,
                label=step.label,
                completed=step.completed,
                current=step.current,
                upcoming=step.upcoming,
            )
            for step in timeline.steps
        ],
    )


def graphql_schema() -> strawberry.Schema:
    @strawberry.type
    class Query:
        @strawberry.field
        async def order(self, info: strawberry.Info, id: str) -> Optional[GraphQLOrder]:
            service: OrderService = info.context["container"].order_service
            try:
                order = await service.get_order(id, scope_for(info.context["auth"]))
            except NotFoundError:
                return None
            return to_graphql_order(order)

        @strawberry.field
        async def orders(
            self,
            info: strawberry.Info,
            search: str = "",
            status: Optional[str] = None,
            page: int = 1,
            page_size: int = 10,
        ) -> GraphQLOrderPage:
            container = info.context["container"]
            try:
                status_value = OrderStatus(status) if status else None
            except ValueError:
                status_value = None
            state = QueryState(search_term=search, status_filter=status_value, page=page, page_size=page_size)
            result = await container.order_service.query_orders(
                scope_for(info.context["auth"]), state, container.settings.viewer_timezone
            )
            return GraphQLOrderPage(
                items=[to_graphql_order(order) for order in result.items],
                page=result.page,
                page_size=result.page_size,
                total_items=result.total_items,
                total_pages=result.total_pages,
            )

        @strawberry.field
        async def order_stats(self, info: strawberry.Info, period_days: Optional[int] = None) -> GraphQLOrderStats:
            if not info.context["auth"].is_admin:
                raise ForbiddenError("Order stats are limited to admins")
            service: StatsService = info.context["container"].stats_service
            stats = await service.stats(period_days)
            return GraphQLOrderStats(
                total_orders=stats.total_orders,
                total_revenue=stats.total_revenue,
                average_order_value=stats.average_order_value,
                by_status=[
                    GraphQLStatusBucket(status=status, count=bucket.total_orders, total=bucket.total_spent)
                    for status, bucket in stats.by_status.items()
                ],
            )

    return strawberry.Schema(query=Query)


# Errors whose response body is a fixed message.
PLAIN_ERRORS = (
    (NotFoundError, 404, "Not found"),
    (UnauthorizedError, 401, "Unauthorized"),
    (ForbiddenError, 403, "Forbidden"),
)

# Errors that carry their own ``detail``.
DETAILED_ERRORS = (
    (ValidationError, 400),
    (TransportError, 502),
)


def install_error_handlers(app: FastAPI) -> None:
    def plain(status_code: int, message: str):
        async def handler(_: Request, __: Exception) -> JSONResponse:
            return JSONResponse(status_code=status_code, content={"detail": message})

        return handler

    def detailed(status_code: int):
        async def handler(_: Request, exc: Exception) -> JSONResponse:
            return JSONResponse(status_code=status_code, content={"detail": exc.detail})

        return handler

    for error, status_code, message in PLAIN_ERRORS:
        app.add_exception_handler(error, plain(status_code, message))
    for error, status_code in DETAILED_ERRORS:
        app.add_exception_handler(error, detailed(status_code))


def create_app(settings: Settings) -> FastAPI:
    setup_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        description="Order lifecycle service: status changes, order queries, bulk actions and aggregates.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    container = build_container(settings)
    app.state.container = container

    configure_observability(app, settings, engine=container.db.engine if container.db else None)
    install_error_handlers(app)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if container.db:
            container.db.dispose()

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get(settings.request_id_header, "") or container.id_provider.new_id()
        response = await call_next(request)
        response.headers[settings.request_id_header] = request_id
        return response

    async def graphql_context(request: Request, context: AuthContext = Depends(auth_context)):
        return {"container": request.app.state.container, "auth": context}

    app.include_router(GraphQLRouter(graphql_schema(), context_getter=graphql_context), prefix="/graphql")
    app.include_router(rest_router)
    app.include_router(rest_router, prefix="/v1")
    app.include_router(stream_router)

    return app


app = create_app(load_settings())
