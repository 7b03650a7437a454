from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .bulk import BulkActionDispatcher
from .clock import Clock, SystemClock
from .gateway import ArtifactFactory, InMemoryEventBus, InMemoryOrderGateway, OrderGateway
from .id_provider import IdProvider, UUIDProvider
from .logging import ServiceLogger
from .persistence.db import Database
from .persistence.gateway import SqlAlchemyOrderGateway
from .persistence.seed import seed_orders_if_empty
from .seed import load_order_seed
from .services import AuthService, CustomerService, OrderService, StatsService
from .settings import Settings
from .views import ViewRegistry


@dataclass
class Container:
    settings: Settings
    auth_service: AuthService
    order_service: OrderService
    customer_service: CustomerService
    stats_service: StatsService
    dispatcher: BulkActionDispatcher
    views: ViewRegistry
    gateway: OrderGateway
    event_bus: InMemoryEventBus
    clock: Clock
    id_provider: IdProvider
    db: Optional[Database] = None


def build_container(
    settings: Settings,
    *,
    clock: Optional[Clock] = None,
    ids: Optional[IdProvider] = None,
) -> Container:
    clock = clock or SystemClock()
    ids = ids or UUIDProvider()
    log = ServiceLogger("container")

    event_bus = InMemoryEventBus()
    artifacts = ArtifactFactory(settings.artifact_prefix, clock, ids)
    seed_orders = load_order_seed(settings.seed_path)
    db: Optional[Database] = None

    if settings.database_url:
        db = Database(settings.database_url, echo=settings.db_echo)
        db.create_tables()
        seed_orders_if_empty(db, seed_orders)
        gateway: OrderGateway = SqlAlchemyOrderGateway(db, clock, artifacts)
        log.info("Using SQL order gateway", seeded=len(seed_orders))
    else:
        gateway = InMemoryOrderGateway(clock, artifacts, seed_orders)
        log.info("Using in-memory order gateway", seeded=len(seed_orders))

    order_service = OrderService(gateway, event_bus, clock, ids)
    dispatcher = BulkActionDispatcher(gateway, event_bus, clock, ids)
    views = ViewRegistry(
        order_service,
        dispatcher,
        ids,
        clock,
        tz=settings.viewer_timezone,
        page_size=settings.default_page_size,
        idle_timeout=timedelta(seconds=settings.view_idle_seconds),
        max_views_per_owner=settings.max_views_per_owner,
    )

    return Container(
        settings=settings,
        auth_service=AuthService(settings, clock),
        order_service=order_service,
        customer_service=CustomerService(gateway),
        stats_service=StatsService(gateway, clock, settings.stats_period_days),
        dispatcher=dispatcher,
        views=views,
        gateway=gateway,
        event_bus=event_bus,
        clock=clock,
        id_provider=ids,
        db=db,
    )
