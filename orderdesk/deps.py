from __future__ import annotations

from fastapi import Depends, Request

from .bulk import BulkActionDispatcher
from .container import Container
from .services import AuthService, CustomerService, OrderService, StatsService
from .views import ViewRegistry


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_settings(container: Container = Depends(get_container)):
    return container.settings


def get_auth_service(container: Container = Depends(get_container)) -> AuthService:
    return container.auth_service


def get_order_service(container: Container = Depends(get_container)) -> OrderService:
    return container.order_service


def get_customer_service(container: Container = Depends(get_container)) -> CustomerService:
    return container.customer_service


def get_stats_service(container: Container = Depends(get_container)) -> StatsService:
    return container.stats_service


def get_dispatcher(container: Container = Depends(get_container)) -> BulkActionDispatcher:
    return container.dispatcher


def get_views(container: Container = Depends(get_container)) -> ViewRegistry:
    return container.views
