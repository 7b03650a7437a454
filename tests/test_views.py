import asyncio
import logging
from datetime import timedelta

import pytest

from orderdesk.bulk import BulkActionDispatcher
from orderdesk.domain import OrderScope, OrderStatus, PrintAction, UpdateStatusAction
from orderdesk.errors import NotFoundError, TransportError
from orderdesk.services import OrderService
from orderdesk.views import OrderView, ViewRegistry

from conftest import NOW


def seed(gateway, make_order, count=3):
    for n in range(1, count + 1):
        gateway.add(make_order(f"ord-{n}", created_at=NOW - timedelta(hours=n)))


def open_view(gateway, events, clock, ids, page_size=10):
    service = OrderService(gateway, events, clock, ids)
    dispatcher = BulkActionDispatcher(gateway, events, clock, ids)
    view = OrderView("view-1", OrderScope.all_orders(), service, dispatcher, owner="admin", page_size=page_size)
    asyncio.run(view.refresh())
    return view


def test_refresh_loads_newest_first(gateway, events, clock, ids, make_order):
    seed(gateway, make_order)
    view = open_view(gateway, events, clock, ids)
    assert [order.id for order in view.orders] == ["ord-1", "ord-2", "ord-3"]
    assert view.page().total_items == 3


def test_confirmed_status_is_merged(gateway, events, clock, ids, make_order):
    seed(gateway, make_order)
    view = open_view(gateway, events, clock, ids)

    confirmed = asyncio.run(view.set_status("ord-2", "Confirmed"))

    assert confirmed.status == OrderStatus.CONFIRMED
    assert view.order("ord-2").status == OrderStatus.CONFIRMED
    assert view.order("ord-2").status_history[-1].status == OrderStatus.CONFIRMED
    assert view.pending == {}


def test_failed_status_change_keeps_last_confirmed_order(flaky_gateway, events, clock, ids, make_order):
    seed(flaky_gateway, make_order)
    flaky_gateway.failing = {"ord-1"}
    view = open_view(flaky_gateway, events, clock, ids)

    with pytest.raises(TransportError):
        asyncio.run(view.set_status("ord-1", OrderStatus.SHIPPED))

    assert view.order("ord-1").status == OrderStatus.PENDING
    assert view.pending == {}


def test_in_flight_status_is_pending_and_dropped_after_close(gated_gateway, events, clock, ids, make_order, caplog):
    caplog.set_level(logging.INFO, logger="orderdesk.views")
    seed(gated_gateway, make_order)
    view = open_view(gated_gateway, events, clock, ids)

    async def scenario():
        gated_gateway.release = asyncio.Event()
        task = asyncio.create_task(view.set_status("ord-1", OrderStatus.CONFIRMED))
        await asyncio.sleep(0)
        in_flight = view.pending
        view.close()
        gated_gateway.release.set()
        return in_flight, await task

    in_flight, confirmed = asyncio.run(scenario())

    assert in_flight == {"ord-1": OrderStatus.CONFIRMED}
    assert confirmed.status == OrderStatus.CONFIRMED
    assert not view.alive
    assert view.order("ord-1").status == OrderStatus.PENDING
    assert view.pending == {}
    assert "Discarding result for closed view | view_id=view-1 | operation=set_status" in caplog.text


def test_partial_bulk_failure_keeps_failed_ids_selected(flaky_gateway, events, clock, ids, make_order):
    seed(flaky_gateway, make_order)
    flaky_gateway.failing = {"ord-2"}
    view = open_view(flaky_gateway, events, clock, ids)
    view.select_all_visible()

    result = asyncio.run(view.run_bulk(UpdateStatusAction(status=OrderStatus.CONFIRMED)))

    assert result.failed_ids == ["ord-2"]
    assert view.selection.ids == ["ord-2"]
    assert view.order("ord-1").status == OrderStatus.CONFIRMED
    assert view.order("ord-2").status == OrderStatus.PENDING


def test_successful_bulk_clears_selection_and_refreshes(gateway, events, clock, ids, make_order):
    seed(gateway, make_order)
    view = open_view(gateway, events, clock, ids)
    view.toggle("ord-1")
    view.toggle("ord-3")

    result = asyncio.run(view.run_bulk(UpdateStatusAction(status=OrderStatus.CANCELLED)))

    assert result.succeeded == ["ord-1", "ord-3"]
    assert view.selection.ids == []
    assert view.order("ord-1").status == OrderStatus.CANCELLED
    assert view.order("ord-2").status == OrderStatus.PENDING


def test_bulk_result_is_not_applied_to_closed_view(gated_gateway, events, clock, ids, make_order):
    seed(gated_gateway, make_order)
    view = open_view(gated_gateway, events, clock, ids)
    view.select_all_visible()

    async def scenario():
        gated_gateway.release = asyncio.Event()
        task = asyncio.create_task(view.run_bulk(PrintAction()))
        await asyncio.sleep(0)
        view.close()
        gated_gateway.release.set()
        return await task

    result = asyncio.run(scenario())

    assert result.succeeded == ["ord-1", "ord-2", "ord-3"]
    assert view.selection.ids == ["ord-1", "ord-2", "ord-3"]


def test_select_all_covers_the_visible_page_only(gateway, events, clock, ids, make_order):
    seed(gateway, make_order, count=5)
    view = open_view(gateway, events, clock, ids, page_size=2)

    assert view.select_all_visible() == ["ord-1", "ord-2"]
    assert view.is_all_selected()

    view.update_query(page=2)
    assert not view.is_all_selected()

    view.toggle("ord-3")
    view.toggle("ord-4")
    state = view.state()
    assert not state.all_selected
    assert state.selected_ids == ["ord-1", "ord-2", "ord-3", "ord-4"]

    view.select_all_visible()
    state = view.state()
    assert state.all_selected
    assert state.selected_ids == ["ord-3", "ord-4"]


def test_update_query_clamps_and_keeps_other_filters(gateway, events, clock, ids, make_order):
    seed(gateway, make_order)
    view = open_view(gateway, events, clock, ids)

    view.update_query(search_term="ORD-2")
    page = view.update_query(page=0)

    assert view.query.search_term == "ORD-2"
    assert page.page == 1
    assert page.visible_ids == ["ord-2"]


def test_registry_scopes_views_to_their_owner(gateway, events, clock, ids, make_order):
    seed(gateway, make_order)
    service = OrderService(gateway, events, clock, ids)
    registry = ViewRegistry(service, BulkActionDispatcher(gateway, events, clock, ids), ids, clock)

    view = asyncio.run(registry.open(OrderScope.all_orders(), owner="admin"))

    assert registry.get(view.view_id, owner="admin") is view
    assert len(view.orders) == 3
    with pytest.raises(NotFoundError):
        registry.get(view.view_id, owner="someone-else")

    registry.close(view.view_id, owner="admin")
    assert not view.alive
    assert len(registry) == 0
    with pytest.raises(NotFoundError):
        registry.get(view.view_id)


def start_two_status_changes(view, gateway):
    async def start():
        first = asyncio.create_task(view.set_status("ord-1", OrderStatus.CONFIRMED))
        await asyncio.sleep(0)
        second = asyncio.create_task(view.set_status("ord-1", OrderStatus.PROCESSING))
        await asyncio.sleep(0)
        assert len(gateway.gates) == 2
        return first, second

    return start()


def test_newer_status_stays_pending_when_older_one_confirms(queued_gateway, events, clock, ids, make_order):
    seed(queued_gateway, make_order)
    view = open_view(queued_gateway, events, clock, ids)

    async def scenario():
        first, second = await start_two_status_changes(view, queued_gateway)
        queued_gateway.gates[0].set()
        await first
        after_first = (view.pending, view.order("ord-1").status)
        queued_gateway.gates[1].set()
        await second
        return after_first

    pending, status = asyncio.run(scenario())

    assert pending == {"ord-1": OrderStatus.PROCESSING}
    assert status == OrderStatus.PENDING
    assert view.pending == {}
    assert view.order("ord-1").status == OrderStatus.PROCESSING


def test_late_confirmation_does_not_overwrite_newer_one(queued_gateway, events, clock, ids, make_order):
    seed(queued_gateway, make_order)
    view = open_view(queued_gateway, events, clock, ids)

    async def scenario():
        first, second = await start_two_status_changes(view, queued_gateway)
        queued_gateway.gates[1].set()
        await second
        queued_gateway.gates[0].set()
        return await first

    late = asyncio.run(scenario())

    assert late.status == OrderStatus.CONFIRMED
    assert view.order("ord-1").status == OrderStatus.PROCESSING
    assert view.pending == {}


def test_failed_newer_change_falls_back_to_older_confirmation(queued_gateway, events, clock, ids, make_order):
    seed(queued_gateway, make_order)
    queued_gateway.failing_calls = {1}
    view = open_view(queued_gateway, events, clock, ids)

    async def scenario():
        first, second = await start_two_status_changes(view, queued_gateway)
        queued_gateway.gates[0].set()
        await first
        queued_gateway.gates[1].set()
        await second

    with pytest.raises(TransportError):
        asyncio.run(scenario())

    assert view.order("ord-1").status == OrderStatus.CONFIRMED
    assert view.pending == {}


def test_tracking_number_reaches_the_view(gateway, events, clock, ids, make_order):
    gateway.add(make_order("ord-1", status=OrderStatus.PROCESSING))
    view = open_view(gateway, events, clock, ids)

    asyncio.run(view.set_status("ord-1", OrderStatus.SHIPPED, tracking_number="TRK-778812"))

    assert view.order("ord-1").tracking_number == "TRK-778812"


def registry_for(gateway, events, clock, ids, **limits):
    service = OrderService(gateway, events, clock, ids)
    return ViewRegistry(service, BulkActionDispatcher(gateway, events, clock, ids), ids, clock, **limits)


def test_idle_views_are_closed_when_another_opens(gateway, events, clock, ids, make_order):
    seed(gateway, make_order)
    registry = registry_for(gateway, events, clock, ids, idle_timeout=timedelta(minutes=30))

    stale = asyncio.run(registry.open(OrderScope.all_orders(), owner="admin"))
    used = asyncio.run(registry.open(OrderScope.all_orders(), owner="admin"))
    clock.advance(timedelta(minutes=20))
    registry.get(used.view_id, owner="admin")
    clock.advance(timedelta(minutes=20))
    fresh = asyncio.run(registry.open(OrderScope.all_orders(), owner="admin"))

    assert stale.view_id not in registry
    assert not stale.alive
    assert used.view_id in registry
    assert fresh.view_id in registry
    with pytest.raises(NotFoundError):
        registry.get(stale.view_id, owner="admin")


def test_owner_view_limit_closes_least_recently_used(gateway, events, clock, ids, make_order):
    seed(gateway, make_order)
    registry = registry_for(gateway, events, clock, ids, max_views_per_owner=2)

    first = asyncio.run(registry.open(OrderScope.all_orders(), owner="admin"))
    clock.advance(timedelta(minutes=1))
    second = asyncio.run(registry.open(OrderScope.all_orders(), owner="admin"))
    other = asyncio.run(registry.open(OrderScope.for_customer("cust-aarav"), owner="cust-aarav"))
    clock.advance(timedelta(minutes=1))
    registry.get(first.view_id, owner="admin")
    clock.advance(timedelta(minutes=1))
    third = asyncio.run(registry.open(OrderScope.all_orders(), owner="admin"))

    assert second.view_id not in registry
    assert not second.alive
    assert first.view_id in registry
    assert third.view_id in registry
    assert other.view_id in registry
    assert len(registry) == 3
