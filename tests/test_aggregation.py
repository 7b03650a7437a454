from datetime import datetime, timedelta, timezone

from orderdesk.aggregation import (
    aggregate_by_segment,
    average_order_value,
    by_customer,
    collection_item_count,
    order_stats,
    rollup,
    total_item_count,
)
from orderdesk.domain import LineItem, OrderStatus

from conftest import NOW


def items(*quantities):
    return [LineItem(product_ref=f"p-{n}", name=f"Item {n}", unit_price=100, quantity=q) for n, q in enumerate(quantities)]


def test_total_item_count_sums_quantities(make_order):
    order = make_order(items=items(2, 3, 1))
    assert total_item_count(order) == 6


def test_total_item_count_is_zero_only_without_items(make_order):
    assert total_item_count(make_order(items=[])) == 0
    assert total_item_count(make_order(items=items(1))) == 1


def test_collection_item_count(make_order):
    orders = [make_order("ord-1", items=items(2)), make_order("ord-2", items=items(1, 4))]
    assert collection_item_count(orders) == 7
    assert collection_item_count([]) == 0


def test_average_order_value_of_nothing_is_not_applicable():
    assert average_order_value([]) is None


def test_average_order_value(make_order):
    orders = [make_order("ord-1", items=items(1)), make_order("ord-2", items=items(2))]
    assert average_order_value(orders) == 150.0


def test_rollup_for_customer_without_orders():
    summary = rollup([])
    assert summary.total_orders == 0
    assert summary.total_spent == 0
    assert summary.average_order_value is None
    assert summary.last_order_at is None
    assert not summary.has_ordered


def test_rollup_uses_latest_order_date(make_order):
    older = make_order("ord-1", created_at=NOW - timedelta(days=10))
    newest = make_order("ord-2", created_at=NOW)
    middle = make_order("ord-3", created_at=NOW - timedelta(days=3))
    summary = rollup([older, newest, middle])
    assert summary.total_orders == 3
    assert summary.total_spent == 1500.0
    assert summary.last_order_at == NOW
    assert summary.has_ordered


def test_aggregate_by_customer(make_order):
    orders = [
        make_order("ord-1", customer_id="cust-a"),
        make_order("ord-2", customer_id="cust-b"),
        make_order("ord-3", customer_id="cust-a"),
        make_order("ord-4", customer_id=None, email="Guest@Example.com"),
    ]
    segments = aggregate_by_segment(orders, by_customer)
    assert set(segments) == {"cust-a", "cust-b", "guest@example.com"}
    assert segments["cust-a"].total_orders == 2


def test_order_stats_excludes_cancelled_and_returned_revenue(make_order):
    orders = [
        make_order("ord-1", status=OrderStatus.DELIVERED, items=items(10)),
        make_order("ord-2", status=OrderStatus.CANCELLED, items=items(5)),
        make_order("ord-3", status=OrderStatus.RETURNED, items=items(5)),
        make_order("ord-4", status=OrderStatus.SHIPPED, items=items(2)),
        make_order("ord-old", status=OrderStatus.DELIVERED, items=items(50), created_at=NOW - timedelta(days=90)),
    ]
    stats = order_stats(orders, since=NOW - timedelta(days=30), generated_at=NOW)

    assert stats.total_orders == 4
    assert stats.total_revenue == 1200.0
    assert stats.average_order_value == 600.0
    assert stats.by_status["cancelled"].total_orders == 1
    assert "delivered" in stats.by_status
    assert stats.by_status["delivered"].total_spent == 1000.0


def test_order_stats_on_empty_window():
    stats = order_stats([], since=datetime(2026, 1, 1, tzinfo=timezone.utc), generated_at=NOW)
    assert stats.total_orders == 0
    assert stats.total_revenue == 0
    assert stats.average_order_value is None
    assert stats.by_status == {}
