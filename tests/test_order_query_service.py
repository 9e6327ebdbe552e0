"""Tests for order listing, summaries and statistics."""

from decimal import Decimal

from vending_fulfillment.core.domain.model.errors import InvalidInput, NotFound
from vending_fulfillment.core.domain.model.order import OrderStatus
from vending_fulfillment.core.ports.inbound.order import ListOrdersQuery


def _three_orders(world):
    first = world.checkout("u-1")
    world.clock.advance(minutes=1)
    second = world.checkout("u-2", lines=(("P-WATER", "VM-002", "B1", 1),))
    world.clock.advance(minutes=1)
    third = world.checkout("u-1", lines=(("P-CHIPS", "VM-001", "A2", 1),))
    return first, second, third


class TestListOrders:
    def test_newest_first_by_default(self, world):
        first, second, third = _three_orders(world)
        orders = world.order_queries.list_orders(ListOrdersQuery()).unwrap()
        assert [o.order_id for o in orders] == [
            third.order_id,
            second.order_id,
            first.order_id,
        ]

    def test_filters_by_user_and_machine(self, world):
        first, second, third = _three_orders(world)
        mine = world.order_queries.list_orders(ListOrdersQuery(user_id="u-1")).unwrap()
        assert {o.order_id for o in mine} == {first.order_id, third.order_id}

        vm2 = world.order_queries.list_orders(ListOrdersQuery(machine_id="VM-002")).unwrap()
        assert [o.order_id for o in vm2] == [second.order_id]

    def test_filters_by_status(self, world):
        first, _, _ = _three_orders(world)
        world.order_service.cancel_order(first.order_id.value, "u-1", "bye").unwrap()
        cancelled = world.order_queries.list_orders(
            ListOrdersQuery(status="cancelled")
        ).unwrap()
        assert [o.order_id for o in cancelled] == [first.order_id]

    def test_pagination_and_amount_sort(self, world):
        _three_orders(world)
        page = world.order_queries.list_orders(
            ListOrdersQuery(offset=1, limit=1, sort_by="total_amount", sort_dir="asc")
        ).unwrap()
        assert len(page) == 1
        assert page[0].total_amount.amount == Decimal("29.50")

    def test_rejects_bad_parameters(self, world):
        for query in (
            ListOrdersQuery(offset=-1),
            ListOrdersQuery(limit=0),
            ListOrdersQuery(limit=101),
            ListOrdersQuery(sort_dir="up"),
            ListOrdersQuery(sort_by="name"),
            ListOrdersQuery(status="lost"),
        ):
            assert isinstance(world.order_queries.list_orders(query).failure(), InvalidInput)


class TestOrderSummary:
    def test_summary_flags(self, world):
        order = world.checkout()
        view = world.order_queries.get_order_summary(order.order_id.value, "u-1").unwrap()
        assert view.can_be_cancelled
        assert not view.is_completed
        assert view.total_items == 2
        assert view.machine_name == "Lobby Machine"
        assert view.items[0].total_price.amount == Decimal("80.00")

    def test_summary_after_dispense(self, world):
        order = world.checkout()
        world.order_service.mark_item_dispensed(order.order_id.value, "P-COLA", "A1").unwrap()
        view = world.order_queries.get_order_summary(order.order_id.value).unwrap()
        assert not view.can_be_cancelled
        assert view.items[0].dispensed

    def test_summary_scoped_to_owner(self, world):
        order = world.checkout()
        result = world.order_queries.get_order_summary(order.order_id.value, "u-2")
        assert isinstance(result.failure(), NotFound)


class TestOrderStats:
    def test_stats(self, world):
        first, _, _ = _three_orders(world)
        world.order_service.cancel_order(first.order_id.value, "u-1", "bye").unwrap()

        stats = world.order_queries.get_order_stats().unwrap()
        assert stats.total_orders == 3
        # 94.40 + 29.50 + 23.60
        assert stats.total_revenue == Decimal("147.50")
        assert stats.avg_order_value == Decimal("49.17")
        assert stats.pending_orders == 2
        assert stats.cancelled_orders == 1
        assert stats.by_status == {
            OrderStatus.PENDING.value: 2,
            OrderStatus.CANCELLED.value: 1,
        }

    def test_stats_scoped_to_user(self, world):
        _three_orders(world)
        stats = world.order_queries.get_order_stats(user_id="u-2").unwrap()
        assert stats.total_orders == 1
        assert stats.total_revenue == Decimal("29.50")

    def test_empty_stats(self, world):
        stats = world.order_queries.get_order_stats().unwrap()
        assert stats.total_orders == 0
        assert stats.avg_order_value == Decimal("0.00")
