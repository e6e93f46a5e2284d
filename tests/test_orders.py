"""Tests for order commands against the event store and read model."""

import pytest

from storefront import event_store, tracking
from storefront.errors import (
    AnchorMoveError,
    InvalidTrackingEventError,
    InvalidTransitionError,
    OrderNotFoundError,
)
from storefront.inventory import commands as inventory
from storefront.inventory import queries as inventory_queries
from storefront.messaging import ORDER_CHANNEL
from storefront.orders import commands, queries
from storefront.orders.events import LineItem

pytestmark = pytest.mark.anyio


async def place_order(session, redis, quantity=2):
    agg, _ = await commands.create_order(
        session,
        redis,
        user_id="user-1",
        user_email="jane@example.com",
        user_name="Jane Doe",
        product_id="tea",
        product_name="Calm Tea",
        quantity=quantity,
        total_amount=15.0 * quantity,
    )
    return agg.id


async def shipped_order(session, redis):
    order_id = await place_order(session, redis)
    await commands.confirm_payment(session, redis, order_id, "pi_1")
    await commands.ship_order(session, redis, order_id, carrier="UPS")
    return order_id


class TestCreateOrder:
    async def test_pending_row_written(self, session, redis):
        order_id = await place_order(session, redis)

        order = await queries.get_order(session, order_id)
        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["refund_status"] == "none"
        assert order["total_amount"] == 30.0
        assert redis.event_types(ORDER_CHANNEL) == ["OrderCreated"]

    async def test_events_recorded(self, session, redis):
        order_id = await place_order(session, redis)
        events = await event_store.load_events(session, order_id)
        assert [e["event_type"] for e in events] == ["OrderCreated"]
        assert events[0]["version"] == 1

    async def test_paid_order_written_in_one_step(self, session, redis):
        items = [
            LineItem(product_id="tea", name="Calm Tea", quantity=1, price=15.0),
            LineItem(product_id="oil", name="Lavender Oil", quantity=2, price=9.5),
        ]
        order_id = commands.new_cart_order_id()
        agg, events = await commands.create_paid_order(
            session,
            redis,
            order_id=order_id,
            user_id="user-1",
            user_email="jane@example.com",
            user_name="Jane Doe",
            product_id="cart_order",
            product_name="Cart Order - 2 items",
            quantity=3,
            total_amount=34.0,
            payment_intent_id="pi_cart",
            items=items,
        )

        assert [e.event_type for e in events] == ["OrderCreated", "OrderPaid"]
        order = await queries.get_order(session, order_id)
        assert order["status"] == "paid"
        assert order["payment_intent_id"] == "pi_cart"
        assert [i["product_id"] for i in order["items"]] == ["tea", "oil"]
        assert commands.is_cart_order(order_id)

    async def test_paid_order_cannot_be_created_twice(self, session, redis):
        order_id = commands.new_cart_order_id()
        kwargs = dict(
            order_id=order_id,
            user_id="user-1",
            user_email="jane@example.com",
            user_name="Jane Doe",
            product_id="cart_order",
            product_name="Calm Tea",
            quantity=1,
            total_amount=15.0,
            payment_intent_id=None,
        )
        await commands.create_paid_order(session, redis, **kwargs)
        with pytest.raises(InvalidTransitionError):
            await commands.create_paid_order(session, redis, **kwargs)

    async def test_unknown_order(self, session, redis):
        with pytest.raises(OrderNotFoundError):
            await commands.confirm_payment(session, redis, "missing")


class TestFulfillment:
    async def test_ship_seeds_timeline(self, session, redis):
        order_id = await shipped_order(session, redis)

        order = await queries.get_order(session, order_id)
        assert order["status"] == "shipped"
        info = order["tracking_info"]
        assert info["carrier"] == "UPS"
        assert info["tracking_number"] == tracking.default_tracking_number(order_id)
        locations = [e["location"] for e in info["tracking_history"]]
        assert locations == ["Quibble", "Distribution Center", "Customer"]

    async def test_ship_unpaid_rejected(self, session, redis):
        order_id = await place_order(session, redis)
        with pytest.raises(InvalidTransitionError):
            await commands.ship_order(session, redis, order_id, carrier="UPS")
        assert (await queries.get_order(session, order_id))["status"] == "pending"

    async def test_reship_keeps_history(self, session, redis):
        order_id = await shipped_order(session, redis)
        await commands.add_tracking_event(
            session,
            redis,
            order_id,
            tracking.TrackingEvent(id="extra", location="Local Depot", status="Arrived"),
        )

        _, events = await commands.ship_order(
            session, redis, order_id, carrier="DHL", tracking_number="DHL-9"
        )

        assert [e.event_type for e in events] == ["TrackingUpdated"]
        info = (await queries.get_order(session, order_id))["tracking_info"]
        assert info["tracking_number"] == "DHL-9"
        assert "extra" in [e["id"] for e in info["tracking_history"]]

    async def test_deliver_marks_destination(self, session, redis):
        order_id = await shipped_order(session, redis)
        await commands.deliver_order(session, redis, order_id)

        order = await queries.get_order(session, order_id)
        assert order["status"] == "delivered"
        assert order["tracking_info"]["status"] == "delivered"
        destination = order["tracking_info"]["tracking_history"][-1]
        assert destination["status"] == "Delivered"
        assert destination["timestamp"] is not None

    async def test_cancel_releases_reservation(self, session, redis):
        await inventory.get_stock(session, "tea")
        await inventory.reserve_stock(session, redis, "tea", 2)
        order_id = await place_order(session, redis, quantity=2)

        await commands.cancel_order(session, redis, order_id, "changed mind")

        assert (await queries.get_order(session, order_id))["status"] == "cancelled"
        stock = await inventory_queries.get_product_stock(session, "tea")
        assert stock["reserved_stock"] == 0

    async def test_cancel_paid_rejected(self, session, redis):
        order_id = await place_order(session, redis)
        await commands.confirm_payment(session, redis, order_id)
        with pytest.raises(InvalidTransitionError):
            await commands.cancel_order(session, redis, order_id)


class TestTimelineCommands:
    async def test_save_reordered_history(self, session, redis):
        order_id = await shipped_order(session, redis)
        current = (await queries.get_order(session, order_id))["tracking_info"]["tracking_history"]
        events = [tracking.TrackingEvent.model_validate(e) for e in current]

        info = await commands.save_tracking_history(session, redis, order_id, events)
        assert [e.location for e in info.tracking_history] == [
            "Quibble",
            "Distribution Center",
            "Customer",
        ]

    async def test_anchor_move_rejected_and_not_saved(self, session, redis):
        order_id = await shipped_order(session, redis)
        before = (await queries.get_order(session, order_id))["tracking_info"]
        events = [tracking.TrackingEvent.model_validate(e) for e in before["tracking_history"]]

        with pytest.raises(AnchorMoveError):
            await commands.save_tracking_history(
                session, redis, order_id, [events[2], events[0], events[1]]
            )
        await session.rollback()
        assert (await queries.get_order(session, order_id))["tracking_info"] == before

    async def test_edit_and_remove(self, session, redis):
        order_id = await shipped_order(session, redis)
        await commands.edit_tracking_event(session, redis, order_id, "2", status="Delayed")
        info = await commands.remove_tracking_event(session, redis, order_id, "2")
        assert [e.id for e in info.tracking_history] == ["1", "3"]

    async def test_order_without_tracking(self, session, redis):
        order_id = await place_order(session, redis)
        with pytest.raises(InvalidTrackingEventError):
            await commands.remove_tracking_event(session, redis, order_id, "1")


class TestOrderQueries:
    async def test_list_by_status_and_user(self, session, redis):
        first = await place_order(session, redis)
        second = await place_order(session, redis)
        await commands.confirm_payment(session, redis, second)

        assert [o["id"] for o in await queries.list_orders(session, status="paid")] == [second]
        assert {o["id"] for o in await queries.list_orders(session)} == {first, second}
        assert len(await queries.list_user_orders(session, "user-1")) == 2
        assert await queries.list_user_orders(session, "someone-else") == []
