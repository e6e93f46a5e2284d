"""Tests for user notifications and the unread count cache."""

import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import text

from storefront.errors import NotificationNotFoundError
from storefront.notifications import commands, queries
from storefront.notifications.cache import NotificationCountCache
from storefront.notifications.dispatcher import build_notifications, dispatch_events
from storefront.notifications.subscriber import parse_message
from storefront.orders.events import (
    OrderCreated,
    OrderPaid,
    OrderShipped,
    RefundRejected,
)

pytestmark = pytest.mark.anyio

APP = "test-app"
NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def notify(session, cache, user_id="user-1", title="Order Shipped"):
    return await commands.create_notification(
        session, cache, APP, user_id, "store_shipping", title, "On its way"
    )


def created(order_id="order-1"):
    return OrderCreated(
        order_id=order_id,
        user_id="user-1",
        user_email="jane@example.com",
        user_name="Jane",
        product_id="tea",
        product_name="Calm Tea",
        quantity=2,
        total_amount=30.0,
        timestamp=NOW,
    )


def paid(order_id="order-1"):
    return OrderPaid(
        order_id=order_id,
        user_id="user-1",
        product_name="Calm Tea",
        amount=30.0,
        timestamp=NOW,
    )


class TestCountCache:
    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = NotificationCountCache(ttl=300, clock=clock)
        cache.set(APP, "user-1", 4)

        clock.now = 299
        assert cache.get(APP, "user-1") == 4
        clock.now = 300
        assert cache.get(APP, "user-1") is None

    def test_keys_are_per_tenant(self):
        cache = NotificationCountCache()
        cache.set(APP, "user-1", 4)
        assert cache.get("other-app", "user-1") is None

    def test_invalidate(self):
        cache = NotificationCountCache()
        cache.set(APP, "user-1", 4)
        cache.invalidate(APP, "user-1")
        assert cache.get(APP, "user-1") is None


class TestUnreadCount:
    async def test_count_is_cached(self, session, cache):
        await notify(session, cache)
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 1
        assert cache.get(APP, "user-1") == 1

    async def test_mutations_invalidate(self, session, cache):
        first = await notify(session, cache)
        second = await notify(session, cache)
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 2

        await commands.mark_read(session, cache, APP, first, "user-1")
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 1

        await commands.mark_unread(session, cache, APP, first, "user-1")
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 2

        await commands.delete_notification(session, cache, APP, second, "user-1")
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 1

        await notify(session, cache)
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 2

    async def test_missing_session_counts_zero(self, cache):
        assert await queries.get_unread_count(None, cache, APP, "user-1") == 0

    async def test_read_failure_counts_zero(self, session, cache):
        await session.execute(text("DROP TABLE notifications"))
        await session.commit()
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 0


class TestMutations:
    async def test_other_users_notification_not_found(self, session, cache):
        notification_id = await notify(session, cache)
        with pytest.raises(NotificationNotFoundError):
            await commands.mark_read(session, cache, APP, notification_id, "user-2")
        with pytest.raises(NotificationNotFoundError):
            await commands.delete_notification(session, cache, APP, notification_id, "user-2")

    async def test_mark_all_read_in_batches(self, session, cache):
        for _ in range(5):
            await notify(session, cache)
        await notify(session, cache, user_id="user-2")

        assert await commands.mark_all_read(session, cache, APP, "user-1", batch_size=2) == 5

        assert await queries.get_unread_count(session, cache, APP, "user-1") == 0
        assert await queries.get_unread_count(session, cache, APP, "user-2") == 1
        page = await queries.list_notifications(session, APP, "user-1")
        assert all(n["read"] and n["read_at"] for n in page["notifications"])

    async def test_delete_all_in_batches(self, session, cache):
        for _ in range(5):
            await notify(session, cache)
        await notify(session, cache, user_id="user-2")

        assert await commands.delete_all(session, cache, APP, "user-1", batch_size=2) == 5

        assert (await queries.list_notifications(session, APP, "user-1"))["notifications"] == []
        assert await queries.get_unread_count(session, cache, APP, "user-2") == 1

    async def test_failed_batch_still_invalidates(self, session, cache, monkeypatch):
        for _ in range(4):
            await notify(session, cache)
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 4

        execute = session.execute
        updates = []

        async def flaky_execute(statement, *args, **kwargs):
            if str(statement).strip().startswith("UPDATE notifications"):
                updates.append(statement)
                if len(updates) == 2:
                    raise RuntimeError("connection lost")
            return await execute(statement, *args, **kwargs)

        monkeypatch.setattr(session, "execute", flaky_execute)
        with pytest.raises(RuntimeError):
            await commands.mark_all_read(session, cache, APP, "user-1", batch_size=2)
        monkeypatch.undo()

        assert cache.get(APP, "user-1") is None
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 2

    async def test_bulk_operations_on_empty_set(self, session, cache):
        assert await commands.mark_all_read(session, cache, APP, "user-1") == 0
        assert await commands.delete_all(session, cache, APP, "user-1") == 0


class TestListNotifications:
    async def test_pages_cover_everything_once(self, session, cache):
        ids = {await notify(session, cache, title=f"N{i}") for i in range(5)}

        seen = []
        flags = []
        cursor = None
        while True:
            page = await queries.list_notifications(session, APP, "user-1", page_size=2, before=cursor)
            seen += [n["id"] for n in page["notifications"]]
            flags.append(page["has_more"])
            cursor = page["cursor"]
            if not page["has_more"]:
                break

        assert flags == [True, True, False]
        assert len(seen) == 5
        assert set(seen) == ids

    async def test_newest_first(self, session, cache):
        await notify(session, cache, title="first")
        await notify(session, cache, title="second")
        page = await queries.list_notifications(session, APP, "user-1")
        assert [n["title"] for n in page["notifications"]] == ["second", "first"]
        assert page["has_more"] is False


class TestDispatcher:
    def test_templates(self):
        shipped = OrderShipped(
            order_id="order-1",
            user_id="user-1",
            product_name="Calm Tea",
            tracking_number="TRK1",
            carrier="UPS",
            timestamp=NOW,
        )
        rejected = RefundRejected(
            order_id="order-1",
            user_id="user-1",
            product_name="Calm Tea",
            reason="Used item",
            rejected_by="admin",
            timestamp=NOW,
        )
        data = build_notifications([created(), paid(), shipped, rejected])

        assert [d.title for d in data] == [
            "Order Placed",
            "Payment Successful",
            "Order Shipped",
            "Refund Request Denied",
        ]
        assert [d.type for d in data] == [
            "store_order",
            "store_payment",
            "store_shipping",
            "store_refund",
        ]
        assert data[1].priority == "medium"

    def test_cart_orders_skip_order_placed(self):
        data = build_notifications([created("cart_abc"), paid("cart_abc")])
        assert [d.title for d in data] == ["Payment Successful"]

    async def test_dispatch_writes_notifications(self, session, cache):
        count = await dispatch_events(session, cache, APP, [created(), paid()])
        assert count == 2
        assert await queries.get_unread_count(session, cache, APP, "user-1") == 2

    async def test_write_failure_is_swallowed(self, session, cache):
        await session.execute(text("DROP TABLE notifications"))
        await session.commit()
        assert await dispatch_events(session, cache, APP, [created(), paid()]) == 0


class TestParseMessage:
    def test_round_trips_published_event(self):
        message = json.dumps({"event_type": "OrderPaid", "data": paid().payload()})
        event = parse_message(message)
        assert isinstance(event, OrderPaid)
        assert event.amount == 30.0

    def test_unknown_event_type(self):
        assert parse_message(json.dumps({"event_type": "InventoryReserved", "data": {}})) is None
