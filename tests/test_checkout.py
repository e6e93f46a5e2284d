"""Tests for the cart checkout bridge."""

import pytest

from storefront.checkout.bridge import CheckoutBridge, CheckoutHandoff
from storefront.db import utcnow
from storefront.errors import InsufficientStockError, InvalidTransitionError, PaymentProviderError
from storefront.inventory import commands as inventory
from storefront.inventory import queries as inventory_queries
from storefront.orders import queries as order_queries
from storefront.orders.events import LineItem, ShippingInfo

pytestmark = pytest.mark.anyio

CUSTOMER = ShippingInfo(
    first_name="Jane",
    last_name="Doe",
    email="jane@example.com",
    address="1 Main St",
    city="Springfield",
    country="US",
)


def tea(quantity=2):
    return LineItem(product_id="tea", name="Calm Tea", quantity=quantity, price=12.5)


def oil(quantity=1):
    return LineItem(product_id="oil", name="Lavender Oil", quantity=quantity, price=9.99)


async def counters(session, product_id):
    stock = await inventory_queries.get_product_stock(session, product_id)
    return stock["stock_count"], stock["reserved_stock"]


@pytest.fixture
def bridge(session, redis, payments):
    return CheckoutBridge(session, redis, payments)


class TestHandoff:
    def test_single_item_naming(self):
        handoff = CheckoutHandoff(order_id="cart_x", items=[tea(3)], total_price=37.5)
        assert handoff.product_name == "Calm Tea"
        assert handoff.quantity == 3
        assert handoff.customer_email == "customer@example.com"
        assert handoff.customer_name == ""

    def test_cart_naming(self):
        handoff = CheckoutHandoff(
            order_id="cart_x", items=[tea(), oil()], customer_info=CUSTOMER, total_price=34.99
        )
        assert handoff.product_name == "Cart Order - 2 items"
        assert handoff.customer_email == "jane@example.com"
        assert handoff.customer_name == "Jane Doe"


class TestStart:
    async def test_reserves_and_creates_session(self, session, bridge, provider):
        await inventory.get_stock(session, "tea")
        await inventory.get_stock(session, "oil")

        handoff = await bridge.start([tea(), oil()], CUSTOMER)

        assert handoff.order_id.startswith("cart_")
        assert handoff.session_id == "cs_test_1"
        assert handoff.total_price == 34.99
        assert await counters(session, "tea") == (15, 2)
        assert await counters(session, "oil") == (15, 1)
        assert await order_queries.get_order(session, handoff.order_id) is None

    async def test_insufficient_stock_releases_earlier_lines(self, session, redis, bridge, provider):
        await inventory.get_stock(session, "tea")
        await inventory.set_stock(session, redis, "oil", 1)

        with pytest.raises(InsufficientStockError) as exc_info:
            await bridge.start([tea(), oil(5)], CUSTOMER)

        assert exc_info.value.product_id == "oil"
        assert await counters(session, "tea") == (15, 0)
        assert await counters(session, "oil") == (1, 0)
        assert provider.requests == []

    async def test_session_failure_releases_everything(self, session, bridge, provider):
        await inventory.get_stock(session, "tea")
        await inventory.get_stock(session, "oil")
        provider.checkout_status_code = 500

        with pytest.raises(PaymentProviderError):
            await bridge.start([tea(), oil()], CUSTOMER)

        assert await counters(session, "tea") == (15, 0)
        assert await counters(session, "oil") == (15, 0)


class TestComplete:
    async def test_creates_paid_order_and_purchases(self, session, bridge):
        await inventory.get_stock(session, "tea")
        handoff = await bridge.start([tea()], CUSTOMER)

        agg, events = await bridge.complete("user-1", handoff, handoff.session_id)

        assert [e.event_type for e in events] == ["OrderCreated", "OrderPaid"]
        assert await counters(session, "tea") == (13, 0)
        order = await order_queries.get_order(session, agg.id)
        assert order["status"] == "paid"
        assert order["payment_status"] == "completed"
        assert order["payment_intent_id"] == "pi_for_cs_test_1"
        assert order["product_id"] == "cart_order"
        assert order["user_email"] == "jane@example.com"
        assert order["shipping_info"]["city"] == "Springfield"

    async def test_falls_back_to_search(self, session, bridge, provider):
        await inventory.get_stock(session, "tea")
        handoff = await bridge.start([tea()], CUSTOMER)
        handoff.session_id = None
        provider.add_intent("pi_found", 25.0, "jane@example.com", utcnow())

        agg, _ = await bridge.complete("user-1", handoff)

        assert agg.payment_intent_id == "pi_found"

    async def test_unresolved_reference_still_completes(self, session, bridge):
        await inventory.get_stock(session, "tea")
        handoff = await bridge.start([tea()], CUSTOMER)

        agg, _ = await bridge.complete("user-1", handoff, "cs_unknown")

        assert agg.status == "paid"
        assert agg.payment_intent_id is None

    async def test_second_completion_rejected(self, session, bridge):
        await inventory.get_stock(session, "tea")
        handoff = await bridge.start([tea()], CUSTOMER)
        await bridge.complete("user-1", handoff, handoff.session_id)

        with pytest.raises(InvalidTransitionError):
            await bridge.complete("user-1", handoff, handoff.session_id)
        assert await counters(session, "tea") == (13, 0)
