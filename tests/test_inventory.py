"""Tests for the stock ledger."""

import random

import pytest

from storefront.errors import InvalidStockLevelError, StoreNotInitializedError
from storefront.inventory import commands, queries
from storefront.messaging import INVENTORY_CHANNEL

pytestmark = pytest.mark.anyio


async def counters(session, product_id):
    stock = await queries.get_product_stock(session, product_id)
    return stock["stock_count"], stock["reserved_stock"]


class TestGetStock:
    async def test_seeds_default_for_unknown_product(self, session):
        assert await commands.get_stock(session, "tea") == 15
        assert await counters(session, "tea") == (15, 0)

    async def test_existing_record_is_not_reseeded(self, session, redis):
        await commands.set_stock(session, redis, "tea", 4)
        assert await commands.get_stock(session, "tea") == 4

    async def test_custom_default(self, session):
        assert await commands.get_stock(session, "tea", default_stock=30) == 30

    async def test_missing_session_raises(self):
        with pytest.raises(StoreNotInitializedError):
            await commands.get_stock(None, "tea")


class TestReserveStock:
    async def test_reserve_within_available(self, session, redis):
        await commands.get_stock(session, "tea")

        assert await commands.reserve_stock(session, redis, "tea", 2) is True
        assert await counters(session, "tea") == (15, 2)
        assert redis.event_types(INVENTORY_CHANNEL) == ["InventoryReserved"]

    async def test_oversell_is_rejected_and_counters_unchanged(self, session, redis):
        await commands.set_stock(session, redis, "tea", 5)
        assert await commands.reserve_stock(session, redis, "tea", 5) is True

        assert await commands.reserve_stock(session, redis, "tea", 1) is False
        assert await counters(session, "tea") == (5, 5)
        assert redis.event_types()[-1] == "InventoryReservationFailed"

    async def test_reserve_exactly_available(self, session, redis):
        await commands.set_stock(session, redis, "tea", 3)
        assert await commands.reserve_stock(session, redis, "tea", 3) is True
        assert await counters(session, "tea") == (3, 3)

    async def test_unknown_product_is_rejected(self, session, redis):
        assert await commands.reserve_stock(session, redis, "ghost", 1) is False
        assert await queries.get_product_stock(session, "ghost") is None

    async def test_non_positive_quantity_is_rejected(self, session, redis):
        await commands.get_stock(session, "tea")
        assert await commands.reserve_stock(session, redis, "tea", 0) is False
        assert await counters(session, "tea") == (15, 0)


class TestReleaseStock:
    async def test_release_returns_reservation(self, session, redis):
        await commands.get_stock(session, "tea")
        await commands.reserve_stock(session, redis, "tea", 4)

        await commands.release_stock(session, redis, "tea", 3)
        assert await counters(session, "tea") == (15, 1)

    async def test_release_floors_at_zero(self, session, redis):
        await commands.get_stock(session, "tea")
        await commands.reserve_stock(session, redis, "tea", 1)

        await commands.release_stock(session, redis, "tea", 5)
        assert await counters(session, "tea") == (15, 0)

    async def test_release_unknown_product_is_noop(self, session, redis):
        await commands.release_stock(session, redis, "ghost", 1)
        assert redis.published == []


class TestPurchaseStock:
    async def test_purchase_converts_reservation(self, session, redis):
        await commands.get_stock(session, "tea")
        await commands.reserve_stock(session, redis, "tea", 2)

        await commands.purchase_stock(session, redis, "tea", 2)
        assert await counters(session, "tea") == (13, 0)

    async def test_second_purchase_is_not_guarded(self, session, redis):
        # callers gate purchase on the order's pending -> paid transition
        await commands.get_stock(session, "tea")
        await commands.reserve_stock(session, redis, "tea", 2)

        await commands.purchase_stock(session, redis, "tea", 2)
        await commands.purchase_stock(session, redis, "tea", 2)
        assert await counters(session, "tea") == (11, 0)

    async def test_purchase_floors_counters(self, session, redis):
        await commands.set_stock(session, redis, "tea", 1)
        await commands.purchase_stock(session, redis, "tea", 5)
        assert await counters(session, "tea") == (0, 0)


class TestRestoreStock:
    async def test_restore_reverses_purchase(self, session, redis):
        await commands.get_stock(session, "tea")
        await commands.reserve_stock(session, redis, "tea", 3)
        await commands.reserve_stock(session, redis, "tea", 1)
        await commands.purchase_stock(session, redis, "tea", 3)
        before = await counters(session, "tea")

        await commands.restore_stock(session, redis, "tea", 3)
        after = await counters(session, "tea")
        assert after[0] == before[0] + 3 == 15
        assert after[1] == before[1]

    async def test_restore_seeds_missing_record(self, session, redis):
        await commands.restore_stock(session, redis, "tea", 2)
        assert await counters(session, "tea") == (17, 0)


class TestSetStock:
    async def test_cannot_go_below_reserved(self, session, redis):
        await commands.get_stock(session, "tea")
        await commands.reserve_stock(session, redis, "tea", 4)

        with pytest.raises(InvalidStockLevelError):
            await commands.set_stock(session, redis, "tea", 3)
        assert await counters(session, "tea") == (15, 4)

    async def test_negative_rejected(self, session, redis):
        with pytest.raises(InvalidStockLevelError):
            await commands.set_stock(session, redis, "tea", -1)


class TestStockBounds:
    async def test_random_operation_sequence(self, session, redis):
        rng = random.Random(7)
        await commands.set_stock(session, redis, "tea", 20)

        for _ in range(120):
            op = rng.choice(["reserve", "release", "purchase"])
            qty = rng.randint(1, 6)
            before = await counters(session, "tea")
            if op == "reserve":
                ok = await commands.reserve_stock(session, redis, "tea", qty)
                assert ok == (qty <= before[0] - before[1])
                if not ok:
                    assert await counters(session, "tea") == before
            elif op == "release":
                await commands.release_stock(session, redis, "tea", qty)
            else:
                await commands.purchase_stock(session, redis, "tea", min(qty, before[1]))

            stock_count, reserved = await counters(session, "tea")
            assert 0 <= reserved <= stock_count


class TestClampToAvailable:
    def test_within_available(self):
        assert queries.clamp_to_available(2, 5) == (2, False)

    def test_clamped(self):
        assert queries.clamp_to_available(8, 5) == (5, True)

    def test_negative_available(self):
        assert queries.clamp_to_available(1, -2) == (0, True)
