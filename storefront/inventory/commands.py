"""
Inventory — コマンドハンドラ (CQRS Write 側)

商品ごとに 1 行の在庫台帳 (product_stock) を持つ。
  stock_count    … 所有している総数
  reserved_stock … カートで引き当て中の数 (<= stock_count)
  available      = stock_count - reserved_stock

カート投入時に reserve、カートから外すと release、
決済確定で purchase (引き当て → 販売)、返金承認で restore。

読み取り系の失敗は安全側の値 (0 / False) を返してログに残す。
purchase / restore は決済・返金のクリティカルパスなので例外を伝播する。
"""

import logging

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import event_store
from ..db import ensure_session, utcnow
from ..errors import InvalidStockLevelError
from ..messaging import INVENTORY_CHANNEL, publish_events
from .events import (
    InventoryAdjusted,
    InventoryEvent,
    InventoryPurchased,
    InventoryReleased,
    InventoryReservationFailed,
    InventoryReserved,
    InventoryRestored,
)

logger = logging.getLogger(__name__)

DEFAULT_STOCK_COUNT = 15


async def _fetch(session: AsyncSession, product_id: str):
    result = await session.execute(
        text("""
            SELECT product_id, stock_count, reserved_stock
            FROM product_stock WHERE product_id = :id
        """),
        {"id": product_id},
    )
    return result.fetchone()


async def _record(session: AsyncSession, event: InventoryEvent) -> None:
    version = await event_store.current_version(session, event.product_id)
    await event_store.append_event(
        session,
        event.product_id,
        "Inventory",
        event.event_type,
        event.payload(),
        version,
    )


async def get_stock(
    session: AsyncSession,
    product_id: str,
    default_stock: int = DEFAULT_STOCK_COUNT,
) -> int:
    """
    在庫数を返す。台帳が無ければ既定数で作成してその値を返す。

    初回読み取り同士の競合は考慮しない (既定値の投入経路であり金額は絡まない)。
    """
    ensure_session(session)
    try:
        row = await _fetch(session, product_id)
        if row:
            return row.stock_count or 0

        await session.execute(
            text("""
                INSERT INTO product_stock
                    (product_id, stock_count, reserved_stock, last_updated)
                VALUES
                    (:id, :stock, 0, :now)
                ON CONFLICT (product_id) DO NOTHING
            """),
            {"id": product_id, "stock": default_stock, "now": utcnow().isoformat()},
        )
        await session.commit()
        logger.info("Seeded stock for %s with %d units", product_id, default_stock)
        return default_stock
    except SQLAlchemyError:
        logger.exception("Error getting product stock for %s", product_id)
        await session.rollback()
        return 0


async def reserve_stock(
    session: AsyncSession,
    redis: aioredis.Redis,
    product_id: str,
    quantity: int,
    order_id: str | None = None,
) -> bool:
    """
    在庫引き当てコマンド

    available >= quantity のときだけ reserved_stock を増やす。
    判定と更新は 1 本の条件付き UPDATE で行うので、同時に走った
    引き当て同士が同じ空き数を読んで両方成功することはない。
    失敗時はカウンタを変えずに InventoryReservationFailed を記録する。
    """
    ensure_session(session)
    if quantity <= 0:
        return False

    now = utcnow()
    try:
        result = await session.execute(
            text("""
                UPDATE product_stock
                SET reserved_stock = reserved_stock + :qty, last_updated = :now
                WHERE product_id = :id AND stock_count - reserved_stock >= :qty
            """),
            {"qty": quantity, "now": now.isoformat(), "id": product_id},
        )

        if result.rowcount == 1:
            event = InventoryReserved(
                product_id=product_id,
                order_id=order_id,
                quantity=quantity,
                timestamp=now,
            )
            await _record(session, event)
            await session.commit()
            await publish_events(redis, INVENTORY_CHANNEL, [event])
            return True

        row = await _fetch(session, product_id)
        if not row:
            await session.rollback()
            logger.warning("Cannot reserve stock for unknown product %s", product_id)
            return False

        event = InventoryReservationFailed(
            product_id=product_id,
            order_id=order_id,
            quantity_requested=quantity,
            quantity_available=row.stock_count - row.reserved_stock,
            timestamp=now,
        )
        await _record(session, event)
        await session.commit()
        await publish_events(redis, INVENTORY_CHANNEL, [event])
        return False
    except SQLAlchemyError:
        logger.exception("Error reserving stock for %s", product_id)
        await session.rollback()
        return False


async def release_stock(
    session: AsyncSession,
    redis: aioredis.Redis,
    product_id: str,
    quantity: int,
    order_id: str | None = None,
) -> None:
    """
    在庫解放コマンド

    reserved_stock を quantity だけ戻す。二重解放に備えて 0 で下げ止める。
    """
    ensure_session(session)
    if quantity <= 0:
        return

    now = utcnow()
    try:
        result = await session.execute(
            text("""
                UPDATE product_stock
                SET reserved_stock = CASE
                        WHEN reserved_stock > :qty THEN reserved_stock - :qty
                        ELSE 0
                    END,
                    last_updated = :now
                WHERE product_id = :id
            """),
            {"qty": quantity, "now": now.isoformat(), "id": product_id},
        )
        if result.rowcount == 0:
            await session.rollback()
            return

        event = InventoryReleased(
            product_id=product_id,
            order_id=order_id,
            quantity=quantity,
            timestamp=now,
        )
        await _record(session, event)
        await session.commit()
        await publish_events(redis, INVENTORY_CHANNEL, [event])
    except SQLAlchemyError:
        logger.exception("Error releasing reserved stock for %s", product_id)
        await session.rollback()


async def purchase_stock(
    session: AsyncSession,
    redis: aioredis.Redis,
    product_id: str,
    quantity: int,
    order_id: str | None = None,
) -> None:
    """
    購入確定コマンド

    stock_count と reserved_stock の両方を quantity だけ減らす (どちらも 0 で下げ止め)。
    同じ注文で二度呼ばれても防げない。呼び出しは注文の pending → paid 遷移で一度だけ行う。
    """
    ensure_session(session)
    if quantity <= 0:
        return

    now = utcnow()
    try:
        result = await session.execute(
            text("""
                UPDATE product_stock
                SET stock_count = CASE
                        WHEN stock_count > :qty THEN stock_count - :qty
                        ELSE 0
                    END,
                    reserved_stock = CASE
                        WHEN reserved_stock > :qty THEN reserved_stock - :qty
                        ELSE 0
                    END,
                    last_updated = :now
                WHERE product_id = :id
            """),
            {"qty": quantity, "now": now.isoformat(), "id": product_id},
        )
        if result.rowcount == 0:
            await session.rollback()
            logger.warning("No stock record to purchase from for %s", product_id)
            return

        event = InventoryPurchased(
            product_id=product_id,
            order_id=order_id,
            quantity=quantity,
            timestamp=now,
        )
        await _record(session, event)
        await session.commit()
    except SQLAlchemyError:
        logger.exception("Error purchasing stock for %s", product_id)
        await session.rollback()
        raise

    await publish_events(redis, INVENTORY_CHANNEL, [event])


async def restore_stock(
    session: AsyncSession,
    redis: aioredis.Redis,
    product_id: str,
    quantity: int,
    order_id: str | None = None,
    default_stock: int = DEFAULT_STOCK_COUNT,
) -> None:
    """
    在庫復元コマンド（返金承認時）

    purchase の逆: stock_count を quantity だけ増やす。reserved_stock は触らない。
    台帳が無ければ既定数で作成してから加算する。
    """
    ensure_session(session)
    if quantity <= 0:
        return

    now = utcnow()
    try:
        await session.execute(
            text("""
                INSERT INTO product_stock
                    (product_id, stock_count, reserved_stock, last_updated)
                VALUES
                    (:id, :seeded, 0, :now)
                ON CONFLICT (product_id) DO UPDATE SET
                    stock_count = product_stock.stock_count + :qty,
                    last_updated = :now
            """),
            {
                "id": product_id,
                "seeded": default_stock + quantity,
                "qty": quantity,
                "now": now.isoformat(),
            },
        )
        event = InventoryRestored(
            product_id=product_id,
            order_id=order_id,
            quantity=quantity,
            timestamp=now,
        )
        await _record(session, event)
        await session.commit()
    except SQLAlchemyError:
        logger.exception("Error restoring stock for %s", product_id)
        await session.rollback()
        raise

    await publish_events(redis, INVENTORY_CHANNEL, [event])


async def set_stock(
    session: AsyncSession,
    redis: aioredis.Redis,
    product_id: str,
    stock_count: int,
) -> None:
    """管理者による在庫数の直接設定。引き当て中の数を下回る値は拒否する。"""
    ensure_session(session)
    now = utcnow()

    row = await _fetch(session, product_id)
    if row and stock_count < row.reserved_stock:
        raise InvalidStockLevelError(product_id, stock_count, row.reserved_stock)
    if stock_count < 0:
        raise InvalidStockLevelError(product_id, stock_count, 0)

    await session.execute(
        text("""
            INSERT INTO product_stock
                (product_id, stock_count, reserved_stock, last_updated)
            VALUES
                (:id, :stock, 0, :now)
            ON CONFLICT (product_id) DO UPDATE SET
                stock_count = :stock,
                last_updated = :now
        """),
        {"id": product_id, "stock": stock_count, "now": now.isoformat()},
    )
    event = InventoryAdjusted(product_id=product_id, stock_count=stock_count, timestamp=now)
    await _record(session, event)
    await session.commit()
    await publish_events(redis, INVENTORY_CHANNEL, [event])
