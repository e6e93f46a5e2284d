"""
Orders — コマンドハンドラ (CQRS の Write 側)

1. イベントストアから集約を再構築
2. 集約のメソッドで状態遷移 (発行するイベントが返る)
3. イベントを追記し、リードモデル (store_orders) を更新してコミット
4. Redis Pub/Sub でイベントを発行

各コマンドは (集約, イベント) を返す。通知の作成は呼び出し側の
ディスパッチャが行い、ここでは扱わない。
"""

import logging
from typing import Callable
from uuid import uuid4

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .. import event_store, tracking
from ..db import dump_json, ensure_session, load_json, utcnow
from ..errors import InvalidTrackingEventError, InvalidTransitionError, OrderNotFoundError
from ..inventory import commands as inventory
from ..messaging import ORDER_CHANNEL, publish_events
from .aggregate import OrderAggregate, Paid, Shipped, Delivered
from .events import LineItem, OrderEvent, ShippingInfo

logger = logging.getLogger(__name__)

CART_ORDER_PREFIX = "cart_"


def new_cart_order_id() -> str:
    return f"{CART_ORDER_PREFIX}{uuid4().hex}"


def is_cart_order(order_id: str) -> bool:
    return order_id.startswith(CART_ORDER_PREFIX)


async def load_order(session: AsyncSession, order_id: str) -> OrderAggregate:
    events = await event_store.load_events(session, order_id)
    if not events:
        raise OrderNotFoundError(order_id)
    return OrderAggregate.from_events(events)


async def _append(
    session: AsyncSession, agg: OrderAggregate, events: list[OrderEvent]
) -> None:
    version = agg.version
    for event in events:
        version = await event_store.append_event(
            session, agg.id, "Order", event.event_type, event.payload(), version
        )
    agg.version = version


async def _upsert_order_row(session: AsyncSession, agg: OrderAggregate) -> None:
    """注文ドキュメントを丸ごと書く (setDoc 相当の upsert)。"""
    now = utcnow().isoformat()
    await session.execute(
        text("""
            INSERT INTO store_orders
                (id, user_id, user_email, user_name, product_id, product_name,
                 quantity, total_amount, status, payment_status, refund_status,
                 payment_intent_id, items, shipping_info, created_at, updated_at)
            VALUES
                (:id, :user_id, :user_email, :user_name, :product_id, :product_name,
                 :quantity, :total_amount, :status, :payment_status, :refund_status,
                 :payment_intent_id, :items, :shipping_info, :created_at, :now)
            ON CONFLICT (id) DO UPDATE SET
                status = :status,
                payment_status = :payment_status,
                refund_status = :refund_status,
                payment_intent_id = :payment_intent_id,
                updated_at = :now
        """),
        {
            "id": agg.id,
            "user_id": agg.user_id,
            "user_email": agg.user_email,
            "user_name": agg.user_name,
            "product_id": agg.product_id,
            "product_name": agg.product_name,
            "quantity": agg.quantity,
            "total_amount": agg.total_amount,
            "status": agg.status,
            "payment_status": agg.payment_status,
            "refund_status": agg.refund_status,
            "payment_intent_id": agg.payment_intent_id,
            "items": dump_json([item.model_dump() for item in agg.items]),
            "shipping_info": dump_json(
                agg.shipping_info.model_dump() if agg.shipping_info else None
            ),
            "created_at": agg.created_at.isoformat() if agg.created_at else now,
            "now": now,
        },
    )


async def sync_read_model(
    session: AsyncSession, agg: OrderAggregate, **columns
) -> None:
    """フェーズ由来の 3 軸と追加カラムをリードモデルに反映する。"""
    assignments = "".join(f", {name} = :{name}" for name in columns)
    await session.execute(
        text(f"""
            UPDATE store_orders
            SET status = :status,
                payment_status = :payment_status,
                refund_status = :refund_status,
                payment_intent_id = :payment_intent_id,
                updated_at = :now{assignments}
            WHERE id = :id
        """),
        {
            "id": agg.id,
            "status": agg.status,
            "payment_status": agg.payment_status,
            "refund_status": agg.refund_status,
            "payment_intent_id": agg.payment_intent_id,
            "now": utcnow().isoformat(),
            **columns,
        },
    )


async def commit_and_publish(
    session: AsyncSession,
    redis: aioredis.Redis,
    agg: OrderAggregate,
    events: list[OrderEvent],
    **columns,
) -> None:
    await _append(session, agg, events)
    await sync_read_model(session, agg, **columns)
    await session.commit()
    await publish_events(redis, ORDER_CHANNEL, events)


async def create_order(
    session: AsyncSession,
    redis: aioredis.Redis,
    user_id: str,
    user_email: str,
    user_name: str,
    product_id: str,
    product_name: str,
    quantity: int,
    total_amount: float,
    order_id: str | None = None,
    items: list[LineItem] | None = None,
    shipping_info: ShippingInfo | None = None,
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """
    注文作成コマンド（レガシーフロー: サーバー採番、pending で作成）
    """
    ensure_session(session)
    agg = OrderAggregate()
    events = agg.create(
        order_id=order_id or uuid4().hex,
        user_id=user_id,
        user_email=user_email,
        user_name=user_name,
        product_id=product_id,
        product_name=product_name,
        quantity=quantity,
        total_amount=total_amount,
        now=utcnow(),
        items=items,
        shipping_info=shipping_info,
    )

    await _append(session, agg, events)
    await _upsert_order_row(session, agg)
    await session.commit()
    await publish_events(redis, ORDER_CHANNEL, events)

    logger.info("Store order created with ID %s", agg.id)
    return agg, events


async def create_paid_order(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: str,
    user_id: str,
    user_email: str,
    user_name: str,
    product_id: str,
    product_name: str,
    quantity: int,
    total_amount: float,
    payment_intent_id: str | None,
    items: list[LineItem] | None = None,
    shipping_info: ShippingInfo | None = None,
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """
    決済完了後に初めて注文ドキュメントを作るフロー（カート注文）

    放棄されたチェックアウトで「支払い済みに見える注文」を作らないため、
    作成は決済成功のコールバックまで遅らせる。作成と支払い確定を 1 コミットで書く。
    """
    ensure_session(session)
    now = utcnow()

    existing = await event_store.load_events(session, order_id)
    agg = OrderAggregate.from_events(existing)
    events = agg.create(
        order_id=order_id,
        user_id=user_id,
        user_email=user_email,
        user_name=user_name,
        product_id=product_id,
        product_name=product_name,
        quantity=quantity,
        total_amount=total_amount,
        now=now,
        items=items,
        shipping_info=shipping_info,
    )
    events += agg.confirm_payment(payment_intent_id, now)

    await _append(session, agg, events)
    await _upsert_order_row(session, agg)
    await session.commit()
    await publish_events(redis, ORDER_CHANNEL, events)

    logger.info("Cart order %s created as paid", order_id)
    return agg, events


async def confirm_payment(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: str,
    payment_intent_id: str | None = None,
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """
    支払い確定コマンド（既存注文: pending → paid）
    """
    ensure_session(session)
    agg = await load_order(session, order_id)
    events = agg.confirm_payment(payment_intent_id, utcnow())
    await commit_and_publish(session, redis, agg, events)
    return agg, events


async def record_payment_reference(
    session: AsyncSession,
    redis: aioredis.Redis,
    agg: OrderAggregate,
    payment_intent_id: str,
) -> list[OrderEvent]:
    events = agg.record_payment_reference(payment_intent_id, utcnow())
    await commit_and_publish(session, redis, agg, events)
    return events


async def _load_tracking(session: AsyncSession, order_id: str) -> tracking.TrackingInfo | None:
    result = await session.execute(
        text("SELECT tracking_info FROM store_orders WHERE id = :id"),
        {"id": order_id},
    )
    row = result.fetchone()
    if not row:
        raise OrderNotFoundError(order_id)
    data = load_json(row.tracking_info)
    return tracking.TrackingInfo.model_validate(data) if data else None


def _dump_tracking(info: tracking.TrackingInfo) -> str:
    return dump_json(info.model_dump(mode="json"))


async def ship_order(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: str,
    carrier: str,
    tracking_number: str | None = None,
    tracking_status: str = "in_transit",
    estimated_delivery=None,
    current_location: str = "",
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """
    出荷コマンド（paid → shipped）

    初めて追跡情報を付けるときは 出荷元 → 物流センター → 配送先 の
    タイムラインを用意する。出荷済みの注文では追跡情報だけを更新する。
    """
    ensure_session(session)
    agg = await load_order(session, order_id)
    now = utcnow()

    if not isinstance(agg.phase, (Paid, Shipped, Delivered)):
        raise InvalidTransitionError(agg.phase.kind, "ship")

    current = await _load_tracking(session, order_id)
    info = tracking.TrackingInfo(
        tracking_number=tracking_number or tracking.default_tracking_number(order_id),
        carrier=carrier,
        status=tracking_status,
        estimated_delivery=estimated_delivery,
        current_location=current_location,
        tracking_history=current.tracking_history
        if current
        else tracking.initial_timeline(now, delivered=tracking_status == "delivered"),
    )

    if isinstance(agg.phase, Paid):
        events = agg.ship(info.tracking_number, carrier, now)
    else:
        events = agg.update_tracking(len(info.tracking_history), now)

    await commit_and_publish(
        session, redis, agg, events, tracking_info=_dump_tracking(info)
    )
    logger.info("Order %s shipped via %s (%s)", order_id, carrier, info.tracking_number)
    return agg, events


async def deliver_order(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: str,
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """配送完了コマンド（shipped → delivered）"""
    ensure_session(session)
    agg = await load_order(session, order_id)
    now = utcnow()
    events = agg.deliver(now)

    columns = {}
    info = await _load_tracking(session, order_id)
    if info:
        info = info.model_copy(
            update={
                "status": "delivered",
                "tracking_history": tracking.mark_delivered(info.tracking_history, now),
            }
        )
        columns["tracking_info"] = _dump_tracking(info)

    await commit_and_publish(session, redis, agg, events, **columns)
    return agg, events


async def cancel_order(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: str,
    reason: str = "",
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """
    注文キャンセルコマンド（pending → cancelled）

    未払いの注文がカートで押さえていた在庫の引き当てを解放する。
    """
    ensure_session(session)
    agg = await load_order(session, order_id)
    events = agg.cancel(reason, utcnow())
    await commit_and_publish(session, redis, agg, events)

    for item in agg.line_items():
        await inventory.release_stock(
            session, redis, item.product_id, item.quantity, order_id=order_id
        )
    return agg, events


async def update_timeline(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: str,
    change: Callable[[list[tracking.TrackingEvent]], list[tracking.TrackingEvent]],
) -> tracking.TrackingInfo:
    """
    配送タイムラインを書き換える。

    change は現在のイベント列を受け取り新しい列を返す純粋関数。
    保存前に必ず canonicalize() で並べ直す。
    """
    ensure_session(session)
    agg = await load_order(session, order_id)
    info = await _load_tracking(session, order_id)
    if info is None:
        raise InvalidTrackingEventError(f"Order {order_id} has no tracking information")

    history = tracking.canonicalize(change(list(info.tracking_history)))
    info = info.model_copy(update={"tracking_history": history})

    events = agg.update_tracking(len(history), utcnow())
    await commit_and_publish(
        session, redis, agg, events, tracking_info=_dump_tracking(info)
    )
    return info


async def save_tracking_history(session, redis, order_id: str, proposed: list[tracking.TrackingEvent]):
    """管理画面で並べ替えたタイムラインを保存する。"""
    return await update_timeline(
        session, redis, order_id, lambda current: tracking.reorder(current, proposed)
    )


async def add_tracking_event(session, redis, order_id: str, event: tracking.TrackingEvent):
    return await update_timeline(
        session, redis, order_id, lambda current: tracking.add_event(current, event)
    )


async def edit_tracking_event(session, redis, order_id: str, event_id: str, **changes):
    return await update_timeline(
        session,
        redis,
        order_id,
        lambda current: tracking.edit_event(current, event_id, **changes),
    )


async def remove_tracking_event(session, redis, order_id: str, event_id: str):
    return await update_timeline(
        session, redis, order_id, lambda current: tracking.remove_event(current, event_id)
    )
