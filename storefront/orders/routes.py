"""
Orders — HTTP エンドポイント

コマンドは集約が返したイベントをそのまま通知ディスパッチャに渡す。
"""

from datetime import datetime
from typing import Literal

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import Notifier, get_redis, get_session, require_team_member, require_user
from ..errors import OrderNotFoundError
from ..tracking import TrackingEvent
from . import commands, queries
from .events import LineItem, ShippingInfo

router = APIRouter()


# ── Request Models ───────────────────────────────


class CreateOrderRequest(BaseModel):
    user_email: str
    user_name: str
    product_id: str
    product_name: str
    quantity: int = Field(gt=0)
    total_amount: float = Field(ge=0)
    items: list[LineItem] = []
    shipping_info: ShippingInfo | None = None


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str | None = None


class ShipRequest(BaseModel):
    carrier: str
    tracking_number: str | None = None
    status: Literal["pending", "in_transit", "out_for_delivery", "delivered"] = "in_transit"
    estimated_delivery: datetime | None = None
    current_location: str = ""


class CancelRequest(BaseModel):
    reason: str = ""


class ReorderRequest(BaseModel):
    events: list[TrackingEvent]


class EditTrackingEventRequest(BaseModel):
    location: str | None = None
    status: str | None = None
    description: str | None = None
    timestamp: datetime | None = None


async def _order(session: AsyncSession, order_id: str) -> dict:
    order = await queries.get_order(session, order_id)
    if not order:
        raise OrderNotFoundError(order_id)
    return order


# ── Command Endpoints (Write 側) ─────────────────


@router.post("/commands/orders")
async def cmd_create_order(
    req: CreateOrderRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    notifier: Notifier = Depends(),
    user_id: str = Depends(require_user),
):
    """注文作成コマンド（pending で作成、支払いは後から確定）"""
    agg, events = await commands.create_order(
        session,
        redis,
        user_id=user_id,
        user_email=req.user_email,
        user_name=req.user_name,
        product_id=req.product_id,
        product_name=req.product_name,
        quantity=req.quantity,
        total_amount=req.total_amount,
        items=req.items,
        shipping_info=req.shipping_info,
    )
    await notifier.emit(events)
    return await _order(session, agg.id)


@router.post("/commands/orders/{order_id}/confirm-payment")
async def cmd_confirm_payment(
    order_id: str,
    req: ConfirmPaymentRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    notifier: Notifier = Depends(),
    _admin: str = Depends(require_team_member),
):
    _, events = await commands.confirm_payment(
        session, redis, order_id, req.payment_intent_id
    )
    await notifier.emit(events)
    return await _order(session, order_id)


@router.post("/commands/orders/{order_id}/ship")
async def cmd_ship(
    order_id: str,
    req: ShipRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    notifier: Notifier = Depends(),
    _admin: str = Depends(require_team_member),
):
    """出荷コマンド（追跡情報の登録・更新）"""
    _, events = await commands.ship_order(
        session,
        redis,
        order_id,
        carrier=req.carrier,
        tracking_number=req.tracking_number,
        tracking_status=req.status,
        estimated_delivery=req.estimated_delivery,
        current_location=req.current_location,
    )
    await notifier.emit(events)
    return await _order(session, order_id)


@router.post("/commands/orders/{order_id}/deliver")
async def cmd_deliver(
    order_id: str,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    notifier: Notifier = Depends(),
    _admin: str = Depends(require_team_member),
):
    _, events = await commands.deliver_order(session, redis, order_id)
    await notifier.emit(events)
    return await _order(session, order_id)


@router.post("/commands/orders/{order_id}/cancel")
async def cmd_cancel(
    order_id: str,
    req: CancelRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    notifier: Notifier = Depends(),
    _admin: str = Depends(require_team_member),
):
    """注文キャンセルコマンド（引き当て済み在庫を解放）"""
    _, events = await commands.cancel_order(session, redis, order_id, req.reason)
    await notifier.emit(events)
    return await _order(session, order_id)


# ── 配送タイムライン (管理画面) ────────────────────


@router.put("/commands/orders/{order_id}/tracking")
async def cmd_reorder_tracking(
    order_id: str,
    req: ReorderRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    _admin: str = Depends(require_team_member),
):
    """並べ替えたタイムラインを保存する。アンカーを動かす並びは 400。"""
    info = await commands.save_tracking_history(session, redis, order_id, req.events)
    return info.model_dump(mode="json")


@router.post("/commands/orders/{order_id}/tracking/events")
async def cmd_add_tracking_event(
    order_id: str,
    event: TrackingEvent,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    _admin: str = Depends(require_team_member),
):
    info = await commands.add_tracking_event(session, redis, order_id, event)
    return info.model_dump(mode="json")


@router.patch("/commands/orders/{order_id}/tracking/events/{event_id}")
async def cmd_edit_tracking_event(
    order_id: str,
    event_id: str,
    req: EditTrackingEventRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    _admin: str = Depends(require_team_member),
):
    info = await commands.edit_tracking_event(
        session, redis, order_id, event_id, **req.model_dump(exclude_none=True)
    )
    return info.model_dump(mode="json")


@router.delete("/commands/orders/{order_id}/tracking/events/{event_id}")
async def cmd_remove_tracking_event(
    order_id: str,
    event_id: str,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    _admin: str = Depends(require_team_member),
):
    info = await commands.remove_tracking_event(session, redis, order_id, event_id)
    return info.model_dump(mode="json")


# ── Query Endpoints (Read 側) ────────────────────


@router.get("/queries/orders")
async def query_list_orders(
    status: str | None = None,
    session: AsyncSession = Depends(get_session),
    _admin: str = Depends(require_team_member),
):
    return await queries.list_orders(session, status)


@router.get("/queries/orders/{order_id}")
async def query_get_order(order_id: str, session: AsyncSession = Depends(get_session)):
    return await _order(session, order_id)


@router.get("/queries/users/{user_id}/orders")
async def query_user_orders(user_id: str, session: AsyncSession = Depends(get_session)):
    return await queries.list_user_orders(session, user_id)
