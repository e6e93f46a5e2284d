"""
Checkout — HTTP エンドポイント
"""

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import Notifier, get_payments, get_redis, get_session, require_user
from ..orders import queries as order_queries
from ..orders.events import LineItem, ShippingInfo
from ..payments import PaymentClient
from .bridge import CheckoutBridge, CheckoutHandoff

router = APIRouter()


class StartCheckoutRequest(BaseModel):
    items: list[LineItem] = Field(min_length=1)
    customer_info: ShippingInfo | None = None


class CompleteCheckoutRequest(BaseModel):
    handoff: CheckoutHandoff
    session_id: str | None = None


@router.post("/checkout/start")
async def checkout_start(
    req: StartCheckoutRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    payments: PaymentClient = Depends(get_payments),
    _user: str = Depends(require_user),
):
    """
    在庫を引き当てて決済セッションを作る。

    返すハンドオフは決済プロバイダから戻ったときに /checkout/complete へ送り返す。
    """
    bridge = CheckoutBridge(session, redis, payments)
    handoff = await bridge.start(req.items, req.customer_info)
    return handoff.model_dump(mode="json")


@router.post("/checkout/complete")
async def checkout_complete(
    req: CompleteCheckoutRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    payments: PaymentClient = Depends(get_payments),
    notifier: Notifier = Depends(),
    user_id: str = Depends(require_user),
):
    """決済成功後に注文を支払い済みにし、引き当てを販売に変える。"""
    bridge = CheckoutBridge(session, redis, payments)
    agg, events = await bridge.complete(user_id, req.handoff, req.session_id)
    await notifier.emit(events)
    return await order_queries.get_order(session, agg.id)
