"""
Refunds — HTTP エンドポイント

返金リクエストは注文者本人、承認・却下・処理は管理者のみ。
"""

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import (
    Notifier,
    get_payments,
    get_redis,
    get_session,
    get_settings,
    require_team_member,
    require_user,
)
from ..orders import queries as order_queries
from ..payments import PaymentClient
from . import commands, queries

router = APIRouter()


class RefundRequest(BaseModel):
    reason: str = Field(min_length=1)
    amount: float | None = None


class AdminActionRequest(BaseModel):
    admin_name: str = ""


class RejectRequest(AdminActionRequest):
    reason: str = Field(min_length=1)


@router.post("/commands/refunds/{order_id}/request")
async def cmd_request_refund(
    order_id: str,
    req: RefundRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    notifier: Notifier = Depends(),
    user_id: str = Depends(require_user),
):
    _, events = await commands.request_refund(
        session, redis, order_id, user_id, req.reason, req.amount
    )
    await notifier.emit(events)
    return await order_queries.get_order(session, order_id)


@router.post("/commands/refunds/{order_id}/approve")
async def cmd_approve_refund(
    order_id: str,
    req: AdminActionRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
    notifier: Notifier = Depends(),
    admin_id: str = Depends(require_team_member),
):
    """返金承認（在庫を戻す）"""
    _, events = await commands.approve_refund(
        session,
        redis,
        order_id,
        req.admin_name or admin_id,
        default_stock=settings.default_stock_count,
    )
    await notifier.emit(events)
    return await order_queries.get_order(session, order_id)


@router.post("/commands/refunds/{order_id}/reject")
async def cmd_reject_refund(
    order_id: str,
    req: RejectRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    notifier: Notifier = Depends(),
    admin_id: str = Depends(require_team_member),
):
    _, events = await commands.reject_refund(
        session, redis, order_id, req.admin_name or admin_id, req.reason
    )
    await notifier.emit(events)
    return await order_queries.get_order(session, order_id)


@router.post("/commands/refunds/{order_id}/process")
async def cmd_process_refund(
    order_id: str,
    req: AdminActionRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    payments: PaymentClient = Depends(get_payments),
    notifier: Notifier = Depends(),
    admin_id: str = Depends(require_team_member),
):
    """
    返金処理（決済プロバイダへ返金を依頼）

    決済参照が見つからない古い注文は 422 (手動返金が必要)、
    プロバイダの失敗は 502。どちらも注文の状態は変わらない。
    """
    _, events = await commands.process_refund(
        session, redis, payments, order_id, req.admin_name or admin_id
    )
    await notifier.emit(events)
    return await order_queries.get_order(session, order_id)


@router.get("/queries/refunds")
async def query_refund_requests(
    session: AsyncSession = Depends(get_session),
    _admin: str = Depends(require_team_member),
):
    return await queries.get_refund_requests(session)


@router.get("/queries/users/{user_id}/refundable-orders")
async def query_refundable_orders(user_id: str, session: AsyncSession = Depends(get_session)):
    return await queries.get_refundable_orders(session, user_id)
