"""
Refunds — 返金ワークフローのコマンド

注文ごとに直列:  none → requested → approved | rejected,  approved → processed
rejected は終端。再リクエストは受け付けない。

返金承認で在庫を戻し、返金処理で決済プロバイダに返金を依頼する。
決済参照 (payment intent) を持たない古い注文は、作成日時 ±1 日・金額・
顧客メールで探索して補完する。見つからなければ手動返金を求めるエラーになり、
注文の状態は一切変わらない。
"""

import logging
from datetime import timedelta

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import ensure_session, utcnow
from ..errors import ManualRefundRequiredError, PaymentProviderError, RefundNotEligibleError
from ..inventory import commands as inventory
from ..orders import commands as orders
from ..orders.aggregate import OrderAggregate
from ..orders.events import OrderEvent
from ..payments import PaymentClient

logger = logging.getLogger(__name__)

RECOVERY_WINDOW = timedelta(days=1)
DEFAULT_REFUND_REASON = "Customer requested refund"


async def request_refund(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: str,
    user_id: str,
    reason: str,
    amount: float | None = None,
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """
    返金リクエストコマンド（ユーザー）

    受け付けるのは shipped / delivered かつ支払い完了、返金未申請の自分の注文だけ。
    """
    ensure_session(session)
    agg = await orders.load_order(session, order_id)

    if agg.user_id != user_id:
        raise RefundNotEligibleError(order_id, "order belongs to another user")
    blocked = agg.refund_block_reason()
    if blocked:
        raise RefundNotEligibleError(order_id, blocked)

    if amount is None:
        amount = agg.total_amount
    if amount <= 0 or amount > agg.total_amount:
        raise RefundNotEligibleError(
            order_id, f"amount must be between 0 and {agg.total_amount:.2f}"
        )

    now = utcnow()
    events = agg.request_refund(reason, amount, now)
    await orders.commit_and_publish(
        session,
        redis,
        agg,
        events,
        refund_reason=reason,
        refund_amount=amount,
        refund_request_date=now.isoformat(),
    )
    logger.info("Refund request submitted for order %s", order_id)
    return agg, events


async def approve_refund(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: str,
    admin_name: str,
    default_stock: int = inventory.DEFAULT_STOCK_COUNT,
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """返金承認コマンド（管理者）。購入された数量を在庫に戻す。"""
    ensure_session(session)
    agg = await orders.load_order(session, order_id)

    now = utcnow()
    events = agg.approve_refund(admin_name, now)
    await orders.commit_and_publish(
        session,
        redis,
        agg,
        events,
        refund_approved_date=now.isoformat(),
        refund_approved_by=admin_name,
    )

    try:
        for item in agg.line_items():
            await inventory.restore_stock(
                session,
                redis,
                item.product_id,
                item.quantity,
                order_id=order_id,
                default_stock=default_stock,
            )
    except Exception:
        logger.error("Refund approved for order %s but stock was not restored", order_id)
        raise

    logger.info("Refund approved for order %s by %s", order_id, admin_name)
    return agg, events


async def reject_refund(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: str,
    admin_name: str,
    reason: str,
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """返金却下コマンド（管理者）。却下は終端。"""
    ensure_session(session)
    agg = await orders.load_order(session, order_id)

    now = utcnow()
    events = agg.reject_refund(admin_name, reason, now)
    await orders.commit_and_publish(
        session,
        redis,
        agg,
        events,
        refund_rejection_reason=reason,
        refund_processed_date=now.isoformat(),
        refund_processed_by=admin_name,
    )
    logger.info("Refund rejected for order %s by %s", order_id, admin_name)
    return agg, events


async def recover_payment_reference(
    session: AsyncSession,
    redis: aioredis.Redis,
    agg: OrderAggregate,
    payments: PaymentClient,
) -> str:
    """
    決済参照を持たない注文の payment intent を探して記録する。

    探索範囲は注文作成日時の前後 1 日に限る。見つからない・探索に失敗した場合は
    ManualRefundRequiredError。
    """
    if agg.created_at is None:
        raise ManualRefundRequiredError(agg.id)

    # 部分返金でも、探すのは注文全額の決済
    try:
        payment_intent_id = await payments.find_payment_intent(
            agg.total_amount,
            agg.user_email,
            agg.created_at - RECOVERY_WINDOW,
            agg.created_at + RECOVERY_WINDOW,
        )
    except PaymentProviderError as e:
        logger.warning("Payment intent search failed for order %s", agg.id, exc_info=True)
        raise ManualRefundRequiredError(agg.id) from e

    if not payment_intent_id:
        raise ManualRefundRequiredError(agg.id)

    await orders.record_payment_reference(session, redis, agg, payment_intent_id)
    logger.info("Recovered payment intent %s for order %s", payment_intent_id, agg.id)
    return payment_intent_id


async def process_refund(
    session: AsyncSession,
    redis: aioredis.Redis,
    payments: PaymentClient,
    order_id: str,
    admin_name: str,
) -> tuple[OrderAggregate, list[OrderEvent]]:
    """
    返金処理コマンド（管理者、承認後の最終ステップ）

    プロバイダへの返金が成功したときだけ注文を refunded に進める。
    """
    ensure_session(session)
    agg = await orders.load_order(session, order_id)
    if agg.refund_status != "approved":
        # 先に判定して、不正な状態でプロバイダを呼ばない
        raise RefundNotEligibleError(
            order_id, f"refund status is '{agg.refund_status}', expected 'approved'"
        )

    payment_intent_id = agg.payment_intent_id
    if not payment_intent_id:
        payment_intent_id = await recover_payment_reference(session, redis, agg, payments)

    amount = agg.refund_amount or agg.total_amount
    refund = await payments.process_refund(
        payment_intent_id, amount, agg.refund_reason or DEFAULT_REFUND_REASON
    )

    now = utcnow()
    events = agg.process_refund(admin_name, refund.get("refundId"), now)
    await orders.commit_and_publish(
        session,
        redis,
        agg,
        events,
        refund_processed_date=now.isoformat(),
        refund_processed_by=admin_name,
    )
    logger.info("Refund processed for order %s by %s", order_id, admin_name)
    return agg, events
