"""
Refunds — クエリハンドラ
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..orders.queries import order_to_dict


async def get_refundable_orders(session: AsyncSession, user_id: str) -> list[dict]:
    """返金を申請できるユーザーの注文 (新しい順)。"""
    result = await session.execute(
        text("""
            SELECT * FROM store_orders
            WHERE user_id = :user_id
              AND payment_status = 'completed'
              AND status IN ('shipped', 'delivered')
              AND refund_status = 'none'
            ORDER BY created_at DESC
        """),
        {"user_id": user_id},
    )
    return [order_to_dict(row) for row in result.fetchall()]


async def get_refund_requests(session: AsyncSession) -> list[dict]:
    """返金ワークフローに入った注文すべて (管理画面用、申請日の新しい順)。"""
    result = await session.execute(
        text("""
            SELECT * FROM store_orders
            WHERE refund_status IN ('requested', 'approved', 'processed', 'rejected')
            ORDER BY refund_request_date DESC
        """),
    )
    return [order_to_dict(row) for row in result.fetchall()]
