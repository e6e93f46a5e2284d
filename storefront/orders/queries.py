"""
Orders — クエリハンドラ (CQRS の Read 側)

store_orders リードモデルから読む。JSON カラムは辞書に戻して返す。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import load_json

ORDER_STATUSES = ("pending", "paid", "shipped", "delivered", "cancelled", "refunded")


def order_to_dict(row) -> dict:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "user_email": row.user_email,
        "user_name": row.user_name,
        "product_id": row.product_id,
        "product_name": row.product_name,
        "quantity": row.quantity,
        "total_amount": float(row.total_amount),
        "status": row.status,
        "payment_status": row.payment_status,
        "refund_status": row.refund_status,
        "refund_reason": row.refund_reason,
        "refund_amount": float(row.refund_amount) if row.refund_amount is not None else None,
        "refund_request_date": row.refund_request_date,
        "refund_approved_date": row.refund_approved_date,
        "refund_approved_by": row.refund_approved_by,
        "refund_processed_date": row.refund_processed_date,
        "refund_processed_by": row.refund_processed_by,
        "refund_rejection_reason": row.refund_rejection_reason,
        "payment_intent_id": row.payment_intent_id,
        "items": load_json(row.items, []),
        "shipping_info": load_json(row.shipping_info),
        "tracking_info": load_json(row.tracking_info),
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


async def get_order(session: AsyncSession, order_id: str) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM store_orders WHERE id = :id"),
        {"id": order_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return order_to_dict(row)


async def list_orders(session: AsyncSession, status: str | None = None) -> list[dict]:
    """全注文 (管理画面用)。status を指定するとその状態だけに絞る。"""
    if status:
        result = await session.execute(
            text("""
                SELECT * FROM store_orders
                WHERE status = :status
                ORDER BY created_at DESC
            """),
            {"status": status},
        )
    else:
        result = await session.execute(
            text("SELECT * FROM store_orders ORDER BY created_at DESC"),
        )
    return [order_to_dict(row) for row in result.fetchall()]


async def list_user_orders(session: AsyncSession, user_id: str) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT * FROM store_orders
            WHERE user_id = :user_id
            ORDER BY created_at DESC
        """),
        {"user_id": user_id},
    )
    return [order_to_dict(row) for row in result.fetchall()]
