"""
Inventory — クエリハンドラ (CQRS Read 側)
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


def _to_dict(row) -> dict:
    return {
        "product_id": row.product_id,
        "stock_count": row.stock_count,
        "reserved_stock": row.reserved_stock,
        "available": row.stock_count - row.reserved_stock,
        "last_updated": row.last_updated,
    }


async def get_product_stock(session: AsyncSession, product_id: str) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM product_stock WHERE product_id = :id"),
        {"id": product_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return _to_dict(row)


async def list_product_stock(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("SELECT * FROM product_stock ORDER BY product_id"),
    )
    return [_to_dict(row) for row in result.fetchall()]


def clamp_to_available(requested: int, available: int) -> tuple[int, bool]:
    """
    要求数を在庫の空き数に丸める。

    戻り値の 2 番目は丸めが発生したかどうか (ユーザーに通知するため)。
    """
    allowed = max(0, available)
    if requested > allowed:
        return allowed, True
    return requested, False
