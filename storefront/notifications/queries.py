"""
Notifications — クエリハンドラ
"""

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .cache import NotificationCountCache

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


def _to_dict(row) -> dict:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "type": row.type,
        "title": row.title,
        "message": row.message,
        "order_id": row.order_id,
        "product_name": row.product_name,
        "amount": float(row.amount) if row.amount is not None else None,
        "priority": row.priority,
        "read": bool(row.read),
        "read_at": row.read_at,
        "created_at": row.created_at,
    }


async def get_unread_count(
    session: AsyncSession,
    cache: NotificationCountCache,
    app_id: str,
    user_id: str,
) -> int:
    """未読件数。キャッシュを優先し、読み取りに失敗したら 0 を返す。"""
    cached = cache.get(app_id, user_id)
    if cached is not None:
        return cached

    if session is None:
        return 0
    try:
        result = await session.execute(
            text("""
                SELECT COUNT(*) AS count FROM notifications
                WHERE app_id = :app_id AND user_id = :user_id AND read = :read
            """),
            {"app_id": app_id, "user_id": user_id, "read": False},
        )
        count = result.scalar_one()
    except SQLAlchemyError:
        logger.exception("Error getting unread notification count for %s", user_id)
        return 0

    cache.set(app_id, user_id, count)
    return count


async def list_notifications(
    session: AsyncSession,
    app_id: str,
    user_id: str,
    page_size: int = DEFAULT_PAGE_SIZE,
    before: str | None = None,
) -> dict:
    """
    新しい順に 1 ページ分の通知を返す。

    before には前のページの cursor (最後の通知 ID) を渡す。
    """
    params = {"app_id": app_id, "user_id": user_id, "limit": page_size + 1}
    cursor_clause = ""
    if before:
        result = await session.execute(
            text("SELECT created_at FROM notifications WHERE id = :id"),
            {"id": before},
        )
        anchor = result.fetchone()
        if anchor:
            cursor_clause = """
                AND (created_at < :before_ts
                     OR (created_at = :before_ts AND id < :before_id))
            """
            params.update(before_ts=anchor.created_at, before_id=before)

    result = await session.execute(
        text(f"""
            SELECT * FROM notifications
            WHERE app_id = :app_id AND user_id = :user_id {cursor_clause}
            ORDER BY created_at DESC, id DESC
            LIMIT :limit
        """),
        params,
    )
    rows = result.fetchall()
    page = [_to_dict(row) for row in rows[:page_size]]
    return {
        "notifications": page,
        "has_more": len(rows) > page_size,
        "cursor": page[-1]["id"] if page else None,
    }
