"""
Notifications — コマンドハンドラ

ユーザー向け通知の作成・既読化・削除。未読件数キャッシュは
書き換えのたびに必ず無効化する。

一括操作 (全件既読・全件削除) は BATCH_LIMIT 件ずつ順番にコミットする。
"""

import logging
from typing import Literal
from uuid import uuid4

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import BATCH_LIMIT, chunked, ensure_session, utcnow
from ..errors import NotificationNotFoundError
from .cache import NotificationCountCache

logger = logging.getLogger(__name__)

NotificationType = Literal[
    "store_order", "store_payment", "store_shipping", "store_delivery", "store_refund"
]
Priority = Literal["low", "medium", "high"]


async def create_notification(
    session: AsyncSession,
    cache: NotificationCountCache,
    app_id: str,
    user_id: str,
    type: NotificationType,
    title: str,
    message: str,
    priority: Priority = "medium",
    order_id: str | None = None,
    product_name: str | None = None,
    amount: float | None = None,
) -> str:
    ensure_session(session)
    notification_id = uuid4().hex
    await session.execute(
        text("""
            INSERT INTO notifications
                (id, app_id, user_id, type, title, message, order_id,
                 product_name, amount, priority, read, read_at, created_at)
            VALUES
                (:id, :app_id, :user_id, :type, :title, :message, :order_id,
                 :product_name, :amount, :priority, :read, NULL, :now)
        """),
        {
            "id": notification_id,
            "app_id": app_id,
            "user_id": user_id,
            "type": type,
            "title": title,
            "message": message,
            "order_id": order_id,
            "product_name": product_name,
            "amount": amount,
            "priority": priority,
            "read": False,
            "now": utcnow().isoformat(),
        },
    )
    await session.commit()
    cache.invalidate(app_id, user_id)
    return notification_id


async def _set_read(
    session: AsyncSession,
    cache: NotificationCountCache,
    app_id: str,
    notification_id: str,
    user_id: str,
    read: bool,
) -> None:
    ensure_session(session)
    result = await session.execute(
        text("""
            UPDATE notifications
            SET read = :read, read_at = :read_at
            WHERE id = :id AND app_id = :app_id AND user_id = :user_id
        """),
        {
            "read": read,
            "read_at": utcnow().isoformat() if read else None,
            "id": notification_id,
            "app_id": app_id,
            "user_id": user_id,
        },
    )
    if result.rowcount == 0:
        await session.rollback()
        raise NotificationNotFoundError(notification_id)
    await session.commit()
    cache.invalidate(app_id, user_id)


async def mark_read(session, cache, app_id: str, notification_id: str, user_id: str) -> None:
    await _set_read(session, cache, app_id, notification_id, user_id, True)


async def mark_unread(session, cache, app_id: str, notification_id: str, user_id: str) -> None:
    await _set_read(session, cache, app_id, notification_id, user_id, False)


async def _select_ids(
    session: AsyncSession, app_id: str, user_id: str, unread_only: bool
) -> list[str]:
    sql = "SELECT id FROM notifications WHERE app_id = :app_id AND user_id = :user_id"
    params = {"app_id": app_id, "user_id": user_id}
    if unread_only:
        sql += " AND read = :read"
        params["read"] = False
    result = await session.execute(text(sql + " ORDER BY created_at"), params)
    return [row.id for row in result.fetchall()]


async def mark_all_read(
    session: AsyncSession,
    cache: NotificationCountCache,
    app_id: str,
    user_id: str,
    batch_size: int = BATCH_LIMIT,
) -> int:
    """未読をすべて既読にして、更新した件数を返す。"""
    ensure_session(session)
    ids = await _select_ids(session, app_id, user_id, unread_only=True)
    statement = text("""
        UPDATE notifications SET read = :read, read_at = :now WHERE id IN :ids
    """).bindparams(bindparam("ids", expanding=True))

    now = utcnow().isoformat()
    try:
        for batch in chunked(ids, batch_size):
            await session.execute(statement, {"read": True, "now": now, "ids": batch})
            await session.commit()
    finally:
        # 途中のバッチで失敗しても、コミット済みの分はキャッシュに反映させる
        cache.invalidate(app_id, user_id)
    logger.info("Marked %d notifications read for %s", len(ids), user_id)
    return len(ids)


async def delete_notification(
    session: AsyncSession,
    cache: NotificationCountCache,
    app_id: str,
    notification_id: str,
    user_id: str,
) -> None:
    ensure_session(session)
    result = await session.execute(
        text("""
            DELETE FROM notifications
            WHERE id = :id AND app_id = :app_id AND user_id = :user_id
        """),
        {"id": notification_id, "app_id": app_id, "user_id": user_id},
    )
    if result.rowcount == 0:
        await session.rollback()
        raise NotificationNotFoundError(notification_id)
    await session.commit()
    cache.invalidate(app_id, user_id)


async def delete_all(
    session: AsyncSession,
    cache: NotificationCountCache,
    app_id: str,
    user_id: str,
    batch_size: int = BATCH_LIMIT,
) -> int:
    ensure_session(session)
    ids = await _select_ids(session, app_id, user_id, unread_only=False)
    statement = text("DELETE FROM notifications WHERE id IN :ids").bindparams(
        bindparam("ids", expanding=True)
    )
    try:
        for batch in chunked(ids, batch_size):
            await session.execute(statement, {"ids": batch})
            await session.commit()
    finally:
        cache.invalidate(app_id, user_id)
    logger.info("Deleted %d notifications for %s", len(ids), user_id)
    return len(ids)
