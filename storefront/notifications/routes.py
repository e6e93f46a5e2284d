"""
Notifications — HTTP エンドポイント

自分の通知だけを操作できる (X-User-Id で本人を識別)。
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import get_cache, get_session, get_settings, require_user
from ..errors import PermissionDeniedError
from . import commands, queries
from .cache import NotificationCountCache

router = APIRouter()


def _check_owner(user_id: str, caller: str) -> None:
    if user_id != caller:
        raise PermissionDeniedError(caller, f"access notifications of {user_id}")


@router.post("/commands/notifications/{notification_id}/read")
async def cmd_mark_read(
    notification_id: str,
    session: AsyncSession = Depends(get_session),
    cache: NotificationCountCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
    user_id: str = Depends(require_user),
):
    await commands.mark_read(session, cache, settings.app_id, notification_id, user_id)
    return {"success": True}


@router.post("/commands/notifications/{notification_id}/unread")
async def cmd_mark_unread(
    notification_id: str,
    session: AsyncSession = Depends(get_session),
    cache: NotificationCountCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
    user_id: str = Depends(require_user),
):
    await commands.mark_unread(session, cache, settings.app_id, notification_id, user_id)
    return {"success": True}


@router.post("/commands/notifications/read-all")
async def cmd_mark_all_read(
    session: AsyncSession = Depends(get_session),
    cache: NotificationCountCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
    user_id: str = Depends(require_user),
):
    updated = await commands.mark_all_read(session, cache, settings.app_id, user_id)
    return {"success": True, "updated": updated}


@router.delete("/commands/notifications/{notification_id}")
async def cmd_delete_notification(
    notification_id: str,
    session: AsyncSession = Depends(get_session),
    cache: NotificationCountCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
    user_id: str = Depends(require_user),
):
    await commands.delete_notification(
        session, cache, settings.app_id, notification_id, user_id
    )
    return {"success": True}


@router.delete("/commands/notifications")
async def cmd_delete_all(
    session: AsyncSession = Depends(get_session),
    cache: NotificationCountCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
    user_id: str = Depends(require_user),
):
    deleted = await commands.delete_all(session, cache, settings.app_id, user_id)
    return {"success": True, "deleted": deleted}


@router.get("/queries/users/{user_id}/notifications")
async def query_notifications(
    user_id: str,
    page_size: int = Query(default=queries.DEFAULT_PAGE_SIZE, ge=1, le=100),
    before: str | None = None,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    caller: str = Depends(require_user),
):
    _check_owner(user_id, caller)
    return await queries.list_notifications(
        session, settings.app_id, user_id, page_size, before
    )


@router.get("/queries/users/{user_id}/notifications/unread-count")
async def query_unread_count(
    user_id: str,
    session: AsyncSession = Depends(get_session),
    cache: NotificationCountCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
    caller: str = Depends(require_user),
):
    _check_owner(user_id, caller)
    count = await queries.get_unread_count(session, cache, settings.app_id, user_id)
    return {"count": count}
