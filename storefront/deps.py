"""
Storefront — FastAPI 依存関係

DB セッション・Redis・外部 API クライアント・通知キャッシュは
lifespan で app.state に用意し、ここからルートに渡す。
"""

from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from . import users
from .config import Settings
from .errors import PermissionDeniedError
from .marketing.email import EmailClient
from .messaging import DomainEvent
from .notifications.cache import NotificationCountCache
from .notifications.dispatcher import dispatch_events
from .payments import PaymentClient


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_redis(request: Request) -> aioredis.Redis:
    return request.app.state.redis


def get_payments(request: Request) -> PaymentClient:
    return request.app.state.payments


def get_email(request: Request) -> EmailClient:
    return request.app.state.email


def get_cache(request: Request) -> NotificationCountCache:
    return request.app.state.notification_cache


async def require_user(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id:
        raise PermissionDeniedError(None, "access this resource")
    return x_user_id


async def require_team_member(
    session: AsyncSession = Depends(get_session),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    """管理操作は admin / team_member のみ。"""
    if not await users.is_team_member(session, user_id):
        raise PermissionDeniedError(user_id, "perform admin actions")
    return user_id


async def require_admin(
    session: AsyncSession = Depends(get_session),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    """メールマーケティング (管理パネル) は admin のみ。"""
    if not await users.is_admin(session, user_id):
        raise PermissionDeniedError(user_id, "manage email marketing")
    return user_id


class Notifier:
    """コマンドが返したイベントから通知を作る (inline モードのときだけ)。"""

    def __init__(
        self,
        session: AsyncSession = Depends(get_session),
        cache: NotificationCountCache = Depends(get_cache),
        settings: Settings = Depends(get_settings),
    ):
        self.session = session
        self.cache = cache
        self.settings = settings

    async def emit(self, events: list[DomainEvent]) -> None:
        if self.settings.notification_mode != "inline":
            return
        await dispatch_events(self.session, self.cache, self.settings.app_id, events)
