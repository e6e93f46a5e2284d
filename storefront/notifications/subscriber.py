"""
Notifications — Redis Pub/Sub サブスクライバー

NOTIFICATION_MODE=subscriber のとき、order_events チャネルを購読して
受信したイベントから通知を作る (API プロセスの外で通知を書く構成)。

注意: Redis Pub/Sub は fire-and-forget 方式。
購読していない間に流れたイベントの通知は作られない。
"""

import asyncio
import json
import logging

import redis.asyncio as aioredis
from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from ..messaging import ORDER_CHANNEL
from ..orders.events import EVENT_TYPES
from .cache import NotificationCountCache
from .dispatcher import dispatch_events

logger = logging.getLogger(__name__)


def parse_message(data: str):
    """Pub/Sub のメッセージをドメインイベントに戻す。知らない種類は None。"""
    message = json.loads(data)
    event_cls = EVENT_TYPES.get(message.get("event_type"))
    if event_cls is None:
        return None
    return event_cls.model_validate(message.get("data", {}))


async def run_subscriber(
    redis_conn: aioredis.Redis,
    async_session_factory: sessionmaker,
    cache: NotificationCountCache,
    app_id: str,
    shutdown_event: asyncio.Event,
) -> None:
    """
    order_events チャネルを購読し、イベントを通知に変換する。
    shutdown_event がセットされるまで待機し続ける。
    """
    pubsub = redis_conn.pubsub()
    await pubsub.subscribe(ORDER_CHANNEL)
    logger.info("Subscribed to %s channel", ORDER_CHANNEL)

    try:
        while not shutdown_event.is_set():
            message = await pubsub.get_message(
                ignore_subscribe_messages=True, timeout=1.0
            )
            if message and message["type"] == "message":
                try:
                    event = parse_message(message["data"])
                except (ValueError, ValidationError):
                    logger.exception("Discarding malformed event message")
                    continue
                if event is None:
                    continue
                async with async_session_factory() as session:
                    await dispatch_events(session, cache, app_id, [event])
            else:
                await asyncio.sleep(0.1)
    finally:
        await pubsub.unsubscribe(ORDER_CHANNEL)
        await pubsub.aclose()
