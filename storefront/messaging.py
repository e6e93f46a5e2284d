"""
Storefront — ドメインイベントの発行

コマンドはコミット後にイベントを Redis Pub/Sub に流す。
Pub/Sub は fire-and-forget なので、発行の失敗は記録するだけで
業務上の状態遷移は巻き戻さない。
"""

import json
import logging
from datetime import datetime
from typing import ClassVar

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

INVENTORY_CHANNEL = "inventory_events"
ORDER_CHANNEL = "order_events"


class DomainEvent(BaseModel):
    event_type: ClassVar[str] = ""
    timestamp: datetime

    def payload(self) -> dict:
        return self.model_dump(mode="json")


async def publish_events(
    redis: aioredis.Redis,
    channel: str,
    events: list[DomainEvent],
) -> None:
    for event in events:
        try:
            await redis.publish(
                channel,
                json.dumps(
                    {
                        "event_type": event.event_type,
                        "data": event.payload(),
                    },
                    default=str,
                ),
            )
        except RedisError:
            logger.warning(
                "Failed to publish %s on %s", event.event_type, channel, exc_info=True
            )
