"""Room notifications over Redis pub/sub.

The WebSocket gateway subscribes to ``<prefix><room_id>`` and forwards each
event to the browsers in that room; this process only publishes.
"""

import json
from typing import Any
from uuid import UUID

import redis.asyncio as redis

from polymind.domain.chat.types import NotificationTopic
from polymind.shared.logging import get_logger

logger = get_logger(__name__)


class RedisNotifier:
    def __init__(self, client: redis.Redis, channel_prefix: str = "polymind:room:") -> None:
        self.client = client
        self.channel_prefix = channel_prefix

    def channel_for(self, room_id: UUID) -> str:
        return f"{self.channel_prefix}{room_id}"

    async def notify(
        self, room_id: UUID, topic: NotificationTopic, payload: dict[str, Any]
    ) -> None:
        message = json.dumps(
            {"event": NotificationTopic(topic).value, "roomId": str(room_id), "data": payload},
            ensure_ascii=False,
        )
        receivers = await self.client.publish(self.channel_for(room_id), message)
        if topic != NotificationTopic.DELTA:
            logger.debug(
                "room_notified",
                room_id=str(room_id),
                topic=NotificationTopic(topic).value,
                receivers=receivers,
            )

    async def close(self) -> None:
        await self.client.aclose()
