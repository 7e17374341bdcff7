"""Fire-and-forget completion notifications over Redis pub/sub."""
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from redis.asyncio import Redis


logger = logging.getLogger(__name__)


DEFAULT_CHANNEL = "adsync:metrics:notifications"


class NotificationChannel(Protocol):
    async def publish(self, payload: dict) -> None: ...


def build_completion_payload(
    success: bool, message: str, brand_id: str, user_id: Optional[str]
) -> dict:
    return {
        "success": success,
        "message": message,
        "brandId": brand_id,
        "userId": user_id,
        "completedAt": datetime.now(timezone.utc).isoformat(),
    }


class RedisNotificationChannel:
    """Publishes JSON payloads; publish errors are logged, never raised."""

    def __init__(self, redis: Redis, channel: str = DEFAULT_CHANNEL) -> None:
        self.redis = redis
        self.channel = channel

    async def publish(self, payload: dict) -> None:
        try:
            receivers = await self.redis.publish(
                self.channel, json.dumps(payload, separators=(",", ":"))
            )
            logger.info(
                "Published notification for brand=%s to %s (%s receivers)",
                payload.get("brandId"),
                self.channel,
                receivers,
            )
        except Exception as exc:
            logger.error(
                "Failed to publish notification for brand=%s: %s",
                payload.get("brandId"),
                exc,
            )
