"""Live push channel with Protocol pattern for dependency injection.

Provides RedisPushChannel (pub/sub fan-out to the websocket gateway) and
NullPushChannel (no-op fallback). Delivery is best-effort: implementations
raise UpstreamFailure and callers decide whether to swallow it.
"""

import json
import logging
from typing import Protocol

import redis

from ..config import settings
from ..errors import UpstreamFailure

logger = logging.getLogger(__name__)


class PushChannel(Protocol):
    """Push channel interface."""

    def push(self, user_id: str, payload: dict) -> None: ...


class RedisPushChannel:
    """Publishes each payload on ``<prefix>:<user_id>``."""

    def __init__(self, redis_url: str, prefix: str = "notifications") -> None:
        self._client = redis.from_url(redis_url, decode_responses=True)
        self._client.ping()
        self._prefix = prefix

    def channel_for(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    def push(self, user_id: str, payload: dict) -> None:
        try:
            self._client.publish(self.channel_for(user_id), json.dumps(payload, ensure_ascii=False, default=str))
        except redis.RedisError as exc:
            raise UpstreamFailure(f"push to {user_id} failed: {exc}") from exc


class NullPushChannel:
    """No-op channel for when Redis is unavailable."""

    def push(self, user_id: str, payload: dict) -> None:
        pass


def create_push_channel() -> PushChannel:
    """Factory: create the appropriate push channel based on configuration."""
    if not settings.redis_url:
        return NullPushChannel()
    try:
        return RedisPushChannel(settings.redis_url, settings.push_channel_prefix)
    except redis.RedisError:
        logger.warning("Redis unreachable at startup, live notifications disabled")
        return NullPushChannel()
