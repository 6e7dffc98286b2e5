"""Points/rewards event sink.

Points accounting lives in another service; the core only reports session
completions and feedback submissions to it.
"""

import json
import logging
from typing import Protocol

import redis

from ..config import settings
from ..errors import UpstreamFailure

logger = logging.getLogger(__name__)


class RewardsLedger(Protocol):
    def session_completed(self, session_id: str, teacher_id: str, student_id: str) -> None: ...
    def feedback_submitted(self, session_id: str, author_id: str, role: str) -> None: ...


class RedisRewardsLedger:
    """Publishes reward events as JSON on a single Redis channel."""

    def __init__(self, redis_url: str, channel: str = "rewards") -> None:
        self._client = redis.from_url(redis_url, decode_responses=True)
        self._client.ping()
        self._channel = channel

    def _publish(self, event: dict) -> None:
        try:
            self._client.publish(self._channel, json.dumps(event))
        except redis.RedisError as exc:
            raise UpstreamFailure(f"rewards event {event.get('event')} failed: {exc}") from exc

    def session_completed(self, session_id: str, teacher_id: str, student_id: str) -> None:
        self._publish(
            {"event": "session_completed", "sessionId": session_id, "teacherId": teacher_id, "studentId": student_id}
        )

    def feedback_submitted(self, session_id: str, author_id: str, role: str) -> None:
        self._publish({"event": "feedback_submitted", "sessionId": session_id, "authorId": author_id, "role": role})


class NullRewardsLedger:
    def session_completed(self, session_id: str, teacher_id: str, student_id: str) -> None:
        logger.debug("rewards disabled, dropping session_completed for %s", session_id)

    def feedback_submitted(self, session_id: str, author_id: str, role: str) -> None:
        logger.debug("rewards disabled, dropping feedback_submitted for %s", session_id)


def create_rewards_ledger() -> RewardsLedger:
    if not settings.redis_url:
        return NullRewardsLedger()
    try:
        return RedisRewardsLedger(settings.redis_url, settings.rewards_channel)
    except redis.RedisError:
        logger.warning("Redis unreachable at startup, rewards events disabled")
        return NullRewardsLedger()
