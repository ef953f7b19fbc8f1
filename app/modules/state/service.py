"""
Single-use correlation tokens (GitHub App install `state`), stored in Redis with a
per-entry expiry so every API instance shares them and restarts do not drop them.
"""
import logging
import secrets
from typing import Optional

import redis

from app.config.settings import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "state:"


class StateService:
    def __init__(self, redis_client: redis.Redis, ttl_seconds: Optional[int] = None):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or settings.state_ttl_seconds

    def generate_state(self, user_id: str) -> str:
        state = secrets.token_hex(20)
        self.redis.set(f"{KEY_PREFIX}{state}", user_id, ex=self.ttl_seconds)
        return state

    def consume_state(self, state: str) -> Optional[str]:
        """Return the user id bound to `state` and delete it. None if unknown, expired or reused."""
        if not state:
            return None
        user_id = self.redis.getdel(f"{KEY_PREFIX}{state}")
        if user_id is None:
            logger.warning("State verification failed: state not found or expired")
        return user_id
