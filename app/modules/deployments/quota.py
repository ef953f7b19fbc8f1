"""Per-user deployment quota, checked under a Redis lock so count + insert cannot interleave."""
import logging
from contextlib import contextmanager
from typing import Iterator

import redis
from redis.exceptions import LockError
from fastapi import HTTPException

from app.config.settings import settings
from app.core.exceptions import QuotaExceededError
from app.modules.deployments.service import DeploymentService

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 10
LOCK_WAIT_SECONDS = 5


@contextmanager
def user_quota_lock(redis_client: redis.Redis, user_id: str) -> Iterator[None]:
    lock = redis_client.lock(
        f"quota:{user_id}", timeout=LOCK_TIMEOUT_SECONDS, blocking_timeout=LOCK_WAIT_SECONDS
    )
    if not lock.acquire():
        raise HTTPException(status_code=409, detail="Another deployment request is in progress")
    try:
        yield
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning(f"Quota lock for user {user_id} expired before release")


def ensure_quota(deployment_service: DeploymentService, user_id: str) -> None:
    active = deployment_service.count_active_deployments(user_id)
    if active >= settings.max_active_deployments:
        raise QuotaExceededError(
            f"Deployment limit reached ({settings.max_active_deployments} active deployments)."
        )
