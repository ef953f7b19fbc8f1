"""Celery application: the build and deploy queues."""
import logging

from celery import Celery
from celery.signals import worker_ready

from app.config.settings import settings

BUILD_QUEUE_NAME = "build-queue"
DEPLOY_QUEUE_NAME = "deploy-queue"

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

celery_app = Celery(
    "launchpad",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.modules.builds.tasks", "app.modules.deployments.tasks"],
)

celery_app.conf.update(
    # One job in flight per consumer slot, acknowledged only once handled
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "app.modules.builds.tasks.run_build": {"queue": BUILD_QUEUE_NAME},
        "app.modules.deployments.tasks.run_deploy": {"queue": DEPLOY_QUEUE_NAME},
    },
    # Serialization
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Time settings
    timezone="UTC",
    enable_utc=True,
    result_expires=86400,  # 24 hours
    task_track_started=True,
    broker_connection_retry_on_startup=True,
)


def purge_queue(app: Celery, queue_name: str) -> int:
    with app.connection_for_write() as conn:
        return conn.default_channel.queue_purge(queue_name) or 0


@worker_ready.connect
def discard_stale_deploy_jobs(sender=None, **kwargs):
    """Deploy jobs queued before a restart are dropped rather than replayed.

    `sender` is the worker's Consumer; only workers consuming the deploy queue purge it.
    """
    task_consumer = getattr(sender, "task_consumer", None)
    queues = {q.name for q in getattr(task_consumer, "queues", [])}
    if DEPLOY_QUEUE_NAME not in queues:
        return
    discarded = purge_queue(celery_app, DEPLOY_QUEUE_NAME)
    logger.info(f"Discarded {discarded} stale job(s) from {DEPLOY_QUEUE_NAME} on startup")
