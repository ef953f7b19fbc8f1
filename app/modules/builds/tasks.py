import logging
from typing import Any, Dict

from app.config.settings import settings
from app.core.exceptions import is_retryable
from app.database.supabase_client import SupabaseClient
from app.modules.builds.orchestrator import BuildOrchestrator
from app.modules.builds.schemas import BuildJobMessage
from app.modules.builds.service import BuildService
from app.modules.deployments.schemas import DeployJobMessage
from app.modules.deployments.service import DeploymentService
from app.modules.deployments.tasks import run_deploy
from app.modules.github.service import GithubService
from app.modules.kubernetes.manager import ClusterResourceManager
from app.modules.logs.relay import LogPublisher
from app.queue.celery_app import celery_app, BUILD_QUEUE_NAME, DEPLOY_QUEUE_NAME

logger = logging.getLogger(__name__)


def enqueue_build(message: BuildJobMessage) -> None:
    run_build.apply_async(kwargs={"message": message.model_dump()}, queue=BUILD_QUEUE_NAME)


def enqueue_deploy(message: DeployJobMessage) -> None:
    run_deploy.apply_async(kwargs={"message": message.model_dump()}, queue=DEPLOY_QUEUE_NAME)


def build_orchestrator() -> BuildOrchestrator:
    """Per-job wiring; workers keep no state between jobs."""
    client = SupabaseClient.get_service_client()
    return BuildOrchestrator(
        build_service=BuildService(client),
        deployment_service=DeploymentService(client),
        github_service=GithubService(client),
        cluster=ClusterResourceManager(),
        publisher=LogPublisher(),
        enqueue_deploy=enqueue_deploy,
    )


@celery_app.task(
    bind=True,
    name="app.modules.builds.tasks.run_build",
    max_retries=settings.build_max_retries,
    acks_late=True,
)
def run_build(self, message: Dict[str, Any]):
    job = BuildJobMessage(**message)
    final_attempt = self.request.retries >= self.max_retries
    logger.info(f"[{job.build_id}] Build job started (attempt {self.request.retries + 1})")
    try:
        return build_orchestrator().run(job, final_attempt=final_attempt)
    except Exception as e:
        if is_retryable(e) and not final_attempt:
            raise self.retry(exc=e, countdown=settings.retry_countdown_seconds)
        logger.error(f"[{job.build_id}] Build job failed: {e}")
        raise
