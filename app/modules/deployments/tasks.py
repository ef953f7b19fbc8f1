import logging
from typing import Any, Dict

from app.config.settings import settings
from app.core.exceptions import is_retryable
from app.database.supabase_client import SupabaseClient
from app.modules.builds.service import BuildService
from app.modules.deployments.orchestrator import DeployOrchestrator
from app.modules.deployments.schemas import DeployJobMessage
from app.modules.deployments.service import DeploymentService
from app.modules.kubernetes.manager import ClusterResourceManager
from app.modules.logs.relay import LogPublisher
from app.queue.celery_app import celery_app

logger = logging.getLogger(__name__)


def deploy_orchestrator() -> DeployOrchestrator:
    client = SupabaseClient.get_service_client()
    return DeployOrchestrator(
        build_service=BuildService(client),
        deployment_service=DeploymentService(client),
        cluster=ClusterResourceManager(),
        publisher=LogPublisher(),
    )


@celery_app.task(
    bind=True,
    name="app.modules.deployments.tasks.run_deploy",
    max_retries=settings.deploy_max_retries,
    acks_late=True,
)
def run_deploy(self, message: Dict[str, Any]):
    job = DeployJobMessage(**message)
    final_attempt = self.request.retries >= self.max_retries
    logger.info(f"Deploy job for build {job.build_id} started (attempt {self.request.retries + 1})")
    try:
        return deploy_orchestrator().run(job, final_attempt=final_attempt)
    except Exception as e:
        if is_retryable(e) and not final_attempt:
            raise self.retry(exc=e, countdown=settings.retry_countdown_seconds)
        logger.error(f"Deploy job for build {job.build_id} failed: {e}")
        raise
