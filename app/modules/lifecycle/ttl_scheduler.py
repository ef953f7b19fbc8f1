import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from app.config.settings import settings
from app.database.supabase_client import SupabaseClient
from app.modules.deployments import schemas as deployment_status
from app.modules.deployments.orchestrator import app_name_for
from app.modules.deployments.schemas import DeploymentResponse
from app.modules.deployments.service import DeploymentService
from app.modules.kubernetes.manager import ClusterResourceManager

logger = logging.getLogger(__name__)


def is_expired(deployment: DeploymentResponse, now: datetime, ttl: timedelta) -> bool:
    created_at = deployment.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return now - created_at > ttl


def _release_cluster_resources(
    deployment_service: DeploymentService,
    cluster: ClusterResourceManager,
    deployment: DeploymentResponse,
) -> None:
    # The owner namespace may still host another live app; keep it in that case
    others = deployment_service.count_active_deployments_in_namespace(
        deployment.namespace, exclude_id=deployment.id
    )
    if others:
        cluster.delete_app_resources(deployment.namespace, app_name_for(deployment.project, deployment.id))
    else:
        cluster.delete_namespace(deployment.namespace)


def destroy_expired_deployments(
    deployment_service: DeploymentService,
    cluster: ClusterResourceManager,
    ttl_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[str]:
    """One sweep: destroy running deployments older than the TTL. Returns the destroyed ids."""
    ttl = timedelta(minutes=ttl_minutes if ttl_minutes is not None else settings.deployment_ttl_minutes)
    now = now or datetime.now(timezone.utc)

    running = deployment_service.list_running_deployments()
    expired = [d for d in running if is_expired(d, now, ttl)]
    if not expired:
        logger.debug("No expired deployments found")
        return []

    logger.info(f"Found {len(expired)} expired deployment(s) to destroy")
    destroyed = []
    for deployment in expired:
        try:
            logger.info(f"Auto-destroying deployment {deployment.id} (namespace {deployment.namespace})")
            if deployment.namespace:
                _release_cluster_resources(deployment_service, cluster, deployment)
            deployment_service.update_deployment_status(deployment.id, deployment_status.DESTROYED)
            destroyed.append(deployment.id)
        except Exception as e:
            logger.error(f"Error auto-destroying deployment {deployment.id}: {str(e)}")
    return destroyed


def check_and_destroy_expired_deployments() -> List[str]:
    client = SupabaseClient.get_service_client()
    return destroy_expired_deployments(DeploymentService(client), ClusterResourceManager())


async def ttl_scheduler_loop():
    """Background task that periodically destroys expired deployments"""
    logger.info(
        f"TTL scheduler started: every {settings.reaper_interval_seconds}s, "
        f"TTL {settings.deployment_ttl_minutes} minutes"
    )
    while True:
        try:
            await asyncio.to_thread(check_and_destroy_expired_deployments)
        except Exception as e:
            logger.error(f"Error in TTL scheduler loop: {str(e)}")

        await asyncio.sleep(settings.reaper_interval_seconds)
