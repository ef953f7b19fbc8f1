from fastapi import APIRouter, Depends, HTTPException, Query
from app.database.supabase_client import get_supabase
from app.database.redis_client import get_redis
from app.core.dependencies import get_current_user_id
from app.core.exceptions import RecordNotFoundError, StatusTransitionError
from app.modules.builds.schemas import BuildJobMessage, FAILED as BUILD_FAILED
from app.modules.builds.service import BuildService
from app.modules.builds.tasks import enqueue_build
from app.modules.deployments.quota import user_quota_lock, ensure_quota
from app.modules.deployments.schemas import (
    DeploymentCreate, DeploymentResponse, DeploymentCreatedResponse, FAILED
)
from app.modules.deployments.service import DeploymentService
from app.modules.github.service import GithubService
from supabase import Client
from typing import List, Dict
import redis
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deployments", tags=["deployments"])


def get_deployment_service(supabase: Client = Depends(get_supabase)) -> DeploymentService:
    return DeploymentService(supabase)


def get_build_service(supabase: Client = Depends(get_supabase)) -> BuildService:
    return BuildService(supabase)


def get_github_service(supabase: Client = Depends(get_supabase)) -> GithubService:
    return GithubService(supabase)


@router.post("", response_model=DeploymentCreatedResponse, status_code=201)
def create_deployment(
    data: DeploymentCreate,
    user_data: Dict = Depends(get_current_user_id),
    deployment_service: DeploymentService = Depends(get_deployment_service),
    build_service: BuildService = Depends(get_build_service),
    github_service: GithubService = Depends(get_github_service),
    redis_client: redis.Redis = Depends(get_redis),
):
    """
    Request a deployment of a GitHub repository.
    Records a provisioning Deployment and a queued Build, then enqueues the build job.
    Cluster work happens on the workers.
    """
    user_id = user_data["id"]
    installation_id = github_service.get_installation_id_for_user(user_id)

    with user_quota_lock(redis_client, user_id):
        ensure_quota(deployment_service, user_id)
        deployment = deployment_service.create_deployment(data, user_id)

    build = build_service.create_build(user_id, data.project, data.branch, deployment.id)

    try:
        enqueue_build(BuildJobMessage(
            build_id=build.id,
            repo_name=data.project,
            branch=data.branch,
            installation_id=installation_id,
            deployment_id=deployment.id,
            port=data.port,
            dockerfile_path=data.dockerfile_path,
        ))
    except Exception as e:
        logger.error(f"Failed to enqueue build {build.id}: {str(e)}")
        try:
            build_service.update_build_status(build.id, BUILD_FAILED, logs=f"Could not enqueue build: {e}")
            deployment_service.update_deployment_status(
                deployment.id, FAILED, error_message="Build queue unavailable"
            )
        except (RecordNotFoundError, StatusTransitionError) as mark_error:
            logger.error(f"Could not mark unqueued build {build.id} as failed: {mark_error}")
        raise HTTPException(status_code=503, detail="Build queue unavailable")

    logger.info(f"Deployment {deployment.id} requested by {user_id}; build {build.id} queued")
    return DeploymentCreatedResponse(deployment=deployment, build_id=build.id)


@router.get("", response_model=List[DeploymentResponse])
async def list_deployments(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    user_data: Dict = Depends(get_current_user_id),
    service: DeploymentService = Depends(get_deployment_service),
):
    """List the caller's deployments, newest first"""
    return service.list_deployments_for_user(user_data["id"], page=page, per_page=per_page)


@router.get("/{deployment_id}", response_model=DeploymentResponse)
async def get_deployment(
    deployment_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: DeploymentService = Depends(get_deployment_service),
):
    try:
        deployment = service.get_deployment_by_id(deployment_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Deployment not found")
    if deployment.user_id != user_data["id"]:
        raise HTTPException(status_code=404, detail="Deployment not found")
    return deployment
