from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from app.config.settings import settings
from app.database.supabase_client import get_supabase
from app.database.redis_client import get_redis
from app.core.dependencies import get_current_user_id
from app.modules.github.service import GithubService
from app.modules.state.service import StateService
from supabase import Client
from typing import Any, Dict, List, Optional
import redis
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/github", tags=["github"])


def get_github_service(supabase: Client = Depends(get_supabase)) -> GithubService:
    return GithubService(supabase)


def get_state_service(redis_client: redis.Redis = Depends(get_redis)) -> StateService:
    return StateService(redis_client)


@router.get("/repos", response_model=List[Dict[str, Any]])
async def list_repositories(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(30, ge=1, le=100),
    user_data: Dict = Depends(get_current_user_id),
    service: GithubService = Depends(get_github_service),
):
    """Repositories reachable through the caller's GitHub App installation"""
    installation_id = service.get_installation_id_for_user(user_data["id"])
    return service.list_repositories(installation_id, page=page, per_page=per_page, search=search)


@router.get("/install")
async def install_app(
    user_data: Dict = Depends(get_current_user_id),
    state_service: StateService = Depends(get_state_service),
):
    if not settings.github_app_name:
        raise HTTPException(status_code=500, detail="GitHub App is not configured")
    state = state_service.generate_state(user_data["id"])
    return RedirectResponse(
        url=f"https://github.com/apps/{settings.github_app_name}/installations/new?state={state}"
    )


@router.get("/setup-callback")
async def setup_callback(
    installation_id: int,
    state: Optional[str] = None,
    service: GithubService = Depends(get_github_service),
    state_service: StateService = Depends(get_state_service),
):
    """GitHub redirects here after installation. The state token identifies the user."""
    user_id = state_service.consume_state(state)
    if not user_id:
        raise HTTPException(status_code=403, detail="Invalid or expired state")
    service.link_installation_to_user(user_id, installation_id)
    logger.info(f"Linked GitHub installation {installation_id} to user {user_id}")
    return RedirectResponse(url=f"{settings.frontend_url.rstrip('/')}/dashboard")
