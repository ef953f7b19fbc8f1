from fastapi import APIRouter, Depends, HTTPException
from app.database.supabase_client import get_supabase
from app.core.dependencies import get_current_user_id
from app.core.exceptions import RecordNotFoundError
from app.modules.builds.schemas import BuildResponse
from app.modules.builds.service import BuildService
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/builds", tags=["builds"])


def get_build_service(supabase: Client = Depends(get_supabase)) -> BuildService:
    return BuildService(supabase)


@router.get("/{build_id}", response_model=BuildResponse)
async def get_build(
    build_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: BuildService = Depends(get_build_service),
):
    """Get a build with its stored logs (owner only)"""
    try:
        build = service.get_build_by_id(build_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Build not found")
    if build.user_id != user_data["id"]:
        raise HTTPException(status_code=404, detail="Build not found")
    return build
