from supabase import Client
from app.core.exceptions import RecordNotFoundError, StatusTransitionError
from app.modules.builds.schemas import BuildResponse, BUILD_TRANSITIONS, QUEUED, TERMINAL_STATUSES
from app.modules.deployments.schemas import DeploymentResponse
from typing import Optional, Tuple
from fastapi import HTTPException
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

MAX_LOG_CHARS = 20000


class BuildService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def create_build(self, user_id: str, repo_name: str, branch: str, deployment_id: str) -> BuildResponse:
        """Create a queued build linked to its deployment"""
        try:
            result = self.supabase.table("builds").insert({
                "user_id": user_id,
                "repo_name": repo_name,
                "branch": branch,
                "deployment_id": deployment_id,
                "status": QUEUED,
            }).execute()

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to create build")

            return BuildResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating build: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_build_by_id(self, build_id: str) -> BuildResponse:
        result = self.supabase.table("builds")\
            .select("*")\
            .eq("id", build_id)\
            .maybe_single()\
            .execute()

        if not result or not result.data:
            raise RecordNotFoundError(f"Build {build_id} not found")

        return BuildResponse(**result.data)

    def get_build_with_deployment(self, build_id: str) -> Tuple[BuildResponse, Optional[DeploymentResponse]]:
        """Relational fetch: the build and the deployment it is linked to."""
        result = self.supabase.table("builds")\
            .select("*, deployments(*)")\
            .eq("id", build_id)\
            .maybe_single()\
            .execute()

        if not result or not result.data:
            raise RecordNotFoundError(f"Build record not found for ID: {build_id}")

        row = dict(result.data)
        embedded = row.pop("deployments", None)
        if isinstance(embedded, list):
            embedded = embedded[0] if embedded else None
        deployment = DeploymentResponse(**embedded) if embedded else None
        return BuildResponse(**row), deployment

    def update_build_status(
        self,
        build_id: str,
        status: str,
        image_uri: Optional[str] = None,
        logs: Optional[str] = None
    ) -> BuildResponse:
        """Move a build to `status`; rejected (StatusTransitionError) if that would move it backwards."""
        allowed_from = BUILD_TRANSITIONS[status]
        update_data = {"status": status}
        if image_uri:
            update_data["image_uri"] = image_uri
        if logs:
            update_data["logs"] = logs[-MAX_LOG_CHARS:]
        if status in TERMINAL_STATUSES:
            update_data["finished_at"] = datetime.now(timezone.utc).isoformat()

        result = self.supabase.table("builds")\
            .update(update_data)\
            .eq("id", build_id)\
            .in_("status", list(allowed_from))\
            .execute()

        if result.data:
            return BuildResponse(**result.data[0])

        current = self.get_build_by_id(build_id)
        logger.warning(f"Build {build_id}: {current.status} -> {status} rejected")
        raise StatusTransitionError("builds", build_id, status, allowed_from)

    def append_build_logs(self, build_id: str, text: str) -> None:
        """Append diagnostics without touching status (used between queue retries)."""
        current = self.get_build_by_id(build_id)
        logs = f"{current.logs}\n{text}" if current.logs else text
        self.supabase.table("builds")\
            .update({"logs": logs[-MAX_LOG_CHARS:]})\
            .eq("id", build_id)\
            .execute()
