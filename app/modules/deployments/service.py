from supabase import Client
from app.core.exceptions import RecordNotFoundError, StatusTransitionError
from app.modules.deployments.schemas import (
    DeploymentCreate, DeploymentResponse, DEPLOYMENT_TRANSITIONS, ACTIVE_STATUSES, PROVISIONING, RUNNING
)
from typing import List, Optional
from fastapi import HTTPException
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


class DeploymentService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def create_deployment(self, deployment_data: DeploymentCreate, user_id: str) -> DeploymentResponse:
        """Create a new deployment in 'provisioning'"""
        try:
            result = self.supabase.table("deployments").insert({
                "user_id": user_id,
                "project": deployment_data.project,
                "project_name": deployment_data.project_name,
                "branch": deployment_data.branch,
                "dockerfile_path": deployment_data.dockerfile_path,
                "port": deployment_data.port,
                "status": PROVISIONING,
            }).execute()

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to create deployment")

            return DeploymentResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating deployment: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def count_active_deployments(self, user_id: str) -> int:
        result = self.supabase.table("deployments")\
            .select("id", count="exact")\
            .eq("user_id", user_id)\
            .in_("status", list(ACTIVE_STATUSES))\
            .execute()
        if result.count is None:
            raise HTTPException(status_code=500, detail="Could not count active deployments")
        return result.count

    def get_deployment_by_id(self, deployment_id: str) -> DeploymentResponse:
        result = self.supabase.table("deployments")\
            .select("*")\
            .eq("id", deployment_id)\
            .maybe_single()\
            .execute()

        if not result or not result.data:
            raise RecordNotFoundError(f"Deployment {deployment_id} not found")

        return DeploymentResponse(**result.data)

    def list_deployments_for_user(self, user_id: str, page: int = 1, per_page: int = 10) -> List[DeploymentResponse]:
        """List a user's deployments, newest first"""
        page = max(1, page)
        per_page = min(max(per_page, 1), 100)
        start = (page - 1) * per_page
        try:
            result = self.supabase.table("deployments")\
                .select("*")\
                .eq("user_id", user_id)\
                .order("created_at", desc=True)\
                .range(start, start + per_page - 1)\
                .execute()

            return [DeploymentResponse(**deployment) for deployment in result.data or []]
        except Exception as e:
            logger.error(f"Error listing deployments: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def list_running_deployments(self) -> List[DeploymentResponse]:
        result = self.supabase.table("deployments")\
            .select("*")\
            .eq("status", RUNNING)\
            .execute()
        return [DeploymentResponse(**deployment) for deployment in result.data or []]

    def update_deployment_status(
        self,
        deployment_id: str,
        status: str,
        namespace: Optional[str] = None,
        url: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> DeploymentResponse:
        """
        Move a deployment to `status`. The update only matches rows whose current status
        may transition to it, so a status never moves backwards.
        """
        allowed_from = DEPLOYMENT_TRANSITIONS[status]
        update_data = {"status": status, "updated_at": datetime.now(timezone.utc).isoformat()}
        if namespace:
            update_data["namespace"] = namespace
        if url:
            update_data["url"] = url
        if error_message:
            update_data["error_message"] = error_message

        result = self.supabase.table("deployments")\
            .update(update_data)\
            .eq("id", deployment_id)\
            .in_("status", list(allowed_from))\
            .execute()

        if result.data:
            return DeploymentResponse(**result.data[0])

        # Nothing matched: either the record is gone or the transition is not allowed
        current = self.get_deployment_by_id(deployment_id)
        logger.warning(f"Deployment {deployment_id}: {current.status} -> {status} rejected")
        raise StatusTransitionError("deployments", deployment_id, status, allowed_from)

    def count_active_deployments_in_namespace(self, namespace: str, exclude_id: Optional[str] = None) -> int:
        """Other live deployments sharing `namespace` (it is per owner, not per deployment)."""
        query = self.supabase.table("deployments")\
            .select("id", count="exact")\
            .eq("namespace", namespace)\
            .in_("status", list(ACTIVE_STATUSES))
        if exclude_id:
            query = query.neq("id", exclude_id)
        result = query.execute()
        return result.count or 0
