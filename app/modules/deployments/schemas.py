from pydantic import BaseModel, Field
from typing import Optional, Dict, Tuple
from datetime import datetime

PROVISIONING = "provisioning"
BUILDING = "building"
DEPLOYING = "deploying"
RUNNING = "running"
DEPLOY_FAILED = "deploy_failed"
FAILED = "failed"
DESTROYED = "destroyed"

# Counted against the per-user quota
ACTIVE_STATUSES = (PROVISIONING, BUILDING, DEPLOYING, RUNNING)

# target status -> statuses it may be reached from
DEPLOYMENT_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    BUILDING: (PROVISIONING, BUILDING),
    DEPLOYING: (BUILDING, DEPLOYING),
    RUNNING: (DEPLOYING,),
    DEPLOY_FAILED: (BUILDING, DEPLOYING),
    FAILED: (PROVISIONING, BUILDING),
    DESTROYED: (RUNNING,),
}


class DeploymentCreate(BaseModel):
    project: str = Field(min_length=3, pattern=r"^[\w.-]+/[\w.-]+$")
    project_name: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    branch: str = Field(default="main", min_length=1)
    dockerfile_path: Optional[str] = None


class DeploymentResponse(BaseModel):
    id: str
    user_id: str
    project: str
    project_name: str
    branch: Optional[str] = None
    dockerfile_path: Optional[str] = None
    port: Optional[int] = None
    namespace: Optional[str] = None
    url: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeploymentCreatedResponse(BaseModel):
    deployment: DeploymentResponse
    build_id: str


class DeployJobMessage(BaseModel):
    build_id: str
    image_uri: str
    port: int
