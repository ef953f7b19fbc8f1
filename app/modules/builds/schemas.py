from pydantic import BaseModel
from typing import Optional, Dict, Tuple
from datetime import datetime

QUEUED = "queued"
BUILDING = "building"
SUCCESS = "success"
FAILED = "failed"

TERMINAL_STATUSES = (SUCCESS, FAILED)

# target status -> statuses it may be reached from
BUILD_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    BUILDING: (QUEUED, BUILDING),
    SUCCESS: (BUILDING,),
    FAILED: (QUEUED, BUILDING),
}


class BuildResponse(BaseModel):
    id: str
    user_id: str
    deployment_id: Optional[str] = None
    repo_name: str
    branch: Optional[str] = None
    status: str
    image_uri: Optional[str] = None
    logs: Optional[str] = None
    created_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BuildJobMessage(BaseModel):
    build_id: str
    repo_name: str
    branch: str
    installation_id: int
    deployment_id: str
    port: int
    dockerfile_path: Optional[str] = None
