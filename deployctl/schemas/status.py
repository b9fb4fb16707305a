from typing import List, Optional

from pydantic import BaseModel

from deployctl.domain.entities.deployment import DeploymentRecord, DeploymentState
from deployctl.domain.entities.instance import ServiceInstance


class WatcherStatus(BaseModel):
    status: str
    branch: str
    last_observed_sha: Optional[str] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None


class ControllerStatus(BaseModel):
    watcher: WatcherStatus
    deployment_state: DeploymentState
    deploying: bool
    live_instance: Optional[ServiceInstance] = None
    current_deployment: Optional[DeploymentRecord] = None
    pending_commit: Optional[str] = None
    active_builds: List[str] = []


class DeploymentHistoryResponse(BaseModel):
    count: int
    deployments: List[DeploymentRecord]
