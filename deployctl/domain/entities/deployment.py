import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from deployctl.domain.entities.artifact import Artifact
from deployctl.domain.entities.health import HealthCheckResult
from deployctl.domain.entities.instance import ServiceInstance


class DeploymentState(str, Enum):
    IDLE = "Idle"
    DEPLOYING = "Deploying"
    HEALTH_CHECKING = "HealthChecking"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class DeploymentOutcome(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"
    ROLLED_BACK = "RolledBack"


class FailureReason(str, Enum):
    START_FAILED = "StartFailed"
    HEALTH_CHECK_FAILED = "HealthCheckFailed"
    ABORTED = "Aborted"
    PROMOTE_FAILED = "PromoteFailed"


class DeploymentTrigger(str, Enum):
    PUSH = "Push"
    POLL = "Poll"
    MANUAL = "Manual"
    ROLLBACK = "Rollback"


class DeploymentRecord(BaseModel):
    deployment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    artifact: Artifact
    outcome: DeploymentOutcome
    started_at: datetime
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    failure_reason: Optional[FailureReason] = None
    detail: Optional[str] = None
    health_checks: list[HealthCheckResult] = Field(default_factory=list)
    instance: Optional[ServiceInstance] = None
    trigger: DeploymentTrigger = DeploymentTrigger.MANUAL
    rollback_of: Optional[str] = None

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()
