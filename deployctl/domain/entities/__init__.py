from .artifact import Artifact
from .deployment import (
    DeploymentOutcome,
    DeploymentRecord,
    DeploymentState,
    DeploymentTrigger,
    FailureReason,
)
from .health import HealthCheckResult, ProbeOutcome
from .instance import ServiceInstance
from .revision import BuildStatus, Revision

__all__ = [
    "Artifact",
    "BuildStatus",
    "DeploymentOutcome",
    "DeploymentRecord",
    "DeploymentState",
    "DeploymentTrigger",
    "FailureReason",
    "HealthCheckResult",
    "ProbeOutcome",
    "Revision",
    "ServiceInstance",
]
