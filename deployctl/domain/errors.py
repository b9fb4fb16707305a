"""
Error taxonomy for the deployment controller.

WatchError is transient and retried by the watcher. BuildError and DeployError
are reported and never stop the running service. RollbackError is escalated
to the operator.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from deployctl.domain.entities.deployment import DeploymentRecord


class DeployctlError(Exception):
    """Base class for controller errors."""


class WatchError(DeployctlError):
    """Source control could not be reached or answered unexpectedly."""


class BuildErrorKind(str, Enum):
    DEPENDENCY_FETCH_FAILED = "DependencyFetchFailed"
    COMPILE_FAILED = "CompileFailed"
    TIMEOUT = "Timeout"


class BuildError(DeployctlError):
    def __init__(self, kind: BuildErrorKind, message: str, log: str = ""):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message
        self.log = log


class DeployError(DeployctlError):
    def __init__(self, message: str, record: Optional["DeploymentRecord"] = None):
        super().__init__(message)
        self.message = message
        self.record = record


class RollbackError(DeployctlError):
    """No known-good artifact to restore, or restoring it failed."""
