from .build_service import BuildExecutor
from .deploy_service import DeploymentOrchestrator
from .health_service import HealthChecker, HealthCheckPolicy
from .monitor_service import RuntimeMonitor
from .pipeline_service import DeploymentPipeline
from .rollback_service import RollbackManager
from .watch_service import SourceWatcher, WatcherHealth

__all__ = [
    "BuildExecutor",
    "DeploymentOrchestrator",
    "DeploymentPipeline",
    "HealthCheckPolicy",
    "HealthChecker",
    "RollbackManager",
    "RuntimeMonitor",
    "SourceWatcher",
    "WatcherHealth",
]
