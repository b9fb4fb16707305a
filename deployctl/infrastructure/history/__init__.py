from .history_store import DeploymentHistory

__all__ = ["DeploymentHistory"]
