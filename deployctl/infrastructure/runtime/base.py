"""
Service runtime interface.

A runtime starts a service stack for an artifact next to whatever is already
running, promotes a verified stack to receive live traffic, and tears stacks
down.
"""

from abc import ABC, abstractmethod

from deployctl.domain.entities.artifact import Artifact
from deployctl.domain.entities.instance import ServiceInstance


class RuntimeStartError(RuntimeError):
    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class RuntimeStopError(RuntimeError):
    pass


class ServiceRuntime(ABC):
    @abstractmethod
    async def start(self, artifact: Artifact) -> ServiceInstance:
        """Start a new stack for ``artifact`` without touching running stacks."""

    @abstractmethod
    async def stop(self, instance: ServiceInstance) -> None:
        """Tear a stack down and release its slot."""

    @abstractmethod
    async def promote(self, instance: ServiceInstance) -> None:
        """Route live traffic to ``instance``."""

    @abstractmethod
    def adopt(self, instance: ServiceInstance) -> None:
        """Mark an already running stack as owned by this runtime."""
