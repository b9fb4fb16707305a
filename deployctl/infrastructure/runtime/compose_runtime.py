"""Docker Compose runtime with blue/green slots."""
import logging
import os
import tempfile
from typing import Dict, List, Optional

from deployctl.domain.entities.artifact import Artifact
from deployctl.domain.entities.instance import ServiceInstance
from deployctl.infrastructure.process.command_runner import CommandRunner
from deployctl.infrastructure.registry.registry_client import RegistryClient, RegistryError
from deployctl.infrastructure.runtime.base import (
    RuntimeStartError,
    RuntimeStopError,
    ServiceRuntime,
)

logger = logging.getLogger(__name__)

SLOT_NAMES = ["blue", "green"]


class ComposeRuntime(ServiceRuntime):
    """
    Runs each deployment as its own compose project on one of the slot ports.

    The compose file is expected to read the image from ``APP_IMAGE`` and the
    published port from ``APP_PORT``.
    """

    def __init__(
        self,
        compose_file: str,
        project: str,
        slot_ports: List[int],
        host: str = "127.0.0.1",
        health_path: str = "/health",
        upstream_file: Optional[str] = None,
        registry: Optional[RegistryClient] = None,
        runner: Optional[CommandRunner] = None,
    ):
        if len(slot_ports) < 2:
            raise ValueError("At least two slot ports are required for side-by-side deploys")
        self.compose_file = compose_file
        self.project = project
        self.slot_ports = slot_ports
        self.host = host
        self.health_path = health_path
        self.upstream_file = upstream_file
        self.registry = registry
        self.runner = runner or CommandRunner()
        self._occupied: Dict[int, ServiceInstance] = {}

    def _slot_name(self, slot: int) -> str:
        return SLOT_NAMES[slot] if slot < len(SLOT_NAMES) else f"slot{slot}"

    def _compose(self, project_name: str, *args: str) -> List[str]:
        return ["docker", "compose", "-p", project_name, "-f", self.compose_file, *args]

    def _free_slot(self) -> int:
        for slot in range(len(self.slot_ports)):
            if slot not in self._occupied:
                return slot
        raise RuntimeStartError("No free deployment slot")

    async def start(self, artifact: Artifact) -> ServiceInstance:
        slot = self._free_slot()
        port = self.slot_ports[slot]
        project_name = f"{self.project}-{self._slot_name(slot)}"
        instance = ServiceInstance(
            instance_id=project_name,
            slot=slot,
            port=port,
            image_ref=artifact.deploy_ref,
            endpoints=[f"http://{self.host}:{port}{self.health_path}"],
        )
        # Reserve before awaiting so a concurrent caller cannot take the slot
        self._occupied[slot] = instance

        if artifact.registry_ref and self.registry is not None:
            try:
                await self.registry.pull(artifact.registry_ref)
            except RegistryError as e:
                self._occupied.pop(slot, None)
                raise RuntimeStartError(str(e))

        env = {"APP_IMAGE": artifact.deploy_ref, "APP_PORT": str(port)}
        logger.info(f"🚀 Starting {project_name} with {artifact.deploy_ref} on port {port}")
        result = await self.runner.run(
            self._compose(project_name, "up", "-d", "--remove-orphans"), env=env
        )
        if not result.ok:
            logger.error(f"❌ compose up failed for {project_name}: {result.output.strip()}")
            await self._down(project_name)
            self._occupied.pop(slot, None)
            raise RuntimeStartError(f"compose up failed ({result.returncode})", result.output)
        return instance

    async def stop(self, instance: ServiceInstance) -> None:
        logger.info(f"🧹 Tearing down {instance.instance_id}")
        try:
            result = await self._down(instance.instance_id)
        finally:
            self._occupied.pop(instance.slot, None)
        if not result:
            raise RuntimeStopError(f"compose down failed for {instance.instance_id}")

    async def _down(self, project_name: str) -> bool:
        result = await self.runner.run(self._compose(project_name, "down", "--remove-orphans"))
        if not result.ok:
            logger.warning(f"⚠️ compose down failed for {project_name}: {result.output.strip()}")
        return result.ok

    async def promote(self, instance: ServiceInstance) -> None:
        if not self.upstream_file:
            logger.info(f"🔀 {instance.instance_id} is live on port {instance.port}")
            return

        content = (
            f"# managed by deployctl: {instance.instance_id} ({instance.image_ref})\n"
            f"upstream {self.project} {{\n"
            f"    server {self.host}:{instance.port};\n"
            f"}}\n"
        )
        directory = os.path.dirname(os.path.abspath(self.upstream_file))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".upstream-")
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(content)
            os.replace(tmp_path, self.upstream_file)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.info(f"🔀 Upstream {self.upstream_file} now points at port {instance.port}")

    def adopt(self, instance: ServiceInstance) -> None:
        self._occupied[instance.slot] = instance
        logger.info(f"📌 Adopted running stack {instance.instance_id}")
