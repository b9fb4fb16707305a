"""Push and pull images by content digest with the Docker CLI."""
import logging
import re
from typing import Dict, Optional

from deployctl.infrastructure.process.command_runner import CommandRunner

logger = logging.getLogger(__name__)

_DIGEST_RE = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")


class RegistryError(RuntimeError):
    pass


class RegistryClient:
    def __init__(
        self,
        registry_url: Optional[str],
        auth_dir: Optional[str] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.registry_url = registry_url.rstrip("/") if registry_url else None
        self.auth_dir = auth_dir
        self.runner = runner or CommandRunner()

    def is_configured(self) -> bool:
        return bool(self.registry_url)

    def _env(self) -> Optional[Dict[str, str]]:
        # Registry credentials live in a docker config directory
        return {"DOCKER_CONFIG": self.auth_dir} if self.auth_dir else None

    def remote_tag(self, image_ref: str) -> str:
        return f"{self.registry_url}/{image_ref}"

    async def push(self, image_ref: str) -> str:
        """Push a local image and return its ``<registry>/<repo>@<digest>`` reference."""
        if not self.is_configured():
            raise RegistryError("Registry URL not configured")

        remote = self.remote_tag(image_ref)
        tag = await self.runner.run(["docker", "tag", image_ref, remote])
        if not tag.ok:
            raise RegistryError(f"docker tag {image_ref} {remote} failed: {tag.output.strip()}")

        push = await self.runner.run(["docker", "push", remote], env=self._env())
        if not push.ok:
            raise RegistryError(f"docker push {remote} failed: {push.output.strip()}")

        match = _DIGEST_RE.search(push.output)
        if not match:
            raise RegistryError(f"No digest reported when pushing {remote}")

        repository = remote.rsplit(":", 1)[0]
        reference = f"{repository}@{match.group(1)}"
        logger.info(f"📦 Pushed {reference}")
        return reference

    async def pull(self, reference: str) -> None:
        """Pull an image by digest reference."""
        result = await self.runner.run(["docker", "pull", reference], env=self._env())
        if not result.ok:
            raise RegistryError(f"docker pull {reference} failed: {result.output.strip()}")
        logger.info(f"📥 Pulled {reference}")
