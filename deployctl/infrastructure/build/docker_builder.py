"""Git checkout and ``docker build`` driven through the command runner."""
import logging
import os
from typing import Optional

from deployctl.infrastructure.process.command_runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)


class SourceFetchError(RuntimeError):
    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class ImageBuildError(RuntimeError):
    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class DockerImageBuilder:
    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        dockerfile: str = "Dockerfile",
    ):
        self.runner = runner or CommandRunner()
        self.dockerfile = dockerfile

    async def fetch_source(self, repository_url: str, commit_sha: str, workdir: str) -> str:
        """Clone ``repository_url`` into ``workdir`` and check out ``commit_sha``."""
        source_dir = os.path.join(workdir, "src")
        log_parts = []

        clone = await self.runner.run(
            ["git", "clone", "--quiet", "--no-checkout", repository_url, source_dir],
            cwd=workdir,
        )
        log_parts.append(clone.output)
        if not clone.ok:
            raise SourceFetchError(f"git clone failed ({clone.returncode})", "".join(log_parts))

        checkout = await self.runner.run(
            ["git", "checkout", "--quiet", "--detach", commit_sha],
            cwd=source_dir,
        )
        log_parts.append(checkout.output)
        if not checkout.ok:
            raise SourceFetchError(
                f"git checkout {commit_sha} failed ({checkout.returncode})", "".join(log_parts)
            )

        logger.info(f"📥 Fetched {commit_sha[:12]} into {source_dir}")
        return "".join(log_parts)

    async def build_image(self, workdir: str, tag: str) -> CommandResult:
        source_dir = os.path.join(workdir, "src")
        result = await self.runner.run(
            ["docker", "build", "--pull", "-f", self.dockerfile, "-t", tag, "."],
            cwd=source_dir,
        )
        if not result.ok:
            raise ImageBuildError(f"docker build failed ({result.returncode})", result.output)
        logger.info(f"🐳 Built image {tag} in {result.duration:.1f}s")
        return result

    async def inspect_digest(self, tag: str) -> str:
        """Content-derived image id (``sha256:...``) of a local image."""
        result = await self.runner.run(
            ["docker", "image", "inspect", "--format", "{{.Id}}", tag]
        )
        if not result.ok or not result.output.strip():
            raise ImageBuildError(f"docker image inspect {tag} failed", result.output)
        return result.output.strip().splitlines()[-1]
