import asyncio
import logging
import shutil
import tempfile
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from deployctl.domain.entities.artifact import Artifact
from deployctl.domain.entities.revision import BuildStatus, Revision
from deployctl.domain.errors import BuildError, BuildErrorKind
from deployctl.infrastructure.build.docker_builder import (
    DockerImageBuilder,
    ImageBuildError,
    SourceFetchError,
)
from deployctl.infrastructure.process.command_runner import CommandTimeout
from deployctl.infrastructure.registry.registry_client import RegistryClient, RegistryError

logger = logging.getLogger(__name__)


class BuildExecutor:
    """
    Builds one image per revision.

    Every build gets its own temporary workspace, removed on every exit
    path. Builds run in parallel up to ``max_concurrent`` and each one is
    bounded by ``timeout``; a timed-out build is killed without touching
    the others.
    """

    def __init__(
        self,
        builder: DockerImageBuilder,
        image_repository: str,
        default_repository_url: Optional[str] = None,
        registry: Optional[RegistryClient] = None,
        timeout: float = 900.0,
        max_concurrent: int = 2,
        workspace_root: Optional[str] = None,
    ):
        self.builder = builder
        self.image_repository = image_repository
        self.default_repository_url = default_repository_url
        self.registry = registry
        self.timeout = timeout
        self.workspace_root = workspace_root
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active: Dict[str, Revision] = {}

    @property
    def active_builds(self) -> List[str]:
        return list(self._active)

    def image_tag(self, revision: Revision) -> str:
        return f"{self.image_repository}:{revision.short_sha}"

    @asynccontextmanager
    async def workspace(self, revision: Revision) -> AsyncIterator[str]:
        path = tempfile.mkdtemp(prefix=f"build-{revision.short_sha}-", dir=self.workspace_root)
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"🧹 Released workspace {path}")

    async def build(self, revision: Revision) -> Artifact:
        async with self._semaphore:
            key = f"{revision.short_sha}@{id(revision)}"
            self._active[key] = revision
            revision.build_status = BuildStatus.BUILDING
            logger.info(f"🔨 Building {revision.short_sha} ({revision.branch})")
            try:
                artifact = await asyncio.wait_for(self._run(revision), timeout=self.timeout)
            except asyncio.TimeoutError:
                revision.build_status = BuildStatus.FAILED
                logger.error(f"⏰ Build of {revision.short_sha} timed out after {self.timeout:.0f}s")
                raise BuildError(
                    BuildErrorKind.TIMEOUT, f"build exceeded {self.timeout:.0f}s"
                )
            except BuildError as e:
                revision.build_status = BuildStatus.FAILED
                logger.error(f"❌ Build of {revision.short_sha} failed: {e}")
                raise
            finally:
                self._active.pop(key, None)

            revision.build_status = BuildStatus.BUILT
            logger.info(f"✅ Built {artifact.image_ref} ({artifact.digest[:19]}) in {artifact.build_duration:.1f}s")
            return artifact

    async def _run(self, revision: Revision) -> Artifact:
        repository_url = revision.repository_url or self.default_repository_url
        if not repository_url:
            raise BuildError(BuildErrorKind.DEPENDENCY_FETCH_FAILED, "no repository URL for revision")

        started = time.monotonic()
        tag = self.image_tag(revision)
        log_parts: List[str] = []

        async with self.workspace(revision) as workdir:
            try:
                log_parts.append(await self.builder.fetch_source(repository_url, revision.commit_sha, workdir))
            except SourceFetchError as e:
                raise BuildError(BuildErrorKind.DEPENDENCY_FETCH_FAILED, str(e), e.output)
            except CommandTimeout as e:
                raise BuildError(BuildErrorKind.TIMEOUT, str(e), e.output)

            try:
                result = await self.builder.build_image(workdir, tag)
                log_parts.append(result.output)
                digest = await self.builder.inspect_digest(tag)
            except ImageBuildError as e:
                log_parts.append(e.output)
                raise BuildError(BuildErrorKind.COMPILE_FAILED, str(e), "".join(log_parts))
            except CommandTimeout as e:
                raise BuildError(BuildErrorKind.TIMEOUT, str(e), "".join(log_parts))

        registry_ref = None
        if self.registry is not None and self.registry.is_configured():
            try:
                registry_ref = await self.registry.push(tag)
            except RegistryError as e:
                # The image exists locally; the deploy can still use the local tag
                logger.warning(f"⚠️ Registry push failed for {tag}: {e}")

        return Artifact(
            image_ref=tag,
            digest=digest,
            registry_ref=registry_ref,
            revision=revision.model_copy(update={"build_status": BuildStatus.BUILT}),
            build_log="".join(log_parts),
            build_duration=time.monotonic() - started,
        )
