"""
Drives revisions from the source watcher through builds into deployments.

Builds may run concurrently, but deployments are fed from a single pending
slot: a newer artifact displaces an older queued one, so once the deploy
lock frees only the newest commit is deployed.
"""

import asyncio
import logging
from typing import Optional

from deployctl.domain.entities.artifact import Artifact
from deployctl.domain.entities.deployment import DeploymentRecord, DeploymentTrigger
from deployctl.domain.entities.revision import Revision
from deployctl.domain.errors import BuildError, DeployError
from deployctl.domain.services.build_service import BuildExecutor
from deployctl.domain.services.deploy_service import DeploymentOrchestrator
from deployctl.domain.services.rollback_service import RollbackManager
from deployctl.domain.services.watch_service import SourceWatcher
from deployctl.schemas.status import ControllerStatus
from deployctl.schemas.webhook import PushEvent
from deployctl.utils.clock import Clock

logger = logging.getLogger(__name__)


class DeploymentPipeline:
    def __init__(
        self,
        watcher: SourceWatcher,
        builder: BuildExecutor,
        orchestrator: DeploymentOrchestrator,
        rollback_manager: RollbackManager,
        clock: Optional[Clock] = None,
    ):
        self.watcher = watcher
        self.builder = builder
        self.orchestrator = orchestrator
        self.rollback_manager = rollback_manager
        self.clock = clock or Clock()

        self._pending: Optional[Artifact] = None
        self._pending_trigger = DeploymentTrigger.POLL
        self._draining = False
        self.last_record: Optional[DeploymentRecord] = None

    @property
    def pending(self) -> Optional[Artifact]:
        return self._pending

    async def handle_revision(
        self, revision: Revision, trigger: DeploymentTrigger = DeploymentTrigger.POLL
    ) -> None:
        try:
            artifact = await self.builder.build(revision)
        except BuildError as e:
            # The running service is untouched by a failed build
            logger.error(f"❌ Not deploying {revision.short_sha}: {e}")
            return
        await self.enqueue(artifact, trigger)

    async def enqueue(self, artifact: Artifact, trigger: DeploymentTrigger = DeploymentTrigger.POLL) -> None:
        pending = self._pending
        if pending is not None:
            if artifact.revision.timestamp < pending.revision.timestamp:
                logger.info(
                    f"🗑️ Discarding {artifact.image_ref}: newer {pending.image_ref} is already queued"
                )
                return
            logger.info(f"🗑️ Discarding queued {pending.image_ref} in favour of {artifact.image_ref}")

        self._pending = artifact
        self._pending_trigger = trigger

        if self._draining:
            logger.info(f"⏳ Deployment in progress; {artifact.image_ref} queued")
            return
        await self._drain()

    async def _drain(self) -> None:
        self._draining = True
        try:
            while self._pending is not None:
                artifact, trigger = self._pending, self._pending_trigger
                self._pending = None
                try:
                    self.last_record = await self.orchestrator.deploy(artifact, trigger=trigger)
                except DeployError as e:
                    self.last_record = e.record
                    logger.error(f"❌ {e}")
        finally:
            self._draining = False

    async def on_push(self, event: PushEvent) -> Optional[Revision]:
        revision = await self.watcher.observe_push(event)
        if revision is not None:
            await self.handle_revision(revision, DeploymentTrigger.PUSH)
        return revision

    async def run_once(self) -> Optional[Revision]:
        revision = await self.watcher.poll()
        if revision is not None:
            await self.handle_revision(revision, DeploymentTrigger.POLL)
        return revision

    async def run_forever(self, stop: asyncio.Event) -> None:
        logger.info(f"👀 Watching {self.watcher.branch} every {self.watcher.poll_interval:.0f}s")
        while not stop.is_set():
            await self.run_once()
            if await self.clock.wait(self.watcher.next_delay(), stop):
                break
        logger.info("👋 Source polling stopped")

    async def trigger_manual(self, commit_sha: Optional[str] = None) -> Revision:
        """Resolve the revision to deploy; the caller schedules ``handle_revision``."""
        revision = await self.watcher.resolve(commit_sha)
        logger.info(f"🖐️ Manual deploy requested for {revision.short_sha}")
        return revision

    def status(self) -> ControllerStatus:
        return ControllerStatus(
            watcher=self.watcher.status(),
            deployment_state=self.orchestrator.state,
            deploying=self.orchestrator.is_busy,
            live_instance=self.orchestrator.live_instance,
            current_deployment=self.orchestrator.current_deployment,
            pending_commit=self._pending.revision.commit_sha if self._pending else None,
            active_builds=self.builder.active_builds,
        )
