"""
Deployment orchestrator.

State machine: Idle -> Deploying -> HealthChecking -> {Succeeded, Failed}.
The new stack is started next to the live one and only replaces it after
passing its health check, so a failed deploy leaves the old stack serving.
One deployment runs at a time; callers queue on the deploy lock.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, NoReturn, Optional, Tuple

from deployctl.domain.entities.artifact import Artifact
from deployctl.domain.entities.deployment import (
    DeploymentOutcome,
    DeploymentRecord,
    DeploymentState,
    DeploymentTrigger,
    FailureReason,
)
from deployctl.domain.entities.health import HealthCheckResult
from deployctl.domain.entities.instance import ServiceInstance
from deployctl.domain.entities.revision import BuildStatus
from deployctl.domain.errors import DeployError
from deployctl.domain.services.health_service import HealthChecker
from deployctl.infrastructure.history.history_store import DeploymentHistory
from deployctl.infrastructure.runtime.base import (
    RuntimeStartError,
    RuntimeStopError,
    ServiceRuntime,
)

logger = logging.getLogger(__name__)

FailureListener = Callable[[DeploymentRecord], Awaitable[None]]


class DeploymentOrchestrator:
    def __init__(
        self,
        runtime: ServiceRuntime,
        health_checker: HealthChecker,
        history: DeploymentHistory,
    ):
        self.runtime = runtime
        self.health_checker = health_checker
        self.history = history

        self.state = DeploymentState.IDLE
        self._lock = asyncio.Lock()
        self._abort: Optional[asyncio.Event] = None
        self._live: Optional[ServiceInstance] = None
        self._current: Optional[DeploymentRecord] = None
        self._failure_listeners: List[FailureListener] = []

    @property
    def is_busy(self) -> bool:
        return self.state in (DeploymentState.DEPLOYING, DeploymentState.HEALTH_CHECKING)

    @property
    def live_instance(self) -> Optional[ServiceInstance]:
        return self._live

    @property
    def current_deployment(self) -> Optional[DeploymentRecord]:
        """The Success record whose instance is serving traffic."""
        return self._current

    def add_failure_listener(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)

    def restore(self) -> Optional[DeploymentRecord]:
        """Re-adopt the live stack recorded by the latest successful deployment."""
        record = self.history.latest_success()
        if record is None or record.instance is None:
            logger.info("📭 No previous deployment to restore")
            return None
        self.runtime.adopt(record.instance)
        self._live = record.instance
        self._current = record
        logger.info(f"♻️ Restored live deployment {record.deployment_id} ({record.artifact.image_ref})")
        return record

    def abort(self) -> bool:
        """Interrupt the in-flight deployment; returns False if nothing is running."""
        if not self.is_busy or self._abort is None:
            return False
        logger.warning(f"🛑 Abort requested during {self.state.value}")
        self._abort.set()
        return True

    async def deploy(
        self, artifact: Artifact, trigger: DeploymentTrigger = DeploymentTrigger.MANUAL,
        rollback_of: Optional[str] = None,
    ) -> DeploymentRecord:
        self._ensure_built(artifact)
        async with self._lock:
            return await self._run(artifact, trigger, rollback_of)

    async def deploy_resolved(
        self, resolve: Callable[[], Tuple[Artifact, Optional[str]]], trigger: DeploymentTrigger,
    ) -> DeploymentRecord:
        """
        Like ``deploy``, but ``resolve`` picks ``(artifact, rollback_of)`` only
        once the deploy lock is held, so it sees the outcome of any deploy that
        was in flight. Exceptions from ``resolve`` propagate unchanged.
        """
        async with self._lock:
            artifact, rollback_of = resolve()
            self._ensure_built(artifact)
            return await self._run(artifact, trigger, rollback_of)

    @staticmethod
    def _ensure_built(artifact: Artifact) -> None:
        if artifact.revision.build_status != BuildStatus.BUILT:
            raise DeployError(
                f"Artifact {artifact.image_ref} is not built (status {artifact.revision.build_status.value})"
            )

    async def _run(
        self, artifact: Artifact, trigger: DeploymentTrigger, rollback_of: Optional[str]
    ) -> DeploymentRecord:
        self._abort = asyncio.Event()
        try:
            return await self._deploy_locked(artifact, trigger, rollback_of)
        except DeployError:
            raise
        except BaseException:
            self.state = DeploymentState.FAILED
            logger.exception(f"💥 Deployment of {artifact.image_ref} crashed")
            raise
        finally:
            self._abort = None

    async def _deploy_locked(
        self, artifact: Artifact, trigger: DeploymentTrigger, rollback_of: Optional[str]
    ) -> DeploymentRecord:
        started_at = datetime.now(timezone.utc)
        self.state = DeploymentState.DEPLOYING
        logger.info(f"🚀 Deploying {artifact.image_ref} ({trigger.value})")

        try:
            instance = await self.runtime.start(artifact)
        except RuntimeStartError as e:
            await self._fail(
                artifact, started_at, trigger, rollback_of, FailureReason.START_FAILED,
                detail=str(e), instance=None, checks=[],
            )

        if self._abort.is_set():
            await self._fail(
                artifact, started_at, trigger, rollback_of, FailureReason.ABORTED,
                detail="aborted before health check", instance=instance, checks=[],
            )

        self.state = DeploymentState.HEALTH_CHECKING
        logger.info(f"🩺 Health checking {instance.instance_id}: {', '.join(instance.endpoints)}")
        try:
            checks = await self.health_checker.check(instance.endpoints, self._abort)
        except Exception as e:
            await self._fail(
                artifact, started_at, trigger, rollback_of, FailureReason.HEALTH_CHECK_FAILED,
                detail=f"health checker error: {e}", instance=instance, checks=[],
            )
        except BaseException:
            # Never leave a half-checked stack running next to the live one
            await self.runtime.stop(instance)
            raise

        if HealthChecker.aborted(checks):
            await self._fail(
                artifact, started_at, trigger, rollback_of, FailureReason.ABORTED,
                detail="aborted by operator", instance=instance, checks=checks,
            )
        if not HealthChecker.passed(checks):
            await self._fail(
                artifact, started_at, trigger, rollback_of, FailureReason.HEALTH_CHECK_FAILED,
                detail=self._describe_failure(checks), instance=instance, checks=checks,
            )

        return await self._succeed(artifact, started_at, trigger, rollback_of, instance, checks)

    async def _succeed(
        self, artifact: Artifact, started_at: datetime, trigger: DeploymentTrigger,
        rollback_of: Optional[str], instance: ServiceInstance, checks: List[HealthCheckResult],
    ) -> DeploymentRecord:
        try:
            await self.runtime.promote(instance)
        except Exception as e:
            await self._fail(
                artifact, started_at, trigger, rollback_of, FailureReason.PROMOTE_FAILED,
                detail=f"cutover failed: {e}", instance=instance, checks=checks,
            )

        previous = self._live
        self._live = instance
        if previous is not None:
            try:
                await self.runtime.stop(previous)
            except RuntimeStopError as e:
                logger.warning(f"⚠️ Old stack {previous.instance_id} did not stop cleanly: {e}")

        record = self.history.append(
            DeploymentRecord(
                artifact=artifact,
                outcome=DeploymentOutcome.SUCCESS,
                started_at=started_at,
                health_checks=checks,
                instance=instance,
                trigger=trigger,
                rollback_of=rollback_of,
            )
        )
        self._current = record
        self.state = DeploymentState.SUCCEEDED
        logger.info(f"✅ Deployment {record.deployment_id} succeeded: {artifact.image_ref} is live")
        return record

    async def _fail(
        self, artifact: Artifact, started_at: datetime, trigger: DeploymentTrigger,
        rollback_of: Optional[str], reason: FailureReason, detail: str,
        instance: Optional[ServiceInstance], checks: List[HealthCheckResult],
    ) -> NoReturn:
        if instance is not None:
            try:
                await self.runtime.stop(instance)
            except RuntimeStopError as e:
                logger.warning(f"⚠️ Failed stack {instance.instance_id} did not stop cleanly: {e}")

        record = self.history.append(
            DeploymentRecord(
                artifact=artifact,
                outcome=DeploymentOutcome.FAILED,
                started_at=started_at,
                failure_reason=reason,
                detail=detail,
                health_checks=checks,
                instance=instance,
                trigger=trigger,
                rollback_of=rollback_of,
            )
        )
        self.state = DeploymentState.FAILED
        live = self._live.instance_id if self._live else "nothing"
        logger.error(
            f"❌ Deployment {record.deployment_id} failed ({reason.value}): {detail}; {live} keeps serving"
        )

        for listener in self._failure_listeners:
            try:
                await listener(record)
            except Exception:
                logger.exception("💥 Deployment failure listener raised")

        raise DeployError(f"Deployment of {artifact.image_ref} failed: {reason.value}", record=record)

    @staticmethod
    def _describe_failure(checks: List[HealthCheckResult]) -> str:
        failed = [c for c in checks if not c.passed]
        return "; ".join(
            f"{c.endpoint} failed after {c.attempts} attempts "
            f"(last: {c.last_error or c.last_status_code})"
            for c in failed
        ) or "no health endpoints"
