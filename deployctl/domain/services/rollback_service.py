import asyncio
import logging
from typing import Tuple

from deployctl.domain.entities.artifact import Artifact
from deployctl.domain.entities.deployment import (
    DeploymentOutcome,
    DeploymentRecord,
    DeploymentTrigger,
)
from deployctl.domain.errors import DeployError, RollbackError
from deployctl.domain.services.deploy_service import DeploymentOrchestrator
from deployctl.infrastructure.history.history_store import DeploymentHistory

logger = logging.getLogger(__name__)


class RollbackManager:
    def __init__(self, orchestrator: DeploymentOrchestrator, history: DeploymentHistory):
        self.orchestrator = orchestrator
        self.history = history
        self._lock = asyncio.Lock()
        orchestrator.add_failure_listener(self.on_deploy_failed)

    async def on_deploy_failed(self, record: DeploymentRecord) -> None:
        # Pre-cutover failures never stopped the old stack
        logger.info(
            f"ℹ️ Deployment {record.deployment_id} failed before cutover; "
            f"no rollback needed, previous stack is still serving"
        )

    async def rollback_to_last_good(self, reason: str = "operator requested rollback") -> DeploymentRecord:
        """
        Redeploy the success that preceded the live deployment.

        The live deployment is the latest Success record. Once the previous
        artifact is serving again, that record is marked RolledBack.

        Raises:
            RollbackError: If there is no earlier success, or the redeploy
                failed (the current deployment then keeps serving).
        """
        async with self._lock:
            chosen = {}

            def select() -> Tuple[Artifact, str]:
                # Runs under the deploy lock, after any in-flight deploy has settled
                bad = self.history.latest_success()
                if bad is None:
                    raise RollbackError("No successful deployment exists; nothing to roll back")

                # An earlier rollback may have redeployed the same image
                target = self.history.success_before(bad.deployment_id, exclude_digest=bad.artifact.digest)
                if target is None:
                    logger.error(
                        f"🚨 Rollback requested for {bad.deployment_id} but no prior known-good deployment exists"
                    )
                    raise RollbackError(
                        f"No prior successful deployment before {bad.deployment_id}; no known-good state to restore"
                    )

                logger.warning(
                    f"🔄 Rolling back {bad.artifact.image_ref} ({bad.deployment_id}) "
                    f"to {target.artifact.image_ref} ({target.deployment_id}): {reason}"
                )
                chosen.update(bad=bad, target=target)
                return target.artifact, bad.deployment_id

            try:
                restored = await self.orchestrator.deploy_resolved(select, trigger=DeploymentTrigger.ROLLBACK)
            except DeployError as e:
                image = chosen["target"].artifact.image_ref if "target" in chosen else "target"
                logger.error(f"❌ Rollback redeploy of {image} failed: {e}")
                raise RollbackError(f"Redeploy of {image} failed: {e.message}") from e

            self.history.update_outcome(chosen["bad"].deployment_id, DeploymentOutcome.ROLLED_BACK)
            logger.info(f"✅ Rolled back to {chosen['target'].artifact.image_ref} as {restored.deployment_id}")
            return restored
