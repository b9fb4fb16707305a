import asyncio
import logging
from typing import Optional

from deployctl.domain.errors import RollbackError
from deployctl.domain.services.deploy_service import DeploymentOrchestrator
from deployctl.domain.services.health_service import Prober
from deployctl.domain.services.rollback_service import RollbackManager
from deployctl.utils.clock import Clock

logger = logging.getLogger(__name__)


class RuntimeMonitor:
    """Watches the live stack after cutover and rolls back on sustained failure."""

    def __init__(
        self,
        orchestrator: DeploymentOrchestrator,
        rollback_manager: RollbackManager,
        prober: Prober,
        interval: float = 30.0,
        failure_threshold: int = 3,
        probe_timeout: float = 5.0,
        auto_rollback: bool = True,
        clock: Optional[Clock] = None,
    ):
        self.orchestrator = orchestrator
        self.rollback_manager = rollback_manager
        self.prober = prober
        self.interval = interval
        self.failure_threshold = failure_threshold
        self.probe_timeout = probe_timeout
        self.auto_rollback = auto_rollback
        self.clock = clock or Clock()
        self.consecutive_failures = 0

    async def check_once(self) -> bool:
        """Probe the live stack once; returns True when a rollback was performed."""
        instance = self.orchestrator.live_instance
        if instance is None or self.orchestrator.is_busy:
            self.consecutive_failures = 0
            return False

        outcomes = await asyncio.gather(
            *(self.prober.probe(endpoint, self.probe_timeout) for endpoint in instance.endpoints)
        )
        if all(outcome.ok for outcome in outcomes):
            self.consecutive_failures = 0
            return False

        self.consecutive_failures += 1
        logger.warning(
            f"⚠️ Live stack {instance.instance_id} unhealthy "
            f"({self.consecutive_failures}/{self.failure_threshold})"
        )
        if self.consecutive_failures < self.failure_threshold:
            return False

        self.consecutive_failures = 0
        if not self.auto_rollback:
            logger.error(f"🚨 Live stack {instance.instance_id} is failing; automatic rollback disabled")
            return False

        try:
            await self.rollback_manager.rollback_to_last_good(
                reason=f"live stack {instance.instance_id} failed {self.failure_threshold} consecutive health checks"
            )
        except RollbackError as e:
            logger.error(f"🚨 Automatic rollback failed, operator action required: {e}")
            return False
        return True

    async def run(self, stop: asyncio.Event) -> None:
        logger.info(f"👀 Runtime monitor started (every {self.interval:.0f}s)")
        while not await self.clock.wait(self.interval, stop):
            await self.check_once()
        logger.info("👋 Runtime monitor stopped")
