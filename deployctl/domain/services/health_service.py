"""
Health-check gate used before cutover.

Every ``interval`` seconds each endpoint that has not passed yet is probed,
with each probe bounded by ``timeout``. Failures before ``start_period`` has
elapsed are not counted. An endpoint fails after ``retries`` consecutive
counted failures; the check passes once every endpoint has answered 200.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from deployctl.domain.entities.health import HealthCheckResult, ProbeOutcome
from deployctl.utils.clock import Clock

logger = logging.getLogger(__name__)


class Prober(Protocol):
    async def probe(self, endpoint: str, timeout: float) -> ProbeOutcome: ...


@dataclass(frozen=True)
class HealthCheckPolicy:
    interval: float = 10.0
    timeout: float = 5.0
    retries: int = 5
    start_period: float = 60.0

    def __post_init__(self):
        if self.interval <= 0 or self.timeout <= 0:
            raise ValueError("Health check interval and timeout must be positive")
        if self.retries < 1:
            raise ValueError("Health check retries must be at least 1")
        if self.start_period < 0:
            raise ValueError("Health check start period cannot be negative")


class HealthChecker:
    def __init__(self, prober: Prober, policy: HealthCheckPolicy, clock: Optional[Clock] = None):
        self.prober = prober
        self.policy = policy
        self.clock = clock or Clock()

    async def check(
        self, endpoints: List[str], abort: Optional[asyncio.Event] = None
    ) -> List[HealthCheckResult]:
        results = {endpoint: HealthCheckResult(endpoint=endpoint) for endpoint in endpoints}
        failures = {endpoint: 0 for endpoint in endpoints}
        pending = list(endpoints)
        started = self.clock.now()

        while pending:
            if await self.clock.wait(self.policy.interval, abort):
                return self._mark_aborted(results, pending)

            outcomes = await self._probe_round(pending, abort)
            if outcomes is None:
                return self._mark_aborted(results, pending)

            elapsed = self.clock.now() - started
            for endpoint, outcome in zip(list(pending), outcomes):
                result = results[endpoint]
                result.attempts += 1
                result.last_status_code = outcome.status_code
                result.last_error = outcome.error
                result.elapsed = elapsed

                if outcome.ok:
                    result.passed = True
                    pending.remove(endpoint)
                    logger.info(f"💚 {endpoint} healthy after {result.attempts} attempt(s), {elapsed:.0f}s")
                    continue

                if elapsed < self.policy.start_period:
                    continue

                failures[endpoint] += 1
                logger.info(
                    f"🩺 {endpoint} unhealthy ({failures[endpoint]}/{self.policy.retries}): "
                    f"{outcome.error or outcome.status_code}"
                )
                if failures[endpoint] >= self.policy.retries:
                    logger.warning(f"💔 {endpoint} failed its health check after {elapsed:.0f}s")
                    # One failed endpoint fails the whole gate
                    return list(results.values())

        return list(results.values())

    async def _probe_round(
        self, endpoints: List[str], abort: Optional[asyncio.Event]
    ) -> Optional[List[ProbeOutcome]]:
        probes = asyncio.gather(
            *(self.prober.probe(endpoint, self.policy.timeout) for endpoint in endpoints)
        )
        if abort is None:
            return await probes

        abort_waiter = asyncio.ensure_future(abort.wait())
        try:
            done, _ = await asyncio.wait({probes, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_waiter.cancel()
        if probes in done:
            return probes.result()
        probes.cancel()
        return None

    def _mark_aborted(self, results, pending: List[str]) -> List[HealthCheckResult]:
        for endpoint in pending:
            results[endpoint].aborted = True
            results[endpoint].last_error = "aborted by operator"
        logger.warning("🛑 Health check aborted")
        return list(results.values())

    @staticmethod
    def passed(results: List[HealthCheckResult]) -> bool:
        return bool(results) and all(result.passed for result in results)

    @staticmethod
    def aborted(results: List[HealthCheckResult]) -> bool:
        return any(result.aborted for result in results)
