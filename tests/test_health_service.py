import asyncio

import pytest

from deployctl.domain.services.health_service import HealthChecker, HealthCheckPolicy
from deployctl.utils.clock import Clock

from tests.conftest import ScriptedProber

ENDPOINT = "http://127.0.0.1:5000/health"


async def test_passes_once_service_answers_within_start_period(clock, policy):
    prober = ScriptedProber(clock, healthy_from=65.0)
    checker = HealthChecker(prober, policy, clock=clock)

    results = await checker.check([ENDPOINT])

    assert HealthChecker.passed(results)
    assert results[0].attempts == 7
    assert results[0].last_status_code == 200
    assert clock.now() == 70.0


async def test_passes_on_third_attempt(clock, policy):
    prober = ScriptedProber(clock, healthy_from=25.0)
    checker = HealthChecker(prober, policy, clock=clock)

    results = await checker.check([ENDPOINT])

    assert HealthChecker.passed(results)
    assert results[0].attempts == 3


async def test_never_healthy_fails_by_start_period_plus_retries(clock, policy):
    prober = ScriptedProber(clock, healthy_from=None)
    checker = HealthChecker(prober, policy, clock=clock)

    results = await checker.check([ENDPOINT])

    assert not HealthChecker.passed(results)
    assert not HealthChecker.aborted(results)
    # start_period + retries * interval
    assert clock.now() <= 110.0
    assert results[0].last_error == "connection refused"


async def test_failures_inside_start_period_are_not_counted(clock):
    policy = HealthCheckPolicy(interval=10.0, timeout=5.0, retries=2, start_period=60.0)
    prober = ScriptedProber(clock, healthy_from=None)

    results = await HealthChecker(prober, policy, clock=clock).check([ENDPOINT])

    assert not HealthChecker.passed(results)
    # Probes at 10..50 are ignored; 60 and 70 count
    assert clock.now() == 70.0
    assert results[0].attempts == 7


async def test_one_failing_endpoint_fails_the_gate(clock, policy):
    good, bad = "http://127.0.0.1:5000/health", "http://127.0.0.1:5000/ready"

    class MixedProber(ScriptedProber):
        async def probe(self, endpoint, timeout):
            if endpoint == bad:
                self.healthy_from = None
            else:
                self.healthy_from = 0.0
            return await super().probe(endpoint, timeout)

    results = await HealthChecker(MixedProber(clock), policy, clock=clock).check([good, bad])

    by_endpoint = {result.endpoint: result for result in results}
    assert by_endpoint[good].passed
    assert not by_endpoint[bad].passed
    assert not HealthChecker.passed(results)


async def test_empty_endpoint_list_does_not_pass(clock, policy):
    results = await HealthChecker(ScriptedProber(clock), policy, clock=clock).check([])
    assert not HealthChecker.passed(results)


async def test_abort_interrupts_waiting_between_probes():
    policy = HealthCheckPolicy(interval=30.0, timeout=5.0, retries=5, start_period=60.0)
    checker = HealthChecker(ScriptedProber(healthy_from=None), policy, clock=Clock())
    abort = asyncio.Event()

    task = asyncio.create_task(checker.check([ENDPOINT], abort))
    await asyncio.sleep(0.01)
    abort.set()
    results = await asyncio.wait_for(task, timeout=1.0)

    assert HealthChecker.aborted(results)
    assert results[0].last_error == "aborted by operator"


async def test_abort_interrupts_in_flight_probe(clock, policy):
    prober = ScriptedProber(clock, healthy_from=None)
    prober.gate = asyncio.Event()
    abort = asyncio.Event()

    task = asyncio.create_task(HealthChecker(prober, policy, clock=clock).check([ENDPOINT], abort))
    while not prober.calls:
        await asyncio.sleep(0)
    abort.set()
    results = await asyncio.wait_for(task, timeout=1.0)

    assert HealthChecker.aborted(results)
    assert not HealthChecker.passed(results)


@pytest.mark.parametrize(
    "kwargs",
    [{"interval": 0}, {"timeout": -1}, {"retries": 0}, {"start_period": -5}],
)
def test_policy_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        HealthCheckPolicy(**kwargs)
