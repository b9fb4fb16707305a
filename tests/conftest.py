"""
Shared fixtures and in-process fakes for the controller tests.

The fakes stand in for Docker, GitHub and the deployed service so that the
state machine, timing and concurrency rules can be exercised without
external processes. ``FakeClock`` advances virtual time, which keeps the
health-check timing tests deterministic.
"""
import asyncio
import hashlib
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from deployctl.config import settings
from deployctl.dependencies import get_pipeline
from deployctl.domain.entities.artifact import Artifact
from deployctl.domain.entities.health import ProbeOutcome
from deployctl.domain.entities.instance import ServiceInstance
from deployctl.domain.entities.revision import BuildStatus, Revision
from deployctl.domain.errors import WatchError
from deployctl.domain.services.build_service import BuildExecutor
from deployctl.domain.services.deploy_service import DeploymentOrchestrator
from deployctl.domain.services.health_service import HealthChecker, HealthCheckPolicy
from deployctl.domain.services.pipeline_service import DeploymentPipeline
from deployctl.domain.services.rollback_service import RollbackManager
from deployctl.domain.services.watch_service import SourceWatcher
from deployctl.infrastructure.build.docker_builder import ImageBuildError, SourceFetchError
from deployctl.infrastructure.history.history_store import DeploymentHistory
from deployctl.infrastructure.process.command_runner import CommandResult
from deployctl.infrastructure.runtime.base import RuntimeStartError, ServiceRuntime
from deployctl.infrastructure.scm.github_client import BranchHead
from deployctl.main import create_app
from deployctl.utils.clock import Clock

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock(Clock):
    def __init__(self):
        self.t = 0.0

    def now(self) -> float:
        return self.t

    async def wait(self, seconds: float, abort: Optional[asyncio.Event] = None) -> bool:
        if abort is not None and abort.is_set():
            return True
        # Yield so concurrent tasks (e.g. an abort) get a turn
        await asyncio.sleep(0)
        self.t += seconds
        return bool(abort is not None and abort.is_set())


class ScriptedProber:
    """Healthy from ``healthy_from`` (virtual seconds) until ``unhealthy_from``."""

    def __init__(
        self,
        clock: Optional[FakeClock] = None,
        healthy_from: Optional[float] = 0.0,
        unhealthy_from: Optional[float] = None,
    ):
        self.clock = clock
        self.healthy_from = healthy_from
        self.unhealthy_from = unhealthy_from
        self.calls: List[tuple] = []
        self.on_probe: Optional[Callable[[str], None]] = None
        self.gate: Optional[asyncio.Event] = None

    async def probe(self, endpoint: str, timeout: float) -> ProbeOutcome:
        now = self.clock.now() if self.clock else 0.0
        self.calls.append((endpoint, now))
        if self.on_probe is not None:
            self.on_probe(endpoint)
        if self.gate is not None:
            await self.gate.wait()
        healthy = self.healthy_from is not None and now >= self.healthy_from
        if self.unhealthy_from is not None and now >= self.unhealthy_from:
            healthy = False
        if healthy:
            return ProbeOutcome(ok=True, status_code=200)
        return ProbeOutcome(ok=False, error="connection refused")


class FakeRuntime(ServiceRuntime):
    def __init__(self, slots: int = 2):
        self.slots = slots
        self.running: Dict[str, ServiceInstance] = {}
        self.promoted: Optional[ServiceInstance] = None
        self.events: List[tuple] = []
        self.fail_start = False
        self.fail_promote = False
        self._counter = 0

    @property
    def live_is_serving(self) -> bool:
        return self.promoted is not None and self.promoted.instance_id in self.running

    async def start(self, artifact: Artifact) -> ServiceInstance:
        await asyncio.sleep(0)
        if self.fail_start:
            self.events.append(("start_failed", artifact.image_ref))
            raise RuntimeStartError("compose up failed (1)")
        used = {instance.slot for instance in self.running.values()}
        free = [slot for slot in range(self.slots) if slot not in used]
        if not free:
            raise RuntimeStartError("No free deployment slot")
        self._counter += 1
        slot = free[0]
        instance = ServiceInstance(
            instance_id=f"app-{self._counter}",
            slot=slot,
            port=5000 + slot,
            image_ref=artifact.deploy_ref,
            endpoints=[f"http://127.0.0.1:{5000 + slot}/health"],
        )
        self.running[instance.instance_id] = instance
        self.events.append(("start", instance.instance_id, artifact.image_ref))
        return instance

    async def stop(self, instance: ServiceInstance) -> None:
        self.running.pop(instance.instance_id, None)
        self.events.append(("stop", instance.instance_id))

    async def promote(self, instance: ServiceInstance) -> None:
        if self.fail_promote:
            raise OSError("upstream directory missing")
        self.promoted = instance
        self.events.append(("promote", instance.instance_id))

    def adopt(self, instance: ServiceInstance) -> None:
        self.running[instance.instance_id] = instance
        self.promoted = instance


class FakeSourceClient:
    def __init__(self, head: Optional[str] = None):
        self.head = head
        self.timestamp = BASE_TIME
        self.failures_remaining = 0
        self.calls = 0

    def push(self, sha: str, minutes: int = 1) -> None:
        self.head = sha
        self.timestamp = self.timestamp + timedelta(minutes=minutes)

    async def get_branch_head(self, branch: str) -> BranchHead:
        self.calls += 1
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise WatchError("GitHub returned 503 for acme/shop@main")
        if self.head is None:
            raise WatchError("GitHub returned 404 for acme/shop@main")
        return BranchHead(commit_sha=self.head, timestamp=self.timestamp, message=f"commit {self.head}")


class FakeImageBuilder:
    """Duck-types DockerImageBuilder; records what each build saw in its workspace."""

    def __init__(self):
        self.fail_fetch: set = set()
        self.fail_build: set = set()
        self.delays: Dict[str, float] = {}
        self.seen: Dict[str, List[str]] = {}
        self.workdirs: Dict[str, str] = {}

    async def fetch_source(self, repository_url: str, commit_sha: str, workdir: str) -> str:
        if commit_sha in self.fail_fetch:
            raise SourceFetchError("git clone failed (128)", "fatal: repository not found\n")
        self.workdirs[commit_sha] = workdir
        with open(os.path.join(workdir, f"{commit_sha}.src"), "w") as handle:
            handle.write(commit_sha)
        return f"fetched {commit_sha}\n"

    async def build_image(self, workdir: str, tag: str) -> CommandResult:
        sha = tag.split(":", 1)[1]
        await asyncio.sleep(self.delays.get(sha, 0))
        # What this build can see in its own workspace at build time
        self.seen[sha] = sorted(os.listdir(workdir))
        if sha in self.fail_build:
            raise ImageBuildError("docker build failed (1)", "ModuleNotFoundError: flask\n")
        return CommandResult(args=["docker", "build"], returncode=0, output=f"built {tag}\n", duration=0.0)

    async def inspect_digest(self, tag: str) -> str:
        return "sha256:" + hashlib.sha256(tag.encode()).hexdigest()


def make_artifact(sha: str, minutes: int = 0, repository: str = "img") -> Artifact:
    revision = Revision(
        commit_sha=sha,
        branch="main",
        repository_url="https://github.com/acme/shop.git",
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        build_status=BuildStatus.BUILT,
    )
    return Artifact(
        image_ref=f"{repository}:{sha[:12]}",
        digest="sha256:" + hashlib.sha256(sha.encode()).hexdigest(),
        revision=revision,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> HealthCheckPolicy:
    return HealthCheckPolicy(interval=10.0, timeout=5.0, retries=5, start_period=60.0)


@pytest.fixture
def prober(clock) -> ScriptedProber:
    return ScriptedProber(clock, healthy_from=0.0)


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def history() -> DeploymentHistory:
    return DeploymentHistory()


@pytest.fixture
def orchestrator(runtime, prober, policy, clock, history) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(runtime, HealthChecker(prober, policy, clock=clock), history)


@pytest.fixture
def rollback_manager(orchestrator, history) -> RollbackManager:
    return RollbackManager(orchestrator, history)


@pytest.fixture
def source() -> FakeSourceClient:
    return FakeSourceClient()


@pytest.fixture
def watcher(source) -> SourceWatcher:
    return SourceWatcher(
        source,
        branch="main",
        repository_url="https://github.com/acme/shop.git",
        repository_slug="acme/shop",
        poll_interval=60.0,
        max_backoff=600.0,
        failure_threshold=3,
    )


@pytest.fixture
def image_builder() -> FakeImageBuilder:
    return FakeImageBuilder()


@pytest.fixture
def build_executor(image_builder, tmp_path) -> BuildExecutor:
    return BuildExecutor(
        image_builder,
        image_repository="img",
        timeout=5.0,
        max_concurrent=4,
        workspace_root=str(tmp_path),
    )


@pytest.fixture
def pipeline(watcher, build_executor, orchestrator, rollback_manager, clock) -> DeploymentPipeline:
    return DeploymentPipeline(watcher, build_executor, orchestrator, rollback_manager, clock=clock)


@pytest.fixture
def app(pipeline, monkeypatch):
    monkeypatch.setattr(settings, "POLL_ENABLED", False)
    monkeypatch.setattr(settings, "MONITOR_ENABLED", False)
    monkeypatch.setattr(settings, "AUTH_ALLOW_ANONYMOUS", True)
    monkeypatch.setattr(settings, "WEBHOOK_SECRET", None)
    application = create_app()
    application.dependency_overrides[get_pipeline] = lambda: pipeline
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
