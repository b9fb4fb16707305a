import sys
from typing import Callable, List, Optional

import httpx
import pytest

from deployctl.domain.entities.deployment import DeploymentOutcome, FailureReason
from deployctl.domain.errors import DeployError, WatchError
from deployctl.domain.services.deploy_service import DeploymentOrchestrator
from deployctl.domain.services.health_service import HealthChecker
from deployctl.infrastructure.build.docker_builder import DockerImageBuilder, ImageBuildError, SourceFetchError
from deployctl.infrastructure.health.http_prober import HttpProber
from deployctl.infrastructure.history.history_store import DeploymentHistory
from deployctl.infrastructure.process.command_runner import CommandResult, CommandRunner, CommandTimeout
from deployctl.infrastructure.registry.registry_client import RegistryClient, RegistryError
from deployctl.infrastructure.runtime.base import RuntimeStartError, RuntimeStopError
from deployctl.infrastructure.runtime.compose_runtime import ComposeRuntime
from deployctl.infrastructure.scm.github_client import GitHubClient

from tests.conftest import make_artifact

DIGEST = "sha256:" + "ab" * 32


class RecordingRunner(CommandRunner):
    """Answers commands from a handler instead of spawning processes."""

    def __init__(self, handler: Optional[Callable[[List[str]], CommandResult]] = None):
        self.calls = []
        self.handler = handler

    async def run(self, args, cwd=None, env=None, timeout=None):
        self.calls.append({"args": list(args), "cwd": cwd, "env": env})
        if self.handler is not None:
            return self.handler(list(args))
        return CommandResult(args=list(args), returncode=0, output="", duration=0.0)


def result(args, returncode=0, output=""):
    return CommandResult(args=args, returncode=returncode, output=output, duration=0.1)


# Command runner

async def test_command_runner_captures_output():
    outcome = await CommandRunner().run([sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"])
    assert outcome.ok
    assert "out" in outcome.output
    assert "err" in outcome.output


async def test_command_runner_reports_exit_code():
    outcome = await CommandRunner().run([sys.executable, "-c", "raise SystemExit(3)"])
    assert outcome.returncode == 3
    assert not outcome.ok


async def test_command_runner_kills_on_timeout():
    with pytest.raises(CommandTimeout):
        await CommandRunner().run([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.2)


# Docker builder

async def test_builder_clones_checks_out_and_builds(tmp_path):
    runner = RecordingRunner()
    builder = DockerImageBuilder(runner, dockerfile="deploy/Dockerfile")

    await builder.fetch_source("https://github.com/acme/shop.git", "abc123", str(tmp_path))
    await builder.build_image(str(tmp_path), "img:abc123")

    commands = [call["args"] for call in runner.calls]
    assert commands[0][:2] == ["git", "clone"]
    assert commands[1] == ["git", "checkout", "--quiet", "--detach", "abc123"]
    assert commands[2] == ["docker", "build", "--pull", "-f", "deploy/Dockerfile", "-t", "img:abc123", "."]
    assert runner.calls[2]["cwd"] == str(tmp_path / "src")


async def test_builder_clone_failure(tmp_path):
    runner = RecordingRunner(lambda args: result(args, 128, "fatal: could not read from remote"))
    with pytest.raises(SourceFetchError) as exc_info:
        await DockerImageBuilder(runner).fetch_source("https://example.invalid/x.git", "abc", str(tmp_path))
    assert "could not read" in exc_info.value.output


async def test_builder_build_failure(tmp_path):
    runner = RecordingRunner(lambda args: result(args, 1, "npm ERR! missing script"))
    with pytest.raises(ImageBuildError):
        await DockerImageBuilder(runner).build_image(str(tmp_path), "img:abc")


async def test_builder_inspect_digest():
    runner = RecordingRunner(lambda args: result(args, 0, DIGEST + "\n"))
    assert await DockerImageBuilder(runner).inspect_digest("img:abc") == DIGEST


# Registry

async def test_registry_push_returns_digest_reference(tmp_path):
    def handler(args):
        if args[1] == "push":
            return result(args, 0, f"abc123: digest: {DIGEST} size: 1234\n")
        return result(args)

    runner = RecordingRunner(handler)
    registry = RegistryClient("registry.example.com/", auth_dir=str(tmp_path), runner=runner)

    reference = await registry.push("shop:abc123")

    assert reference == f"registry.example.com/shop@{DIGEST}"
    assert runner.calls[0]["args"] == ["docker", "tag", "shop:abc123", "registry.example.com/shop:abc123"]
    assert runner.calls[1]["env"] == {"DOCKER_CONFIG": str(tmp_path)}


async def test_registry_push_without_digest_fails():
    registry = RegistryClient("registry.example.com", runner=RecordingRunner())
    with pytest.raises(RegistryError):
        await registry.push("shop:abc123")


async def test_unconfigured_registry_refuses_push():
    registry = RegistryClient(None, runner=RecordingRunner())
    assert not registry.is_configured()
    with pytest.raises(RegistryError):
        await registry.push("shop:abc123")


# Compose runtime

def compose_runtime(runner, **kwargs):
    return ComposeRuntime(
        compose_file="docker-compose.yml",
        project="shop",
        slot_ports=[8081, 8082],
        runner=runner,
        **kwargs,
    )


async def test_compose_runtime_alternates_slots():
    runner = RecordingRunner()
    runtime = compose_runtime(runner)

    blue = await runtime.start(make_artifact("aaa111"))
    green = await runtime.start(make_artifact("bbb222"))

    assert (blue.instance_id, blue.port) == ("shop-blue", 8081)
    assert (green.instance_id, green.port) == ("shop-green", 8082)
    assert green.endpoints == ["http://127.0.0.1:8082/health"]
    assert runner.calls[1]["env"] == {"APP_IMAGE": "img:bbb222", "APP_PORT": "8082"}

    with pytest.raises(RuntimeStartError):
        await runtime.start(make_artifact("ccc333"))

    await runtime.stop(blue)
    again = await runtime.start(make_artifact("ccc333"))
    assert again.instance_id == "shop-blue"


async def test_compose_runtime_cleans_up_failed_start():
    def handler(args):
        return result(args, 1, "pull access denied") if "up" in args else result(args)

    runner = RecordingRunner(handler)
    runtime = compose_runtime(runner)

    with pytest.raises(RuntimeStartError):
        await runtime.start(make_artifact("aaa111"))

    assert runner.calls[-1]["args"][-2:] == ["down", "--remove-orphans"]
    # The slot is free again
    runner.handler = None
    assert (await runtime.start(make_artifact("bbb222"))).slot == 0


async def test_compose_runtime_stop_failure_frees_slot():
    runner = RecordingRunner()
    runtime = compose_runtime(runner)
    instance = await runtime.start(make_artifact("aaa111"))

    runner.handler = lambda args: result(args, 1, "no such project")
    with pytest.raises(RuntimeStopError):
        await runtime.stop(instance)

    runner.handler = None
    assert (await runtime.start(make_artifact("bbb222"))).slot == 0


async def test_compose_runtime_promote_writes_upstream(tmp_path):
    upstream = tmp_path / "upstream.conf"
    runtime = compose_runtime(RecordingRunner(), upstream_file=str(upstream))

    instance = await runtime.start(make_artifact("aaa111"))
    await runtime.promote(instance)

    assert "server 127.0.0.1:8081;" in upstream.read_text()


async def test_compose_runtime_promote_failure_leaves_no_temp_file(tmp_path):
    upstream = tmp_path / "upstream.conf"
    upstream.mkdir()
    runtime = compose_runtime(RecordingRunner(), upstream_file=str(upstream))
    instance = await runtime.start(make_artifact("aaa111"))

    with pytest.raises(OSError):
        await runtime.promote(instance)

    assert [p.name for p in tmp_path.iterdir()] == ["upstream.conf"]


async def test_failed_cutover_releases_the_slot(tmp_path, prober, policy, clock):
    upstream_dir = tmp_path / "nginx"
    upstream_dir.mkdir()
    runtime = compose_runtime(RecordingRunner(), upstream_file=str(upstream_dir / "upstream.conf"))
    orchestrator = DeploymentOrchestrator(runtime, HealthChecker(prober, policy, clock=clock), DeploymentHistory())
    live = await orchestrator.deploy(make_artifact("good1"))

    upstream_dir.rename(tmp_path / "nginx.moved")
    with pytest.raises(DeployError) as exc_info:
        await orchestrator.deploy(make_artifact("next2", minutes=1))
    assert exc_info.value.record.failure_reason == FailureReason.PROMOTE_FAILED
    assert orchestrator.live_instance == live.instance

    (tmp_path / "nginx.moved").rename(upstream_dir)
    record = await orchestrator.deploy(make_artifact("next3", minutes=2))
    assert record.outcome == DeploymentOutcome.SUCCESS
    assert "server 127.0.0.1:8082;" in (upstream_dir / "upstream.conf").read_text()


def test_compose_runtime_needs_two_slots():
    with pytest.raises(ValueError):
        ComposeRuntime("docker-compose.yml", "shop", [8081])


# GitHub client

def github(handler) -> GitHubClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubClient("acme/shop", token="ghp_test", client=client)


async def test_github_branch_head():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/repos/acme/shop/branches/main"
        assert request.headers["Authorization"] == "Bearer ghp_test"
        return httpx.Response(
            200,
            json={
                "name": "main",
                "commit": {
                    "sha": "abc123",
                    "commit": {
                        "message": "fix checkout",
                        "committer": {"date": "2024-05-01T12:05:00Z"},
                    },
                },
            },
        )

    head = await github(handler).get_branch_head("main")

    assert head.commit_sha == "abc123"
    assert head.message == "fix checkout"
    assert head.timestamp.isoformat() == "2024-05-01T12:05:00+00:00"


@pytest.mark.parametrize(
    "response",
    [httpx.Response(404, json={"message": "Not Found"}), httpx.Response(200, json={"name": "main"})],
)
async def test_github_errors_become_watch_errors(response):
    with pytest.raises(WatchError):
        await github(lambda request: response).get_branch_head("main")


async def test_github_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(WatchError):
        await github(handler).get_branch_head("main")


# HTTP prober

def prober(handler) -> HttpProber:
    return HttpProber(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def test_prober_200_is_healthy():
    outcome = await prober(lambda request: httpx.Response(200)).probe("http://svc/health", 1.0)
    assert outcome.ok and outcome.status_code == 200


async def test_prober_non_200_is_unhealthy():
    outcome = await prober(lambda request: httpx.Response(503)).probe("http://svc/health", 1.0)
    assert not outcome.ok and outcome.status_code == 503


async def test_prober_timeout_and_connection_errors():
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    slow = await prober(timeout).probe("http://svc/health", 0.5)
    down = await prober(refused).probe("http://svc/health", 0.5)

    assert not slow.ok and "timed out" in slow.error
    assert not down.ok and "ConnectError" in down.error
