from __future__ import annotations
from typing import List, Optional
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from deployctl.config import Settings, settings
from deployctl.domain.services.build_service import BuildExecutor
from deployctl.domain.services.deploy_service import DeploymentOrchestrator
from deployctl.domain.services.health_service import HealthChecker, HealthCheckPolicy
from deployctl.domain.services.monitor_service import RuntimeMonitor
from deployctl.domain.services.pipeline_service import DeploymentPipeline
from deployctl.domain.services.rollback_service import RollbackManager
from deployctl.domain.services.watch_service import SourceWatcher
from deployctl.infrastructure.auth.descope_client import DescopeAuthError, descope_client
from deployctl.infrastructure.build.docker_builder import DockerImageBuilder
from deployctl.infrastructure.health.http_prober import HttpProber
from deployctl.infrastructure.history.history_store import DeploymentHistory
from deployctl.infrastructure.process.command_runner import CommandRunner
from deployctl.infrastructure.registry.registry_client import RegistryClient
from deployctl.infrastructure.runtime.compose_runtime import ComposeRuntime
from deployctl.infrastructure.scm.github_client import GitHubClient
from deployctl.schemas.auth import UserPrincipal

logger = logging.getLogger(__name__)
_security = HTTPBearer(auto_error=False)

REFRESH_COOKIE_NAME = "DSR"

_pipeline: Optional[DeploymentPipeline] = None
_monitor: Optional[RuntimeMonitor] = None


def build_pipeline(config: Settings) -> DeploymentPipeline:
    """Wire the controller components from configuration."""
    if not config.REPOSITORY_SLUG:
        logger.warning("⚠️ REPOSITORY_SLUG not configured - polling and head lookups will fail")

    runner = CommandRunner()
    registry = RegistryClient(config.REGISTRY_URL, config.REGISTRY_AUTH_DIR, runner=runner)
    history = DeploymentHistory(config.HISTORY_FILE, limit=config.HISTORY_LIMIT)
    prober = HttpProber()

    watcher = SourceWatcher(
        GitHubClient(config.REPOSITORY_SLUG or "", api_url=config.GITHUB_API_URL, token=config.GITHUB_TOKEN),
        branch=config.TRACKED_BRANCH,
        repository_url=config.REPOSITORY_URL,
        repository_slug=config.REPOSITORY_SLUG,
        poll_interval=config.POLL_INTERVAL_SECONDS,
        max_backoff=config.POLL_MAX_BACKOFF_SECONDS,
        failure_threshold=config.POLL_FAILURE_THRESHOLD,
    )
    builder = BuildExecutor(
        DockerImageBuilder(runner, dockerfile=config.DOCKERFILE),
        image_repository=config.IMAGE_REPOSITORY,
        default_repository_url=config.REPOSITORY_URL,
        registry=registry,
        timeout=config.BUILD_TIMEOUT_SECONDS,
        max_concurrent=config.MAX_CONCURRENT_BUILDS,
        workspace_root=config.BUILD_WORKSPACE_ROOT,
    )
    runtime = ComposeRuntime(
        compose_file=config.COMPOSE_FILE,
        project=config.COMPOSE_PROJECT,
        slot_ports=config.slot_ports,
        host=config.SERVICE_HOST,
        health_path=config.HEALTH_CHECK_PATH,
        upstream_file=config.UPSTREAM_FILE,
        registry=registry,
        runner=runner,
    )
    policy = HealthCheckPolicy(
        interval=config.HEALTH_CHECK_INTERVAL,
        timeout=config.HEALTH_CHECK_TIMEOUT,
        retries=config.HEALTH_CHECK_RETRIES,
        start_period=config.HEALTH_CHECK_START_PERIOD,
    )
    orchestrator = DeploymentOrchestrator(runtime, HealthChecker(prober, policy), history)
    orchestrator.restore()
    rollback_manager = RollbackManager(orchestrator, history)
    return DeploymentPipeline(watcher, builder, orchestrator, rollback_manager)


def build_monitor(pipeline: DeploymentPipeline, config: Settings) -> RuntimeMonitor:
    return RuntimeMonitor(
        pipeline.orchestrator,
        pipeline.rollback_manager,
        HttpProber(),
        interval=config.MONITOR_INTERVAL_SECONDS,
        failure_threshold=config.MONITOR_FAILURE_THRESHOLD,
        probe_timeout=config.HEALTH_CHECK_TIMEOUT,
        auto_rollback=config.AUTO_ROLLBACK,
    )


def get_pipeline() -> DeploymentPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(settings)
    return _pipeline


def get_monitor() -> RuntimeMonitor:
    global _monitor
    if _monitor is None:
        _monitor = build_monitor(get_pipeline(), settings)
    return _monitor


async def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_security),
) -> UserPrincipal:
    """
    Authenticate the operator with a Descope session token.

    Supports:
      - Authorization: Bearer <session_token>
      - Optional refresh token from the DSR cookie
    """
    if settings.AUTH_ALLOW_ANONYMOUS:
        return UserPrincipal(
            user_id="anonymous",
            login_id="anonymous",
            name="Anonymous Operator",
            roles=["Operator"],
            permissions=list(settings.AVAILABLE_PERMISSIONS),
        )

    if not creds or not creds.credentials:
        logger.error("❌ No session token found in Authorization header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required - no session token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not descope_client.is_configured():
        logger.error("❌ Descope client not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication service not configured",
        )

    try:
        jwt_response = descope_client.validate_session(
            session_token=creds.credentials,
            refresh_token=request.cookies.get(REFRESH_COOKIE_NAME),
        )
        user_principal = descope_client.extract_user_principal(jwt_response, creds.credentials)
    except DescopeAuthError as e:
        logger.error(f"❌ Authentication failed: {e.detail}")
        raise HTTPException(
            status_code=e.status_code,
            detail=e.detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info(f"✅ Authenticated {user_principal.user_id} with permissions {user_principal.permissions}")
    return user_principal


def require_permissions(required_permissions: List[str]):
    """
    Dependency factory for requiring any of the given permissions.

    Args:
        required_permissions: Permissions of which the user must have at least one

    Returns:
        Dependency function that validates permissions
    """
    def permission_dependency(user: UserPrincipal = Depends(get_current_user)) -> UserPrincipal:
        if not set(user.permissions).intersection(required_permissions):
            logger.warning(
                f"❌ Permission denied for user {user.user_id}: required={required_permissions}, user_has={user.permissions}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {required_permissions}",
            )
        return user

    return permission_dependency


require_read_deployments = require_permissions(["read_deployments"])
require_deploy = require_permissions(["deploy"])
require_rollback = require_permissions(["rollback"])
