from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    APP_NAME: str = Field("deployctl", alias="APP_NAME")
    LOG_LEVEL: str = Field("INFO", alias="LOG_LEVEL")
    ALLOWED_CORS_ORIGINS: str = Field("*", alias="ALLOWED_CORS_ORIGINS")

    # Source control
    REPOSITORY_URL: Optional[str] = Field(None, alias="REPOSITORY_URL")
    REPOSITORY_SLUG: Optional[str] = Field(None, alias="REPOSITORY_SLUG")
    TRACKED_BRANCH: str = Field("main", alias="TRACKED_BRANCH")
    GITHUB_API_URL: str = Field("https://api.github.com", alias="GITHUB_API_URL")
    GITHUB_TOKEN: Optional[str] = Field(None, alias="GITHUB_TOKEN")
    WEBHOOK_SECRET: Optional[str] = Field(None, alias="WEBHOOK_SECRET")

    # Polling
    POLL_ENABLED: bool = Field(False, alias="POLL_ENABLED")
    POLL_INTERVAL_SECONDS: float = Field(60.0, alias="POLL_INTERVAL_SECONDS")
    POLL_MAX_BACKOFF_SECONDS: float = Field(600.0, alias="POLL_MAX_BACKOFF_SECONDS")
    POLL_FAILURE_THRESHOLD: int = Field(5, alias="POLL_FAILURE_THRESHOLD")

    # Builds
    BUILD_TIMEOUT_SECONDS: float = Field(900.0, alias="BUILD_TIMEOUT_SECONDS")
    MAX_CONCURRENT_BUILDS: int = Field(2, alias="MAX_CONCURRENT_BUILDS")
    BUILD_WORKSPACE_ROOT: Optional[str] = Field(None, alias="BUILD_WORKSPACE_ROOT")
    DOCKERFILE: str = Field("Dockerfile", alias="DOCKERFILE")
    IMAGE_REPOSITORY: str = Field("app", alias="IMAGE_REPOSITORY")

    # Artifact registry
    REGISTRY_URL: Optional[str] = Field(None, alias="REGISTRY_URL")
    REGISTRY_AUTH_DIR: Optional[str] = Field(None, alias="REGISTRY_AUTH_DIR")

    # Compose runtime
    COMPOSE_FILE: str = Field("docker-compose.yml", alias="COMPOSE_FILE")
    COMPOSE_PROJECT: str = Field("app", alias="COMPOSE_PROJECT")
    SERVICE_HOST: str = Field("127.0.0.1", alias="SERVICE_HOST")
    SLOT_PORTS: str = Field("5000,5001", alias="SLOT_PORTS")
    UPSTREAM_FILE: Optional[str] = Field(None, alias="UPSTREAM_FILE")

    # Health checks (defaults mirror the compose healthcheck block)
    HEALTH_CHECK_PATH: str = Field("/health", alias="HEALTH_CHECK_PATH")
    HEALTH_CHECK_INTERVAL: float = Field(10.0, alias="HEALTH_CHECK_INTERVAL")
    HEALTH_CHECK_TIMEOUT: float = Field(5.0, alias="HEALTH_CHECK_TIMEOUT")
    HEALTH_CHECK_RETRIES: int = Field(5, alias="HEALTH_CHECK_RETRIES")
    HEALTH_CHECK_START_PERIOD: float = Field(60.0, alias="HEALTH_CHECK_START_PERIOD")

    # Deployment history
    HISTORY_FILE: Optional[str] = Field(None, alias="HISTORY_FILE")
    HISTORY_LIMIT: int = Field(200, alias="HISTORY_LIMIT")

    # Runtime monitor
    MONITOR_ENABLED: bool = Field(False, alias="MONITOR_ENABLED")
    MONITOR_INTERVAL_SECONDS: float = Field(30.0, alias="MONITOR_INTERVAL_SECONDS")
    MONITOR_FAILURE_THRESHOLD: int = Field(3, alias="MONITOR_FAILURE_THRESHOLD")
    AUTO_ROLLBACK: bool = Field(True, alias="AUTO_ROLLBACK")

    # Descope - optional for development
    DESCOPE_PROJECT_ID: Optional[str] = Field(None, alias="DESCOPE_PROJECT_ID")
    AUTH_ALLOW_ANONYMOUS: bool = Field(False, alias="AUTH_ALLOW_ANONYMOUS")

    # RBAC Configuration
    AVAILABLE_ROLES: List[str] = ["Observer", "Deployer", "Operator"]

    AVAILABLE_PERMISSIONS: List[str] = [
        "read_deployments",  # View history and controller status
        "deploy",            # Trigger or abort a deployment
        "rollback",          # Roll back to the last known-good artifact
    ]

    ROLE_PERMISSIONS: dict = {
        "Observer": ["read_deployments"],
        "Deployer": ["read_deployments", "deploy"],
        "Operator": ["read_deployments", "deploy", "rollback"],
    }

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        if self.ALLOWED_CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_CORS_ORIGINS.split(",")]

    @property
    def slot_ports(self) -> list[int]:
        """Host ports of the blue/green slots."""
        return [int(port.strip()) for port in self.SLOT_PORTS.split(",") if port.strip()]


settings = Settings()
