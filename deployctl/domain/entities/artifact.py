from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from deployctl.domain.entities.revision import Revision


class Artifact(BaseModel):
    """A built image for one revision. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    image_ref: str
    digest: str
    revision: Revision
    registry_ref: Optional[str] = None
    build_log: str = ""
    build_duration: float = 0.0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def deploy_ref(self) -> str:
        """Reference the runtime should start: the registry digest when pushed."""
        return self.registry_ref or self.image_ref
