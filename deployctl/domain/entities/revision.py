from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class BuildStatus(str, Enum):
    PENDING = "Pending"
    BUILDING = "Building"
    BUILT = "Built"
    FAILED = "Failed"


class Revision(BaseModel):
    commit_sha: str
    branch: str
    repository_url: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    message: Optional[str] = None
    build_status: BuildStatus = BuildStatus.PENDING

    @property
    def short_sha(self) -> str:
        return self.commit_sha[:12]
