"""GitHub push webhook payload (only the fields the controller reads)."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

ZERO_SHA = "0" * 40


class PushRepository(BaseModel):
    model_config = ConfigDict(extra="ignore")

    full_name: Optional[str] = None
    clone_url: Optional[str] = None
    html_url: Optional[str] = None


class PushCommit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    message: Optional[str] = None
    timestamp: Optional[datetime] = None


class PushEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ref: str = Field(..., description="Full ref, e.g. refs/heads/main")
    after: str = Field(..., description="Head commit SHA after the push")
    before: Optional[str] = None
    deleted: bool = False
    repository: PushRepository = Field(default_factory=PushRepository)
    head_commit: Optional[PushCommit] = None

    @property
    def branch(self) -> Optional[str]:
        prefix = "refs/heads/"
        return self.ref[len(prefix):] if self.ref.startswith(prefix) else None

    @property
    def is_deletion(self) -> bool:
        return self.deleted or self.after == ZERO_SHA


class WebhookAck(BaseModel):
    accepted: bool
    message: str
    commit_sha: Optional[str] = None
