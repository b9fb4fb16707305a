from typing import Optional

from pydantic import BaseModel, Field


class DeployRequest(BaseModel):
    commit_sha: Optional[str] = Field(
        None, description="Commit to build and deploy; defaults to the tracked branch head",
        min_length=7, max_length=40,
    )


class DeployAccepted(BaseModel):
    accepted: bool = True
    commit_sha: str
    branch: str
    message: str


class AbortResponse(BaseModel):
    aborted: bool
    message: str
