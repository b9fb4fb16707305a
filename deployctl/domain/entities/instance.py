from datetime import datetime, timezone

from pydantic import BaseModel, Field


class ServiceInstance(BaseModel):
    instance_id: str
    slot: int
    port: int
    image_ref: str
    endpoints: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
