from typing import Optional

from pydantic import BaseModel


class HealthCheckResult(BaseModel):
    endpoint: str
    attempts: int = 0
    last_status_code: Optional[int] = None
    last_error: Optional[str] = None
    passed: bool = False
    elapsed: float = 0.0
    aborted: bool = False


class ProbeOutcome(BaseModel):
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
