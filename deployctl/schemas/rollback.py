from pydantic import BaseModel, Field


class RollbackRequest(BaseModel):
    reason: str = Field("operator requested rollback", min_length=5)
