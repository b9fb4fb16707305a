from pydantic import BaseModel, Field


class UserPrincipal(BaseModel):
    user_id: str
    login_id: str | None = None
    name: str | None = None
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)
    token: str | None = None
