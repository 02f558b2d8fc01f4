from typing import ClassVar, Literal

from pydantic import BaseModel, Field

from app.auth.schemas import Role, UserOut
from app.core.patch import PatchModel

UserStatus = Literal["active", "inactive"]


class UserPatchRequest(PatchModel):
    required_fields: ClassVar[frozenset[str]] = frozenset({"first_name", "last_name", "role", "status"})

    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=32)
    avatar_url: str | None = Field(default=None, max_length=500)
    role: Role | None = None
    status: UserStatus | None = None


class UserListResponse(BaseModel):
    items: list[UserOut]
    total: int
    limit: int
    offset: int
