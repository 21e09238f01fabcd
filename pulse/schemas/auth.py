from __future__ import annotations

from pydantic import Field

from pulse.schemas.base import CamelModel
from pulse.schemas.users import UserPublic

USERNAME_PATTERN = r"^[a-zA-Z0-9_.-]+$"


class RegisterRequest(CamelModel):
    username: str = Field(min_length=3, max_length=32, pattern=USERNAME_PATTERN)
    display_name: str | None = Field(default=None, min_length=1, max_length=64)
    avatar: str | None = Field(default=None, max_length=512)
    password: str = Field(min_length=8, max_length=128)


class LoginRequest(CamelModel):
    username: str = Field(min_length=3, max_length=32, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=128)


class AccessToken(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(CamelModel):
    user: UserPublic
    token: AccessToken
