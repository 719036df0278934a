"""Pydantic schemas for API."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Serialized with the camelCase keys the web client expects."""

    model_config = ConfigDict(populate_by_name=True)


# User schemas
class UserPublic(CamelModel):
    id: int
    email: str
    username: str
    name: Optional[str] = None
    role: str
    is_verified: bool = Field(alias="isVerified")
    blocked: bool = False
    is_superuser: bool = Field(alias="isSuperuser")


class UserListResponse(BaseModel):
    users: list[UserPublic]


# Auth schemas
class LoginRequest(BaseModel):
    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)


class LoginResponse(CamelModel):
    access_token: str = Field(alias="accessToken")
    user: UserPublic


class AccessTokenResponse(CamelModel):
    access_token: str = Field(alias="accessToken")


class ValidateResponse(BaseModel):
    user: UserPublic


class MessageResponse(BaseModel):
    message: str


class LogoutAllResponse(BaseModel):
    message: str
    revoked: int


class SessionItem(CamelModel):
    jti: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")
    created_ip: Optional[str] = Field(default=None, alias="createdIp")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")


class SessionListResponse(BaseModel):
    sessions: list[SessionItem]
