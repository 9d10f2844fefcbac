"""Schemas for authentication endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, constr


class UserBase(BaseModel):
    """Base fields shared across user schemas."""

    email: EmailStr = Field(..., description="Unique e-mail address used to sign in")
    name: constr(strip_whitespace=True, min_length=1, max_length=128) = Field(
        ..., description="Display name shown next to chat messages"
    )


class UserCreate(UserBase):
    """Payload for creating a new user via registration."""

    password: constr(min_length=8, max_length=128) = Field(
        ..., description="Plain text password that will be hashed before storing"
    )


class UserRead(UserBase):
    """Representation of a user returned from the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    profile_picture: str | None = None
    is_online: bool = False
    last_seen: datetime | None = None
    current_workspace_id: str | None = None
    created_at: datetime
    updated_at: datetime


class LoginRequest(BaseModel):
    """Payload for user login."""

    email: EmailStr = Field(..., description="User e-mail")
    password: constr(min_length=8, max_length=128) = Field(..., description="User password")


class Token(BaseModel):
    """Access token returned after successful authentication."""

    access_token: str = Field(..., description="JWT access token (also set as an HttpOnly cookie)")
    token_type: str = Field(default="bearer", description="Token type, always 'bearer'")
    expires_in: int | None = Field(
        default=None,
        description="Number of seconds until the access token expires",
    )
