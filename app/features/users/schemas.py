"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import EmailStr, Field, field_validator

from app.core import config
from app.core.schemas import CamelModel


class MembershipPublic(CamelModel):
    """Organization membership as shown on a user."""
    organization_id: str
    role: str


class UserPublic(CamelModel):
    """Public user information (limited fields)."""
    id: str
    name: str
    image: str | None = None


class UserResponse(UserPublic):
    """Schema for user responses."""
    email: EmailStr
    role: str
    banned: bool
    ban_reason: str | None = None
    ban_expires: datetime | None = None
    is_active: bool
    active_organization_id: str | None = None
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    memberships: list[MembershipPublic] = []


class UserUpdate(CamelModel):
    """Schema for updating user profile fields. `image` may be cleared, `name` may not."""
    name: str | None = Field(None, min_length=1, max_length=255)
    image: str | None = Field(None, max_length=500)

    @field_validator("name")
    @classmethod
    def name_not_null(cls, v: str | None) -> str:
        if v is None:
            raise ValueError("Name cannot be empty")
        return v


class SetRoleRequest(CamelModel):
    role: str = Field(..., min_length=1, max_length=50)


# Ten years. Omit banExpiresIn for a permanent ban
MAX_BAN_SECONDS = 10 * 365 * 24 * 60 * 60


class BanRequest(CamelModel):
    ban_reason: str | None = Field(None, max_length=500)
    ban_expires_in: int | None = Field(
        None, gt=0, le=MAX_BAN_SECONDS, description="Ban duration in seconds; permanent when omitted"
    )


class SetPasswordRequest(CamelModel):
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_long_enough(cls, v: str) -> str:
        if len(v) < config.PASSWORD_MIN_LENGTH:
            raise ValueError(f"Password must be at least {config.PASSWORD_MIN_LENGTH} characters")
        return v


class BatchCapabilitiesRequest(CamelModel):
    user_ids: list[str] = Field(default_factory=list, max_length=100)


class SessionPublic(CamelModel):
    """A session as reported by the identity provider."""
    id: str = Field(validation_alias="$id")
    created_at: str | None = Field(None, validation_alias="$createdAt")
    expire: str | None = None
    ip: str | None = None
    client_name: str | None = None
    os_name: str | None = None
    current: bool = False


class ImpersonationResponse(CamelModel):
    id: str
    original_user_id: str
    impersonated_user_id: str
    created_at: datetime
    ended_at: datetime | None = None


class MeSessionResponse(CamelModel):
    """The effective user of the current session."""
    user: UserResponse
    impersonated_by: UserPublic | None = None
    active_organization_id: str | None = None
