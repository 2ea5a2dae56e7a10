"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import EmailStr, Field, field_validator

from app.core.schemas import CamelModel
from app.features.organizations.models import InvitationStatus
from app.features.users.schemas import UserPublic


SLUG_PATTERN = "^[a-z0-9]+(?:-[a-z0-9]+)*$"


# Organization Schemas
class OrganizationBase(CamelModel):
    """Base organization schema."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern=SLUG_PATTERN, description="URL-safe unique identifier")
    logo: str | None = Field(None, max_length=500)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization."""
    pass


class OrganizationUpdate(CamelModel):
    """Schema for updating organization information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    slug: str | None = Field(None, min_length=1, max_length=100, pattern=SLUG_PATTERN)
    logo: str | None = Field(None, max_length=500)

    @field_validator("name", "slug")
    @classmethod
    def not_null(cls, v: str | None) -> str:
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class OrganizationResponse(OrganizationBase):
    """Schema for organization responses."""
    id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    member_count: int = 0


class SlugCheckResponse(CamelModel):
    slug: str
    available: bool


class SwitchOrganizationRequest(CamelModel):
    """Schema for switching the active organization."""
    organization_id: str


class SwitchOrganizationResponse(CamelModel):
    active_organization_id: str
    active_organization_name: str


# Member Schemas
class MemberResponse(CamelModel):
    """Organization membership with the member's public profile."""
    id: str
    organization_id: str
    user_id: str
    role: str
    created_at: datetime
    user: UserPublic


class AddMemberRequest(CamelModel):
    """Schema for adding an existing user to an organization."""
    user_id: str
    role: str = Field(default="member", min_length=1, max_length=50)


class UpdateMemberRoleRequest(CamelModel):
    role: str = Field(..., min_length=1, max_length=50)


# Invitation Schemas
class InvitationCreate(CamelModel):
    """Schema for inviting an email address."""
    email: EmailStr
    role: str = Field(default="member", min_length=1, max_length=50)


class InvitationResponse(CamelModel):
    """Schema for invitation responses."""
    id: str
    organization_id: str
    inviter_id: str | None = None
    email: str
    role: str
    status: InvitationStatus
    expires_at: datetime
    created_at: datetime
