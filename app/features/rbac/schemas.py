"""
Pydantic schemas for role management.

Request and response models for permissions, roles, and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import Field, field_validator

from app.core.schemas import CamelModel


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionResponse(CamelModel):
    """Schema for permission response."""
    id: str
    name: str
    resource: str
    action: str
    description: Optional[str] = None


class MyPermissionsResponse(CamelModel):
    """Permission names held by the current user's role."""
    data: List[str]


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(CamelModel):
    """Base role schema."""
    display_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    color: str = Field("gray", min_length=1, max_length=20)


class RoleCreate(RoleBase):
    """Schema for creating a new role."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique role name")

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        """Validate role name format."""
        if not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
        return v.lower()


class RoleUpdate(CamelModel):
    """Schema for updating a role."""
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    color: Optional[str] = Field(None, min_length=1, max_length=20)

    @field_validator("display_name", "color")
    @classmethod
    def not_null(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    name: str
    is_system: bool
    created_at: datetime
    updated_at: datetime


class RoleWithPermissions(RoleResponse):
    """Schema for role with permissions."""
    permissions: List[PermissionResponse] = []


class SetRolePermissions(CamelModel):
    """Replace the permission set of a role."""
    permission_ids: List[str]


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(CamelModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime


class AuditLogListResponse(CamelModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
