"""
Permission dependencies and audit logging helpers.

Implements:
- Access to the cached permission table
- FastAPI dependencies for route protection by base permission
- Audit logging helpers
"""
from typing import Annotated, Any, Dict, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.rbac.enforcement import require_permission_for
from app.features.rbac.models import AuditLog
from app.features.rbac.table import PermissionTable, get_cached_permission_table
from app.features.rbac.types import Actor
from app.features.users.dependencies import SessionContext, get_current_actor, get_current_session
from app.utils import client_ip, get_logger


log = get_logger(__name__)


async def get_permission_table(
    db: Annotated[AsyncSession, Depends(get_db)]
) -> PermissionTable:
    """The process-wide permission table, loaded on first use."""
    return await get_cached_permission_table(db)


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def require_permission(resource: str, action: str):
    """
    FastAPI dependency to require a base permission.

    Usage:
        @router.get("/roles")
        async def list_roles(
            actor: Actor = Depends(require_permission("rbac", "read"))
        ):
            # Actor's role holds rbac:read
            pass

    Args:
        resource: Resource type
        action: Action

    Returns:
        Dependency function that returns the current actor if they have permission

    Raises:
        InsufficientPermission: mapped to 403 by the application
    """
    async def permission_dependency(
        actor: Annotated[Actor, Depends(get_current_actor)],
        table: Annotated[PermissionTable, Depends(get_permission_table)],
    ) -> Actor:
        require_permission_for(actor, table, f"{resource}:{action}")
        return actor

    return permission_dependency


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Create an audit log entry in the current transaction.

    Args:
        db: Database session
        user_id: Effective user performing the action
        action: Action performed (e.g., "ban", "set-role", "remove-member")
        resource_type: Type of resource (e.g., "user", "organization", "role")
        resource_id: ID of the resource
        organization_id: Organization context
        details: Additional details
        ip_address: Client IP address
        user_agent: Client user agent

    Returns:
        Created AuditLog object
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )

    db.add(audit_log)
    await db.flush()

    log.info(
        f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id} org={organization_id}"
    )

    return audit_log


async def audit(
    db: AsyncSession,
    request: Request,
    session: SessionContext,
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Audit an action taken by the request's session, noting any impersonator."""
    details = dict(details or {})
    if session.is_impersonating:
        details["impersonatedBy"] = session.real_user.id

    return await create_audit_log(
        db,
        user_id=session.user.id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details or None,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


CurrentSession = Annotated[SessionContext, Depends(get_current_session)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
CurrentTable = Annotated[PermissionTable, Depends(get_permission_table)]
