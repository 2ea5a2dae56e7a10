"""
Role management API routes.

Every endpoint is gated by the same permission table the capability engine
reads, on the `rbac` resource. Writes invalidate the cached table.
"""
from collections import defaultdict
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from app.core.database.engine import get_db
from app.features.rbac.dependencies import (
    CurrentActor,
    CurrentSession,
    CurrentTable,
    audit,
    require_permission,
)
from app.features.rbac.errors import InsufficientRank
from app.features.rbac.hierarchy import ROLE_ADMIN, visible_roles
from app.features.rbac.models import AuditLog, Permission, Role
from app.features.rbac.schemas import (
    AuditLogListResponse,
    AuditLogResponse,
    MyPermissionsResponse,
    PermissionResponse,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    RoleWithPermissions,
    SetRolePermissions,
)
from app.features.rbac.table import invalidate_permission_table
from app.features.rbac.types import Actor
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def _get_role_or_404(db: AsyncSession, role_id: str) -> Role:
    result = await db.execute(select(Role).where(Role.id == role_id))
    role = result.scalars().first()
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


def _require_visible(actor: Actor, role: Role) -> None:
    if not visible_roles(actor.role, [role.name]):
        log.info(f"Role {role.name} hidden from {actor.id} ({actor.role})")
        raise InsufficientRank(f"role {role.name} not visible to {actor.role}")


def _require_editable(role: Role) -> None:
    if role.is_system:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="System roles cannot be modified"
        )


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("rbac", "read"))
):
    """List the roles visible to the current user."""
    result = await db.execute(select(Role).order_by(Role.name))
    roles = result.scalars().all()
    visible = set(visible_roles(actor.role, [role.name for role in roles]))
    return [role for role in roles if role.name in visible]


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("rbac", "read"))
):
    """Get a specific role with its permissions."""
    role = await _get_role_or_404(db, role_id)
    _require_visible(actor, role)
    return role


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    request: Request,
    session: CurrentSession,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("rbac", "create"))
):
    """Create a new custom role."""
    try:
        db_role = Role(**role.model_dump(), is_system=False)
        db.add(db_role)
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role with this name already exists"
        )

    await audit(db, request, session, "create", "role", db_role.id, details={"name": db_role.name})
    await db.commit()
    await db.refresh(db_role)
    invalidate_permission_table()
    return db_role


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    request: Request,
    session: CurrentSession,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("rbac", "update"))
):
    """Update a custom role's display fields."""
    db_role = await _get_role_or_404(db, role_id)
    _require_visible(actor, db_role)
    _require_editable(db_role)

    update_data = role_update.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        setattr(db_role, key, value)

    await audit(db, request, session, "update", "role", role_id, details=update_data)
    await db.commit()
    await db.refresh(db_role)
    invalidate_permission_table()
    return db_role


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    request: Request,
    session: CurrentSession,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("rbac", "delete"))
):
    """Delete a custom role."""
    db_role = await _get_role_or_404(db, role_id)
    _require_visible(actor, db_role)
    _require_editable(db_role)

    role_name = db_role.name
    await db.delete(db_role)
    await audit(db, request, session, "delete", "role", role_id, details={"name": role_name})
    await db.commit()
    invalidate_permission_table()
    return None


@router.put("/roles/{role_id}/permissions", response_model=RoleWithPermissions)
async def set_role_permissions(
    role_id: str,
    assignment: SetRolePermissions,
    request: Request,
    session: CurrentSession,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("rbac", "update"))
):
    """Replace a role's permission set. System roles may be managed here too."""
    db_role = await _get_role_or_404(db, role_id)
    _require_visible(actor, db_role)

    wanted = set(assignment.permission_ids)
    result = await db.execute(select(Permission).where(Permission.id.in_(wanted)))
    permissions = result.scalars().all()
    missing = wanted - {p.id for p in permissions}
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown permission ids: {sorted(missing)}"
        )

    db_role.permissions = list(permissions)
    await audit(
        db, request, session, "set-permissions", "role", role_id,
        details={"name": db_role.name, "permissions": sorted(p.name for p in permissions)},
    )
    await db.commit()
    await db.refresh(db_role)
    invalidate_permission_table()
    log.info(f"Role {db_role.name} now has {len(permissions)} permissions")
    return db_role


# ============================================================================
# Permission Routes
# ============================================================================

@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    resource: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("rbac", "read"))
):
    """List permissions with optional resource filtering."""
    stmt = select(Permission).order_by(Permission.resource, Permission.action)
    if resource:
        stmt = stmt.where(Permission.resource == resource)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/permissions/grouped", response_model=Dict[str, List[PermissionResponse]])
async def list_grouped_permissions(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("rbac", "read"))
):
    """Permissions grouped by resource, for display."""
    result = await db.execute(select(Permission).order_by(Permission.resource, Permission.action))
    grouped = defaultdict(list)
    for permission in result.scalars().all():
        grouped[permission.resource].append(permission)
    return dict(grouped)


@router.get("/my-permissions", response_model=MyPermissionsResponse)
async def get_my_permissions(actor: CurrentActor, table: CurrentTable):
    """Permission names held by the current user's role."""
    return MyPermissionsResponse(data=sorted(table.get_permissions_for_role(actor.role)))


@router.get("/users/{role_name}/permissions", response_model=Dict[str, List[str]])
async def get_role_permissions(
    role_name: str,
    table: CurrentTable,
    actor: Actor = Depends(require_permission("rbac", "read"))
):
    """Grouped permissions of a role (own role or a visible one)."""
    if role_name != actor.role and not visible_roles(actor.role, [role_name]):
        raise InsufficientRank(f"role {role_name} not visible to {actor.role}")
    return table.get_grouped_permissions(role_name)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("rbac", "read"))
):
    """List audit logs with optional filtering (admin only)."""
    if actor.role != ROLE_ADMIN:
        raise InsufficientRank(f"audit logs require admin, got {actor.role}")

    stmt = select(AuditLog)

    if organization_id:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
