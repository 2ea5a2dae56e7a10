"""
Admin user routes.

The capability endpoints expose the engine's answer for a target; every
mutation below re-runs the same engine through `authorize` before touching
the database, so a flag the console shows as false is always refused here.
"""
from datetime import timedelta
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.limiter import limiter
from app.features.organizations.models import OrganizationMember
from app.features.rbac.capabilities import compute_capabilities
from app.features.rbac.dependencies import CurrentActor, CurrentSession, CurrentTable, audit, require_permission
from app.features.rbac.enforcement import (
    authorize,
    authorize_view,
    ensure_not_last_admin,
    get_user_or_404,
    target_from_user,
)
from app.features.rbac.hierarchy import ROLE_ADMIN
from app.features.rbac.scope import require_active_organization
from app.features.rbac.types import Action, Actor, CapabilityResult, Target
from app.features.users.auth import IdentityProvider, get_identity_provider
from app.features.users.models import Impersonation, User
from app.features.users.schemas import (
    BanRequest,
    BatchCapabilitiesRequest,
    ImpersonationResponse,
    MeSessionResponse,
    SessionPublic,
    SetPasswordRequest,
    SetRoleRequest,
    UserPublic,
    UserResponse,
    UserUpdate,
)
from app.utils import get_logger, utcnow


log = get_logger(__name__)
router = APIRouter()

Provider = Annotated[IdentityProvider, Depends(get_identity_provider)]


async def _load(db: AsyncSession, user_id: str) -> tuple[User, Target]:
    user = await get_user_or_404(db, user_id)
    return user, target_from_user(user)


def _me_session(session) -> MeSessionResponse:
    return MeSessionResponse(
        user=UserResponse.model_validate(session.user),
        impersonated_by=UserPublic.model_validate(session.real_user) if session.is_impersonating else None,
        active_organization_id=session.user.active_organization_id,
    )


# ============================================================================
# Session
# ============================================================================

@router.get("/me/session", response_model=MeSessionResponse)
async def get_my_session(session: CurrentSession):
    """The effective user of this session and who is impersonating, if anyone."""
    return _me_session(session)


@router.post("/stop-impersonating", response_model=MeSessionResponse)
async def stop_impersonating(
    request: Request,
    session: CurrentSession,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """End the session's impersonation and restore the original user."""
    if not session.is_impersonating:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Not impersonating"
        )

    record = session.impersonation
    record.ended_at = utcnow()
    await audit(
        db, request, session, "stop-impersonating", "user", record.impersonated_user_id,
        details={"originalUserId": record.original_user_id},
    )
    log.info(f"User {record.original_user_id} stopped impersonating {record.impersonated_user_id}")

    session.impersonation = None
    session.user = session.real_user
    return _me_session(session)


# ============================================================================
# Capability queries
# ============================================================================

@router.post("/capabilities/batch", response_model=dict[str, CapabilityResult])
async def get_capabilities_batch(
    body: BatchCapabilitiesRequest,
    actor: CurrentActor,
    table: CurrentTable,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Capabilities for many targets at once. Unknown ids are skipped."""
    if not body.user_ids:
        return {}

    result = await db.execute(select(User).where(User.id.in_(set(body.user_ids))))
    users = {user.id: user for user in result.scalars().all()}

    return {
        user_id: compute_capabilities(actor, target_from_user(users[user_id]), table)
        for user_id in dict.fromkeys(body.user_ids)
        if user_id in users
    }


@router.get("/{user_id}/capabilities", response_model=CapabilityResult)
async def get_capabilities(
    user_id: str,
    actor: CurrentActor,
    table: CurrentTable,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """What the current user may do to `user_id`. Every flag is always present."""
    _, target = await _load(db, user_id)
    return compute_capabilities(actor, target, table)


# ============================================================================
# Listing
# ============================================================================

@router.get("/", response_model=list[UserResponse])
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    actor: Actor = Depends(require_permission("user", "read")),
    skip: int = 0,
    limit: int = 50
):
    """List users: every user for admins, active-organization members for managers."""
    stmt = select(User).order_by(User.created_at, User.id)
    if actor.role != ROLE_ADMIN:
        organization_id = require_active_organization(actor)
        stmt = stmt.join(OrganizationMember, OrganizationMember.user_id == User.id).where(
            OrganizationMember.organization_id == organization_id
        )

    result = await db.execute(stmt.offset(skip).limit(limit))
    return result.scalars().all()


# ============================================================================
# Mutations
# ============================================================================

@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    update_data: UserUpdate,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Update profile fields of a user."""
    user, target = await _load(db, user_id)
    authorize(actor, target, Action.UPDATE, table)

    changes = update_data.model_dump(exclude_unset=True)
    for key, value in changes.items():
        setattr(user, key, value)

    await audit(db, request, session, "update", "user", user.id, details=changes)
    await db.commit()
    await db.refresh(user)
    return user


@router.put("/{user_id}/role", response_model=UserResponse)
async def set_user_role(
    user_id: str,
    body: SetRoleRequest,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Change a user's platform role."""
    user, target = await _load(db, user_id)
    authorize(actor, target, Action.SET_ROLE, table, new_role=body.role)

    previous = user.role
    user.role = body.role
    await audit(db, request, session, "set-role", "user", user.id, details={"from": previous, "to": body.role})
    await db.commit()
    await db.refresh(user)
    return user


@router.post("/{user_id}/ban", response_model=UserResponse)
async def ban_user(
    user_id: str,
    body: BanRequest,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    provider: Provider,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Ban a user and revoke their sessions."""
    user, target = await _load(db, user_id)
    authorize(actor, target, Action.BAN, table)
    await ensure_not_last_admin(db, user.id, target.admin_organization_ids())

    user.banned = True
    user.ban_reason = body.ban_reason
    user.ban_expires = utcnow() + timedelta(seconds=body.ban_expires_in) if body.ban_expires_in else None
    await audit(
        db, request, session, "ban", "user", user.id,
        details={"reason": body.ban_reason, "expiresIn": body.ban_expires_in},
    )
    await db.flush()
    await provider.delete_sessions(user.appwrite_id)
    await db.commit()
    await db.refresh(user)
    return user


@router.post("/{user_id}/unban", response_model=UserResponse)
async def unban_user(
    user_id: str,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Lift a user's ban."""
    user, target = await _load(db, user_id)
    authorize(actor, target, Action.UNBAN, table)

    user.banned = False
    user.ban_reason = None
    user.ban_expires = None
    await audit(db, request, session, "unban", "user", user.id)
    await db.commit()
    await db.refresh(user)
    return user


@router.post("/{user_id}/password")
async def set_user_password(
    user_id: str,
    body: SetPasswordRequest,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    provider: Provider,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Set a new password for a user."""
    user, target = await _load(db, user_id)
    authorize(actor, target, Action.SET_PASSWORD, table)

    await provider.update_password(user.appwrite_id, body.new_password)
    await audit(db, request, session, "set-password", "user", user.id)
    return {"message": "Password updated successfully"}


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_user(
    user_id: str,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    provider: Provider,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete a user locally and at the identity provider."""
    user, target = await _load(db, user_id)
    authorize(actor, target, Action.REMOVE, table)
    await ensure_not_last_admin(db, user.id, target.admin_organization_ids())

    appwrite_id, email = user.appwrite_id, user.email
    await db.delete(user)
    await audit(db, request, session, "remove", "user", user_id, details={"email": email})
    await db.flush()
    await provider.delete_user(appwrite_id)
    await db.commit()
    return None


# ============================================================================
# Sessions
# ============================================================================

@router.get("/{user_id}/sessions", response_model=list[SessionPublic])
async def list_user_sessions(
    user_id: str,
    actor: CurrentActor,
    table: CurrentTable,
    provider: Provider,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Sessions of a user as reported by the identity provider."""
    user, target = await _load(db, user_id)
    authorize_view(actor, target, table, "session:read")
    return await provider.list_sessions(user.appwrite_id)


@router.post("/{user_id}/revoke-sessions")
async def revoke_user_sessions(
    user_id: str,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    provider: Provider,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Revoke every session of a user."""
    user, target = await _load(db, user_id)
    authorize(actor, target, Action.REVOKE_SESSIONS, table)

    await provider.delete_sessions(user.appwrite_id)
    await audit(db, request, session, "revoke-sessions", "user", user.id)
    return {"message": "Sessions revoked successfully"}


# ============================================================================
# Impersonation
# ============================================================================

@router.post("/{user_id}/impersonate", response_model=ImpersonationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.IMPERSONATION_RATE_LIMIT)
async def impersonate_user(
    user_id: str,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Act as `user_id` on this session until stop-impersonating is called."""
    if session.is_impersonating:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Already impersonating"
        )
    if not session.session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Impersonation requires a session"
        )

    user, target = await _load(db, user_id)
    authorize(actor, target, Action.IMPERSONATE, table)

    record = Impersonation(
        session_id=session.session_id,
        original_user_id=actor.id,
        impersonated_user_id=user.id,
    )
    db.add(record)
    await audit(db, request, session, "impersonate", "user", user.id)
    await db.commit()
    await db.refresh(record)
    log.info(f"User {actor.id} is impersonating {user.id}")
    return record
