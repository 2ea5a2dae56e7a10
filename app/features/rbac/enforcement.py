"""
Enforcement adapter.

Every mutating handler goes through here before it touches the data store:
load the target facts, recompute capabilities with the same engine the query
endpoint uses, and raise a typed AuthorizationError for a false flag. The
last-admin guard runs afterwards, inside the request transaction, and can
still veto an action whose capability flag is true.
"""
from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations.models import OrganizationMember
from app.features.rbac.capabilities import compute_capabilities
from app.features.rbac.errors import (
    AuthorizationError,
    DenialReason,
    InvalidSubjectError,
    LastAdminProtected,
)
from app.features.rbac.hierarchy import ROLE_ADMIN, ROLE_MANAGER, can_assign_role, can_manage_membership, outranks
from app.features.rbac.scope import is_target_in_scope, require_organization_in_scope
from app.features.rbac.table import PermissionTable
from app.features.rbac.types import Action, Actor, CapabilityResult, Membership, Target
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Subject construction
# ============================================================================

def actor_from_user(user: User) -> Actor:
    """
    Build the engine's Actor from the effective session user.

    Raises:
        InvalidSubjectError: if the stored record is structurally invalid
    """
    try:
        return Actor(id=user.id, role=user.role, active_organization_id=user.active_organization_id)
    except ValidationError as e:
        raise InvalidSubjectError(f"Invalid actor record {user.id!r}: {e.errors()}") from e


def target_from_user(user: User) -> Target:
    """
    Build the engine's Target from a user and its loaded memberships.

    Raises:
        InvalidSubjectError: if the stored record is structurally invalid
    """
    try:
        return Target(
            id=user.id,
            role=user.role,
            memberships=frozenset(
                Membership(organization_id=m.organization_id, role=m.role) for m in user.memberships
            ),
        )
    except ValidationError as e:
        raise InvalidSubjectError(f"Invalid target record {user.id!r}: {e.errors()}") from e


async def get_user_or_404(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


async def load_target(db: AsyncSession, user_id: str) -> Target:
    """Load target facts for `user_id` (404 if the user does not exist)."""
    return target_from_user(await get_user_or_404(db, user_id))


# ============================================================================
# Checks
# ============================================================================

def _deny(reason: DenialReason, actor: Actor, subject: str, action: str) -> AuthorizationError:
    log.info(f"Denied {action} by {actor.id} ({actor.role}) on {subject}: {reason.value}")
    return AuthorizationError.for_reason(reason, f"{action} on {subject}")


def authorize(
    actor: Actor,
    target: Target,
    action: Action,
    table: PermissionTable,
    *,
    new_role: str | None = None,
) -> CapabilityResult:
    """
    Allow or deny one per-target action.

    Args:
        actor: Effective caller
        target: User being acted upon
        action: The action about to be performed
        table: Current permission table
        new_role: Requested destination role for setRole

    Returns:
        The capability result the decision was based on

    Raises:
        AuthorizationError: the recorded denial for a false flag, or
            RoleNotAssignable when `new_role` is outside the actor's grant
    """
    result = compute_capabilities(actor, target, table)
    if not result.actions.allows(action):
        raise _deny(result.denials[action], actor, target.id, action.value)

    if action is Action.SET_ROLE and not can_assign_role(actor.role, new_role):
        raise _deny(DenialReason.ROLE_NOT_ASSIGNABLE, actor, target.id, action.value)

    return result


async def ensure_not_last_admin(db: AsyncSession, user_id: str, organization_ids) -> None:
    """
    Veto a mutation that would leave an organization without an admin.

    The admin membership rows of each organization are locked for the rest of
    the transaction, so the count and the caller's mutation cannot interleave
    with a concurrent demotion or removal.

    Raises:
        LastAdminProtected: if `user_id` is the only admin of any of the organizations
    """
    for organization_id in sorted(set(organization_ids)):
        result = await db.execute(
            select(OrganizationMember.user_id)
            .where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.role == ROLE_ADMIN,
            )
            .with_for_update()
        )
        admin_ids = set(result.scalars().all())
        if user_id in admin_ids and len(admin_ids) <= 1:
            log.info(f"Last admin of organization {organization_id} protected: {user_id}")
            raise LastAdminProtected(f"{user_id} is the last admin of {organization_id}")


def authorize_organization(
    actor: Actor,
    organization_id: str,
    table: PermissionTable,
    permission: str,
    *,
    new_role: str | None = None,
) -> None:
    """
    Allow or deny an organization-level operation.

    Checks the base permission, then the organization scope, then (when a role
    is being granted) assignability.

    Raises:
        AuthorizationError: InsufficientPermission, NoActiveOrganization,
            OutOfScope or RoleNotAssignable
    """
    resource, _, action = permission.partition(":")
    if not table.has_base_permission(actor.role, resource, action):
        raise _deny(DenialReason.INSUFFICIENT_PERMISSION, actor, organization_id, permission)
    try:
        require_organization_in_scope(actor, organization_id)
    except AuthorizationError as e:
        log.info(f"Denied {permission} by {actor.id} ({actor.role}) on {organization_id}: {e.reason.value}")
        raise
    if new_role is not None and not can_assign_role(actor.role, new_role):
        raise _deny(DenialReason.ROLE_NOT_ASSIGNABLE, actor, organization_id, permission)


def authorize_membership_change(
    actor: Actor,
    organization_id: str,
    member: OrganizationMember,
    table: PermissionTable,
    *,
    permission: str,
    new_role: str | None = None,
) -> None:
    """
    Allow or deny changing or removing an existing organization membership.

    On top of `authorize_organization`, the actor may not change their own
    membership and must outrank both the membership role and the platform
    role of the user holding it (the same rank rule the capability engine
    applies to that user).

    Raises:
        AuthorizationError: any organization denial, SelfActionRestricted or
            InsufficientRank
    """
    authorize_organization(actor, organization_id, table, permission, new_role=new_role)
    if member.user_id == actor.id:
        raise _deny(DenialReason.SELF_ACTION_RESTRICTED, actor, member.id, permission)
    holder = member.user
    if not can_manage_membership(actor.role, member.role, holder.role if holder is not None else None):
        raise _deny(DenialReason.INSUFFICIENT_RANK, actor, member.id, permission)


def require_permission_for(actor: Actor, table: PermissionTable, permission: str) -> None:
    """
    Require a base permission with no target involved.

    Raises:
        InsufficientPermission: if the actor's role lacks `permission`
    """
    resource, _, action = permission.partition(":")
    if not table.has_base_permission(actor.role, resource, action):
        raise _deny(DenialReason.INSUFFICIENT_PERMISSION, actor, resource, permission)



def authorize_view(actor: Actor, target: Target, table: PermissionTable, permission: str) -> None:
    """
    Allow or deny reading per-target data such as sessions.

    Users may always read their own. Otherwise the same base permission,
    strict rank and scope gates as the capability engine apply.

    Raises:
        AuthorizationError: InsufficientPermission, InsufficientRank,
            NoActiveOrganization or OutOfScope
    """
    if actor.id == target.id:
        return
    require_permission_for(actor, table, permission)
    if not outranks(actor.role, target.role):
        raise _deny(DenialReason.INSUFFICIENT_RANK, actor, target.id, permission)
    if actor.role == ROLE_MANAGER:
        if not actor.active_organization_id:
            raise _deny(DenialReason.NO_ACTIVE_ORGANIZATION, actor, target.id, permission)
        if not is_target_in_scope(actor, target):
            raise _deny(DenialReason.OUT_OF_SCOPE, actor, target.id, permission)
