"""
Capability engine.

`compute_capabilities(actor, target, table)` is the single source of truth for
"may this actor perform this action on this target". The query endpoint
returns its result verbatim and every mutation handler calls it again through
the enforcement adapter, so the two can never disagree.

The function is pure: no clock, no randomness, no I/O. Each action is derived
independently and a "no" is a value, never an exception.
"""
from app.features.rbac.errors import DenialReason
from app.features.rbac.hierarchy import ROLE_MANAGER, outranks
from app.features.rbac.scope import is_target_in_scope
from app.features.rbac.table import PermissionTable
from app.features.rbac.types import Action, Actor, CapabilityActions, CapabilityResult, Target


# Action -> (resource, action) in the permission table
ACTION_PERMISSIONS: dict[Action, tuple[str, str]] = {
    Action.UPDATE: ("user", "update"),
    Action.SET_ROLE: ("user", "set-role"),
    Action.BAN: ("user", "ban"),
    Action.UNBAN: ("user", "ban"),
    Action.SET_PASSWORD: ("user", "set-password"),
    Action.REMOVE: ("user", "delete"),
    Action.REVOKE_SESSIONS: ("session", "revoke"),
    Action.IMPERSONATE: ("user", "impersonate"),
}

# Only these may ever be true when actor and target are the same user
SELF_ALLOWED_ACTIONS: frozenset[Action] = frozenset({Action.UPDATE, Action.SET_PASSWORD})


def _self_denial(actor: Actor, action: Action, table: PermissionTable) -> DenialReason | None:
    if action not in SELF_ALLOWED_ACTIONS:
        return DenialReason.SELF_ACTION_RESTRICTED
    if not table.has_base_permission(actor.role, *ACTION_PERMISSIONS[action]):
        return DenialReason.INSUFFICIENT_PERMISSION
    return None


def _denial(actor: Actor, target: Target, action: Action, table: PermissionTable) -> DenialReason | None:
    """First failing gate for a non-self target, or None when allowed."""
    if not table.has_base_permission(actor.role, *ACTION_PERMISSIONS[action]):
        return DenialReason.INSUFFICIENT_PERMISSION
    if not outranks(actor.role, target.role):
        return DenialReason.INSUFFICIENT_RANK
    if actor.role == ROLE_MANAGER:
        if not actor.active_organization_id:
            return DenialReason.NO_ACTIVE_ORGANIZATION
        if not is_target_in_scope(actor, target):
            return DenialReason.OUT_OF_SCOPE
    return None


def compute_capabilities(actor: Actor, target: Target, table: PermissionTable | None = None) -> CapabilityResult:
    """
    Derive every per-target action flag for an actor.

    Args:
        actor: The effective caller (after impersonation substitution)
        target: The user being acted upon, with memberships
        table: Base permissions; the documented defaults when omitted

    Returns:
        CapabilityResult with all eight flags and the internal denial reasons
    """
    if table is None:
        table = DEFAULT_TABLE

    is_self = actor.id == target.id
    flags: dict[str, bool] = {}
    denials: dict[Action, DenialReason] = {}

    for action in Action:
        if is_self:
            reason = _self_denial(actor, action, table)
        else:
            reason = _denial(actor, target, action, table)
        flags[action.field] = reason is None
        if reason is not None:
            denials[action] = reason

    return CapabilityResult(
        target_user_id=target.id,
        target_role=target.role,
        is_self=is_self,
        actions=CapabilityActions(**flags),
        denials=denials,
    )


def allowed_actions(result: CapabilityResult) -> set[str]:
    """Wire names of the actions a client should render for this target."""
    return {action.value for action in Action if result.actions.allows(action)}


DEFAULT_TABLE = PermissionTable.from_defaults()
