"""
Role hierarchy policy: admin > manager > member.

Two relations are encoded here:
- rank, used to decide whether an actor may act on a target at all
- assignability, used whenever a role is granted (user role, membership role,
  invitation role)
"""
from typing import Iterable


ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_MEMBER = "member"

# Higher number = higher privilege
ROLE_HIERARCHY: dict[str, int] = {
    ROLE_MEMBER: 0,
    ROLE_MANAGER: 1,
    ROLE_ADMIN: 2,
}

SYSTEM_ROLES: tuple[str, ...] = (ROLE_ADMIN, ROLE_MANAGER, ROLE_MEMBER)

# Creator role -> roles it may grant
ASSIGNABLE_ROLES: dict[str, frozenset[str]] = {
    ROLE_ADMIN: frozenset({ROLE_ADMIN, ROLE_MANAGER, ROLE_MEMBER}),
    ROLE_MANAGER: frozenset({ROLE_MANAGER, ROLE_MEMBER}),
    ROLE_MEMBER: frozenset(),
}


def rank_of(role: str) -> int:
    """
    Return the hierarchy level for a role name.

    Unknown roles (including custom roles created through role management)
    rank lowest.
    """
    return ROLE_HIERARCHY.get(role, 0)


def outranks(actor_role: str, target_role: str) -> bool:
    """Strict comparison. Equal ranks never outrank each other."""
    return rank_of(actor_role) > rank_of(target_role)


def can_assign_role(creator_role: str, target_role: str) -> bool:
    """
    Check whether `creator_role` may grant `target_role`.

    admin may assign admin, manager, member; manager may assign manager and
    member, never admin; member may assign nothing.
    """
    return target_role in ASSIGNABLE_ROLES.get(creator_role, frozenset())


def assignable_roles(creator_role: str) -> list[str]:
    """Roles `creator_role` may grant, highest first."""
    allowed = ASSIGNABLE_ROLES.get(creator_role, frozenset())
    return sorted(allowed, key=rank_of, reverse=True)


def visible_roles(viewer_role: str, role_names: Iterable[str]) -> list[str]:
    """
    Filter role names to the ones a viewer may see in role management.

    Admins see every role; everyone else only sees roles ranked strictly
    below their own.
    """
    if viewer_role == ROLE_ADMIN:
        return list(role_names)
    if viewer_role not in ROLE_HIERARCHY:
        return []
    return [name for name in role_names if outranks(viewer_role, name)]


def can_manage_membership(actor_role: str, member_role: str, member_user_role: str | None) -> bool:
    """
    Check whether a platform role may change an organization membership.

    Platform admins manage every membership, including organization admins
    (the last-admin guard still applies). Managers only manage memberships
    whose organization role and whose holder's platform role both rank
    strictly below manager; an unknown holder is never managed.
    """
    if actor_role == ROLE_ADMIN:
        return True
    if actor_role == ROLE_MANAGER:
        if member_user_role is None:
            return False
        return outranks(actor_role, member_role) and outranks(actor_role, member_user_role)
    return False
