"""
Organization scope resolver.

admin   -> unrestricted
manager -> exactly the active organization bound to the session
member  -> nothing (members never pass organization-scoped admin checks)

The active organization is read from the Actor value only, never from ambient
session state.
"""
from typing import Final, Union

from pydantic import BaseModel, ConfigDict

from app.features.rbac.errors import NoActiveOrganization, OutOfScope
from app.features.rbac.hierarchy import ROLE_ADMIN, ROLE_MANAGER
from app.features.rbac.types import Actor, Target


class _Unrestricted:
    """Sentinel scope that contains every organization."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __contains__(self, organization_id: object) -> bool:
        return True

    def __repr__(self) -> str:
        return "UNRESTRICTED"


UNRESTRICTED: Final = _Unrestricted()

Scope = Union[_Unrestricted, frozenset]


class OrganizationScope(BaseModel):
    """The scope a manager actor is currently confined to."""
    model_config = ConfigDict(frozen=True)

    organization_id: str | None
    is_manager_active: bool


def resolve_scope(actor: Actor) -> Scope:
    """Organization ids the actor may operate within."""
    if actor.role == ROLE_ADMIN:
        return UNRESTRICTED
    if actor.role == ROLE_MANAGER and actor.active_organization_id:
        return frozenset({actor.active_organization_id})
    return frozenset()


def organization_scope(actor: Actor) -> OrganizationScope:
    return OrganizationScope(
        organization_id=actor.active_organization_id,
        is_manager_active=actor.role == ROLE_MANAGER and bool(actor.active_organization_id),
    )


def require_active_organization(actor: Actor) -> str:
    """
    Return the actor's active organization id.

    Raises:
        NoActiveOrganization: if the session has no active organization
    """
    if not actor.active_organization_id:
        raise NoActiveOrganization(f"actor {actor.id} has no active organization")
    return actor.active_organization_id


def is_organization_in_scope(actor: Actor, organization_id: str | None) -> bool:
    if organization_id is None:
        return False
    return organization_id in resolve_scope(actor)


def is_target_in_scope(actor: Actor, target: Target) -> bool:
    """True iff admin, or the target has a membership in the manager's active organization."""
    scope = resolve_scope(actor)
    if scope is UNRESTRICTED:
        return True
    return any(org_id in scope for org_id in target.organization_ids)


def require_organization_in_scope(actor: Actor, organization_id: str) -> None:
    """
    Fail closed unless the actor may operate within `organization_id`.

    Raises:
        NoActiveOrganization: manager without an active organization
        OutOfScope: organization outside the actor's scope
    """
    if actor.role == ROLE_ADMIN:
        return
    if actor.role == ROLE_MANAGER:
        require_active_organization(actor)
    if not is_organization_in_scope(actor, organization_id):
        raise OutOfScope(f"organization {organization_id} outside scope of actor {actor.id}")
