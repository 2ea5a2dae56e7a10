"""
Value types consumed and produced by the capability engine.

Actor and Target are request-scoped snapshots supplied by the identity layer
and the data store. They are frozen so the engine can never mutate them.
"""
import enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.core.schemas import CamelModel
from app.features.rbac.errors import DenialReason


RoleName = Literal["admin", "manager", "member"]


class Action(str, enum.Enum):
    """Per-target admin actions. Values are the wire names."""
    UPDATE = "update"
    SET_ROLE = "setRole"
    BAN = "ban"
    UNBAN = "unban"
    SET_PASSWORD = "setPassword"
    REMOVE = "remove"
    REVOKE_SESSIONS = "revokeSessions"
    IMPERSONATE = "impersonate"

    @property
    def field(self) -> str:
        """Attribute name on CapabilityActions."""
        return self.name.lower()


class Actor(BaseModel):
    """The authenticated (possibly impersonating) caller, after substitution."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    role: RoleName
    active_organization_id: str | None = None


class Membership(BaseModel):
    """A single organization membership row of a target."""
    model_config = ConfigDict(frozen=True)

    organization_id: str = Field(..., min_length=1)
    role: RoleName


class Target(BaseModel):
    """The user being acted upon, with its organization memberships."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    role: RoleName
    memberships: frozenset[Membership] = frozenset()

    @property
    def organization_ids(self) -> frozenset[str]:
        return frozenset(m.organization_id for m in self.memberships)

    def admin_organization_ids(self) -> list[str]:
        """Organizations in which the target holds the admin membership role."""
        return sorted(m.organization_id for m in self.memberships if m.role == "admin")


class CapabilityActions(CamelModel):
    """One boolean per action. Every field is always present."""
    model_config = ConfigDict(frozen=True)

    update: bool = False
    set_role: bool = False
    ban: bool = False
    unban: bool = False
    set_password: bool = False
    remove: bool = False
    revoke_sessions: bool = False
    impersonate: bool = False

    def allows(self, action: Action) -> bool:
        return bool(getattr(self, action.field))


class CapabilityResult(CamelModel):
    """
    Derived answer for one (actor, target) pair.

    `denials` carries the internal reason per false action and is excluded
    from every serialized form.
    """
    model_config = ConfigDict(frozen=True)

    target_user_id: str
    target_role: RoleName
    is_self: bool
    actions: CapabilityActions
    denials: dict[Action, DenialReason] = Field(default_factory=dict, exclude=True)
