"""
Denial taxonomy for the authorization engine.

Every "no" is a deterministic policy decision. The kind is recorded for audit
logs only; callers outside the service see a uniform "Action not available".
"""
import enum


class DenialReason(str, enum.Enum):
    """Internal reason an action was denied."""
    NO_ACTIVE_ORGANIZATION = "NoActiveOrganization"
    INSUFFICIENT_PERMISSION = "InsufficientPermission"
    INSUFFICIENT_RANK = "InsufficientRank"
    OUT_OF_SCOPE = "OutOfScope"
    ROLE_NOT_ASSIGNABLE = "RoleNotAssignable"
    LAST_ADMIN_PROTECTED = "LastAdminProtected"
    SELF_ACTION_RESTRICTED = "SelfActionRestricted"


PUBLIC_DENIAL_MESSAGE = "Action not available"


class InvalidSubjectError(ValueError):
    """Raised for structurally invalid actor or target records."""


class AuthorizationError(Exception):
    """
    Base class for typed denials.

    Subclasses set `reason`. The HTTP layer maps all of them to 403.
    """
    reason: DenialReason = DenialReason.INSUFFICIENT_PERMISSION

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.reason.value
        super().__init__(self.detail)

    @classmethod
    def for_reason(cls, reason: DenialReason, detail: str | None = None) -> "AuthorizationError":
        """Build the exception class matching a recorded denial reason."""
        return _BY_REASON[reason](detail)


class NoActiveOrganization(AuthorizationError):
    reason = DenialReason.NO_ACTIVE_ORGANIZATION


class InsufficientPermission(AuthorizationError):
    reason = DenialReason.INSUFFICIENT_PERMISSION


class InsufficientRank(AuthorizationError):
    reason = DenialReason.INSUFFICIENT_RANK


class OutOfScope(AuthorizationError):
    reason = DenialReason.OUT_OF_SCOPE


class RoleNotAssignable(AuthorizationError):
    reason = DenialReason.ROLE_NOT_ASSIGNABLE


class LastAdminProtected(AuthorizationError):
    reason = DenialReason.LAST_ADMIN_PROTECTED


class SelfActionRestricted(AuthorizationError):
    reason = DenialReason.SELF_ACTION_RESTRICTED


_BY_REASON: dict[DenialReason, type[AuthorizationError]] = {
    cls.reason: cls
    for cls in (
        NoActiveOrganization,
        InsufficientPermission,
        InsufficientRank,
        OutOfScope,
        RoleNotAssignable,
        LastAdminProtected,
        SelfActionRestricted,
    )
}
