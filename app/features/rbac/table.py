"""
Permission table: role name -> set of base `resource:action` permissions.

Loaded once from the roles/permissions tables and cached for the process.
Role management writes call `invalidate_permission_table()` so the next
request reloads it.
"""
from collections import defaultdict
from typing import Iterable, NamedTuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.rbac.defaults import default_role_grants
from app.features.rbac.models import Role
from app.utils import get_logger


log = get_logger(__name__)


class PermissionEntry(NamedTuple):
    """A single granted capability."""
    role: str
    resource: str
    action: str

    @property
    def name(self) -> str:
        return f"{self.resource}:{self.action}"


class PermissionTable:
    """
    Immutable lookup of base permissions per role.

    Lookups fail closed: unknown roles, unknown permissions and malformed
    arguments answer False instead of raising.
    """

    def __init__(self, entries: Iterable[PermissionEntry] = ()):
        grants: dict[str, set[str]] = defaultdict(set)
        for entry in entries:
            grants[entry.role].add(entry.name)
        self._grants: dict[str, frozenset[str]] = {
            role: frozenset(names) for role, names in grants.items()
        }

    @classmethod
    def from_grants(cls, grants: dict[str, Iterable[str]]) -> "PermissionTable":
        """Build from role -> ["resource:action", ...]."""
        entries = []
        for role, names in grants.items():
            for name in names:
                resource, _, action = name.partition(":")
                entries.append(PermissionEntry(role, resource, action))
        return cls(entries)

    @classmethod
    def from_defaults(cls) -> "PermissionTable":
        return cls.from_grants(default_role_grants())

    @property
    def roles(self) -> list[str]:
        return sorted(self._grants)

    def has_base_permission(self, role: str, resource: str, action: str) -> bool:
        if not isinstance(role, str) or not isinstance(resource, str) or not isinstance(action, str):
            return False
        return f"{resource}:{action}" in self._grants.get(role, frozenset())

    def has_permission_name(self, role: str, name: str) -> bool:
        resource, _, action = name.partition(":") if isinstance(name, str) else ("", "", "")
        return self.has_base_permission(role, resource, action)

    def get_permissions_for_role(self, role: str) -> frozenset[str]:
        return self._grants.get(role, frozenset())

    def get_grouped_permissions(self, role: str | None = None) -> dict[str, list[str]]:
        """Permissions of a role (or of every role) grouped by resource, for display."""
        names = self.get_permissions_for_role(role) if role is not None else frozenset().union(*self._grants.values())
        grouped: dict[str, list[str]] = defaultdict(list)
        for name in sorted(names):
            resource, _, action = name.partition(":")
            grouped[resource].append(action)
        return dict(grouped)

    def __len__(self) -> int:
        return sum(len(names) for names in self._grants.values())

    def __repr__(self) -> str:
        return f"<PermissionTable(roles={self.roles}, entries={len(self)})>"


# ============================================================================
# Process-wide cache
# ============================================================================

_cached_table: PermissionTable | None = None


async def load_permission_table(db: AsyncSession) -> PermissionTable:
    """Read every role and its permissions from the database."""
    result = await db.execute(select(Role))
    roles = result.scalars().all()

    entries = [
        PermissionEntry(role.name, permission.resource, permission.action)
        for role in roles
        for permission in role.permissions
    ]
    table = PermissionTable(entries)
    log.debug(f"Loaded permission table: {table!r}")
    return table


async def get_cached_permission_table(db: AsyncSession) -> PermissionTable:
    global _cached_table
    if _cached_table is None:
        _cached_table = await load_permission_table(db)
    return _cached_table


def invalidate_permission_table() -> None:
    global _cached_table
    _cached_table = None
    log.info("Permission table cache invalidated")
