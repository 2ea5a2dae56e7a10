"""
Idempotent seeding of the default permissions and system roles.

Existing rows are left untouched, so permission sets edited through role
management survive restarts.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.rbac.defaults import DEFAULT_PERMISSIONS, DEFAULT_ROLES, permission_name
from app.features.rbac.models import Permission, Role
from app.features.rbac.table import invalidate_permission_table
from app.utils import get_logger


log = get_logger(__name__)


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create default permissions.

    Returns:
        Dictionary mapping permission names to Permission objects
    """
    log.info("Creating default permissions...")
    permissions_map = {}
    created = 0

    for resource, action, description in DEFAULT_PERMISSIONS:
        name = permission_name(resource, action)

        # Check if permission already exists
        stmt = select(Permission).where(Permission.name == name)
        result = await db.execute(stmt)
        existing = result.scalars().first()

        if existing:
            log.debug(f"Permission '{name}' already exists, skipping")
            permissions_map[name] = existing
            continue

        permission = Permission(
            name=name,
            resource=resource,
            action=action,
            description=description
        )
        db.add(permission)
        permissions_map[name] = permission
        created += 1
        log.debug(f"Created permission: {name}")

    await db.flush()
    log.info(f"Created {created} permissions ({len(permissions_map)} total)")
    return permissions_map


async def seed_roles(db: AsyncSession, permissions_map: dict[str, Permission]) -> None:
    """
    Create the system roles and assign their default permissions.

    Args:
        db: Database session
        permissions_map: Dictionary of permission name -> Permission object
    """
    log.info("Creating system roles...")

    for role_name, role_config in DEFAULT_ROLES.items():
        stmt = select(Role).where(Role.name == role_name)
        result = await db.execute(stmt)
        existing = result.scalars().first()

        if existing:
            log.debug(f"Role '{role_name}' already exists, skipping")
            continue

        role = Role(
            name=role_name,
            display_name=role_config["display_name"],
            description=role_config["description"],
            color=role_config["color"],
            is_system=True,
        )

        if role_config["permissions"] == "ALL":
            role.permissions = list(permissions_map.values())
            log.info(f"Created role '{role_name}' with ALL permissions")
        else:
            role_permissions = []
            for perm_name in role_config["permissions"]:
                if perm_name in permissions_map:
                    role_permissions.append(permissions_map[perm_name])
                else:
                    log.warning(f"Permission '{perm_name}' not found for role '{role_name}'")

            role.permissions = role_permissions
            log.info(f"Created role '{role_name}' with {len(role_permissions)} permissions")

        db.add(role)

    await db.flush()


async def seed_rbac(db: AsyncSession) -> None:
    """Seed permissions, then roles, then drop the cached permission table."""
    permissions_map = await seed_permissions(db)
    await seed_roles(db, permissions_map)
    await db.commit()
    invalidate_permission_table()
