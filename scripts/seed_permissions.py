"""
Create the tables and seed the default permission matrix.

Safe to re-run: existing permissions and roles are left as they are and
only missing ones are added.

Usage:
    python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.rbac.defaults import DEFAULT_PERMISSIONS, DEFAULT_ROLES
from app.features.rbac.seed import seed_rbac
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await seed_rbac(db)
        except Exception as e:
            log.error(f"Seeding failed: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info(f"Seeded {len(DEFAULT_PERMISSIONS)} permissions")
    for role_name, role_config in DEFAULT_ROLES.items():
        log.info(f"  {role_name}: {role_config['description']}")


if __name__ == "__main__":
    asyncio.run(main())
