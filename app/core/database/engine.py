"""
Async engine and request-scoped sessions.

SQLite via aiosqlite by default; any async SQLAlchemy URL works through
DATABASE_URL (e.g. postgresql+asyncpg://...). On PostgreSQL the last-admin
guard's SELECT ... FOR UPDATE takes row locks; SQLite serialises writers.
"""
from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core import config


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


engine = create_async_engine(
    config.SQLALCHEMY_DATABASE_URL,
    # a pooled SQLite connection cannot be shared across event loops
    poolclass=NullPool if _is_sqlite(config.SQLALCHEMY_DATABASE_URL) else None,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One session per request.

    Handlers commit explicitly; anything still pending is committed when the
    handler returns and rolled back when it raises, so an authorization
    denial never leaves a half-applied mutation or audit row behind.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def register_models() -> None:
    """Import every model module so its tables land on Base.metadata."""
    from app.features.users.models import User, Impersonation  # noqa: F401
    from app.features.organizations.models import (  # noqa: F401
        Organization, OrganizationMember, OrganizationInvitation
    )
    from app.features.rbac.models import (  # noqa: F401
        Permission, Role, AuditLog
    )


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create missing tables on `bind` (the application engine by default)."""
    from app.core.database.base import Base

    register_models()

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
