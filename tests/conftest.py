"""
Shared fixtures.

Each test gets its own SQLite file seeded with the default roles. Identity is
faked: the bearer token is taken as the Appwrite user id, and the session id
is derived from it, so `client.get(url, headers=auth(user))` acts as `user`.
"""
import pytest
from fastapi import HTTPException, Request
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.engine import get_db, init_db
from app.core.limiter import limiter
from app.features.organizations.models import Organization, OrganizationMember
from app.features.rbac.seed import seed_rbac
from app.features.rbac.table import invalidate_permission_table
from app.features.users.auth import get_identity_provider
from app.features.users.dependencies import get_identity
from app.features.users.models import User
from app.main import app


class FakeIdentityProvider:
    """Records account operations instead of calling Appwrite."""

    def __init__(self):
        self.calls: list[tuple[str, ...]] = []
        self.sessions: dict[str, list[dict]] = {}

    async def get_user(self, appwrite_id: str) -> dict:
        self.calls.append(("get_user", appwrite_id))
        return {"$id": appwrite_id, "email": f"{appwrite_id}@example.com", "name": appwrite_id}

    async def update_password(self, appwrite_id: str, password: str) -> None:
        self.calls.append(("update_password", appwrite_id))

    async def list_sessions(self, appwrite_id: str) -> list[dict]:
        self.calls.append(("list_sessions", appwrite_id))
        return self.sessions.get(appwrite_id, [])

    async def delete_sessions(self, appwrite_id: str) -> None:
        self.calls.append(("delete_sessions", appwrite_id))

    async def delete_user(self, appwrite_id: str) -> None:
        self.calls.append(("delete_user", appwrite_id))


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {user.appwrite_id}"}


async def fake_identity(request: Request) -> dict:
    token = request.headers.get("Authorization", "").removeprefix("Bearer ").strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return {"userId": token, "sessionId": f"session-{token}"}


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_db(bind=engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with factory() as db:
        await seed_rbac(db)

    yield factory
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
async def client(session_factory, identity_provider):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity] = fake_identity
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider
    invalidate_permission_table()
    limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    invalidate_permission_table()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make_user(role: str = "member", name: str | None = None, **fields) -> User:
        counter["n"] += 1
        name = name or f"{role}-{counter['n']}"
        user = User(
            appwrite_id=f"aw-{name}",
            email=f"{name}@example.com",
            name=name,
            role=role,
            **fields,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_org(db):
    async def _make_org(slug: str, name: str | None = None) -> Organization:
        organization = Organization(name=name or slug.title(), slug=slug)
        db.add(organization)
        await db.commit()
        await db.refresh(organization)
        return organization

    return _make_org


@pytest.fixture
def add_member(db):
    async def _add_member(organization: Organization, user: User, role: str = "member") -> OrganizationMember:
        member = OrganizationMember(organization_id=organization.id, user_id=user.id, role=role)
        db.add(member)
        await db.commit()
        await db.refresh(member)
        return member

    return _add_member


@pytest.fixture
def activate(db):
    async def _activate(user: User, organization: Organization) -> User:
        user.active_organization_id = organization.id
        await db.commit()
        return user

    return _activate
