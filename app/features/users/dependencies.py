"""
FastAPI dependencies for authentication and session resolution.

The session dependency performs impersonation substitution: while the caller's
session has an active Impersonation record, every downstream dependency (and
therefore the capability engine) sees the impersonated user as the actor.
"""
from dataclasses import dataclass
from typing import Annotated, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.rbac.enforcement import actor_from_user
from app.features.rbac.hierarchy import ROLE_MEMBER
from app.features.rbac.types import Actor
from app.features.users.auth import IdentityProvider, get_identity_provider, verify_jwt_token
from app.features.users.models import Impersonation, User
from app.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class SessionContext:
    """Resolved caller for one request."""
    session_id: str
    real_user: User
    user: User
    impersonation: Optional[Impersonation] = None

    @property
    def is_impersonating(self) -> bool:
        return self.impersonation is not None


async def get_identity(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> dict:
    """
    Decode the bearer token into the identity payload.

    Returns:
        Payload with at least `userId`; `sessionId` identifies the Appwrite session

    Raises:
        HTTPException: 401 if the header is missing or the token is invalid
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_jwt_token(credentials.credentials)
    if not payload.get("userId"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return payload


async def _get_or_provision_user(db: AsyncSession, provider: IdentityProvider, appwrite_user_id: str) -> User:
    result = await db.execute(
        select(User).where(User.appwrite_id == appwrite_user_id)
    )
    user = result.scalar_one_or_none()

    # If user doesn't exist locally, fetch from Appwrite and create
    if user is None:
        appwrite_user = await provider.get_user(appwrite_user_id)

        user = User(
            appwrite_id=appwrite_user_id,
            email=appwrite_user.get("email", ""),
            name=appwrite_user.get("name", "Unknown"),
            role=ROLE_MEMBER,
            last_login_at=utcnow(),
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        log.info(f"Provisioned user {user.id} for Appwrite account {appwrite_user_id}")
    else:
        user.last_login_at = utcnow()
        await db.commit()
        await db.refresh(user)

    return user


def _check_ban(user: User) -> None:
    """Reject banned users; expired bans are lifted on the spot."""
    if not user.banned:
        return
    expires = as_utc(user.ban_expires)
    if expires is not None and expires <= utcnow():
        user.banned = False
        user.ban_reason = None
        user.ban_expires = None
        log.info(f"Ban of user {user.id} expired")
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="User is banned",
    )


async def get_current_session(
    identity: Annotated[dict, Depends(get_identity)],
    db: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> SessionContext:
    """
    Resolve the authenticated user and apply impersonation substitution.

    This dependency:
    1. Looks up or provisions the local user for the Appwrite account
    2. Rejects deactivated and banned users
    3. Swaps in the impersonated user while the session is impersonating
    """
    real_user = await _get_or_provision_user(db, provider, identity["userId"])
    session_id = identity.get("sessionId") or ""

    if not real_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )
    _check_ban(real_user)

    impersonation = None
    if session_id:
        result = await db.execute(
            select(Impersonation).where(
                Impersonation.session_id == session_id,
                Impersonation.original_user_id == real_user.id,
                Impersonation.ended_at.is_(None),
            )
        )
        impersonation = result.scalars().first()

    effective = impersonation.impersonated_user if impersonation else real_user
    return SessionContext(
        session_id=session_id,
        real_user=real_user,
        user=effective,
        impersonation=impersonation,
    )


async def get_current_user(
    session: Annotated[SessionContext, Depends(get_current_session)]
) -> User:
    """
    The effective user for this request.

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    return session.user


async def get_current_actor(
    user: Annotated[User, Depends(get_current_user)]
) -> Actor:
    """The effective user as the capability engine's Actor."""
    return actor_from_user(user)


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
