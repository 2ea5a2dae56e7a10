"""
Authentication utilities for Appwrite JWT verification, plus the identity
provider used for account operations the admin console delegates to Appwrite
(passwords, sessions, account deletion).
"""
import jwt
from typing import Optional
from fastapi import HTTPException, status
from appwrite.client import Client
from appwrite.services.users import Users
from appwrite.exception import AppwriteException

from app.core import config
from app.utils import get_logger

APPWRITE_ENDPOINT = config.APPWRITE_ENDPOINT
APPWRITE_PROJECT_ID = config.APPWRITE_PROJECT_ID
APPWRITE_API_KEY = config.APPWRITE_API_KEY


log = get_logger(__name__)


class AppwriteClient:
    """Singleton Appwrite client for server-side operations."""

    _instance: Optional[Client] = None

    @classmethod
    def get_client(cls) -> Client:
        """Get or create Appwrite client instance."""
        if cls._instance is None:
            cls._instance = Client()
            cls._instance.set_endpoint(APPWRITE_ENDPOINT)
            cls._instance.set_project(APPWRITE_PROJECT_ID)
            cls._instance.set_key(APPWRITE_API_KEY)
        return cls._instance


def verify_jwt_token(token: str) -> dict:
    """
    Verify Appwrite JWT token and return payload.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded JWT payload containing `userId` and `sessionId`

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        # Decode JWT without signature verification
        # Appwrite handles token signing - we trust tokens and verify user exists in Appwrite
        payload = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True}
        )

        return payload

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


class IdentityProvider:
    """
    Account operations performed against the Appwrite users service.

    Appwrite failures surface as HTTP 502 so a half-done admin action is
    rolled back together with the request transaction.
    """

    def __init__(self, users: Optional[Users] = None):
        self._users = users

    @property
    def users(self) -> Users:
        if self._users is None:
            self._users = Users(AppwriteClient.get_client())
        return self._users

    def _fail(self, operation: str, appwrite_id: str, e: AppwriteException) -> HTTPException:
        log.error(f"Appwrite {operation} failed for {appwrite_id}: {e}")
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Identity provider error during {operation}",
        )

    async def get_user(self, appwrite_id: str) -> dict:
        """
        Get user information from Appwrite.

        Raises:
            HTTPException: 401 if the user cannot be verified
        """
        try:
            return self.users.get(appwrite_id)
        except AppwriteException as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Failed to verify user: {str(e)}",
            )

    async def update_password(self, appwrite_id: str, password: str) -> None:
        try:
            self.users.update_password(appwrite_id, password)
        except AppwriteException as e:
            raise self._fail("update_password", appwrite_id, e)

    async def list_sessions(self, appwrite_id: str) -> list[dict]:
        try:
            result = self.users.list_sessions(appwrite_id)
        except AppwriteException as e:
            raise self._fail("list_sessions", appwrite_id, e)
        return list(result.get("sessions", []))

    async def delete_sessions(self, appwrite_id: str) -> None:
        try:
            self.users.delete_sessions(appwrite_id)
        except AppwriteException as e:
            raise self._fail("delete_sessions", appwrite_id, e)

    async def delete_user(self, appwrite_id: str) -> None:
        try:
            self.users.delete(appwrite_id)
        except AppwriteException as e:
            raise self._fail("delete", appwrite_id, e)


_provider: Optional[IdentityProvider] = None


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency returning the process-wide identity provider."""
    global _provider
    if _provider is None:
        _provider = IdentityProvider()
    return _provider
