"""
Appwrite token verification.

Token issuance belongs to Appwrite; this module only reads the token and
looks the user up so permission checks know who is asking.
"""
from typing import Optional
import jwt
from fastapi import HTTPException, status
from appwrite.client import Client
from appwrite.services.users import Users
from appwrite.exception import AppwriteException

from app.core import config
from app.features.users.models import USER_ROLES
from app.utils import get_logger


log = get_logger(__name__)


class AppwriteClient:
    """Singleton Appwrite client for server-side operations."""

    _instance: Optional[Client] = None

    @classmethod
    def get_client(cls) -> Client:
        if cls._instance is None:
            cls._instance = Client()
            cls._instance.set_endpoint(config.APPWRITE_ENDPOINT)
            cls._instance.set_project(config.APPWRITE_PROJECT_ID)
            cls._instance.set_key(config.APPWRITE_API_KEY)
        return cls._instance


def verify_jwt_token(token: str) -> dict:
    """
    Decode an Appwrite JWT and return its payload.

    Appwrite signs the token; only expiry is checked here. The user is then
    confirmed against Appwrite itself.

    Raises:
        HTTPException: 401 if the token is expired or malformed
    """
    try:
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True}
        )
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


def get_appwrite_user(user_id: str) -> dict:
    """
    Raises:
        HTTPException: 401 if Appwrite does not know the user
    """
    try:
        users = Users(AppwriteClient.get_client())
        return users.get(user_id)
    except AppwriteException as e:
        log.info(f"Appwrite rejected user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Failed to verify user: {str(e)}",
        )


def role_from_appwrite_user(appwrite_user: dict) -> str:
    """Read the application role from the Appwrite user's prefs, default ``agent``."""
    prefs = appwrite_user.get("prefs") or {}
    role = str(prefs.get("role", "agent")).lower()
    return role if role in USER_ROLES else "agent"
