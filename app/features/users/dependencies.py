"""
FastAPI dependencies for authentication.
"""
from typing import Annotated
from datetime import datetime, timezone
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.auth import verify_jwt_token, get_appwrite_user, role_from_appwrite_user


security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated user from the Appwrite JWT.

    Users seen for the first time are created locally with the role stored
    in their Appwrite prefs.
    """
    payload = verify_jwt_token(credentials.credentials)
    appwrite_user_id = payload.get("userId")

    if not appwrite_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    result = await db.execute(
        select(User).where(User.appwrite_id == appwrite_user_id)
    )
    user = result.scalar_one_or_none()

    if user is None:
        appwrite_user = get_appwrite_user(appwrite_user_id)
        user = User(
            appwrite_id=appwrite_user_id,
            email=appwrite_user.get("email", ""),
            name=appwrite_user.get("name", "Unknown"),
            role=role_from_appwrite_user(appwrite_user),
        )
        db.add(user)

    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(user)

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


async def get_current_editor(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """
    Require a role that may edit permission documents (admin, clinic, doctor).
    """
    if not user.is_editor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied",
        )
    return user


async def get_current_admin_user(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """Require admin privileges."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
