"""
Caller resolution - maps a bearer API key to an active user.

Keys are issued and managed outside this service; here they are only looked up.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from dispatch_api.database import get_db
from dispatch_api.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency returning the authenticated user, or 401"""
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not credentials.credentials:
        raise unauthorized

    result = await db.execute(
        select(User).where(User.api_key == credentials.credentials, User.is_active.is_(True))
    )
    user = result.scalar_one_or_none()
    if not user:
        raise unauthorized
    return user
