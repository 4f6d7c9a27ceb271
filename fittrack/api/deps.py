from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.auth.jwt import verify_token
from fittrack.core.errors import AuthenticationFailed, PermissionDenied
from fittrack.core.logging_config import log_security_event
from fittrack.crud.sessionCrud import verify_session
from fittrack.crud.usersCrud import get_user_by_id
from fittrack.db.postgresql import get_db
from fittrack.models import User

bearer_scheme = HTTPBearer(auto_error=False)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def _user_from_credentials(
    db: AsyncSession,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[User]:
    if credentials is None:
        return None
    payload = verify_token(credentials.credentials)
    if not payload:
        raise AuthenticationFailed("Invalid or expired token")

    session_id = payload.get("session_id")
    if session_id and not await verify_session(db, session_id):
        raise AuthenticationFailed("Session has been revoked")

    user = await get_user_by_id(db, payload.get("user_id"))
    if not user or not user.is_active:
        raise AuthenticationFailed("User not found or inactive")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await _user_from_credentials(db, credentials)
    if user is None:
        raise AuthenticationFailed("Not authenticated")
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    return await _user_from_credentials(db, credentials)


def require_roles(*roles: str):
    """Dependency that only lets users with one of ``roles`` through"""

    async def checker(request: Request, user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            log_security_event(
                "role_denied",
                f"user {user.id} ({user.role}) tried {request.method} {request.url.path}",
            )
            raise PermissionDenied("You do not have permission to perform this action")
        return user

    return checker
