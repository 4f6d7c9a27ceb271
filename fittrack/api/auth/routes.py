import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from user_agents import parse

from fittrack.api.auth.schemas import LoginIn, SignupIn, TokenOut, UserOut
from fittrack.api.deps import client_ip, get_current_user
from fittrack.api.schemas import MessageOut
from fittrack.auth.hashing import verify_password
from fittrack.auth.jwt import (
    create_access_token,
    create_refresh_token,
    get_cookie_samesite_setting,
    get_cookie_secure_setting,
    get_refresh_cookie_max_age_seconds,
    verify_refresh_token,
)
from fittrack.core.conversions import from_unix
from fittrack.core.errors import AuthenticationFailed
from fittrack.core.logging_config import log_auth_event
from fittrack.crud import sessionCrud, usersCrud
from fittrack.db.postgresql import get_db
from fittrack.models import User

router = APIRouter(prefix="/api/auth", tags=["auth"])

REFRESH_COOKIE = "refresh_token"


def _device_name(user_agent: Optional[str]) -> Optional[str]:
    if not user_agent:
        return None
    ua = parse(user_agent)
    return f"{ua.device.family} - {ua.os.family} {ua.os.version_string}".strip()


async def _start_session(db: AsyncSession, request: Request, response: Response, user: User) -> TokenOut:
    session_id = f"session-id{uuid.uuid4().hex}"
    claims = {"user_id": str(user.id), "role": user.role, "session_id": session_id}
    refresh_token = create_refresh_token(claims)
    access_token = create_access_token(claims)

    user_agent = request.headers.get("user-agent")
    await sessionCrud.create_session(
        db,
        user_id=user.id,
        session_id=session_id,
        refresh_token=refresh_token,
        expires_at=from_unix(verify_refresh_token(refresh_token).get("exp")),
        device_name=_device_name(user_agent),
        ip_address=client_ip(request),
        user_agent=user_agent,
    )

    response.set_cookie(
        key=REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        secure=get_cookie_secure_setting(),
        samesite=get_cookie_samesite_setting(),
        max_age=get_refresh_cookie_max_age_seconds(),
        path="/api/auth",
    )
    log_auth_event("login", username=user.email, session_id=session_id)
    return TokenOut(access_token=access_token, user=UserOut.model_validate(user))


@router.post("/signup", response_model=TokenOut, status_code=status.HTTP_201_CREATED)
async def signup(data: SignupIn, request: Request, response: Response, db: AsyncSession = Depends(get_db)):
    """Register a member account and log it in"""
    user = await usersCrud.create_user(
        db,
        name=data.name,
        email=data.email,
        password=data.password,
        phone_number=data.phone_number,
        role="member",
    )
    return await _start_session(db, request, response, user)


@router.post("/login", response_model=TokenOut)
async def login(data: LoginIn, request: Request, response: Response, db: AsyncSession = Depends(get_db)):
    user = await usersCrud.get_user_by_email(db, data.email)
    if not user or not verify_password(data.password, user.password_hash):
        log_auth_event("login", username=data.email, success=False)
        raise AuthenticationFailed("Invalid email or password")
    if not user.is_active:
        log_auth_event("login", username=data.email, success=False)
        raise AuthenticationFailed("Account is deactivated")
    return await _start_session(db, request, response, user)


@router.post("/refresh", response_model=TokenOut)
async def refresh(request: Request, db: AsyncSession = Depends(get_db)):
    """Issue a new access token from the refresh cookie"""
    refresh_token = request.cookies.get(REFRESH_COOKIE)
    payload = verify_refresh_token(refresh_token) if refresh_token else None
    if not payload:
        raise AuthenticationFailed("Refresh token missing or invalid")

    session_id = payload.get("session_id")
    session = await sessionCrud.verify_session(db, session_id)
    if not session or session.refresh_token != refresh_token:
        log_auth_event("refresh", session_id=session_id, success=False)
        raise AuthenticationFailed("Session expired, please log in again")

    user = await usersCrud.get_user_by_id(db, payload.get("user_id"))
    if not user or not user.is_active:
        raise AuthenticationFailed("User not found or inactive")

    await sessionCrud.touch_session(db, session_id)
    access_token = create_access_token({"user_id": str(user.id), "role": user.role, "session_id": session_id})
    log_auth_event("refresh", username=user.email, session_id=session_id)
    return TokenOut(access_token=access_token, user=UserOut.model_validate(user))


@router.post("/logout", response_model=MessageOut)
async def logout(request: Request, response: Response, db: AsyncSession = Depends(get_db)):
    refresh_token = request.cookies.get(REFRESH_COOKIE)
    payload = verify_refresh_token(refresh_token) if refresh_token else None
    if payload and payload.get("session_id"):
        await sessionCrud.revoke_session(db, payload["session_id"])
        log_auth_event("logout", session_id=payload["session_id"])
    response.delete_cookie(REFRESH_COOKIE, path="/api/auth")
    return MessageOut(message="Logged out")


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return user
