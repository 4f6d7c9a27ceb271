from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.models import Session


async def create_session(
    db: AsyncSession,
    *,
    user_id: int,
    session_id: str,
    refresh_token: str,
    expires_at: Optional[datetime] = None,
    device_name: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Session:
    """Creates a new session for the given user with proper error handling."""
    session_row = Session(
        user_id=user_id,
        session=session_id,
        refresh_token=refresh_token,
        device_name=device_name,
        ip_address=ip_address,
        user_agent=user_agent,
        expires_at=expires_at,
        last_active_at=datetime.now(timezone.utc),
    )

    db.add(session_row)
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise

    await db.refresh(session_row)
    return session_row


async def verify_session(db: AsyncSession, session_id: str) -> Session | None:
    """Returns the session when it exists and has not been revoked."""
    res = await db.execute(
        select(Session).where(Session.session == session_id, Session.revoked_at.is_(None))
    )
    return res.scalar_one_or_none()


async def touch_session(db: AsyncSession, session_id: str) -> None:
    """Updates the last_active_at timestamp for a session."""
    try:
        await db.execute(
            update(Session)
            .where(Session.session == session_id)
            .values(last_active_at=datetime.now(timezone.utc))
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


async def revoke_session(db: AsyncSession, session_id: str) -> None:
    """Marks the session as revoked."""
    try:
        await db.execute(
            update(Session)
            .where(Session.session == session_id)
            .values(revoked_at=datetime.now(timezone.utc))
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


async def revoke_user_sessions(db: AsyncSession, user_id: int) -> int:
    """Revokes every open session of the user (no commit)."""
    result = await db.execute(
        update(Session)
        .where(Session.user_id == user_id, Session.revoked_at.is_(None))
        .values(revoked_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
