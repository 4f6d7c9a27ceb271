from datetime import datetime
from typing import Optional
from sqlalchemy import ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column
from fittrack.db.postgresql import Base, BigIntId, UTCDateTime


class Session(Base):
    """Login session backing a refresh token"""

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    refresh_token: Mapped[str] = mapped_column(String(1024), nullable=False)
    session: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    device_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_active_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(
                                                    UTCDateTime,
                                                    nullable=True,
                                                    server_default=func.now()
                                                )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
                                                    UTCDateTime,
                                                    nullable=True,
                                                    onupdate=func.now()
                                                    )
