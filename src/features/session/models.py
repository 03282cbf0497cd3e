"""Session models (refresh-credential records)."""

from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, UTCDateTime, utcnow

DEVICE_INFO_MAX_LENGTH = 500


class UserSession(Base):
    """Long-lived login session identified by its refresh credential.

    One row per session; a user may hold any number of them, several per device.
    """

    __tablename__ = "user_sessions"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Session data
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    device_info: Mapped[str] = mapped_column(String(DEVICE_INFO_MAX_LENGTH), nullable=False, default="Unknown")

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())
