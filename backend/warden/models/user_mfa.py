"""User two-factor secret model."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from warden.database import Base

if TYPE_CHECKING:
    from warden.models.user import User


class UserMfa(Base):
    """TOTP shared secret for a user.

    The row exists from the moment setup starts; User.two_factor_enabled only
    flips once a confirmation code matches (enabled_at is stamped then).
    """

    __tablename__ = "user_mfa"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True
    )
    totp_secret_encrypted: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    enabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Newest TOTP time step accepted at sign-in; older or equal steps are replays
    last_totp_timestep: Mapped[int | None] = mapped_column(Integer)

    user: Mapped["User"] = relationship(back_populates="mfa")

    def __repr__(self) -> str:
        return f"<UserMfa(user_id={self.user_id}, enabled_at={self.enabled_at})>"
