"""Challenge model: single-use codes and tokens sent by email."""

from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from warden.database import Base

if TYPE_CHECKING:
    from warden.models.user import User


class ChallengePurpose(StrEnum):
    """What a challenge proves once redeemed."""

    VERIFY_EMAIL = "verify-email"
    RESET_PASSWORD = "reset-password"
    MAGIC_LINK = "magic-link"
    EMAIL_OTP = "email-otp"


class Challenge(Base):
    """One outstanding proof request.

    Keyed by email and, when the principal exists, by user_id as well.
    consumed_at is set by a conditional UPDATE so only one redemption wins.
    """

    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    email: Mapped[str] = mapped_column(String(255), index=True)
    purpose: Mapped[str] = mapped_column(String(20), index=True)
    secret_hash: Mapped[str] = mapped_column(String(64), index=True)  # SHA-256 hex
    callback_url: Mapped[str | None] = mapped_column(String(2048))
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user: Mapped["User | None"] = relationship(back_populates="challenges")

    def __repr__(self) -> str:
        return f"<Challenge(id={self.id}, purpose={self.purpose}, email='{self.email}')>"
