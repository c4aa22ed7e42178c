"""Pending sign-in model."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from warden.database import Base

if TYPE_CHECKING:
    from warden.models.user import User


class PendingSignIn(Base):
    """Sign-in attempt that passed the password and awaits a second factor."""

    __tablename__ = "pending_sign_ins"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    token_hash: Mapped[str] = mapped_column(String(64), index=True)  # SHA-256 hex
    redirect_to: Mapped[str | None] = mapped_column(String(2048))
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship(back_populates="pending_sign_ins")

    def __repr__(self) -> str:
        return f"<PendingSignIn(id={self.id}, user_id={self.user_id})>"
