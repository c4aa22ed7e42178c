"""Session model for issued sign-in sessions."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from warden.database import Base
from warden.services.shared.datetime_utils import is_past

if TYPE_CHECKING:
    from warden.models.user import User


class Session(Base):
    """Server-side record behind a session token.

    The token itself is a signed JWT that carries this row's id as ``sid``;
    revoking the row invalidates the token even before it expires.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    # Relationships
    user: Mapped["User"] = relationship(back_populates="sessions")

    @property
    def is_live(self) -> bool:
        return not self.is_revoked and not is_past(self.expires_at)

    def __repr__(self) -> str:
        return f"<Session(id={self.id}, user_id='{self.user_id}', revoked={self.is_revoked})>"
