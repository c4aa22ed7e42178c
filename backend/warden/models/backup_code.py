"""Backup code model."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from warden.database import Base

if TYPE_CHECKING:
    from warden.models.user import User


class BackupCode(Base):
    """One-time recovery code for bypassing a lost authenticator."""

    __tablename__ = "backup_codes"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    code_hash: Mapped[str] = mapped_column(String(64), index=True)  # SHA-256 hex
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    user: Mapped["User"] = relationship(back_populates="backup_codes")

    def __repr__(self) -> str:
        return f"<BackupCode(id={self.id}, user_id={self.user_id})>"
