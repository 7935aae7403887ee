"""Invalidated refresh tokens.

One row per rotated refresh token. The unique token_hash is what makes
rotation atomic: a second insert of the same hash is a no-op and signals
replay.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from taskflow.models.base import Base


class InvalidatedToken(Base):
    """Burned refresh token.

    Attributes:
        token_hash: SHA-256 hex digest of the raw token. Primary key.
        user_id: FK to users.id.
        invalidated_at: When the token was rotated away.
        expires_at: Original token expiry; rows past it may be purged.
    """

    __tablename__ = "invalidated_tokens"
    __table_args__ = (Index("ix_invalidated_tokens_expires_at", "expires_at"),)

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    invalidated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
