"""Identity and profile models.

An identity is created on the first magic-link request for an unseen email.
Its profile row is created empty in the same transaction.
"""

import uuid

from sqlalchemy import ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskflow.models.base import DEFAULT_UUID, Base, CreatedAtMixin


class User(Base, CreatedAtMixin):
    """Identity keyed by a unique, lower-cased email address.

    Attributes:
        id: UUID primary key.
        email: Unique email address.
        created_at: Creation timestamp (from CreatedAtMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=DEFAULT_UUID,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )

    profile: Mapped["UserProfile"] = relationship(
        "UserProfile",
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )


class UserProfile(Base):
    """Editable profile, one per user.

    Attributes:
        user_id: FK to users.id, also the primary key.
        name: Display name. Empty until the user sets one.
    """

    __tablename__ = "user_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        server_default="",
    )

    user: Mapped[User] = relationship("User", back_populates="profile")
