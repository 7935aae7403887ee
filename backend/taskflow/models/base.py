"""SQLAlchemy base classes and common mixins."""

from datetime import datetime

from sqlalchemy import DateTime, func, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

DEFAULT_UUID = text("gen_random_uuid()")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class CreatedAtMixin:
    """Mixin that adds a created_at column.

    Attributes:
        created_at: Timestamp when the record was created. Set automatically
            by the database on insert. Rows in this schema are never updated
            in place except for narrow status flags, so there is no
            updated_at column.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
