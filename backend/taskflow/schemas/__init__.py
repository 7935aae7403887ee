"""Pydantic schemas for domain entities and API payloads."""

from taskflow.schemas.entities import (
    INVITABLE_ROLES,
    Identity,
    InvalidationRecord,
    Invitation,
    Membership,
    Role,
    UserProfile,
    Workspace,
)

__all__ = [
    # Identity
    "Identity",
    "InvalidationRecord",
    "UserProfile",
    # Workspaces
    "INVITABLE_ROLES",
    "Invitation",
    "Membership",
    "Role",
    "Workspace",
]
