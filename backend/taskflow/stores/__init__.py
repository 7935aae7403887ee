"""Persistence interfaces and their SQL and in-memory implementations."""

from taskflow.stores.base import (
    IdentityStore,
    InvalidationStore,
    InvitationStore,
    MembershipStore,
    WorkspaceStore,
)

__all__ = [
    "IdentityStore",
    "InvalidationStore",
    "InvitationStore",
    "MembershipStore",
    "WorkspaceStore",
]
