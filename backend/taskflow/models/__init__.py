"""SQLAlchemy ORM models for TaskFlow.

All models are exported from this module for convenient imports:
    from taskflow.models import User, Workspace, Membership, ...

Models are organized by domain:
- user.py: User, UserProfile
- invalidated_token.py: InvalidatedToken (burned refresh tokens)
- workspace.py: Workspace, Membership, Invitation
"""

from taskflow.models.base import Base, CreatedAtMixin
from taskflow.models.invalidated_token import InvalidatedToken
from taskflow.models.user import User, UserProfile
from taskflow.models.workspace import Invitation, Membership, Workspace

__all__ = [
    "Base",
    "CreatedAtMixin",
    "InvalidatedToken",
    "Invitation",
    "Membership",
    "User",
    "UserProfile",
    "Workspace",
]
