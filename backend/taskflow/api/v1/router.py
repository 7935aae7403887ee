"""API v1 router aggregator.

All v1 endpoint routers are included here and mounted at /api/v1.
"""

from fastapi import APIRouter

from taskflow.api.v1 import auth, invitations, workspaces

router = APIRouter()

# =============================================================================
# Authentication
# =============================================================================

router.include_router(auth.router, prefix="/auth", tags=["auth"])

# =============================================================================
# Workspaces and membership
# =============================================================================

router.include_router(workspaces.router, prefix="/workspaces", tags=["workspaces"])
router.include_router(
    invitations.router, prefix="/invitation", tags=["invitations"]
)
router.include_router(
    invitations.membership_router, prefix="/membership", tags=["invitations"]
)
