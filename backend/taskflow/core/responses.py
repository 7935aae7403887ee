"""Response envelope models.

Consistent {"data": ...} and {"error": {...}} envelopes for all endpoints.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources and short lists.

    Usage:
        @router.get("/workspaces/{workspace_id}")
        async def get_workspace(...) -> DataResponse[WorkspaceRead]:
            workspace = await service.get_workspace(workspace_id)
            return DataResponse(data=workspace)
    """

    data: T


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        details: Optional list of field-level errors (for validation).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail
