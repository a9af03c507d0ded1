"""Public schema exports shared across API route modules."""

from app.schemas.change_requests import (
    AutomationTriggerRead,
    ChangeRequestCIStatus,
    ChangeRequestCommentCreate,
    ChangeRequestCommentRead,
    ChangeRequestCreate,
    ChangeRequestDetailRead,
    ChangeRequestHistoryRead,
    ChangeRequestRead,
    ChangeRequestReviewCreate,
    ChangeRequestReviewRead,
    ChangeRequestUpdate,
    ExecutionStatusUpdate,
)
from app.schemas.common import OkResponse
from app.schemas.roles import RoleFlagsRead, RoleGrantCreate, RoleGrantRead

__all__ = [
    "AutomationTriggerRead",
    "ChangeRequestCIStatus",
    "ChangeRequestCommentCreate",
    "ChangeRequestCommentRead",
    "ChangeRequestCreate",
    "ChangeRequestDetailRead",
    "ChangeRequestHistoryRead",
    "ChangeRequestRead",
    "ChangeRequestReviewCreate",
    "ChangeRequestReviewRead",
    "ChangeRequestUpdate",
    "ExecutionStatusUpdate",
    "OkResponse",
    "RoleFlagsRead",
    "RoleGrantCreate",
    "RoleGrantRead",
]
