"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from app.models.change_requests import (
    ChangeRequest,
    ChangeRequestComment,
    ChangeRequestHistory,
    ChangeRequestReview,
)
from app.models.roles import GatewayEditor, SuperManager
from app.models.teams import Team, TeamMembership
from app.models.users import User

__all__ = [
    "ChangeRequest",
    "ChangeRequestComment",
    "ChangeRequestHistory",
    "ChangeRequestReview",
    "GatewayEditor",
    "SuperManager",
    "Team",
    "TeamMembership",
    "User",
]
