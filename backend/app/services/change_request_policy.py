"""Approval and execution state machines for change requests.

Transitions are data: each table maps a source status to the set of statuses
reachable from it. A future rework path (``NEEDS_REWORK``) is added by giving
it entries here; callers only ask ``validate_*_transition`` and never match on
individual statuses.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID


class ApprovalStatus(StrEnum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_REWORK = "NEEDS_REWORK"


class ExecutionStatus(StrEnum):
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class ReviewDecision(StrEnum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class HistoryEventType(StrEnum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    STATUS_CHANGE = "STATUS_CHANGE"
    COMMENT_ADDED = "COMMENT_ADDED"


# Reserved actor id recorded on audit entries written by automation.
SYSTEM_ACTOR_ID = UUID(int=0)

APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING_APPROVAL: frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED}),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.NEEDS_REWORK: frozenset(),
}

# Once approved, any execution value is reachable from any other. This mirrors
# the permissive behaviour operators rely on today; a forward-only machine
# (DRAFT -> IN_PROGRESS -> COMPLETED|CANCELED) would narrow these sets.
EXECUTION_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    status: frozenset(ExecutionStatus) for status in ExecutionStatus
}

REVIEW_OUTCOMES: dict[ReviewDecision, ApprovalStatus] = {
    ReviewDecision.APPROVED: ApprovalStatus.APPROVED,
    ReviewDecision.REJECTED: ApprovalStatus.REJECTED,
}

# Approval statuses from which the requester may still edit title/payload.
EDITABLE_APPROVAL_STATUSES = frozenset(
    {
        ApprovalStatus.PENDING_APPROVAL,
        ApprovalStatus.REJECTED,
        ApprovalStatus.NEEDS_REWORK,
    },
)


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    reason: str | None = None


def parse_review_decision(value: object) -> ReviewDecision | None:
    """Return the decision for a raw value, or None when it is not a decision."""
    if isinstance(value, ReviewDecision):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ReviewDecision(value.strip().upper())
    except ValueError:
        return None


def parse_execution_status(value: object) -> ExecutionStatus | None:
    """Return the execution status for a raw value, or None when unrecognized."""
    if isinstance(value, ExecutionStatus):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ExecutionStatus(value.strip().upper())
    except ValueError:
        return None


def validate_approval_transition(*, current: str, target: str) -> TransitionResult:
    """Validate an approval-status move against ``APPROVAL_TRANSITIONS``."""
    try:
        source = ApprovalStatus(current)
    except ValueError:
        return TransitionResult(ok=False, reason=f"Unknown approval status: {current}")
    allowed = APPROVAL_TRANSITIONS.get(source, frozenset())
    if target not in allowed:
        return TransitionResult(
            ok=False,
            reason=f"Cannot move approval status from {source} to {target}.",
        )
    return TransitionResult(ok=True)


def validate_execution_transition(
    *,
    approval_status: str,
    current: str,
    target: str,
) -> TransitionResult:
    """Validate an execution-status move; execution is gated on approval."""
    if approval_status != ApprovalStatus.APPROVED:
        return TransitionResult(
            ok=False,
            reason="Change request must be approved before execution.",
        )
    try:
        source = ExecutionStatus(current)
    except ValueError:
        return TransitionResult(ok=False, reason=f"Unknown execution status: {current}")
    if target not in EXECUTION_TRANSITIONS.get(source, frozenset()):
        return TransitionResult(
            ok=False,
            reason=f"Cannot move execution status from {source} to {target}.",
        )
    return TransitionResult(ok=True)


def is_editable(approval_status: str) -> bool:
    """Return whether title/payload edits are still allowed."""
    return approval_status in EDITABLE_APPROVAL_STATUSES


def can_execute(*, approval_status: str, execution_status: str) -> bool:
    """Return whether automation may start execution for the change request."""
    return (
        approval_status == ApprovalStatus.APPROVED
        and execution_status == ExecutionStatus.DRAFT
    )


def validate_config_payload(payload: str) -> str | None:
    """Return an error message when the payload is not a JSON object."""
    try:
        decoded = json.loads(payload)
    except (TypeError, ValueError) as exc:
        return f"Invalid JSON payload: {exc}"
    if not isinstance(decoded, dict):
        return "Configuration payload must be a JSON object."
    return None
