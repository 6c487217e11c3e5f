"""RFI status lifecycle.

    open ──> in_progress ──> closed
      └────────────────────────^

``closed`` is terminal.  ``plan_transition`` validates a requested change
against the table and the caller's role and returns the exact field changes
to persist; it never touches the backend, so a rejected request costs no
backend call.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .access import AccessDecision, Capability, check_access
from .errors import NoOpTransition, PermissionDenied, TransitionError, ValidationError
from .models import RFIStatus

TRANSITIONS: dict[RFIStatus, frozenset[RFIStatus]] = {
    RFIStatus.OPEN: frozenset({RFIStatus.IN_PROGRESS, RFIStatus.CLOSED}),
    RFIStatus.IN_PROGRESS: frozenset({RFIStatus.CLOSED}),
    RFIStatus.CLOSED: frozenset(),
}

WORKFLOW_STATES: dict[RFIStatus, dict[str, str]] = {
    RFIStatus.OPEN: {
        "label": "Open",
        "description": "RFI has been raised and is awaiting action",
    },
    RFIStatus.IN_PROGRESS: {
        "label": "In Progress",
        "description": "RFI is being worked on with the client",
    },
    RFIStatus.CLOSED: {
        "label": "Closed",
        "description": "RFI is complete and closed",
    },
}

TRANSITION_LABELS: dict[RFIStatus, str] = {
    RFIStatus.IN_PROGRESS: "Start Work",
    RFIStatus.CLOSED: "Close RFI",
}


def is_terminal(status: RFIStatus) -> bool:
    return not TRANSITIONS[status]


def coerce_status(value: Any) -> RFIStatus:
    try:
        return RFIStatus(getattr(value, "value", value))
    except ValueError:
        allowed = ", ".join(s.value for s in RFIStatus)
        raise ValidationError(
            "Invalid status value",
            details=[{"field": "status", "message": f"status must be one of: {allowed}"}],
        ) from None


@dataclass(frozen=True)
class TransitionPlan:
    rfi_id: Any
    from_status: RFIStatus
    to_status: RFIStatus
    updated_at: datetime
    closed_at: datetime | None = None

    def changes(self) -> dict[str, Any]:
        changes: dict[str, Any] = {
            "status": self.to_status,
            "updated_at": self.updated_at,
        }
        if self.closed_at is not None:
            changes["closed_at"] = self.closed_at
        return changes


def next_timestamp(previous: datetime | None, now: datetime | None = None) -> datetime:
    """A fresh ``updated_at`` that never moves backwards."""
    now = now or datetime.now(timezone.utc)
    if previous is None:
        return now
    if previous.tzinfo is None:
        previous = previous.replace(tzinfo=timezone.utc)
    return max(now, previous)


def plan_transition(
    rfi: Mapping[str, Any],
    target: RFIStatus | str,
    role_state,
    *,
    now: datetime | None = None,
) -> TransitionPlan:
    current = coerce_status(rfi["status"])
    target_status = coerce_status(target)

    if is_terminal(current):
        raise TransitionError(
            f"RFI is {current.value} and can no longer change status",
            from_status=current.value,
            to_status=target_status.value,
        )
    if target_status == current:
        raise NoOpTransition(f"RFI is already {current.value}")
    if target_status not in TRANSITIONS[current]:
        raise TransitionError(
            f"Invalid status transition from {current.value} to {target_status.value}",
            from_status=current.value,
            to_status=target_status.value,
        )

    decision = check_access(role_state, Capability.UPDATE_RFI_STATUS)
    if decision is AccessDecision.PENDING:
        raise PermissionDenied("Your permissions are still loading", pending=True)
    if decision is not AccessDecision.ALLOWED:
        raise PermissionDenied("You do not have permission to change RFI status")

    updated_at = next_timestamp(rfi.get("updated_at"), now)
    return TransitionPlan(
        rfi_id=rfi.get("id"),
        from_status=current,
        to_status=target_status,
        updated_at=updated_at,
        closed_at=updated_at if target_status == RFIStatus.CLOSED else None,
    )


def workflow_state(status: RFIStatus | str) -> dict[str, str]:
    resolved = coerce_status(status)
    return {"status": resolved.value, **WORKFLOW_STATES[resolved]}


def available_transitions(status: RFIStatus | str, role_state) -> list[dict[str, Any]]:
    current = coerce_status(status)
    allowed = check_access(role_state, Capability.UPDATE_RFI_STATUS).allowed
    return [
        {
            "from": current.value,
            "to": target.value,
            "label": TRANSITION_LABELS[target],
            "allowed": allowed,
        }
        for target in sorted(TRANSITIONS[current], key=lambda s: list(RFIStatus).index(s))
    ]
