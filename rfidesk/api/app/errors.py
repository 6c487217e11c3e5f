"""
Error kinds shared by the gateway, the lifecycle manager and the HTTP layer.

Every error carries a stable ``kind`` and HTTP status so it can be turned into
the uniform ``{success, error, kind}`` result at the nearest boundary.
"""

from __future__ import annotations

from typing import Any

GENERIC_BACKEND_MESSAGE = "Something went wrong while saving your changes. Please try again."
NETWORK_MESSAGE = (
    "Unable to reach the server. Check your connection and try again; "
    "your unsaved input has been kept."
)


class RFIDeskError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "kind": self.kind}


class ValidationError(RFIDeskError):
    """Client data failed schema checks; carries field level messages."""

    kind = "validation"
    status_code = 400

    def __init__(
        self, message: str = "Invalid input data", details: list[dict[str, str]] | None = None
    ) -> None:
        super().__init__(message)
        self.details = details or []

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["details"] = self.details
        return payload


class AuthenticationRequired(RFIDeskError):
    kind = "authentication"
    status_code = 401


class PermissionDenied(RFIDeskError):
    kind = "permission"
    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action", *, pending: bool = False) -> None:
        super().__init__(message)
        self.pending = pending

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["pending"] = self.pending
        return payload


class NotFoundError(RFIDeskError):
    kind = "not_found"
    status_code = 404


class TransitionError(RFIDeskError):
    """Lifecycle rule violation, e.g. mutating a closed RFI."""

    kind = "transition"
    status_code = 409


class NoOpTransition(RFIDeskError):
    """Requested status equals the current status."""

    kind = "no_op"
    status_code = 409


class ConflictError(RFIDeskError):
    """The request duplicates something that already exists."""

    kind = "conflict"
    status_code = 409


class BackendError(RFIDeskError):
    """The persistence/auth collaborator reported a failure.

    ``message`` is shown to the user only when ``safe`` is set, otherwise the
    generic fallback text is used.
    """

    kind = "backend"
    status_code = 500

    def __init__(self, message: str, *, safe: bool = False, code: str | None = None) -> None:
        super().__init__(message if safe else GENERIC_BACKEND_MESSAGE)
        self.raw_message = message
        self.safe = safe
        self.code = code


class NetworkError(RFIDeskError):
    kind = "network"
    status_code = 503

    def __init__(self, message: str = NETWORK_MESSAGE) -> None:
        super().__init__(message)


STATUS_BY_KIND: dict[str, int] = {
    cls.kind: cls.status_code
    for cls in (
        ValidationError,
        AuthenticationRequired,
        PermissionDenied,
        NotFoundError,
        TransitionError,
        NoOpTransition,
        ConflictError,
        BackendError,
        NetworkError,
    )
}


def status_for_kind(kind: str | None) -> int:
    return STATUS_BY_KIND.get(kind or "", 500)


def kind_for_status(status_code: int) -> str:
    """Best-effort error kind for a bare HTTP status (409 reads as a transition)."""
    if status_code == 409:
        return TransitionError.kind
    for kind, status in STATUS_BY_KIND.items():
        if status == status_code:
            return kind
    return BackendError.kind if status_code >= 500 else "error"
