"""
Per-request session state, passed explicitly to whatever needs the caller's
identity or role.  Populated by ``start`` when a session is resolved and reset
by ``clear`` when the request (or sign-out) ends.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .access import AccessDecision, Capability, check_access, has_permission, parse_role
from .backend import AuthService, FAULT_AUTH, SqlRowStore
from .db import get_db
from .errors import AuthenticationRequired, BackendError, NetworkError, PermissionDenied
from .models import UserRole

logger = logging.getLogger(__name__)

ROLE_PREVIEW_HEADER = "X-Role-Preview"

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class RoleState:
    status: str
    role: UserRole | None = None

    @classmethod
    def loading(cls) -> "RoleState":
        return cls("pending")

    @classmethod
    def resolved(cls, role: UserRole | None) -> "RoleState":
        return cls("resolved", role)

    @classmethod
    def anonymous(cls) -> "RoleState":
        return cls("anonymous")

    @property
    def pending(self) -> bool:
        return self.status == "pending"


class SessionContext:
    def __init__(self) -> None:
        self.clear()

    def start(
        self,
        *,
        user_id: uuid.UUID,
        email: str,
        role: UserRole | None,
        company_id: uuid.UUID | None = None,
        full_name: str | None = None,
    ) -> "SessionContext":
        self.user_id = user_id
        self.email = email
        self.full_name = full_name
        self.company_id = company_id
        self.actual_role = role
        self.role_state = RoleState.resolved(role)
        return self

    def begin_resolution(self) -> None:
        """Mark the role as loading; decisions fail closed until resolved."""
        self.role_state = RoleState.loading()

    def clear(self) -> None:
        self.user_id: uuid.UUID | None = None
        self.email: str | None = None
        self.full_name: str | None = None
        self.company_id: uuid.UUID | None = None
        self.actual_role: UserRole | None = None
        self.role_state = RoleState.anonymous()

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def role(self) -> UserRole | None:
        return self.role_state.role

    def apply_role_preview(self, requested: str | None) -> None:
        """Roles holding PREVIEW_ROLES may evaluate permissions as another role."""
        if not requested or not has_permission(self.actual_role, Capability.PREVIEW_ROLES):
            return
        preview = parse_role(requested)
        if preview is not None:
            self.role_state = RoleState.resolved(preview)

    def decide(self, capability: Capability | str | None = None, allowed_roles=None) -> AccessDecision:
        return check_access(self.role_state, capability, allowed_roles)

    def require(self, capability: Capability | str) -> "SessionContext":
        if not self.authenticated and not self.role_state.pending:
            raise AuthenticationRequired("Authentication required")
        decision = self.decide(capability)
        if decision is AccessDecision.PENDING:
            raise PermissionDenied("Your permissions are still loading", pending=True)
        if decision is AccessDecision.DENIED:
            raise PermissionDenied()
        return self

    def describe(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "full_name": self.full_name,
            "company_id": self.company_id,
            "role": self.role,
            "actual_role": self.actual_role,
            "role_status": self.role_state.status,
        }


def resolve_session(
    request: Request,
    creds: HTTPAuthorizationCredentials | None,
    db: Session,
) -> SessionContext:
    """Build a context from the bearer token; anonymous when none is sent."""
    ctx = SessionContext()
    if not creds or not creds.credentials:
        return ctx

    ctx.begin_resolution()
    result = AuthService(SqlRowStore(db)).get_session(creds.credentials)
    if not result.ok:
        ctx.clear()
        if result.error.kind == FAULT_AUTH:
            raise AuthenticationRequired("Invalid authentication")
        if result.error.kind == "network":
            raise NetworkError()
        raise BackendError(result.error.message)

    user = result.data["user"]
    ctx.start(
        user_id=user["id"],
        email=user["email"],
        role=parse_role(user["role"]),
        company_id=user.get("company_id"),
        full_name=user.get("full_name"),
    )
    ctx.apply_role_preview(request.headers.get(ROLE_PREVIEW_HEADER))
    return ctx


def get_session_context(
    request: Request,
    creds: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
    db: Annotated[Session, Depends(get_db)],
):
    ctx = resolve_session(request, creds, db)
    try:
        yield ctx
    finally:
        ctx.clear()


SessionDep = Annotated[SessionContext, Depends(get_session_context)]


def require_capability(capability: Capability):
    def _dependency(ctx: SessionDep) -> SessionContext:
        return ctx.require(capability)

    return _dependency
