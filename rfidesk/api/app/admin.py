"""
Admin API: invitations, companies and user listing.

``invite-user`` and ``resend-invitation`` check the request body before the
caller's session is resolved, so a malformed request is rejected as such even
without credentials.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from .access import Capability
from .backend import SqlRowStore
from .db import get_db
from .errors import ValidationError
from .gateway import GatewayDep, RFIGateway, execute, respond
from .schemas import InviteUserRequest, Result
from .session_context import bearer, require_capability, resolve_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

JsonBody = Annotated[Any, Body()]
Credentials = Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)]
DbSession = Annotated[Session, Depends(get_db)]
AdminOnly = Depends(require_capability(Capability.ACCESS_ADMIN))


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _late_gateway(request: Request, creds, db: Session) -> RFIGateway:
    return RFIGateway(SqlRowStore(db), resolve_session(request, creds, db))


def _invite(request: Request, creds, db: Session, body: InviteUserRequest) -> Any:
    gateway = _late_gateway(request, creds, db)
    try:
        return gateway.invite_user(
            email=str(body.email),
            full_name=body.full_name,
            company_id=body.company_id,
            role_id=body.role_id,
            invited_by=body.invited_by,
        )
    finally:
        gateway.ctx.clear()


def _resend(request: Request, creds, db: Session, email: str) -> Any:
    gateway = _late_gateway(request, creds, db)
    try:
        return gateway.resend_invitation(email)
    finally:
        gateway.ctx.clear()


@router.post("/invite-user")
def invite_user(request: Request, creds: Credentials, db: DbSession, payload: JsonBody = None):
    body = payload if isinstance(payload, dict) else {}
    # roleId 0 (app_owner) is a real role, so only absence counts as missing
    if any(_missing(body.get(key)) for key in ("email", "fullName", "companyId", "roleId")):
        return respond(Result.fail(ValidationError("Missing required fields")))
    try:
        invite = InviteUserRequest.model_validate(body)
    except PydanticValidationError as exc:
        bad = {e["loc"][0] for e in exc.errors() if e["loc"]}
        message = "invalid email" if "email" in bad else "invalid fields"
        return respond(
            Result.fail(ValidationError(f"Failed to send invitation: {message}"))
        )
    return respond(execute(_invite, request, creds, db, invite))


@router.post("/resend-invitation")
def resend_invitation(
    request: Request, creds: Credentials, db: DbSession, payload: JsonBody = None
):
    email = payload.get("email") if isinstance(payload, dict) else None
    if _missing(email) or not isinstance(email, str):
        return respond(Result.fail(ValidationError("Email is required")))
    return respond(execute(_resend, request, creds, db, email))


@router.post("/companies", dependencies=[AdminOnly])
def create_company(gateway: GatewayDep, payload: JsonBody = None):
    return respond(gateway.run(gateway.create_company, payload))


@router.get("/users", dependencies=[AdminOnly])
def list_users(gateway: GatewayDep):
    return respond(gateway.run(gateway.list_users))
