"""
Authentication API: sign in, current session, invitation acceptance.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from .access import capabilities_for
from .backend import FAULT_AUTH, FAULT_NOT_FOUND, FAULT_STATE, AuthService, SqlRowStore
from .db import get_db
from .errors import AuthenticationRequired, NotFoundError, ValidationError
from .gateway import execute, respond, unwrap
from .schemas import AcceptInvitationRequest, LoginRequest, parse_model
from .session_context import SessionContext, SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

JsonBody = Annotated[Any, Body()]
DbSession = Annotated[Session, Depends(get_db)]


def _mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}" if domain else "***"


def _login(db: Session, payload: Any) -> dict[str, Any]:
    data = parse_model(LoginRequest, payload)
    response = AuthService(SqlRowStore(db)).sign_in(data.email, data.password)
    if not response.ok and response.error.kind == FAULT_AUTH:
        logger.info(f"Failed login for {_mask_email(data.email)}")
        raise AuthenticationRequired(response.error.message)
    result = unwrap(response)
    logger.info(f"User logged in: {_mask_email(data.email)}")
    return result


def _accept(db: Session, token: str, payload: Any) -> dict[str, Any]:
    data = parse_model(AcceptInvitationRequest, payload)
    response = AuthService(SqlRowStore(db)).accept_invitation(token, data.password)
    if not response.ok:
        if response.error.kind == FAULT_NOT_FOUND:
            raise NotFoundError(response.error.message)
        if response.error.kind == FAULT_STATE:
            raise ValidationError(
                response.error.message,
                details=[{"field": "password", "message": response.error.message}],
            )
    return unwrap(response)


def _session(ctx: SessionContext) -> dict[str, Any]:
    if not ctx.authenticated:
        raise AuthenticationRequired("Authentication required")
    info = ctx.describe()
    info["capabilities"] = capabilities_for(ctx.role)
    return info


@router.post("/login")
def login(db: DbSession, payload: JsonBody = None):
    return respond(execute(_login, db, payload))


@router.get("/session")
def session(ctx: SessionDep):
    return respond(execute(_session, ctx))


@router.post("/invitations/{token}/accept")
def accept_invitation(token: str, db: DbSession, payload: JsonBody = None):
    return respond(execute(_accept, db, token, payload))
