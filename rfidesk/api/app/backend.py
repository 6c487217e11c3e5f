"""
Backend collaborator: generic row operations plus the auth subsystem.

Every call returns a ``BackendResponse`` carrying either ``data`` or an
``error`` (``BackendFault``).  Nothing in here raises for expected backend
failures; the gateway decides how a fault is presented.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from sqlalchemy import Table, delete, func, insert, select, update
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from .config import settings
from .db import Base
from .models import UserRole, UserStatus
from .security import (
    InvalidToken,
    decode_token,
    generate_token,
    hash_password,
    password_problem,
    sign_token,
    verify_password,
)

logger = logging.getLogger(__name__)

FAULT_CONSTRAINT = "constraint"
FAULT_NETWORK = "network"
FAULT_NOT_FOUND = "not_found"
FAULT_AUTH = "auth"
FAULT_STATE = "state"
FAULT_BACKEND = "backend"


@dataclass
class BackendFault:
    message: str
    kind: str = FAULT_BACKEND
    code: str | None = None


@dataclass
class BackendResponse:
    data: Any = None
    error: BackendFault | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RowStore(Protocol):
    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int | None = None,
    ) -> BackendResponse: ...

    def count(self, table: str, filters: Mapping[str, Any] | None = None) -> BackendResponse: ...

    def insert(self, table: str, payload: Mapping[str, Any]) -> BackendResponse: ...

    def update(
        self, table: str, filters: Mapping[str, Any], payload: Mapping[str, Any]
    ) -> BackendResponse: ...

    def delete(self, table: str, filters: Mapping[str, Any]) -> BackendResponse: ...


def _as_utc(value: Any) -> Any:
    # sqlite hands back naive datetimes; everything is stored as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_dict(row: Any) -> dict[str, Any]:
    return {key: _as_utc(value) for key, value in row._mapping.items()}


def _fault_from_exception(exc: SQLAlchemyError) -> BackendFault:
    if isinstance(exc, IntegrityError):
        detail = str(exc.orig) if exc.orig is not None else str(exc)
        return BackendFault(
            "The change conflicts with existing data", FAULT_CONSTRAINT, code=detail[:200]
        )
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return BackendFault("The database is unavailable", FAULT_NETWORK)
    return BackendFault("The database rejected the request", FAULT_BACKEND)


class SqlRowStore:
    """RowStore over a SQLAlchemy session, one commit per call."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _table(self, name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise LookupError(f"unknown table {name}") from None

    def _where(self, table: Table, filters: Mapping[str, Any] | None):
        clauses = []
        for column, value in (filters or {}).items():
            col = table.c[column]
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(col.in_(list(value)))
            elif value is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(col == value)
        return clauses

    def _run(self, table_name: str, op: str, fn) -> BackendResponse:
        try:
            table = self._table(table_name)
            data = fn(table)
            self.session.commit()
            return BackendResponse(data=data)
        except LookupError as exc:
            return BackendResponse(error=BackendFault(str(exc), FAULT_BACKEND))
        except SQLAlchemyError as exc:
            self.session.rollback()
            fault = _fault_from_exception(exc)
            logger.error(f"{op} on {table_name} failed ({fault.kind}): {exc}")
            return BackendResponse(error=fault)

    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int | None = None,
    ) -> BackendResponse:
        def _select(t: Table):
            stmt = select(t).where(*self._where(t, filters))
            if order_by:
                col = t.c[order_by]
                stmt = stmt.order_by(col.desc() if descending else col.asc())
            if limit is not None:
                stmt = stmt.limit(limit)
            if offset:
                stmt = stmt.offset(offset)
            return [_row_to_dict(r) for r in self.session.execute(stmt)]

        return self._run(table, "select", _select)

    def count(self, table: str, filters: Mapping[str, Any] | None = None) -> BackendResponse:
        def _count(t: Table):
            stmt = select(func.count()).select_from(t).where(*self._where(t, filters))
            return int(self.session.execute(stmt).scalar_one())

        return self._run(table, "count", _count)

    def insert(self, table: str, payload: Mapping[str, Any]) -> BackendResponse:
        def _insert(t: Table):
            stmt = insert(t).values(**payload).returning(*t.c)
            return _row_to_dict(self.session.execute(stmt).one())

        return self._run(table, "insert", _insert)

    def update(
        self, table: str, filters: Mapping[str, Any], payload: Mapping[str, Any]
    ) -> BackendResponse:
        def _update(t: Table):
            stmt = (
                update(t)
                .where(*self._where(t, filters))
                .values(**payload)
                .returning(*t.c)
            )
            return [_row_to_dict(r) for r in self.session.execute(stmt)]

        return self._run(table, "update", _update)

    def delete(self, table: str, filters: Mapping[str, Any]) -> BackendResponse:
        def _delete(t: Table):
            result = self.session.execute(delete(t).where(*self._where(t, filters)))
            return result.rowcount

        return self._run(table, "delete", _delete)


def _first(response: BackendResponse) -> BackendResponse:
    """Collapse a list response to its first row (``single()`` semantics)."""
    if not response.ok:
        return response
    rows: Iterable[dict[str, Any]] = response.data or []
    for row in rows:
        return BackendResponse(data=row)
    return BackendResponse(error=BackendFault("Row not found", FAULT_NOT_FOUND))


def public_user(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "email": row["email"],
        "full_name": row.get("full_name"),
        "role": row["role"],
        "status": row["status"],
        "company_id": row.get("company_id"),
        "created_at": row.get("created_at"),
        "last_login_at": row.get("last_login_at"),
    }


class AuthService:
    """Auth subsystem: sessions, sign in, invitations."""

    def __init__(self, store: RowStore) -> None:
        self.store = store

    def get_session(self, token: str) -> BackendResponse:
        try:
            payload = decode_token(token)
            user_id = uuid.UUID(str(payload["sub"]))
        except (InvalidToken, KeyError, ValueError):
            return BackendResponse(error=BackendFault("Invalid authentication", FAULT_AUTH))

        found = _first(self.store.select("users", {"id": user_id}))
        if not found.ok:
            if found.error.kind == FAULT_NOT_FOUND:
                return BackendResponse(error=BackendFault("Invalid authentication", FAULT_AUTH))
            return found
        user = found.data
        if user["status"] != UserStatus.ACTIVE:
            return BackendResponse(error=BackendFault("Account is not active", FAULT_AUTH))
        return BackendResponse(data={"user": public_user(user)})

    def sign_in(self, email: str, password: str) -> BackendResponse:
        found = _first(self.store.select("users", {"email": email.strip().lower()}))
        if not found.ok and found.error.kind != FAULT_NOT_FOUND:
            return found
        user = found.data if found.ok else None
        if not user or not verify_password(password, user.get("password_hash")):
            return BackendResponse(error=BackendFault("Invalid email or password", FAULT_AUTH))
        if user["status"] != UserStatus.ACTIVE:
            return BackendResponse(error=BackendFault("Account is not active", FAULT_AUTH))

        self.store.update(
            "users", {"id": user["id"]}, {"last_login_at": datetime.now(timezone.utc)}
        )
        token = sign_token(str(user["id"]), user["email"])
        return BackendResponse(data={"token": token, "user": public_user(user)})

    def _issue_invitation(self, user: Mapping[str, Any], invited_by: str | None) -> BackendResponse:
        token = generate_token()
        expires_at = datetime.now(timezone.utc) + timedelta(days=settings.INVITE_EXPIRY_DAYS)
        created = self.store.insert(
            "user_invitations",
            {
                "token": token,
                "user_id": user["id"],
                "email": user["email"],
                "role": user["role"],
                "company_id": user.get("company_id"),
                "invited_by": invited_by,
                "expires_at": expires_at,
            },
        )
        if created.ok:
            # Email delivery is outside this service; the link is logged for operators
            logger.info(
                f"Invitation for {user['email']}: "
                f"{settings.FRONTEND_URL}/auth/accept?token={token}"
            )
        return created

    def invite_user(
        self,
        email: str,
        full_name: str,
        company_id: uuid.UUID,
        role: UserRole,
        invited_by: str | None = None,
    ) -> BackendResponse:
        email = email.strip().lower()
        company = _first(self.store.select("companies", {"id": company_id}))
        if not company.ok:
            if company.error.kind == FAULT_NOT_FOUND:
                return BackendResponse(error=BackendFault("company not found", FAULT_NOT_FOUND))
            return company

        existing = self.store.select("users", {"email": email})
        if not existing.ok:
            return existing
        if existing.data:
            return BackendResponse(
                error=BackendFault("a user with this email already exists", FAULT_CONSTRAINT)
            )

        created = self.store.insert(
            "users",
            {
                "email": email,
                "full_name": full_name.strip(),
                "role": role,
                "status": UserStatus.INVITED,
                "company_id": company_id,
                "invited_by": invited_by,
            },
        )
        if not created.ok:
            return created

        invitation = self._issue_invitation(created.data, invited_by)
        if not invitation.ok:
            # An invited user without an invitation could never sign in
            removed = self.store.delete("users", {"id": created.data["id"]})
            if not removed.ok:
                logger.error(
                    f"Could not remove {email} after failed invitation: {removed.error.message}"
                )
            return invitation
        return BackendResponse(
            data={
                "user": public_user(created.data),
                "invitation": {
                    "token": invitation.data["token"],
                    "expires_at": invitation.data["expires_at"],
                },
            }
        )

    def resend_invitation(self, email: str) -> BackendResponse:
        found = _first(self.store.select("users", {"email": email.strip().lower()}))
        if not found.ok:
            if found.error.kind == FAULT_NOT_FOUND:
                return BackendResponse(
                    error=BackendFault("User not found with that email address", FAULT_NOT_FOUND)
                )
            return found
        user = found.data
        if user["status"] != UserStatus.INVITED:
            status = getattr(user["status"], "value", user["status"])
            return BackendResponse(
                error=BackendFault(
                    f'User status is "{status}". Only invited users can have invitations resent.',
                    FAULT_STATE,
                )
            )

        removed = self.store.delete("user_invitations", {"user_id": user["id"]})
        if not removed.ok:
            return removed
        invitation = self._issue_invitation(user, user.get("invited_by"))
        if not invitation.ok:
            return invitation
        return BackendResponse(
            data={
                "user": public_user(user),
                "invitation": {
                    "token": invitation.data["token"],
                    "expires_at": invitation.data["expires_at"],
                },
            }
        )

    def accept_invitation(self, token: str, password: str) -> BackendResponse:
        found = _first(self.store.select("user_invitations", {"token": token}))
        if not found.ok:
            if found.error.kind == FAULT_NOT_FOUND:
                return BackendResponse(
                    error=BackendFault("invalid or expired invitation", FAULT_NOT_FOUND)
                )
            return found
        invitation = found.data
        now = datetime.now(timezone.utc)
        if invitation.get("accepted_at") is not None or invitation["expires_at"] <= now:
            return BackendResponse(
                error=BackendFault("invalid or expired invitation", FAULT_NOT_FOUND)
            )

        problem = password_problem(password)
        if problem:
            return BackendResponse(error=BackendFault(problem, FAULT_STATE))

        updated = _first(
            self.store.update(
                "users",
                {"id": invitation["user_id"]},
                {
                    "password_hash": hash_password(password),
                    "status": UserStatus.ACTIVE,
                    "last_login_at": now,
                },
            )
        )
        if not updated.ok:
            return updated
        self.store.update("user_invitations", {"token": token}, {"accepted_at": now})

        user = updated.data
        return BackendResponse(
            data={"token": sign_token(str(user["id"]), user["email"]), "user": public_user(user)}
        )
