"""
Request/Response gateway.

Turns an intent (create project, change RFI status, invite user, ...) into
row store calls and normalizes whatever comes back.  Operations raise
``RFIDeskError`` subclasses; ``run`` converts them into the uniform
``Result`` so nothing escapes as an unhandled fault.  Each operation makes a
single attempt against the backend: there are no retries here.
"""

from __future__ import annotations

import logging
import math
import re
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any

from fastapi import Depends
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .access import Capability, parse_role
from .backend import (
    AuthService,
    BackendResponse,
    FAULT_AUTH,
    FAULT_CONSTRAINT,
    FAULT_NETWORK,
    FAULT_NOT_FOUND,
    FAULT_STATE,
    RowStore,
    SqlRowStore,
    public_user,
)
from .config import settings
from .db import get_db
from .errors import (
    AuthenticationRequired,
    BackendError,
    ConflictError,
    NetworkError,
    NotFoundError,
    PermissionDenied,
    RFIDeskError,
    TransitionError,
    ValidationError,
)
from .lifecycle import (
    available_transitions,
    coerce_status,
    is_terminal,
    next_timestamp,
    plan_transition,
    workflow_state,
)
from .models import RFIStatus, UserRole
from .schemas import (
    AttachmentRef,
    CompanyCreate,
    ProjectCreate,
    ProjectUpdate,
    ResponseCreate,
    Result,
    RFICreate,
    RFIUpdate,
    SecureLinkRequest,
    StatusChange,
    TimesheetEntryCreate,
    parse_model,
)
from .security import secure_link_token
from .session_context import SessionContext, SessionDep

logger = logging.getLogger(__name__)

RFI_NUMBER_PATTERN = re.compile(r"^RFI-(\d+)$")

TIMESHEET_COSTS = ("labor_cost", "material_cost", "subcontractor_cost", "equipment_cost")


def parse_id(value: Any, label: str = "id") -> uuid.UUID:
    """Parse a string as UUID, raising ValidationError on bad input."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError):
        logger.debug(f"Invalid UUID format for {label}: {value}")
        raise ValidationError(
            f"invalid {label}", details=[{"field": label, "message": "must be a valid UUID"}]
        ) from None


def unwrap(response: BackendResponse, not_found: str | None = None) -> Any:
    """Return ``data`` or raise the error kind matching the backend fault."""
    if response.ok:
        return response.data
    fault = response.error
    if fault.kind == FAULT_NOT_FOUND:
        raise NotFoundError(not_found or fault.message)
    if fault.kind == FAULT_NETWORK:
        raise NetworkError()
    if fault.kind == FAULT_AUTH:
        raise AuthenticationRequired(fault.message)
    if fault.kind in (FAULT_CONSTRAINT, FAULT_STATE):
        raise BackendError(fault.message, safe=True, code=fault.code)
    raise BackendError(fault.message)


def next_rfi_number(existing: list[str]) -> str:
    highest = 0
    for number in existing:
        match = RFI_NUMBER_PATTERN.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"RFI-{highest + 1:03d}"


def touch_rfi(store: RowStore, rfi: Mapping[str, Any]) -> None:
    """Bump ``updated_at`` provided the RFI still has the status we read."""
    rows = unwrap(
        store.update(
            "rfis",
            {"id": rfi["id"], "status": coerce_status(rfi["status"])},
            {"updated_at": next_timestamp(rfi["updated_at"])},
        )
    )
    if not rows:
        raise TransitionError("RFI changed while you were editing; reload and try again")


def execute(operation: Callable[..., Any], *args: Any, **kwargs: Any) -> Result:
    """Call ``operation`` and fold its outcome into a ``Result``."""
    try:
        return Result.ok(operation(*args, **kwargs))
    except RFIDeskError as exc:
        if isinstance(exc, BackendError):
            logger.warning(f"{operation.__name__} failed: {exc.raw_message}")
        return Result.fail(exc)
    except Exception:
        logger.exception(f"Unexpected error in {operation.__name__}")
        return Result.fail(BackendError("unexpected error"))


class RFIGateway:
    def __init__(self, store: RowStore, ctx: SessionContext) -> None:
        self.store = store
        self.ctx = ctx

    def run(self, operation: Callable[..., Any], *args: Any, **kwargs: Any) -> Result:
        return execute(operation, *args, **kwargs)

    # -- helpers ---------------------------------------------------------

    def _require_authenticated(self) -> None:
        if not self.ctx.authenticated and not self.ctx.role_state.pending:
            raise AuthenticationRequired("Authentication required")

    def _sees_all_companies(self) -> bool:
        return self.ctx.role == UserRole.APP_OWNER or self.ctx.company_id is None

    def _check_scope(self, project: Mapping[str, Any]) -> None:
        if self._sees_all_companies():
            return
        owner = project.get("company_id")
        if owner is not None and owner != self.ctx.company_id:
            # Other companies' projects are invisible, not forbidden
            raise NotFoundError("Project not found")

    def _load_project(self, project_id: uuid.UUID) -> dict[str, Any]:
        rows = unwrap(self.store.select("projects", {"id": project_id}))
        if not rows:
            raise NotFoundError("Project not found")
        project = rows[0]
        self._check_scope(project)
        return project

    def _load_rfi(self, rfi_id: Any) -> dict[str, Any]:
        rows = unwrap(self.store.select("rfis", {"id": parse_id(rfi_id, "rfi_id")}))
        if not rows:
            raise NotFoundError("RFI not found")
        rfi = rows[0]
        project = self._load_project(rfi["project_id"])
        rfi["project_name"] = project["name"]
        return rfi

    def _visible_project_ids(self) -> list[uuid.UUID] | None:
        if self._sees_all_companies():
            return None
        rows = unwrap(self.store.select("projects", {"company_id": self.ctx.company_id}))
        return [row["id"] for row in rows]

    # -- projects --------------------------------------------------------

    def create_project(self, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        self.ctx.require(Capability.CREATE_PROJECT)
        project = parse_model(ProjectCreate, payload)
        now = datetime.now(timezone.utc)
        row = project.to_row()
        row.update(
            company_id=self.ctx.company_id,
            created_by=self.ctx.user_id,
            created_at=now,
            updated_at=now,
        )
        created = unwrap(self.store.insert("projects", row))
        logger.info(f"Project {created['name']} created by {self.ctx.email}")
        return created

    def list_projects(self) -> list[dict[str, Any]]:
        self.ctx.require(Capability.VIEW_PROJECTS)
        filters = {} if self._sees_all_companies() else {"company_id": self.ctx.company_id}
        return unwrap(
            self.store.select("projects", filters, order_by="created_at", descending=True)
        )

    def get_project(self, project_id: Any) -> dict[str, Any]:
        self.ctx.require(Capability.VIEW_PROJECTS)
        return self._load_project(parse_id(project_id, "project_id"))

    def update_project(self, project_id: Any, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        self.ctx.require(Capability.EDIT_PROJECT)
        changes = parse_model(ProjectUpdate, payload).changes()
        project = self._load_project(parse_id(project_id, "project_id"))
        changes["updated_at"] = datetime.now(timezone.utc)
        rows = unwrap(self.store.update("projects", {"id": project["id"]}, changes))
        if not rows:
            raise NotFoundError("Project not found")
        logger.info(f"Project {rows[0]['name']} updated by {self.ctx.email}")
        return rows[0]

    # -- RFIs ------------------------------------------------------------

    def create_rfi(self, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        self.ctx.require(Capability.CREATE_RFI)
        data = parse_model(RFICreate, payload)
        project = self._load_project(data.project_id)

        existing = unwrap(self.store.select("rfis", {"project_id": project["id"]}))
        now = datetime.now(timezone.utc)
        created = unwrap(
            self.store.insert(
                "rfis",
                {
                    "rfi_number": next_rfi_number([r["rfi_number"] for r in existing]),
                    "project_id": project["id"],
                    "title": data.title,
                    "description": data.description,
                    "status": RFIStatus.OPEN,
                    "urgency": data.urgency,
                    "discipline": data.discipline,
                    "created_by": self.ctx.user_id,
                    "assigned_to": data.assigned_to,
                    "due_date": data.due_date.isoformat() if data.due_date else None,
                    "created_at": now,
                    "updated_at": now,
                },
            )
        )
        for attachment in data.attachments:
            self._insert_attachment(created["id"], attachment)

        logger.info(
            f"{created['rfi_number']} created on project {project['name']} by {self.ctx.email}"
        )
        return self.get_rfi(created["id"])

    def get_rfi(self, rfi_id: Any) -> dict[str, Any]:
        self.ctx.require(Capability.VIEW_RFIS)
        rfi = self._load_rfi(rfi_id)
        rfi["responses"] = unwrap(
            self.store.select("rfi_responses", {"rfi_id": rfi["id"]}, order_by="created_at")
        )
        rfi["attachments"] = unwrap(
            self.store.select("attachments", {"rfi_id": rfi["id"]}, order_by="created_at")
        )
        rfi["status_log"] = unwrap(
            self.store.select("rfi_status_logs", {"rfi_id": rfi["id"]}, order_by="id")
        )
        return rfi

    def _rfi_filters(self, project_id: Any = None, status: Any = None) -> dict[str, Any]:
        filters: dict[str, Any] = {}
        if status:
            filters["status"] = coerce_status(status)
        visible = self._visible_project_ids()
        if project_id:
            pid = parse_id(project_id, "project_id")
            if visible is not None and pid not in visible:
                visible = []
            else:
                visible = [pid]
        if visible is not None:
            filters["project_id"] = visible
        return filters

    def list_rfis(
        self,
        project_id: Any = None,
        status: Any = None,
        page: int = 1,
        limit: int | None = None,
    ) -> dict[str, Any]:
        self.ctx.require(Capability.VIEW_RFIS)
        limit = settings.RFI_PAGE_LIMIT_DEFAULT if limit is None else limit
        problems = []
        if page < 1:
            problems.append({"field": "page", "message": "page must be at least 1"})
        if not 1 <= limit <= settings.RFI_PAGE_LIMIT_MAX:
            problems.append(
                {
                    "field": "limit",
                    "message": f"limit must be between 1 and {settings.RFI_PAGE_LIMIT_MAX}",
                }
            )
        if problems:
            raise ValidationError("Invalid query parameters", details=problems)

        filters = self._rfi_filters(project_id, status)
        total = unwrap(self.store.count("rfis", filters))
        rows = unwrap(
            self.store.select(
                "rfis",
                filters,
                order_by="created_at",
                descending=True,
                limit=limit,
                offset=(page - 1) * limit,
            )
        )
        return {
            "rfis": rows,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def update_rfi(self, rfi_id: Any, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        self.ctx.require(Capability.EDIT_RFI)
        changes = parse_model(RFIUpdate, payload).changes()
        rfi = self._load_rfi(rfi_id)
        current = coerce_status(rfi["status"])
        if is_terminal(current):
            raise TransitionError("Closed RFIs cannot be edited")

        changes["updated_at"] = next_timestamp(rfi["updated_at"])
        rows = unwrap(
            self.store.update("rfis", {"id": rfi["id"], "status": current}, changes)
        )
        if not rows:
            raise TransitionError("RFI changed while you were editing; reload and try again")
        return self.get_rfi(rfi["id"])

    def change_status(self, rfi_id: Any, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        self._require_authenticated()
        request = parse_model(StatusChange, payload)
        rfi = self._load_rfi(rfi_id)
        plan = plan_transition(rfi, request.status, self.ctx.role_state)

        # Conditioned on the status we validated against: both fields change
        # in one statement, or nothing does.
        rows = unwrap(
            self.store.update(
                "rfis", {"id": rfi["id"], "status": plan.from_status}, plan.changes()
            )
        )
        if not rows:
            raise TransitionError(
                "RFI status was changed by someone else; reload and try again"
            )
        updated = rows[0]
        updated["project_name"] = rfi["project_name"]

        log = self.store.insert(
            "rfi_status_logs",
            {
                "rfi_id": rfi["id"],
                "from_status": plan.from_status.value,
                "to_status": plan.to_status.value,
                "changed_by": self.ctx.user_id,
                "changed_at": plan.updated_at,
                "reason": request.reason,
            },
        )
        if not log.ok:
            logger.warning(
                f"Status log for {rfi['rfi_number']} not written: {log.error.message}"
            )

        logger.info(
            f"{rfi['rfi_number']} moved {plan.from_status.value} -> "
            f"{plan.to_status.value} by {self.ctx.email}"
        )
        return updated

    def transitions(self, rfi_id: Any) -> dict[str, Any]:
        self.ctx.require(Capability.VIEW_RFIS)
        rfi = self._load_rfi(rfi_id)
        current = coerce_status(rfi["status"])
        return {
            "current_status": current.value,
            "workflow_state": workflow_state(current),
            "terminal": is_terminal(current),
            "available_transitions": available_transitions(current, self.ctx.role_state),
        }

    def delete_rfi(self, rfi_id: Any) -> dict[str, Any]:
        self.ctx.require(Capability.DELETE_RFI)
        rfi = self._load_rfi(rfi_id)
        for table in (
            "rfi_status_logs",
            "attachments",
            "rfi_responses",
            "rfi_timesheet_entries",
        ):
            unwrap(self.store.delete(table, {"rfi_id": rfi["id"]}))
        unwrap(self.store.delete("rfis", {"id": rfi["id"]}))
        logger.info(f"{rfi['rfi_number']} deleted by {self.ctx.email}")
        return {"id": rfi["id"], "rfi_number": rfi["rfi_number"]}

    def add_response(self, rfi_id: Any, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        self.ctx.require(Capability.RESPOND_TO_RFI)
        data = parse_model(ResponseCreate, payload)
        rfi = self._load_rfi(rfi_id)
        if is_terminal(coerce_status(rfi["status"])):
            raise TransitionError("RFI is closed and no longer accepts responses")

        response = unwrap(
            self.store.insert(
                "rfi_responses",
                {
                    "rfi_id": rfi["id"],
                    "content": data.content,
                    "author_id": self.ctx.user_id,
                    "attachment_ids": [str(a) for a in data.attachment_ids],
                    "created_at": datetime.now(timezone.utc),
                },
            )
        )
        touch_rfi(self.store, rfi)
        return response

    def _insert_attachment(self, rfi_id: uuid.UUID, ref: AttachmentRef) -> dict[str, Any]:
        return unwrap(
            self.store.insert(
                "attachments",
                {
                    "rfi_id": rfi_id,
                    "file_name": ref.file_name,
                    "file_path": ref.file_path,
                    "file_size_bytes": ref.file_size_bytes,
                    "file_type": ref.file_type,
                    "uploaded_by": self.ctx.user_id,
                    "created_at": datetime.now(timezone.utc),
                },
            )
        )

    def add_attachment(self, rfi_id: Any, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        self.ctx.require(Capability.EDIT_RFI)
        ref = parse_model(AttachmentRef, payload)
        rfi = self._load_rfi(rfi_id)
        if is_terminal(coerce_status(rfi["status"])):
            raise TransitionError("Closed RFIs cannot be edited")
        attachment = self._insert_attachment(rfi["id"], ref)
        touch_rfi(self.store, rfi)
        return attachment

    def rfis_for_export(self, rfi_ids: list[uuid.UUID]) -> list[dict[str, Any]]:
        self.ctx.require(Capability.PRINT_PACKAGE)
        return [self.get_rfi(rfi_id) for rfi_id in rfi_ids]

    def export_rfis(self, project_id: Any = None, status: Any = None) -> list[dict[str, Any]]:
        """Flat rows for the spreadsheet export, newest first."""
        self.ctx.require(Capability.EXPORT_DATA)
        rfis = unwrap(
            self.store.select(
                "rfis",
                self._rfi_filters(project_id, status),
                order_by="created_at",
                descending=True,
            )
        )
        if not rfis:
            return []
        rfi_ids = [r["id"] for r in rfis]
        projects = {
            p["id"]: p["name"]
            for p in unwrap(
                self.store.select("projects", {"id": list({r["project_id"] for r in rfis})})
            )
        }
        attachment_counts: dict[Any, int] = {}
        for row in unwrap(self.store.select("attachments", {"rfi_id": rfi_ids})):
            attachment_counts[row["rfi_id"]] = attachment_counts.get(row["rfi_id"], 0) + 1
        # Latest response wins
        latest: dict[Any, dict[str, Any]] = {}
        for row in unwrap(
            self.store.select("rfi_responses", {"rfi_id": rfi_ids}, order_by="created_at")
        ):
            latest[row["rfi_id"]] = row
        people: set[Any] = set()
        for rfi in rfis:
            people.update(p for p in (rfi["created_by"], rfi.get("assigned_to")) if p)
        people.update(r["author_id"] for r in latest.values() if r.get("author_id"))
        names = {}
        if people:
            names = {
                u["id"]: u.get("full_name") or u["email"]
                for u in unwrap(self.store.select("users", {"id": list(people)}))
            }

        rows = []
        for rfi in rfis:
            response = latest.get(rfi["id"], {})
            submitted_by = response.get("submitted_by") or names.get(response.get("author_id"))
            rows.append(
                {
                    "rfi_number": rfi["rfi_number"],
                    "title": rfi["title"],
                    "status": coerce_status(rfi["status"]).value,
                    "urgency": rfi["urgency"],
                    "discipline": rfi.get("discipline"),
                    "project_name": projects.get(rfi["project_id"]),
                    "created_by": names.get(rfi["created_by"]),
                    "assigned_to": names.get(rfi.get("assigned_to")),
                    "created_at": rfi["created_at"],
                    "due_date": rfi.get("due_date"),
                    "updated_at": rfi["updated_at"],
                    "closed_at": rfi.get("closed_at"),
                    "attachment_count": attachment_counts.get(rfi["id"], 0),
                    "response": response.get("content"),
                    "response_submitted_by": submitted_by,
                }
            )
        return rows

    # -- client secure links ---------------------------------------------

    def generate_link(self, rfi_id: Any, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        self.ctx.require(Capability.EDIT_RFI)
        request = parse_model(SecureLinkRequest, payload)
        rfi = self._load_rfi(rfi_id)
        if is_terminal(coerce_status(rfi["status"])):
            raise TransitionError("Closed RFIs cannot be shared with clients")

        days = request.expiration_days or settings.SECURE_LINK_EXPIRY_DAYS
        days = min(days, settings.SECURE_LINK_MAX_DAYS)
        now = datetime.now(timezone.utc)
        token = secure_link_token(rfi["project_name"], rfi["rfi_number"], now)
        expires_at = now + timedelta(days=days)
        rows = unwrap(
            self.store.update(
                "rfis",
                {"id": rfi["id"], "status": coerce_status(rfi["status"])},
                {
                    "secure_link_token": token,
                    "link_expires_at": expires_at,
                    "allow_multiple_responses": request.allow_multiple_responses,
                    "updated_at": next_timestamp(rfi["updated_at"]),
                },
            )
        )
        if not rows:
            raise TransitionError("RFI changed while you were editing; reload and try again")
        logger.info(f"Client link issued for {rfi['rfi_number']} by {self.ctx.email}")
        return {
            "secure_link": f"{settings.FRONTEND_URL}/client/rfi/{token}",
            "token": token,
            "expires_at": expires_at,
            "allow_multiple_responses": request.allow_multiple_responses,
        }

    def revoke_link(self, rfi_id: Any) -> dict[str, Any]:
        self.ctx.require(Capability.EDIT_RFI)
        rfi = self._load_rfi(rfi_id)
        if not rfi.get("secure_link_token"):
            raise NotFoundError("RFI has no active client link")
        unwrap(
            self.store.update(
                "rfis",
                {"id": rfi["id"]},
                {"secure_link_token": None, "link_expires_at": None},
            )
        )
        logger.info(f"Client link for {rfi['rfi_number']} revoked by {self.ctx.email}")
        return {"id": rfi["id"], "rfi_number": rfi["rfi_number"]}

    # -- timesheets ------------------------------------------------------

    def list_timesheet(self, rfi_id: Any) -> dict[str, Any]:
        self.ctx.require(Capability.VIEW_RFIS)
        rfi = self._load_rfi(rfi_id)
        entries = unwrap(
            self.store.select(
                "rfi_timesheet_entries",
                {"rfi_id": rfi["id"]},
                order_by="entry_date",
                descending=True,
            )
        )
        summary = {"entry_count": len(entries)}
        summary["total_hours"] = round(sum(e["labor_hours"] or 0 for e in entries), 2)
        for key in TIMESHEET_COSTS:
            summary[key] = round(sum(e[key] or 0 for e in entries), 2)
        summary["total_cost"] = round(sum(summary[key] for key in TIMESHEET_COSTS), 2)
        return {"entries": entries, "summary": summary}

    def add_timesheet_entry(
        self, rfi_id: Any, payload: Mapping[str, Any] | None
    ) -> dict[str, Any]:
        self.ctx.require(Capability.EDIT_RFI)
        data = parse_model(TimesheetEntryCreate, payload)
        rfi = self._load_rfi(rfi_id)
        duplicate = unwrap(
            self.store.select(
                "rfi_timesheet_entries",
                {"rfi_id": rfi["id"], "timesheet_number": data.timesheet_number},
            )
        )
        if duplicate:
            raise ConflictError("Timesheet number already exists for this RFI")

        row = data.to_row()
        row.update(
            rfi_id=rfi["id"],
            created_by=self.ctx.user_id,
            created_at=datetime.now(timezone.utc),
        )
        response = self.store.insert("rfi_timesheet_entries", row)
        if not response.ok and response.error.kind == FAULT_CONSTRAINT:
            # Lost a race with a concurrent insert of the same number
            raise ConflictError("Timesheet number already exists for this RFI")
        return unwrap(response)

    def delete_timesheet_entry(self, rfi_id: Any, entry_id: Any) -> dict[str, Any]:
        self.ctx.require(Capability.EDIT_RFI)
        rfi = self._load_rfi(rfi_id)
        entry = parse_id(entry_id, "entry_id")
        removed = unwrap(
            self.store.delete("rfi_timesheet_entries", {"id": entry, "rfi_id": rfi["id"]})
        )
        if not removed:
            raise NotFoundError("Timesheet entry not found")
        return {"id": entry}

    # -- activity --------------------------------------------------------

    def recent_activity(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Newest RFI events across visible projects: creations, moves, responses."""
        self.ctx.require(Capability.VIEW_REPORTS)
        limit = settings.RECENT_ACTIVITY_LIMIT_DEFAULT if limit is None else limit
        if not 1 <= limit <= settings.RFI_PAGE_LIMIT_MAX:
            raise ValidationError(
                "Invalid query parameters",
                details=[
                    {
                        "field": "limit",
                        "message": f"limit must be between 1 and {settings.RFI_PAGE_LIMIT_MAX}",
                    }
                ],
            )

        rfis = {r["id"]: r for r in unwrap(self.store.select("rfis", self._rfi_filters()))}
        if not rfis:
            return []
        projects = {
            p["id"]: p["name"]
            for p in unwrap(
                self.store.select(
                    "projects", {"id": list({r["project_id"] for r in rfis.values()})}
                )
            )
        }
        related = {"rfi_id": list(rfis)}
        logs = unwrap(
            self.store.select(
                "rfi_status_logs", related, order_by="changed_at", descending=True, limit=limit
            )
        )
        responses = unwrap(
            self.store.select(
                "rfi_responses", related, order_by="created_at", descending=True, limit=limit
            )
        )

        def item(kind: str, rfi: Mapping[str, Any], at: datetime, details: str) -> dict[str, Any]:
            return {
                "type": kind,
                "rfi_id": rfi["id"],
                "rfi_number": rfi["rfi_number"],
                "title": rfi["title"],
                "project_name": projects.get(rfi["project_id"]),
                "at": at,
                "details": details,
            }

        events = [
            item("rfi_created", rfi, rfi["created_at"], "RFI created")
            for rfi in rfis.values()
        ]
        events += [
            item(
                "status_changed",
                rfis[log["rfi_id"]],
                log["changed_at"],
                f"{log['from_status']} -> {log['to_status']}",
            )
            for log in logs
        ]
        for response in responses:
            if response.get("source") == "client":
                who = response.get("submitted_by") or "client"
                events.append(
                    item(
                        "client_response",
                        rfis[response["rfi_id"]],
                        response["created_at"],
                        f"Client response from {who}",
                    )
                )
            else:
                events.append(
                    item(
                        "response_added",
                        rfis[response["rfi_id"]],
                        response["created_at"],
                        "Response added",
                    )
                )
        events.sort(key=lambda e: e["at"], reverse=True)
        return events[:limit]

    # -- users & companies -----------------------------------------------

    def invite_user(
        self,
        email: str,
        full_name: str,
        company_id: Any,
        role_id: Any,
        invited_by: str | None = None,
    ) -> dict[str, Any]:
        self.ctx.require(Capability.INVITE_USER)
        role = parse_role(role_id)
        if role is None:
            raise ValidationError("Failed to send invitation: invalid role")
        try:
            company_uuid = uuid.UUID(str(company_id))
        except ValueError:
            raise ValidationError("Failed to send invitation: invalid company id") from None

        if self.ctx.role != UserRole.APP_OWNER:
            if role == UserRole.APP_OWNER:
                raise PermissionDenied("Only app owners can invite app owners")
            if self.ctx.company_id is not None and company_uuid != self.ctx.company_id:
                raise PermissionDenied("You can only invite users into your own company")

        response = AuthService(self.store).invite_user(
            email,
            full_name,
            company_uuid,
            role,
            invited_by=invited_by or self.ctx.email or "system",
        )
        if not response.ok and response.error.kind in (
            FAULT_NOT_FOUND,
            FAULT_CONSTRAINT,
            FAULT_STATE,
        ):
            raise ValidationError(f"Failed to send invitation: {response.error.message}")
        result = unwrap(response)
        logger.info(f"Invitation created for {email} by {self.ctx.email}")
        return result

    def resend_invitation(self, email: str) -> dict[str, Any]:
        self.ctx.require(Capability.INVITE_USER)
        response = AuthService(self.store).resend_invitation(email)
        if not response.ok and response.error.kind == FAULT_STATE:
            raise ValidationError(response.error.message)
        return unwrap(response)

    def create_company(self, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        self.ctx.require(Capability.CREATE_COMPANY)
        data = parse_model(CompanyCreate, payload)
        name = data.name.strip()
        if unwrap(self.store.select("companies", {"name": name})):
            raise ValidationError(
                "A company with this name already exists",
                details=[{"field": "name", "message": "already exists"}],
            )
        return unwrap(
            self.store.insert(
                "companies",
                {
                    "name": name,
                    "logo_url": data.logo_url,
                    "created_at": datetime.now(timezone.utc),
                },
            )
        )

    def list_users(self) -> list[dict[str, Any]]:
        self.ctx.require(Capability.VIEW_USERS)
        filters = {} if self._sees_all_companies() else {"company_id": self.ctx.company_id}
        rows = unwrap(
            self.store.select("users", filters, order_by="created_at", descending=True)
        )
        return [public_user(row) for row in rows]


def get_gateway(ctx: SessionDep, db: Annotated[Session, Depends(get_db)]) -> RFIGateway:
    return RFIGateway(SqlRowStore(db), ctx)


GatewayDep = Annotated[RFIGateway, Depends(get_gateway)]


def respond(result: Result, success_status: int = 200) -> JSONResponse:
    status = success_status if result.success else result.status_code
    return JSONResponse(jsonable_encoder(result.payload()), status_code=status)

