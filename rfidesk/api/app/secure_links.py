"""
Client portal reached through an RFI's secure link.

No session is involved: the link token is the credential.  A missing,
revoked or expired token reads as not found so callers cannot tell the
cases apart by status code.
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from .backend import RowStore, SqlRowStore
from .db import get_db
from .errors import ConflictError, NotFoundError, TransitionError
from .gateway import execute, respond, touch_rfi, unwrap
from .lifecycle import coerce_status, is_terminal
from .notifications import notify_client_response
from .schemas import ClientResponseCreate, Result, parse_model

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/client", tags=["client"])

_PUBLIC_RFI_FIELDS = (
    "id",
    "rfi_number",
    "title",
    "description",
    "urgency",
    "discipline",
    "due_date",
    "created_at",
    "link_expires_at",
)


class ClientPortal:
    def __init__(self, store: RowStore) -> None:
        self.store = store

    def _rfi_for_token(self, token: str) -> dict[str, Any]:
        if not token:
            raise NotFoundError("Invalid or expired link")
        rows = unwrap(self.store.select("rfis", {"secure_link_token": token}))
        if not rows:
            raise NotFoundError("Invalid or expired link")
        rfi = rows[0]
        expires_at = rfi.get("link_expires_at")
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            raise NotFoundError("Link has expired")
        return rfi

    def _client_responses(self, rfi_id: Any) -> list[dict[str, Any]]:
        rows = unwrap(
            self.store.select("rfi_responses", {"rfi_id": rfi_id}, order_by="created_at")
        )
        return [r for r in rows if r.get("source") == "client"]

    def _can_respond(self, rfi: dict[str, Any], responses: list[dict[str, Any]]) -> bool:
        if is_terminal(coerce_status(rfi["status"])):
            return False
        return not responses or bool(rfi.get("allow_multiple_responses"))

    def view(self, token: str) -> dict[str, Any]:
        rfi = self._rfi_for_token(token)
        projects = unwrap(self.store.select("projects", {"id": rfi["project_id"]}))
        project = projects[0] if projects else {}
        responses = self._client_responses(rfi["id"])
        attachments = unwrap(
            self.store.select("attachments", {"rfi_id": rfi["id"]}, order_by="created_at")
        )

        view = {key: rfi.get(key) for key in _PUBLIC_RFI_FIELDS}
        view["status"] = coerce_status(rfi["status"]).value
        view["project"] = {
            "name": project.get("name"),
            "contract_number": project.get("contract_number"),
            "client_company": project.get("client_company"),
            "location": project.get("location"),
        }
        view["attachments"] = [
            {"file_name": a["file_name"], "file_type": a.get("file_type")} for a in attachments
        ]
        view["client_responses"] = [
            {
                "content": r["content"],
                "submitted_by": r.get("submitted_by"),
                "response_status": r.get("response_status"),
                "additional_comments": r.get("additional_comments"),
                "created_at": r["created_at"],
            }
            for r in responses
        ]
        view["can_respond"] = self._can_respond(rfi, responses)
        return view

    def submit(self, token: str, payload: Any) -> dict[str, Any]:
        data = parse_model(ClientResponseCreate, payload)
        rfi = self._rfi_for_token(token)
        if is_terminal(coerce_status(rfi["status"])):
            raise TransitionError("RFI is closed and no longer accepts responses")
        if self._client_responses(rfi["id"]) and not rfi.get("allow_multiple_responses"):
            raise ConflictError("This RFI has already been responded to")

        response = unwrap(
            self.store.insert(
                "rfi_responses",
                {
                    "rfi_id": rfi["id"],
                    "content": data.content,
                    "author_id": None,
                    "source": "client",
                    "submitted_by": data.submitted_by,
                    "response_status": data.response_status,
                    "additional_comments": data.additional_comments,
                    "attachment_ids": [],
                    "created_at": datetime.now(timezone.utc),
                },
            )
        )
        touch_rfi(self.store, rfi)
        logger.info(f"Client response on {rfi['rfi_number']} from {data.submitted_by}")
        return {"response": response, "rfi": rfi}


def get_portal(db: Annotated[Session, Depends(get_db)]) -> ClientPortal:
    return ClientPortal(SqlRowStore(db))


PortalDep = Annotated[ClientPortal, Depends(get_portal)]


@router.get("/rfi/{token}")
def client_rfi(token: str, portal: PortalDep):
    return respond(execute(portal.view, token))


@router.post("/rfi/{token}")
async def submit_client_response(
    token: str, portal: PortalDep, payload: Annotated[Any, Body()] = None
):
    result = await run_in_threadpool(execute, portal.submit, token, payload)
    if not result.success:
        return respond(result)
    response = result.data["response"]
    # Notifications schedule their expiry on the running loop
    notify_client_response(result.data["rfi"], response["submitted_by"])
    return respond(Result.ok(response), success_status=201)
