"""
Async HTTP client for the RFI desk API.

Every call resolves to a ``Result``; nothing raises for an HTTP or transport
failure.  Each call is a single attempt: connection problems come back as a
``network`` result with retry guidance and leave it to the caller to try
again.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import BackendError, NetworkError, kind_for_status
from .schemas import Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientConfig:
    base_url: str
    token: str | None = None
    timeout_s: float = 30.0
    max_connections: int = 20
    max_keepalive_connections: int = 10

    @staticmethod
    def from_env() -> "ClientConfig":
        base_url = os.getenv("RFIDESK_API_BASE_URL", "http://localhost:8010")
        token = os.getenv("RFIDESK_API_TOKEN", "").strip() or None
        return ClientConfig(
            base_url=base_url.rstrip("/"),
            token=token,
            timeout_s=float(os.getenv("RFIDESK_API_TIMEOUT_S", "30")),
        )


def result_from_response(resp: httpx.Response) -> Result:
    try:
        body = resp.json() if resp.content else None
    except ValueError:
        body = None

    if isinstance(body, dict) and "success" in body:
        return Result(
            success=bool(body["success"]),
            data=body.get("data"),
            error=body.get("error"),
            kind=body.get("kind") or (None if body["success"] else _kind_for(resp)),
            details=body.get("details"),
            pending=body.get("pending"),
        )
    if resp.is_success:
        return Result.ok(body)

    error = body.get("error") or body.get("detail") if isinstance(body, dict) else None
    if not isinstance(error, str):
        error = BackendError(f"HTTP {resp.status_code}").message
    return Result(success=False, error=error, kind=_kind_for(resp))


def _kind_for(resp: httpx.Response) -> str:
    return kind_for_status(resp.status_code)


class RFIDeskClient:
    def __init__(self, config: ClientConfig, *, client: httpx.AsyncClient | None = None):
        self._config = config
        self._owned_client = client is None
        self._token = config.token

        if client is None:
            timeout = httpx.Timeout(
                timeout=config.timeout_s,
                connect=min(5.0, config.timeout_s),
            )
            limits = httpx.Limits(
                max_connections=config.max_connections,
                max_keepalive_connections=config.max_keepalive_connections,
            )
            client = httpx.AsyncClient(
                base_url=config.base_url,
                timeout=timeout,
                limits=limits,
                headers={"Accept": "application/json", "User-Agent": "rfidesk-client/1"},
            )
        self._client = client

    async def aclose(self) -> None:
        if self._owned_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RFIDeskClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> httpx.Response | Result:
        try:
            return await self._client.request(
                method,
                path if path.startswith("/") else f"/{path}",
                params={k: v for k, v in (params or {}).items() if v is not None},
                json=json_body,
                headers=self._headers(),
            )
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e!r}")
            return Result.fail(NetworkError())

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Result:
        resp = await self._send(method, path, params=params, json_body=json_body)
        if isinstance(resp, Result):
            return resp
        return result_from_response(resp)

    async def _request_pdf(self, method: str, path: str, json_body: Any = None) -> Result:
        resp = await self._send(method, path, json_body=json_body)
        if isinstance(resp, Result):
            return resp
        if resp.is_success and resp.headers.get("content-type", "").startswith(
            "application/pdf"
        ):
            return Result.ok(resp.content)
        return result_from_response(resp)

    # -- auth --

    async def login(self, email: str, password: str) -> Result:
        result = await self.request(
            "POST", "/api/auth/login", json_body={"email": email, "password": password}
        )
        if result.success:
            self._token = result.data["token"]
        return result

    def logout(self) -> None:
        self._token = None

    async def session(self) -> Result:
        return await self.request("GET", "/api/auth/session")

    async def accept_invitation(self, token: str, password: str) -> Result:
        result = await self.request(
            "POST", f"/api/auth/invitations/{token}/accept", json_body={"password": password}
        )
        if result.success:
            self._token = result.data["token"]
        return result

    # -- projects --

    async def create_project(self, fields: dict[str, Any]) -> Result:
        return await self.request("POST", "/api/projects", json_body=fields)

    async def list_projects(self) -> Result:
        return await self.request("GET", "/api/projects")

    async def get_project(self, project_id: str) -> Result:
        return await self.request("GET", f"/api/projects/{project_id}")

    async def update_project(self, project_id: str, fields: dict[str, Any]) -> Result:
        return await self.request("PATCH", f"/api/projects/{project_id}", json_body=fields)

    # -- RFIs --

    async def list_rfis(
        self,
        *,
        project_id: str | None = None,
        status: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Result:
        return await self.request(
            "GET",
            "/api/rfis",
            params={"project_id": project_id, "status": status, "page": page, "limit": limit},
        )

    async def create_rfi(self, fields: dict[str, Any]) -> Result:
        return await self.request("POST", "/api/rfis", json_body=fields)

    async def get_rfi(self, rfi_id: str) -> Result:
        return await self.request("GET", f"/api/rfis/{rfi_id}")

    async def update_rfi(self, rfi_id: str, fields: dict[str, Any]) -> Result:
        return await self.request("PATCH", f"/api/rfis/{rfi_id}", json_body=fields)

    async def delete_rfi(self, rfi_id: str) -> Result:
        return await self.request("DELETE", f"/api/rfis/{rfi_id}")

    async def get_status(self, rfi_id: str) -> Result:
        return await self.request("GET", f"/api/rfis/{rfi_id}/status")

    async def change_status(self, rfi_id: str, status: str, reason: str | None = None) -> Result:
        return await self.request(
            "PUT", f"/api/rfis/{rfi_id}/status", json_body={"status": status, "reason": reason}
        )

    async def add_response(self, rfi_id: str, content: str) -> Result:
        return await self.request(
            "POST", f"/api/rfis/{rfi_id}/responses", json_body={"content": content}
        )

    async def add_attachment(self, rfi_id: str, fields: dict[str, Any]) -> Result:
        return await self.request("POST", f"/api/rfis/{rfi_id}/attachments", json_body=fields)

    async def rfi_pdf(self, rfi_id: str) -> Result:
        return await self._request_pdf("GET", f"/api/rfis/{rfi_id}/pdf")

    async def recent_activity(self, limit: int | None = None) -> Result:
        return await self.request("GET", "/api/rfis/recent-activity", params={"limit": limit})

    async def generate_link(
        self,
        rfi_id: str,
        *,
        expiration_days: int | None = None,
        allow_multiple_responses: bool = False,
    ) -> Result:
        return await self.request(
            "POST",
            f"/api/rfis/{rfi_id}/generate-link",
            json_body={
                "expirationDays": expiration_days,
                "allowMultipleResponses": allow_multiple_responses,
            },
        )

    async def revoke_link(self, rfi_id: str) -> Result:
        return await self.request("DELETE", f"/api/rfis/{rfi_id}/generate-link")

    async def timesheet(self, rfi_id: str) -> Result:
        return await self.request("GET", f"/api/rfis/{rfi_id}/timesheet-entries")

    async def add_timesheet_entry(self, rfi_id: str, fields: dict[str, Any]) -> Result:
        return await self.request(
            "POST", f"/api/rfis/{rfi_id}/timesheet-entries", json_body=fields
        )

    async def delete_timesheet_entry(self, rfi_id: str, entry_id: str) -> Result:
        return await self.request("DELETE", f"/api/rfis/{rfi_id}/timesheet-entries/{entry_id}")

    # -- client portal --

    async def client_rfi(self, token: str) -> Result:
        return await self.request("GET", f"/api/client/rfi/{token}")

    async def submit_client_response(self, token: str, fields: dict[str, Any]) -> Result:
        return await self.request("POST", f"/api/client/rfi/{token}", json_body=fields)

    # -- export --

    async def pdf_previews(self, rfis: list[dict[str, Any]]) -> Result:
        return await self.request("POST", "/api/export/pdf-previews", json_body={"rfis": rfis})

    async def pdf_package(self, rfi_ids: list[str]) -> Result:
        return await self._request_pdf(
            "POST", "/api/export/pdf-package", json_body={"rfi_ids": rfi_ids}
        )

    async def export_csv(
        self, *, project_id: str | None = None, status: str | None = None
    ) -> Result:
        resp = await self._send(
            "GET", "/api/export/rfis.csv", params={"project_id": project_id, "status": status}
        )
        if isinstance(resp, Result):
            return resp
        if resp.is_success and resp.headers.get("content-type", "").startswith("text/csv"):
            return Result.ok(resp.text)
        return result_from_response(resp)

    # -- admin --

    async def invite_user(
        self,
        email: str,
        full_name: str,
        company_id: str,
        role_id: int | str,
        invited_by: str | None = None,
    ) -> Result:
        return await self.request(
            "POST",
            "/api/admin/invite-user",
            json_body={
                "email": email,
                "fullName": full_name,
                "companyId": company_id,
                "roleId": role_id,
                "invitedBy": invited_by,
            },
        )

    async def resend_invitation(self, email: str) -> Result:
        return await self.request(
            "POST", "/api/admin/resend-invitation", json_body={"email": email}
        )

    async def create_company(self, name: str, logo_url: str | None = None) -> Result:
        return await self.request(
            "POST", "/api/admin/companies", json_body={"name": name, "logo_url": logo_url}
        )

    async def list_users(self) -> Result:
        return await self.request("GET", "/api/admin/users")

    # -- notifications --

    async def notifications(self) -> Result:
        return await self.request("GET", "/api/notifications")

    async def dismiss_notification(self, notification_id: str) -> Result:
        return await self.request("DELETE", f"/api/notifications/{notification_id}")


class ActionGuard:
    """At most one outstanding request per action key.

    ``run`` returns ``None`` without calling the action when the same key is
    already in flight, the same as a disabled submit button.
    """

    def __init__(self) -> None:
        self._inflight: set[str] = set()

    def busy(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, action: Callable[[], Awaitable[Result]]) -> Result | None:
        if key in self._inflight:
            logger.debug(f"Ignoring duplicate {key} while a request is outstanding")
            return None
        self._inflight.add(key)
        try:
            return await action()
        finally:
            self._inflight.discard(key)


class ViewScope:
    """Drops results that arrive after the owning view has gone away."""

    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def fetch(
        self,
        pending: Awaitable[Result],
        on_result: Callable[[Result], Any] | None = None,
    ) -> Result | None:
        result = await pending
        if self.closed:
            return None
        if on_result is not None:
            on_result(result)
        return result


class FormDraft:
    """User input that survives failed submissions and clears on success."""

    def __init__(self, **values: Any) -> None:
        self.values: dict[str, Any] = dict(values)
        self.error: str | None = None
        self.field_errors: dict[str, str] = {}

    def update(self, **values: Any) -> None:
        self.values.update(values)

    async def submit(self, send: Callable[[dict[str, Any]], Awaitable[Result]]) -> Result:
        result = await send(dict(self.values))
        if result.success:
            self.values.clear()
            self.error = None
            self.field_errors = {}
        else:
            self.error = result.error
            self.field_errors = {
                d.get("field", ""): d.get("message", "") for d in (result.details or [])
            }
        return result
