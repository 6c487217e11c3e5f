"""
RFI API: CRUD, status lifecycle, responses, attachments, client links,
timesheets, activity and printing.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Response
from fastapi.concurrency import run_in_threadpool

from .access import Capability
from .gateway import GatewayDep, respond
from .notifications import notify_status_change
from .pdf_export import render_rfi_pdf

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rfis", tags=["rfis"])

JsonBody = Annotated[Any, Body()]


@router.get("")
def list_rfis(
    gateway: GatewayDep,
    project_id: str | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int | None = None,
):
    return respond(
        gateway.run(gateway.list_rfis, project_id=project_id, status=status, page=page, limit=limit)
    )


@router.post("")
def create_rfi(gateway: GatewayDep, payload: JsonBody = None):
    return respond(gateway.run(gateway.create_rfi, payload), success_status=201)


@router.get("/recent-activity")
def recent_activity(gateway: GatewayDep, limit: int | None = None):
    return respond(gateway.run(gateway.recent_activity, limit=limit))


@router.get("/{rfi_id}")
def get_rfi(rfi_id: str, gateway: GatewayDep):
    return respond(gateway.run(gateway.get_rfi, rfi_id))


@router.patch("/{rfi_id}")
def update_rfi(rfi_id: str, gateway: GatewayDep, payload: JsonBody = None):
    return respond(gateway.run(gateway.update_rfi, rfi_id, payload))


@router.delete("/{rfi_id}")
def delete_rfi(rfi_id: str, gateway: GatewayDep):
    return respond(gateway.run(gateway.delete_rfi, rfi_id))


@router.get("/{rfi_id}/status")
def get_status(rfi_id: str, gateway: GatewayDep):
    return respond(gateway.run(gateway.transitions, rfi_id))


@router.put("/{rfi_id}/status")
async def change_status(rfi_id: str, gateway: GatewayDep, payload: JsonBody = None):
    result = await run_in_threadpool(gateway.run, gateway.change_status, rfi_id, payload)
    if result.success:
        # Notifications schedule their expiry on the running loop
        notify_status_change(result.data, gateway.ctx.user_id)
    return respond(result)


@router.post("/{rfi_id}/responses")
def add_response(rfi_id: str, gateway: GatewayDep, payload: JsonBody = None):
    return respond(gateway.run(gateway.add_response, rfi_id, payload), success_status=201)


@router.post("/{rfi_id}/attachments")
def add_attachment(rfi_id: str, gateway: GatewayDep, payload: JsonBody = None):
    return respond(gateway.run(gateway.add_attachment, rfi_id, payload), success_status=201)


@router.post("/{rfi_id}/generate-link")
def generate_link(rfi_id: str, gateway: GatewayDep, payload: JsonBody = None):
    return respond(gateway.run(gateway.generate_link, rfi_id, payload))


@router.delete("/{rfi_id}/generate-link")
def revoke_link(rfi_id: str, gateway: GatewayDep):
    return respond(gateway.run(gateway.revoke_link, rfi_id))


@router.get("/{rfi_id}/timesheet-entries")
def list_timesheet(rfi_id: str, gateway: GatewayDep):
    return respond(gateway.run(gateway.list_timesheet, rfi_id))


@router.post("/{rfi_id}/timesheet-entries")
def add_timesheet_entry(rfi_id: str, gateway: GatewayDep, payload: JsonBody = None):
    return respond(gateway.run(gateway.add_timesheet_entry, rfi_id, payload), success_status=201)


@router.delete("/{rfi_id}/timesheet-entries/{entry_id}")
def delete_timesheet_entry(rfi_id: str, entry_id: str, gateway: GatewayDep):
    return respond(gateway.run(gateway.delete_timesheet_entry, rfi_id, entry_id))


def _printable(gateway, rfi_id: str) -> dict[str, Any]:
    gateway.ctx.require(Capability.PRINT_RFI)
    return gateway.get_rfi(rfi_id)


@router.get("/{rfi_id}/pdf")
def rfi_pdf(rfi_id: str, gateway: GatewayDep):
    result = gateway.run(_printable, gateway, rfi_id)
    if not result.success:
        return respond(result)
    rfi = result.data
    return Response(
        content=render_rfi_pdf(rfi),
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{rfi["rfi_number"]}.pdf"'},
    )
