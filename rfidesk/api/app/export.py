"""
Export API: PDF previews and packages, plus a CSV spreadsheet of RFIs.
"""

import csv
import io
import logging
from datetime import date, datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .access import Capability
from .db import get_db
from .errors import BackendError, ValidationError
from .gateway import GatewayDep, execute, respond
from .pdf_export import build_pdf_package, render_previews, render_rfi_pdf
from .schemas import PdfPackageRequest, Result, parse_model
from .session_context import bearer, resolve_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/export", tags=["export"])

JsonBody = Annotated[Any, Body()]


def _previews(request: Request, creds, db: Session, rfis: list[Any]) -> list[dict[str, Any]]:
    ctx = resolve_session(request, creds, db)
    try:
        ctx.require(Capability.PRINT_RFI)
    finally:
        ctx.clear()
    try:
        return render_previews(rfis)
    except Exception as e:
        logger.error(f"Error generating PDF previews: {e}")
        raise BackendError("Failed to generate PDF previews", safe=True) from e


@router.post("/pdf-previews")
def pdf_previews(
    request: Request,
    creds: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
    db: Annotated[Session, Depends(get_db)],
    payload: JsonBody = None,
):
    rfis = payload.get("rfis") if isinstance(payload, dict) else None
    if not isinstance(rfis, list):
        return respond(
            Result.fail(ValidationError("Invalid request: RFIs array is required"))
        )
    return respond(execute(_previews, request, creds, db, rfis))


def _package(gateway, payload: Any) -> bytes:
    request = parse_model(PdfPackageRequest, payload)
    rfis = gateway.rfis_for_export(request.rfi_ids)
    return build_pdf_package(render_rfi_pdf(rfi) for rfi in rfis)


@router.post("/pdf-package")
def pdf_package(gateway: GatewayDep, payload: JsonBody = None):
    result = gateway.run(_package, gateway, payload)
    if not result.success:
        return respond(result)
    filename = f"RFI_Package_{date.today().isoformat()}.pdf"
    return Response(
        content=result.data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


CSV_COLUMNS = {
    "rfi_number": "RFI Number",
    "title": "Title",
    "status": "Status",
    "urgency": "Urgency",
    "discipline": "Discipline",
    "project_name": "Project Name",
    "created_by": "Created By",
    "assigned_to": "Assigned To",
    "created_at": "Created Date",
    "due_date": "Due Date",
    "updated_at": "Last Updated",
    "closed_at": "Date Closed",
    "attachment_count": "Attachment Count",
    "response": "Response",
    "response_submitted_by": "Response Submitted By",
}


def _csv_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    return "" if value is None else value


def rfis_to_csv(rows: list[dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(CSV_COLUMNS.values()))
    writer.writeheader()
    for row in rows:
        writer.writerow({label: _csv_value(row.get(key)) for key, label in CSV_COLUMNS.items()})
    return buffer.getvalue()


def _csv_filename(gateway, project_id: str | None) -> str:
    label = "All_Projects"
    if project_id:
        name = gateway.get_project(project_id)["name"]
        label = "".join(c if c.isalnum() else "_" for c in name).strip("_") or "Project"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"RFI_Export_{label}_{stamp}.csv"


def _spreadsheet(gateway, project_id: str | None, status: str | None) -> tuple[str, str]:
    rows = gateway.export_rfis(project_id=project_id, status=status)
    return _csv_filename(gateway, project_id), rfis_to_csv(rows)


@router.get("/rfis.csv")
def rfis_csv(gateway: GatewayDep, project_id: str | None = None, status: str | None = None):
    result = gateway.run(_spreadsheet, gateway, project_id, status)
    if not result.success:
        return respond(result)
    filename, content = result.data
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
