"""
RFI printing: single-RFI PDFs, base64 previews and merged packages.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterable, Mapping
from io import BytesIO
from typing import Any

from PyPDF2 import PdfReader, PdfWriter
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

MARGIN = 0.5 * inch
BODY_FONT = ("Helvetica", 10)
LABEL_FONT = ("Helvetica-Bold", 10)
LINE_HEIGHT = 14


def _field(record: Mapping[str, Any], *names: str, default: str = "") -> str:
    """First non-empty value among snake_case/camelCase spellings."""
    for name in names:
        value = record.get(name)
        if value not in (None, ""):
            return str(getattr(value, "value", value))
    return default


def _label(record: Mapping[str, Any]) -> str:
    return _field(record, "rfi_number", "rfiNumber", default="RFI")


class _Writer:
    """Top-to-bottom text layout over a reportlab canvas with page breaks."""

    def __init__(self, buffer: BytesIO, title: str) -> None:
        self.width, self.height = A4
        self.can = canvas.Canvas(buffer, pagesize=A4)
        self.can.setTitle(title)
        self.y = self.height - MARGIN

    def _ensure(self, needed: float) -> None:
        if self.y - needed < MARGIN:
            self.can.showPage()
            self.y = self.height - MARGIN

    def heading(self, text: str, size: int = 16) -> None:
        self._ensure(size + 6)
        self.can.setFont("Helvetica-Bold", size)
        self.can.drawString(MARGIN, self.y - size, text)
        self.y -= size + 10

    def pair(self, label: str, value: str) -> None:
        if not value:
            return
        self._ensure(LINE_HEIGHT)
        self.can.setFont(*LABEL_FONT)
        self.can.drawString(MARGIN, self.y - LINE_HEIGHT, f"{label}:")
        self.can.setFont(*BODY_FONT)
        self.can.drawString(MARGIN + 1.4 * inch, self.y - LINE_HEIGHT, value)
        self.y -= LINE_HEIGHT

    def paragraph(self, text: str) -> None:
        usable = self.width - 2 * MARGIN
        for raw_line in (text or "").splitlines() or [""]:
            for line in simpleSplit(raw_line, BODY_FONT[0], BODY_FONT[1], usable) or [""]:
                self._ensure(LINE_HEIGHT)
                self.can.setFont(*BODY_FONT)
                self.can.drawString(MARGIN, self.y - LINE_HEIGHT, line)
                self.y -= LINE_HEIGHT

    def gap(self, amount: float = LINE_HEIGHT) -> None:
        self.y -= amount

    def finish(self) -> None:
        self.can.save()


def render_rfi_pdf(record: Mapping[str, Any]) -> bytes:
    """
    Render a single RFI to an A4 PDF.

    Accepts the gateway's RFI detail or the looser rows posted by clients;
    missing fields are left out rather than failing the document.
    """
    buffer = BytesIO()
    number = _label(record)
    doc = _Writer(buffer, f"{number} - {_field(record, 'title', 'subject')}")

    doc.heading(_field(record, "project_name", "projectName", default="Request for Information"))
    doc.heading(f"{number}: {_field(record, 'title', 'subject')}", size=13)
    doc.pair("Status", _field(record, "status"))
    doc.pair("Urgency", _field(record, "urgency"))
    doc.pair("Discipline", _field(record, "discipline"))
    doc.pair("Due date", _field(record, "due_date", "dueDate"))
    doc.pair("Created", _field(record, "created_at", "createdAt"))
    doc.pair("Closed", _field(record, "closed_at", "closedAt"))
    doc.gap()

    doc.heading("Description", size=12)
    doc.paragraph(_field(record, "description", "reason_for_rfi"))

    responses = record.get("responses") or []
    if responses:
        doc.gap()
        doc.heading("Responses", size=12)
        for response in responses:
            doc.pair("Date", _field(response, "created_at", "createdAt"))
            doc.paragraph(_field(response, "content"))
            doc.gap(LINE_HEIGHT / 2)

    attachments = record.get("attachments") or []
    if attachments:
        doc.gap()
        doc.heading("Attachments", size=12)
        for attachment in attachments:
            doc.paragraph(_field(attachment, "file_name", "fileName"))

    doc.finish()
    return buffer.getvalue()


def render_previews(records: Iterable[Any]) -> list[dict[str, Any]]:
    """Base64 previews for each record; records that fail to render are skipped."""
    previews = []
    for record in records:
        try:
            pdf = render_rfi_pdf(record)
        except Exception:
            logger.exception("Skipping RFI preview that failed to render")
            continue
        previews.append(
            {
                "rfi_id": _field(record, "id", "rfi_id", "rfiId"),
                "rfi_number": _label(record),
                "project_name": _field(record, "project_name", "projectName"),
                "pdf_data": base64.b64encode(pdf).decode("ascii"),
            }
        )
    return previews


def build_pdf_package(pdfs: Iterable[bytes]) -> bytes:
    """Concatenate PDFs into a single document."""
    writer = PdfWriter()
    for data in pdfs:
        reader = PdfReader(BytesIO(data))
        for page in reader.pages:
            writer.add_page(page)

    output = BytesIO()
    writer.write(output)
    return output.getvalue()
