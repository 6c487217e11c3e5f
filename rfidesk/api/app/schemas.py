"""
Request models and the uniform result contract.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Generic, Literal, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from .errors import RFIDeskError, ValidationError, status_for_kind

T = TypeVar("T")

Urgency = Literal["urgent", "non-urgent"]

_LOCATION_PREFIXES = ("body", "query", "path", "header")


class Result(BaseModel, Generic[T]):
    """``{success, data?, error?}`` plus the error kind and field details."""

    success: bool
    data: T | None = None
    error: str | None = None
    kind: str | None = None
    details: list[dict[str, str]] | None = None
    pending: bool | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "Result":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: RFIDeskError) -> "Result":
        return cls(
            success=False,
            error=exc.message,
            kind=exc.kind,
            details=getattr(exc, "details", None) or None,
            pending=getattr(exc, "pending", None),
        )

    @property
    def status_code(self) -> int:
        return 200 if self.success else status_for_kind(self.kind)

    def payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


def format_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    """Flatten pydantic errors into ``[{field, message}]``."""
    formatted = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in _LOCATION_PREFIXES]
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        formatted.append({"field": ".".join(loc), "message": message})
    return formatted


def parse_model(model: type[BaseModel], payload: Any) -> Any:
    """Validate ``payload`` against ``model`` raising our ValidationError."""
    try:
        return model.model_validate(payload if payload is not None else {})
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid input data", details=format_validation_errors(exc.errors())
        ) from None


class ProjectCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(
        min_length=1, max_length=255, validation_alias=AliasChoices("name", "project_name")
    )
    contract_number: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices(
            "contractNumber", "contract_number", "job_contract_number"
        ),
    )
    contractor_job_number: str | None = Field(
        default=None,
        max_length=100,
        validation_alias=AliasChoices("contractorJobNumber", "contractor_job_number"),
    )
    client_company: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices(
            "clientCompany", "client_company", "client_company_name"
        ),
    )
    client_contact_name: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("clientContactName", "client_contact_name"),
    )
    pm_email: EmailStr = Field(
        validation_alias=AliasChoices("pmEmail", "pm_email", "project_manager_contact")
    )
    recipients: list[EmailStr] = Field(
        default_factory=list,
        validation_alias=AliasChoices("recipients", "standard_recipients"),
    )
    disciplines: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("disciplines", "project_disciplines"),
    )
    default_urgency: Urgency = Field(
        default="non-urgent",
        validation_alias=AliasChoices("defaultUrgency", "default_urgency"),
    )
    location: str | None = Field(default=None, max_length=500)
    project_type: Literal["mechanical", "civil", "ie", "other"] | None = Field(
        default=None, validation_alias=AliasChoices("projectType", "project_type")
    )
    contract_value: float | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("contractValue", "contract_value")
    )
    start_date: date | None = Field(
        default=None, validation_alias=AliasChoices("startDate", "start_date")
    )
    expected_completion: date | None = Field(
        default=None,
        validation_alias=AliasChoices("expectedCompletion", "expected_completion"),
    )
    description: str | None = Field(
        default=None,
        max_length=2000,
        validation_alias=AliasChoices("description", "project_description"),
    )

    @field_validator("name", "contract_number", "client_company")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("This field is required")
        return v

    @field_validator("disciplines")
    @classmethod
    def clean_disciplines(cls, v: list[str]) -> list[str]:
        cleaned: list[str] = []
        for item in v:
            item = item.strip()
            if item and item not in cleaned:
                cleaned.append(item)
        return cleaned

    @model_validator(mode="after")
    def completion_after_start(self) -> "ProjectCreate":
        if self.start_date and self.expected_completion:
            if self.expected_completion < self.start_date:
                raise ValueError("Expected completion must be on or after the start date")
        return self

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump()
        row["pm_email"] = str(self.pm_email).lower()
        row["recipients"] = [str(r).lower() for r in self.recipients]
        for key in ("start_date", "expected_completion"):
            if row[key] is not None:
                row[key] = row[key].isoformat()
        return row


class AttachmentRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(
        min_length=1, max_length=512, validation_alias=AliasChoices("fileName", "file_name")
    )
    file_path: str = Field(
        min_length=1, max_length=2048, validation_alias=AliasChoices("filePath", "file_path")
    )
    file_size_bytes: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("fileSize", "file_size_bytes")
    )
    file_type: str | None = Field(
        default=None, max_length=128, validation_alias=AliasChoices("fileType", "file_type")
    )


class RFICreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_id: uuid.UUID = Field(validation_alias=AliasChoices("projectId", "project_id"))
    title: str = Field(
        min_length=1, max_length=500, validation_alias=AliasChoices("title", "subject")
    )
    description: str = Field(
        min_length=1,
        max_length=2000,
        validation_alias=AliasChoices("description", "reason_for_rfi"),
    )
    urgency: Urgency = "non-urgent"
    discipline: str | None = Field(default=None, max_length=255)
    assigned_to: uuid.UUID | None = Field(
        default=None, validation_alias=AliasChoices("assignedTo", "assigned_to")
    )
    due_date: date | None = Field(
        default=None, validation_alias=AliasChoices("dueDate", "due_date")
    )
    # New RFIs always start open
    status: Literal["open"] | None = None
    attachments: list[AttachmentRef] = Field(default_factory=list)

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("This field is required")
        return v


class RFIUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str | None = Field(
        default=None, min_length=1, max_length=500, validation_alias=AliasChoices("title", "subject")
    )
    description: str | None = Field(default=None, min_length=1, max_length=2000)
    urgency: Urgency | None = None
    discipline: str | None = Field(default=None, max_length=255)
    assigned_to: uuid.UUID | None = Field(
        default=None, validation_alias=AliasChoices("assignedTo", "assigned_to")
    )
    due_date: date | None = Field(
        default=None, validation_alias=AliasChoices("dueDate", "due_date")
    )
    status: Any = None

    @field_validator("title", "description", "urgency")
    @classmethod
    def not_null(cls, v: str | None) -> str:
        # Only runs for values actually sent; omitted fields keep their default
        if v is None:
            raise ValueError("This field cannot be empty")
        v = v.strip()
        if not v:
            raise ValueError("This field cannot be empty")
        return v

    @model_validator(mode="after")
    def check_fields(self) -> "RFIUpdate":
        if self.status is not None:
            raise ValueError("Use the status endpoint to change an RFI's status")
        if not self.changes():
            raise ValueError("No fields to update")
        return self

    def changes(self) -> dict[str, Any]:
        changes = self.model_dump(exclude_unset=True, exclude={"status"})
        if changes.get("due_date") is not None:
            changes["due_date"] = changes["due_date"].isoformat()
        return changes


class StatusChange(BaseModel):
    status: str = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=2000)


class ResponseCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(min_length=1, max_length=5000)
    attachment_ids: list[uuid.UUID] = Field(
        default_factory=list, validation_alias=AliasChoices("attachmentIds", "attachment_ids")
    )

    @field_validator("content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Response content is required")
        return v


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    logo_url: str | None = Field(default=None, max_length=1024)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class AcceptInvitationRequest(BaseModel):
    password: str


class PdfPackageRequest(BaseModel):
    rfi_ids: list[uuid.UUID] = Field(
        min_length=1, validation_alias=AliasChoices("rfiIds", "rfi_ids")
    )


class ProjectUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str | None = Field(
        default=None,
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("name", "project_name"),
    )
    contract_number: str | None = Field(
        default=None,
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("contractNumber", "contract_number"),
    )
    contractor_job_number: str | None = Field(
        default=None,
        max_length=100,
        validation_alias=AliasChoices("contractorJobNumber", "contractor_job_number"),
    )
    client_company: str | None = Field(
        default=None,
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("clientCompany", "client_company"),
    )
    client_contact_name: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("clientContactName", "client_contact_name"),
    )
    pm_email: EmailStr | None = Field(
        default=None, validation_alias=AliasChoices("pmEmail", "pm_email")
    )
    recipients: list[EmailStr] | None = None
    disciplines: list[str] | None = None
    default_urgency: Urgency | None = Field(
        default=None, validation_alias=AliasChoices("defaultUrgency", "default_urgency")
    )
    location: str | None = Field(default=None, max_length=500)
    description: str | None = Field(default=None, max_length=2000)

    @field_validator(
        "name",
        "contract_number",
        "client_company",
        "pm_email",
        "recipients",
        "disciplines",
        "default_urgency",
    )
    @classmethod
    def required_columns_not_null(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("This field cannot be empty")
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def has_changes(self) -> "ProjectUpdate":
        if not self.changes():
            raise ValueError("No fields to update")
        return self

    def changes(self) -> dict[str, Any]:
        changes = self.model_dump(exclude_unset=True)
        if changes.get("pm_email"):
            changes["pm_email"] = str(changes["pm_email"]).lower()
        if changes.get("recipients"):
            changes["recipients"] = [str(r).lower() for r in changes["recipients"]]
        return changes


class InviteUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    email: EmailStr
    full_name: str = Field(
        min_length=1, max_length=255, validation_alias=AliasChoices("fullName", "full_name")
    )
    company_id: Any = Field(validation_alias=AliasChoices("companyId", "company_id"))
    role_id: Any = Field(validation_alias=AliasChoices("roleId", "role_id"))
    invited_by: str | None = Field(
        default=None, validation_alias=AliasChoices("invitedBy", "invited_by")
    )


class SecureLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    expiration_days: int | None = Field(
        default=None,
        ge=1,
        le=365,
        validation_alias=AliasChoices("expirationDays", "expiration_days"),
    )
    allow_multiple_responses: bool = Field(
        default=False,
        validation_alias=AliasChoices("allowMultipleResponses", "allow_multiple_responses"),
    )


class ClientResponseCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    content: str = Field(
        min_length=1,
        max_length=5000,
        validation_alias=AliasChoices("client_response", "response", "content"),
    )
    submitted_by: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices(
            "client_response_submitted_by", "responder_name", "submittedBy"
        ),
    )
    response_status: Literal["approved", "rejected", "needs_clarification"] = Field(
        default="needs_clarification",
        validation_alias=AliasChoices("response_status", "responseStatus"),
    )
    additional_comments: str | None = Field(
        default=None,
        max_length=5000,
        validation_alias=AliasChoices("additional_comments", "additionalComments"),
    )

    @field_validator("content", "submitted_by")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("This field is required")
        return v


class TimesheetEntryCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    timesheet_number: str = Field(
        min_length=1,
        max_length=50,
        validation_alias=AliasChoices("timesheetNumber", "timesheet_number"),
    )
    labor_hours: float = Field(
        default=0, ge=0, validation_alias=AliasChoices("laborHours", "labor_hours")
    )
    labor_cost: float = Field(
        default=0, ge=0, validation_alias=AliasChoices("laborCost", "labor_cost")
    )
    material_cost: float = Field(
        default=0, ge=0, validation_alias=AliasChoices("materialCost", "material_cost")
    )
    subcontractor_cost: float = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("subcontractorCost", "subcontractor_cost"),
    )
    equipment_cost: float = Field(
        default=0, ge=0, validation_alias=AliasChoices("equipmentCost", "equipment_cost")
    )
    description: str | None = Field(default=None, max_length=2000)
    entry_date: date | None = Field(
        default=None, validation_alias=AliasChoices("entryDate", "entry_date")
    )

    @field_validator("timesheet_number")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Timesheet number is required")
        return v

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump()
        row["entry_date"] = (self.entry_date or date.today()).isoformat()
        return row
