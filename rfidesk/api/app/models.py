from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    String,
    DateTime,
    Text,
    JSON,
    Enum,
    Integer,
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Uuid,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from enum import Enum as PyEnum
from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, PyEnum):
    """
    Role hierarchy (highest to lowest):
    - APP_OWNER: platform owner, sees every company
    - SUPER_ADMIN: first user of a company, manages its users
    - ADMIN: manages own projects
    - PROJECT_MANAGER: runs projects and the RFI workflow
    - RFI_USER: raises and progresses RFIs
    - CLIENT_COLLABORATOR: client side, responds to RFIs
    - VIEW_ONLY: read access only
    """

    APP_OWNER = "app_owner"
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    PROJECT_MANAGER = "project_manager"
    RFI_USER = "rfi_user"
    CLIENT_COLLABORATOR = "client_collaborator"
    VIEW_ONLY = "view_only"


class UserStatus(str, PyEnum):
    INVITED = "invited"
    ACTIVE = "active"
    DISABLED = "disabled"


class RFIStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class Company(Base):
    __tablename__ = "companies"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    logo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class User(Base):
    __tablename__ = "users"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Invited users have no password until they accept
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.VIEW_ONLY,
    )
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserStatus.INVITED,
    )
    company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("companies.id"), nullable=True
    )
    invited_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    company: Mapped[Company | None] = relationship("Company")


class UserInvitation(Base):
    __tablename__ = "user_invitations"
    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("companies.id"), nullable=True
    )
    invited_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    accepted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class Project(Base):
    __tablename__ = "projects"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contract_number: Mapped[str] = mapped_column(String(100), nullable=False)
    contractor_job_number: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    client_company: Mapped[str] = mapped_column(String(255), nullable=False)
    client_contact_name: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    pm_email: Mapped[str] = mapped_column(String(255), nullable=False)
    recipients: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    disciplines: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    default_urgency: Mapped[str] = mapped_column(
        String(20), nullable=False, default="non-urgent"
    )
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    project_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    contract_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    expected_completion: Mapped[str | None] = mapped_column(String(10), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("companies.id"), nullable=True
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    rfis: Mapped[list[RFI]] = relationship("RFI", back_populates="project")


class RFI(Base):
    __tablename__ = "rfis"
    __table_args__ = (
        Index("ix_rfis_project_number", "project_id", "rfi_number", unique=True),
    )
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rfi_number: Mapped[str] = mapped_column(String(20), nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[RFIStatus] = mapped_column(
        Enum(RFIStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RFIStatus.OPEN,
    )
    urgency: Mapped[str] = mapped_column(
        String(20), nullable=False, default="non-urgent"
    )
    discipline: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    due_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Client secure link; cleared when revoked
    secure_link_token: Mapped[str | None] = mapped_column(
        String(96), unique=True, nullable=True, index=True
    )
    link_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    allow_multiple_responses: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    project: Mapped[Project] = relationship("Project", back_populates="rfis")
    responses: Mapped[list[RFIResponse]] = relationship(
        "RFIResponse",
        back_populates="rfi",
        cascade="all, delete-orphan",
        order_by="RFIResponse.created_at",
    )


class RFIResponse(Base):
    __tablename__ = "rfi_responses"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rfi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rfis.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # Null for responses submitted through a client secure link
    author_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="internal")
    submitted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    response_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    additional_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_ids: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    rfi: Mapped[RFI] = relationship("RFI", back_populates="responses")


class Attachment(Base):
    __tablename__ = "attachments"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rfi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rfis.id", ondelete="CASCADE"), nullable=False, index=True
    )
    response_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    file_path: Mapped[str] = mapped_column(String(2048), nullable=False)
    file_size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    uploaded_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class RFIStatusLog(Base):
    __tablename__ = "rfi_status_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rfi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rfis.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status: Mapped[str] = mapped_column(String(20), nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class RFITimesheetEntry(Base):
    __tablename__ = "rfi_timesheet_entries"
    __table_args__ = (
        Index("ix_timesheet_rfi_number", "rfi_id", "timesheet_number", unique=True),
    )
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rfi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rfis.id", ondelete="CASCADE"), nullable=False, index=True
    )
    timesheet_number: Mapped[str] = mapped_column(String(50), nullable=False)
    labor_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    labor_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    material_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    subcontractor_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    equipment_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entry_date: Mapped[str] = mapped_column(String(10), nullable=False)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
