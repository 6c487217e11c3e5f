"""
Access control: one role -> capabilities table and one lookup.

``has_permission`` is the pure decision function.  ``check_access`` wraps it
for callers holding a ``RoleState`` (which may still be loading) and for the
legacy "allowed roles" style of check, so both styles go through the same
table.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from .models import UserRole


class Capability(str, Enum):
    VIEW_RFIS = "view_rfis"
    VIEW_PROJECTS = "view_projects"
    VIEW_REPORTS = "view_reports"
    CREATE_RFI = "create_rfi"
    EDIT_RFI = "edit_rfi"
    UPDATE_RFI_STATUS = "update_rfi_status"
    RESPOND_TO_RFI = "respond_to_rfi"
    DELETE_RFI = "delete_rfi"
    PRINT_RFI = "print_rfi"
    PRINT_PACKAGE = "print_package"
    CREATE_PROJECT = "create_project"
    EDIT_PROJECT = "edit_project"
    EXPORT_DATA = "export_data"
    ACCESS_ADMIN = "access_admin"
    INVITE_USER = "invite_user"
    VIEW_USERS = "view_users"
    CREATE_COMPANY = "create_company"
    PREVIEW_ROLES = "preview_roles"


class AccessDecision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    # Role not resolved yet: treated as denied, reported separately
    PENDING = "pending"

    @property
    def allowed(self) -> bool:
        return self is AccessDecision.ALLOWED


_READ = frozenset(
    {Capability.VIEW_RFIS, Capability.VIEW_PROJECTS, Capability.VIEW_REPORTS}
)
_RFI_WORK = frozenset(
    {
        Capability.CREATE_RFI,
        Capability.EDIT_RFI,
        Capability.UPDATE_RFI_STATUS,
        Capability.RESPOND_TO_RFI,
        Capability.PRINT_RFI,
        Capability.PRINT_PACKAGE,
    }
)
_PROJECT_ADMIN = frozenset(
    {
        Capability.CREATE_PROJECT,
        Capability.EDIT_PROJECT,
        Capability.DELETE_RFI,
        Capability.EXPORT_DATA,
        Capability.ACCESS_ADMIN,
    }
)

ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.APP_OWNER: frozenset(Capability),
    UserRole.SUPER_ADMIN: _READ
    | _RFI_WORK
    | _PROJECT_ADMIN
    | {Capability.INVITE_USER, Capability.VIEW_USERS, Capability.CREATE_COMPANY},
    UserRole.ADMIN: _READ | _RFI_WORK | _PROJECT_ADMIN | {Capability.CREATE_COMPANY},
    UserRole.PROJECT_MANAGER: _READ
    | _RFI_WORK
    | {Capability.CREATE_PROJECT, Capability.EDIT_PROJECT, Capability.EXPORT_DATA},
    UserRole.RFI_USER: _READ | _RFI_WORK,
    UserRole.CLIENT_COLLABORATOR: _READ | {Capability.RESPOND_TO_RFI},
    UserRole.VIEW_ONLY: _READ,
}

MUTATING_CAPABILITIES = frozenset(Capability) - _READ

# Numeric role ids used by invitation payloads
ROLE_IDS: dict[int, UserRole] = {
    0: UserRole.APP_OWNER,
    1: UserRole.SUPER_ADMIN,
    2: UserRole.ADMIN,
    3: UserRole.RFI_USER,
    4: UserRole.VIEW_ONLY,
    5: UserRole.CLIENT_COLLABORATOR,
    6: UserRole.PROJECT_MANAGER,
}


def parse_role(value: object) -> UserRole | None:
    """Accept a role name (any case) or a numeric role id."""
    if isinstance(value, UserRole):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return ROLE_IDS.get(value)
    if isinstance(value, str):
        raw = value.strip()
        if raw.isdigit():
            return ROLE_IDS.get(int(raw))
        try:
            return UserRole(raw.lower())
        except ValueError:
            return None
    return None


def has_permission(role: UserRole | str | None, capability: Capability | str) -> bool:
    if role is None:
        return False
    resolved = parse_role(role)
    if resolved is None:
        return False
    try:
        cap = Capability(capability)
    except ValueError:
        return False
    return cap in ROLE_CAPABILITIES.get(resolved, frozenset())


def capabilities_for(role: UserRole | None) -> list[str]:
    if role is None:
        return []
    return sorted(c.value for c in ROLE_CAPABILITIES.get(role, frozenset()))


def check_access(
    role_state,
    capability: Capability | str | None = None,
    allowed_roles: Iterable[UserRole | str] | None = None,
) -> AccessDecision:
    """Decide for a ``RoleState``; pending state never yields ALLOWED."""
    if role_state.pending:
        return AccessDecision.PENDING
    if capability is None and allowed_roles is None:
        return AccessDecision.DENIED

    role = role_state.role
    if role is None:
        return AccessDecision.DENIED

    if capability is not None and not has_permission(role, capability):
        return AccessDecision.DENIED
    if allowed_roles is not None:
        allowed = {parse_role(r) for r in allowed_roles}
        if role not in allowed:
            return AccessDecision.DENIED
    return AccessDecision.ALLOWED
