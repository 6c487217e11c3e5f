import os
import sys
import unittest
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite://")

TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)


from api.app.access import (  # noqa: E402
    MUTATING_CAPABILITIES,
    ROLE_CAPABILITIES,
    AccessDecision,
    Capability,
    capabilities_for,
    check_access,
    has_permission,
    parse_role,
)
from api.app.models import UserRole  # noqa: E402
from api.app.session_context import RoleState, SessionContext, require_capability  # noqa: E402
from api.app.errors import AuthenticationRequired, PermissionDenied  # noqa: E402


class TestHasPermission(unittest.TestCase):
    def test_is_deterministic_for_every_role_and_capability(self):
        for role in UserRole:
            for capability in Capability:
                first = has_permission(role, capability)
                self.assertEqual(first, has_permission(role, capability))
                self.assertEqual(first, capability in ROLE_CAPABILITIES[role])

    def test_view_only_never_mutates(self):
        for capability in MUTATING_CAPABILITIES:
            self.assertFalse(has_permission(UserRole.VIEW_ONLY, capability), capability)
        self.assertTrue(has_permission(UserRole.VIEW_ONLY, Capability.VIEW_RFIS))

    def test_unknown_or_missing_role_is_denied(self):
        self.assertFalse(has_permission(None, Capability.VIEW_RFIS))
        self.assertFalse(has_permission("site_foreman", Capability.VIEW_RFIS))

    def test_string_forms_are_accepted(self):
        self.assertTrue(has_permission("rfi_user", "update_rfi_status"))
        self.assertFalse(has_permission("client_collaborator", "update_rfi_status"))
        self.assertTrue(has_permission("client_collaborator", "respond_to_rfi"))

    def test_app_owner_holds_everything(self):
        self.assertEqual(set(capabilities_for(UserRole.APP_OWNER)), {c.value for c in Capability})

    def test_only_super_admin_and_owner_invite(self):
        inviters = {r for r in UserRole if has_permission(r, Capability.INVITE_USER)}
        self.assertEqual(inviters, {UserRole.APP_OWNER, UserRole.SUPER_ADMIN})


class TestParseRole(unittest.TestCase):
    def test_numeric_ids(self):
        self.assertEqual(parse_role(0), UserRole.APP_OWNER)
        self.assertEqual(parse_role("4"), UserRole.VIEW_ONLY)
        self.assertEqual(parse_role(6), UserRole.PROJECT_MANAGER)

    def test_names_and_garbage(self):
        self.assertEqual(parse_role("super_admin"), UserRole.SUPER_ADMIN)
        self.assertIsNone(parse_role("nobody"))
        self.assertIsNone(parse_role(99))
        self.assertIsNone(parse_role(True))


class TestCheckAccess(unittest.TestCase):
    def test_pending_role_is_reported_as_pending(self):
        decision = check_access(RoleState.loading(), Capability.VIEW_RFIS)
        self.assertIs(decision, AccessDecision.PENDING)
        self.assertFalse(decision.allowed)

    def test_neither_capability_nor_roles_is_denied(self):
        decision = check_access(RoleState.resolved(UserRole.APP_OWNER))
        self.assertIs(decision, AccessDecision.DENIED)

    def test_allowed_roles_uses_the_same_lookup(self):
        state = RoleState.resolved(UserRole.RFI_USER)
        self.assertIs(
            check_access(state, allowed_roles=["rfi_user", UserRole.ADMIN]),
            AccessDecision.ALLOWED,
        )
        self.assertIs(check_access(state, allowed_roles=["admin"]), AccessDecision.DENIED)
        self.assertIs(
            check_access(state, Capability.DELETE_RFI, allowed_roles=["rfi_user"]),
            AccessDecision.DENIED,
        )


class TestSessionContext(unittest.TestCase):
    def _ctx(self, role):
        return SessionContext().start(user_id=uuid.uuid4(), email="pm@example.com", role=role)

    def test_anonymous_requires_authentication(self):
        with self.assertRaises(AuthenticationRequired):
            SessionContext().require(Capability.VIEW_RFIS)

    def test_pending_role_denies_with_pending_flag(self):
        ctx = SessionContext()
        ctx.begin_resolution()
        with self.assertRaises(PermissionDenied) as caught:
            ctx.require(Capability.VIEW_RFIS)
        self.assertTrue(caught.exception.pending)

    def test_clear_resets_to_anonymous(self):
        ctx = self._ctx(UserRole.ADMIN)
        self.assertTrue(ctx.authenticated)
        ctx.clear()
        self.assertFalse(ctx.authenticated)
        self.assertIsNone(ctx.role)

    def test_role_preview_only_for_app_owner(self):
        owner = self._ctx(UserRole.APP_OWNER)
        owner.apply_role_preview("view_only")
        self.assertEqual(owner.role, UserRole.VIEW_ONLY)
        with self.assertRaises(PermissionDenied):
            owner.require(Capability.CREATE_RFI)

        admin = self._ctx(UserRole.ADMIN)
        admin.apply_role_preview("app_owner")
        self.assertEqual(admin.role, UserRole.ADMIN)

    def test_role_preview_follows_preview_capability(self):
        for role in UserRole:
            ctx = self._ctx(role)
            ctx.apply_role_preview("view_only")
            allowed = has_permission(role, Capability.PREVIEW_ROLES)
            self.assertEqual(ctx.role, UserRole.VIEW_ONLY if allowed else role, role)

    def test_capability_dependency(self):
        guard = require_capability(Capability.ACCESS_ADMIN)
        admin = self._ctx(UserRole.ADMIN)
        self.assertIs(guard(admin), admin)
        with self.assertRaises(PermissionDenied):
            guard(self._ctx(UserRole.RFI_USER))
        with self.assertRaises(AuthenticationRequired):
            guard(SessionContext())


if __name__ == "__main__":
    unittest.main()
