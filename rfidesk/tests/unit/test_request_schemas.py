import os
import sys
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite://")

TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)


from api.app.errors import NoOpTransition, PermissionDenied, ValidationError  # noqa: E402
from api.app.schemas import (  # noqa: E402
    ClientResponseCreate,
    InviteUserRequest,
    ProjectCreate,
    ProjectUpdate,
    RFICreate,
    RFIUpdate,
    Result,
    SecureLinkRequest,
    TimesheetEntryCreate,
    parse_model,
)


class TestProjectCreate(unittest.TestCase):
    def test_accepts_camel_case_form_fields(self):
        project = parse_model(
            ProjectCreate,
            {
                "name": "Test Project",
                "contractNumber": "CN-001",
                "clientCompany": "Test Company",
                "pmEmail": "Test@Example.com",
                "recipients": ["recipient@test.com"],
            },
        )
        row = project.to_row()
        self.assertEqual(row["contract_number"], "CN-001")
        self.assertEqual(row["pm_email"], "test@example.com")
        self.assertEqual(row["recipients"], ["recipient@test.com"])
        self.assertEqual(row["default_urgency"], "non-urgent")

    def test_missing_fields_are_reported_per_field(self):
        with self.assertRaises(ValidationError) as caught:
            parse_model(ProjectCreate, {"name": "  "})
        err = caught.exception
        self.assertEqual(err.message, "Invalid input data")
        fields = {d["field"] for d in err.details}
        self.assertTrue({"name", "contractNumber", "clientCompany", "pmEmail"} <= fields, fields)

    def test_bad_recipient_email(self):
        with self.assertRaises(ValidationError) as caught:
            parse_model(
                ProjectCreate,
                {
                    "name": "P",
                    "contractNumber": "C",
                    "clientCompany": "Co",
                    "pmEmail": "pm@example.com",
                    "recipients": ["not-an-email"],
                },
            )
        self.assertTrue(any(d["field"].startswith("recipients") for d in caught.exception.details))

    def test_completion_before_start_is_rejected(self):
        with self.assertRaises(ValidationError):
            parse_model(
                ProjectCreate,
                {
                    "name": "P",
                    "contractNumber": "C",
                    "clientCompany": "Co",
                    "pmEmail": "pm@example.com",
                    "startDate": "2025-06-01",
                    "expectedCompletion": "2025-01-01",
                },
            )


class TestRFIModels(unittest.TestCase):
    def test_new_rfi_cannot_start_closed(self):
        with self.assertRaises(ValidationError):
            parse_model(
                RFICreate,
                {
                    "projectId": "8d9c1f8e-9c5b-4c0a-9a52-8f5c0f1e2d3a",
                    "title": "Beam size",
                    "description": "Confirm",
                    "status": "closed",
                },
            )

    def test_update_refuses_status_and_empty_bodies(self):
        with self.assertRaises(ValidationError):
            parse_model(RFIUpdate, {"status": "closed"})
        with self.assertRaises(ValidationError):
            parse_model(RFIUpdate, {})

    def test_update_changes_only_sent_fields(self):
        update = parse_model(RFIUpdate, {"title": "New title", "dueDate": "2025-05-01"})
        self.assertEqual(update.changes(), {"title": "New title", "due_date": "2025-05-01"})

    def test_update_rejects_null_for_required_columns(self):
        for field in ("title", "description", "urgency"):
            with self.assertRaises(ValidationError) as caught:
                parse_model(RFIUpdate, {field: None})
            self.assertEqual(caught.exception.details[0]["field"], field)

    def test_update_still_clears_optional_columns(self):
        update = parse_model(RFIUpdate, {"discipline": None})
        self.assertEqual(update.changes(), {"discipline": None})


class TestResult(unittest.TestCase):
    def test_failure_carries_kind_and_status(self):
        result = Result.fail(NoOpTransition("RFI is already open"))
        self.assertFalse(result.success)
        self.assertEqual(result.kind, "no_op")
        self.assertEqual(result.status_code, 409)
        self.assertEqual(
            result.payload(), {"success": False, "error": "RFI is already open", "kind": "no_op"}
        )

    def test_pending_permission_flag_survives(self):
        result = Result.fail(PermissionDenied("loading", pending=True))
        self.assertEqual(result.status_code, 403)
        self.assertTrue(result.payload()["pending"])

    def test_success_payload(self):
        self.assertEqual(Result.ok({"id": "x"}).payload(), {"success": True, "data": {"id": "x"}})


class TestProjectUpdate(unittest.TestCase):
    def test_only_sent_fields_change(self):
        update = parse_model(ProjectUpdate, {"name": " Pier 4 ", "pmEmail": "PM@Example.com"})
        self.assertEqual(update.changes(), {"name": "Pier 4", "pm_email": "pm@example.com"})

    def test_required_columns_cannot_be_nulled(self):
        with self.assertRaises(ValidationError) as caught:
            parse_model(ProjectUpdate, {"clientCompany": None})
        self.assertEqual(caught.exception.details[0]["field"], "clientCompany")

    def test_empty_body_is_rejected(self):
        with self.assertRaises(ValidationError):
            parse_model(ProjectUpdate, {})


class TestInviteUserRequest(unittest.TestCase):
    def test_camel_case_body(self):
        invite = InviteUserRequest.model_validate(
            {"email": "new@example.com", "fullName": "New User", "companyId": "c1", "roleId": 0}
        )
        self.assertEqual(invite.full_name, "New User")
        self.assertEqual(invite.role_id, 0)

    def test_bad_email(self):
        with self.assertRaises(ValidationError):
            parse_model(
                InviteUserRequest,
                {"email": "not-an-email", "fullName": "X", "companyId": "c1", "roleId": 3},
            )


class TestClientFacingModels(unittest.TestCase):
    def test_link_expiry_is_bounded(self):
        self.assertIsNone(parse_model(SecureLinkRequest, {}).expiration_days)
        with self.assertRaises(ValidationError):
            parse_model(SecureLinkRequest, {"expirationDays": 0})
        with self.assertRaises(ValidationError):
            parse_model(SecureLinkRequest, {"expirationDays": 400})

    def test_client_response_field_names(self):
        response = parse_model(
            ClientResponseCreate,
            {"client_response": " Use grade S355 ", "responder_name": "Dana Client"},
        )
        self.assertEqual(response.content, "Use grade S355")
        self.assertEqual(response.submitted_by, "Dana Client")
        self.assertEqual(response.response_status, "needs_clarification")

    def test_client_response_needs_a_name(self):
        with self.assertRaises(ValidationError):
            parse_model(ClientResponseCreate, {"response": "Fine", "responder_name": "   "})

    def test_timesheet_entry_defaults(self):
        entry = parse_model(TimesheetEntryCreate, {"timesheetNumber": " TS-01 ", "laborHours": 4})
        row = entry.to_row()
        self.assertEqual(row["timesheet_number"], "TS-01")
        self.assertEqual(row["labor_hours"], 4)
        self.assertEqual(row["material_cost"], 0)
        self.assertEqual(len(row["entry_date"]), 10)

    def test_timesheet_costs_cannot_be_negative(self):
        with self.assertRaises(ValidationError):
            parse_model(TimesheetEntryCreate, {"timesheetNumber": "TS-01", "laborCost": -5})


if __name__ == "__main__":
    unittest.main()
