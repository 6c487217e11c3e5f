"""Gateway behaviour against an in-memory row store that records every call."""

import itertools
import os
import sys
import unittest
import uuid
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")

TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)


from api.app.backend import (  # noqa: E402
    FAULT_CONSTRAINT,
    FAULT_NETWORK,
    AuthService,
    BackendFault,
    BackendResponse,
)
from api.app.errors import (  # noqa: E402
    GENERIC_BACKEND_MESSAGE,
    ConflictError,
    NETWORK_MESSAGE,
    NoOpTransition,
    NotFoundError,
    PermissionDenied,
    TransitionError,
    ValidationError,
)
from api.app.export import rfis_to_csv  # noqa: E402
from api.app.gateway import RFIGateway, next_rfi_number  # noqa: E402
from api.app.models import RFIStatus, UserRole  # noqa: E402
from api.app.secure_links import ClientPortal  # noqa: E402
from api.app.session_context import SessionContext  # noqa: E402


class RecordingStore:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self._ids = itertools.count(1)

    def _matches(self, row, filters):
        for key, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                if row.get(key) not in value:
                    return False
            elif row.get(key) != value:
                return False
        return True

    def select(self, table, filters=None, *, order_by=None, descending=False, limit=None, offset=None):
        self.calls.append(("select", table, dict(filters or {})))
        rows = [dict(r) for r in self.tables.get(table, []) if self._matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by), reverse=descending)
        rows = rows[offset or 0:]
        if limit is not None:
            rows = rows[:limit]
        return BackendResponse(data=rows)

    def count(self, table, filters=None):
        self.calls.append(("count", table, dict(filters or {})))
        return BackendResponse(
            data=len([r for r in self.tables.get(table, []) if self._matches(r, filters)])
        )

    def insert(self, table, payload):
        self.calls.append(("insert", table, dict(payload)))
        row = dict(payload)
        if table == "rfi_status_logs":
            row.setdefault("id", next(self._ids))
        else:
            row.setdefault("id", uuid.uuid4())
        row.setdefault("created_at", datetime.now(timezone.utc))
        self.tables.setdefault(table, []).append(row)
        return BackendResponse(data=dict(row))

    def update(self, table, filters, payload):
        self.calls.append(("update", table, dict(filters), dict(payload)))
        updated = []
        for row in self.tables.get(table, []):
            if self._matches(row, filters):
                row.update(payload)
                updated.append(dict(row))
        return BackendResponse(data=updated)

    def delete(self, table, filters):
        self.calls.append(("delete", table, dict(filters)))
        rows = self.tables.get(table, [])
        keep = [r for r in rows if not self._matches(r, filters)]
        self.tables[table] = keep
        return BackendResponse(data=len(rows) - len(keep))

    def writes(self, table=None):
        return [
            c for c in self.calls
            if c[0] in ("insert", "update", "delete") and (table is None or c[1] == table)
        ]


class GatewayTestCase(unittest.TestCase):
    def setUp(self):
        self.store = RecordingStore()
        self.company_id = uuid.uuid4()
        self.project = self.store.insert(
            "projects",
            {"name": "Harbour Wall", "company_id": self.company_id},
        ).data
        self.store.calls.clear()

    def gateway(self, role=UserRole.RFI_USER, company_id=None):
        ctx = SessionContext().start(
            user_id=uuid.uuid4(),
            email="worker@example.com",
            role=role,
            company_id=company_id or self.company_id,
        )
        return RFIGateway(self.store, ctx)

    def seed_rfi(self, status=RFIStatus.OPEN, number="RFI-001"):
        earlier = datetime.now(timezone.utc) - timedelta(hours=1)
        row = self.store.insert(
            "rfis",
            {
                "rfi_number": number,
                "project_id": self.project["id"],
                "title": "Beam size",
                "description": "Confirm beam size at gridline C",
                "status": status,
                "urgency": "non-urgent",
                "created_by": uuid.uuid4(),
                "created_at": earlier,
                "updated_at": earlier,
            },
        ).data
        self.store.calls.clear()
        return row


class TestCreateAndFetch(GatewayTestCase):
    def test_round_trip_keeps_status_title_description(self):
        gw = self.gateway()
        created = gw.create_rfi(
            {
                "projectId": str(self.project["id"]),
                "title": "Beam size",
                "description": "Confirm beam size at gridline C",
            }
        )
        fetched = gw.get_rfi(str(created["id"]))
        self.assertEqual(fetched["status"], RFIStatus.OPEN)
        self.assertEqual(fetched["title"], "Beam size")
        self.assertEqual(fetched["description"], "Confirm beam size at gridline C")
        self.assertEqual(fetched["project_name"], "Harbour Wall")
        self.assertEqual(fetched["responses"], [])

    def test_rfi_numbers_are_sequential_per_project(self):
        gw = self.gateway()
        payload = {"projectId": str(self.project["id"]), "title": "T", "description": "D"}
        first = gw.create_rfi(payload)
        second = gw.create_rfi(payload)
        self.assertEqual((first["rfi_number"], second["rfi_number"]), ("RFI-001", "RFI-002"))

    def test_next_number_skips_gaps(self):
        self.assertEqual(next_rfi_number(["RFI-001", "RFI-007", "junk"]), "RFI-008")
        self.assertEqual(next_rfi_number([]), "RFI-001")

    def test_view_only_cannot_create(self):
        gw = self.gateway(UserRole.VIEW_ONLY)
        with self.assertRaises(PermissionDenied):
            gw.create_rfi({"projectId": str(self.project["id"]), "title": "T", "description": "D"})
        self.assertEqual(self.store.writes(), [])

    def test_other_company_project_is_not_found(self):
        gw = self.gateway(company_id=uuid.uuid4())
        with self.assertRaises(NotFoundError):
            gw.get_project(str(self.project["id"]))

    def test_bad_id_is_validation_error(self):
        with self.assertRaises(ValidationError):
            self.gateway().get_rfi("not-a-uuid")


class TestStatusChange(GatewayTestCase):
    def test_closed_to_open_issues_no_update(self):
        rfi = self.seed_rfi(RFIStatus.CLOSED)
        gw = self.gateway(UserRole.ADMIN)
        result = gw.run(gw.change_status, str(rfi["id"]), {"status": "open"})
        self.assertFalse(result.success)
        self.assertEqual(result.kind, "transition")
        self.assertEqual(self.store.writes(), [])
        self.assertEqual(self.store.tables["rfis"][0]["status"], RFIStatus.CLOSED)

    def test_same_status_is_no_op(self):
        rfi = self.seed_rfi(RFIStatus.IN_PROGRESS)
        with self.assertRaises(NoOpTransition):
            self.gateway().change_status(str(rfi["id"]), {"status": "in_progress"})
        self.assertEqual(self.store.writes(), [])

    def test_view_only_is_denied_before_any_write(self):
        rfi = self.seed_rfi()
        with self.assertRaises(PermissionDenied):
            self.gateway(UserRole.VIEW_ONLY).change_status(str(rfi["id"]), {"status": "closed"})
        self.assertEqual(self.store.writes(), [])

    def test_update_is_conditioned_on_current_status_and_logged(self):
        rfi = self.seed_rfi()
        updated = self.gateway().change_status(
            str(rfi["id"]), {"status": "in_progress", "reason": "Started"}
        )
        self.assertEqual(updated["status"], RFIStatus.IN_PROGRESS)
        self.assertGreater(updated["updated_at"], rfi["updated_at"])

        update = self.store.writes("rfis")[0]
        self.assertEqual(update[2], {"id": rfi["id"], "status": RFIStatus.OPEN})
        self.assertEqual(set(update[3]), {"status", "updated_at"})

        log = self.store.tables["rfi_status_logs"][0]
        self.assertEqual((log["from_status"], log["to_status"]), ("open", "in_progress"))
        self.assertEqual(log["reason"], "Started")

    def test_closing_records_closed_at(self):
        rfi = self.seed_rfi(RFIStatus.IN_PROGRESS)
        updated = self.gateway().change_status(str(rfi["id"]), {"status": "closed"})
        self.assertIsNotNone(updated["closed_at"])

    def test_lost_race_is_transition_error(self):
        rfi = self.seed_rfi()
        store = self.store
        original_update = store.update

        def racing_update(table, filters, payload):
            if table == "rfis":
                # Someone else closed it between our read and our write
                store.tables["rfis"][0]["status"] = RFIStatus.CLOSED
            return original_update(table, filters, payload)

        store.update = racing_update
        with self.assertRaises(TransitionError):
            self.gateway().change_status(str(rfi["id"]), {"status": "in_progress"})
        self.assertEqual(store.tables["rfis"][0]["status"], RFIStatus.CLOSED)
        self.assertNotIn("rfi_status_logs", store.tables)

    def test_status_log_failure_does_not_fail_the_change(self):
        rfi = self.seed_rfi()
        original_insert = self.store.insert

        def failing_insert(table, payload):
            if table == "rfi_status_logs":
                return BackendResponse(error=BackendFault("disk full"))
            return original_insert(table, payload)

        self.store.insert = failing_insert
        with self.assertLogs("api.app.gateway", level="WARNING"):
            updated = self.gateway().change_status(str(rfi["id"]), {"status": "closed"})
        self.assertEqual(updated["status"], RFIStatus.CLOSED)


class TestClosedRFIs(GatewayTestCase):
    def test_closed_rfi_rejects_responses(self):
        rfi = self.seed_rfi(RFIStatus.CLOSED)
        with self.assertRaises(TransitionError):
            self.gateway().add_response(str(rfi["id"]), {"content": "Answer"})
        self.assertEqual(self.store.writes(), [])

    def test_closed_rfi_rejects_edits(self):
        rfi = self.seed_rfi(RFIStatus.CLOSED)
        with self.assertRaises(TransitionError):
            self.gateway().update_rfi(str(rfi["id"]), {"title": "Changed"})

    def test_response_on_open_rfi_bumps_updated_at(self):
        rfi = self.seed_rfi()
        response = self.gateway(UserRole.CLIENT_COLLABORATOR).add_response(
            str(rfi["id"]), {"content": "  Use 406x178 UB  "}
        )
        self.assertEqual(response["content"], "Use 406x178 UB")
        self.assertGreater(self.store.tables["rfis"][0]["updated_at"], rfi["updated_at"])

    def test_delete_cascades(self):
        rfi = self.seed_rfi()
        gw = self.gateway(UserRole.ADMIN)
        gw.add_response(str(rfi["id"]), {"content": "Noted"})
        gw.delete_rfi(str(rfi["id"]))
        self.assertEqual(self.store.tables["rfis"], [])
        self.assertEqual(self.store.tables["rfi_responses"], [])


class TestListing(GatewayTestCase):
    def test_limit_is_capped(self):
        with self.assertRaises(ValidationError) as caught:
            self.gateway().list_rfis(limit=51)
        self.assertEqual(caught.exception.details[0]["field"], "limit")

    def test_pagination_and_status_filter(self):
        for n in range(1, 4):
            self.seed_rfi(number=f"RFI-00{n}")
        self.seed_rfi(RFIStatus.CLOSED, number="RFI-004")
        page = self.gateway().list_rfis(status="open", page=2, limit=2)
        self.assertEqual(page["total"], 3)
        self.assertEqual(page["total_pages"], 2)
        self.assertEqual(len(page["rfis"]), 1)


class TestFaultNormalization(GatewayTestCase):
    def test_network_fault(self):
        self.store.select = lambda *a, **k: BackendResponse(
            error=BackendFault("connection refused", FAULT_NETWORK)
        )
        gw = self.gateway()
        result = gw.run(gw.list_projects)
        self.assertEqual(result.kind, "network")
        self.assertEqual(result.error, NETWORK_MESSAGE)
        self.assertEqual(result.status_code, 503)

    def test_constraint_fault_message_is_passed_through(self):
        self.store.insert = lambda *a, **k: BackendResponse(
            error=BackendFault("The change conflicts with existing data", FAULT_CONSTRAINT)
        )
        gw = self.gateway(UserRole.ADMIN)
        result = gw.run(gw.create_company, {"name": "Acme"})
        self.assertEqual(result.kind, "backend")
        self.assertEqual(result.error, "The change conflicts with existing data")

    def test_unexpected_exception_becomes_generic_backend_error(self):
        def explode():
            raise RuntimeError("boom")

        with self.assertLogs("api.app.gateway", level="ERROR"):
            result = self.gateway().run(explode)
        self.assertEqual(result.kind, "backend")
        self.assertEqual(result.error, GENERIC_BACKEND_MESSAGE)


class TestProjectEdits(GatewayTestCase):
    def test_manager_renames_project(self):
        gw = self.gateway(UserRole.PROJECT_MANAGER)
        updated = gw.update_project(str(self.project["id"]), {"name": "Harbour Wall North"})
        self.assertEqual(updated["name"], "Harbour Wall North")
        self.assertIn("updated_at", self.store.writes("projects")[0][3])

    def test_rfi_user_cannot_edit_project(self):
        with self.assertRaises(PermissionDenied):
            self.gateway().update_project(str(self.project["id"]), {"name": "Renamed"})
        self.assertEqual(self.store.writes(), [])


class TestSecureLinks(GatewayTestCase):
    client_answer = {"client_response": "Use 406x178 UB", "responder_name": "Dana Client"}

    def test_link_carries_readable_prefix_and_default_expiry(self):
        rfi = self.seed_rfi()
        link = self.gateway().generate_link(str(rfi["id"]), {})
        self.assertTrue(link["token"].startswith("HAR-R001-"))
        self.assertTrue(link["secure_link"].endswith(f"/client/rfi/{link['token']}"))
        remaining = link["expires_at"] - datetime.now(timezone.utc)
        self.assertGreater(remaining, timedelta(days=29))
        self.assertEqual(self.store.tables["rfis"][0]["secure_link_token"], link["token"])

    def test_closed_rfi_cannot_be_shared(self):
        rfi = self.seed_rfi(RFIStatus.CLOSED)
        with self.assertRaises(TransitionError):
            self.gateway().generate_link(str(rfi["id"]), {})
        self.assertEqual(self.store.writes(), [])

    def test_view_only_cannot_share(self):
        rfi = self.seed_rfi()
        with self.assertRaises(PermissionDenied):
            self.gateway(UserRole.VIEW_ONLY).generate_link(str(rfi["id"]), {})

    def test_client_sees_rfi_and_responds_once(self):
        rfi = self.seed_rfi()
        token = self.gateway().generate_link(str(rfi["id"]), {})["token"]
        portal = ClientPortal(self.store)

        view = portal.view(token)
        self.assertEqual(view["project"]["name"], "Harbour Wall")
        self.assertTrue(view["can_respond"])

        submitted = portal.submit(token, self.client_answer)["response"]
        self.assertEqual(submitted["source"], "client")
        self.assertIsNone(submitted["author_id"])
        self.assertEqual(submitted["submitted_by"], "Dana Client")

        self.assertFalse(portal.view(token)["can_respond"])
        with self.assertRaises(ConflictError):
            portal.submit(token, self.client_answer)

    def test_multiple_responses_when_allowed(self):
        rfi = self.seed_rfi()
        token = self.gateway().generate_link(
            str(rfi["id"]), {"allowMultipleResponses": True}
        )["token"]
        portal = ClientPortal(self.store)
        portal.submit(token, self.client_answer)
        portal.submit(token, dict(self.client_answer, client_response="Also check C4"))
        self.assertEqual(len(portal.view(token)["client_responses"]), 2)

    def test_expired_and_revoked_links_are_not_found(self):
        rfi = self.seed_rfi()
        gw = self.gateway()
        token = gw.generate_link(str(rfi["id"]), {})["token"]
        portal = ClientPortal(self.store)

        self.store.tables["rfis"][0]["link_expires_at"] = datetime.now(timezone.utc) - timedelta(
            minutes=1
        )
        with self.assertRaises(NotFoundError):
            portal.view(token)

        gw.revoke_link(str(rfi["id"]))
        self.assertIsNone(self.store.tables["rfis"][0]["secure_link_token"])
        with self.assertRaises(NotFoundError):
            portal.view(token)
        with self.assertRaises(NotFoundError):
            portal.view("")

    def test_closed_after_sharing_refuses_client_answers(self):
        rfi = self.seed_rfi()
        token = self.gateway().generate_link(str(rfi["id"]), {})["token"]
        self.store.tables["rfis"][0]["status"] = RFIStatus.CLOSED
        portal = ClientPortal(self.store)
        self.assertFalse(portal.view(token)["can_respond"])
        with self.assertRaises(TransitionError):
            portal.submit(token, self.client_answer)


class TestTimesheets(GatewayTestCase):
    def test_entries_and_summary(self):
        rfi = self.seed_rfi()
        gw = self.gateway()
        gw.add_timesheet_entry(
            str(rfi["id"]),
            {"timesheetNumber": "TS-01", "laborHours": 6, "laborCost": 300, "entryDate": "2025-03-01"},
        )
        gw.add_timesheet_entry(
            str(rfi["id"]),
            {"timesheetNumber": "TS-02", "materialCost": 120.5, "entryDate": "2025-03-04"},
        )
        sheet = gw.list_timesheet(str(rfi["id"]))
        self.assertEqual([e["timesheet_number"] for e in sheet["entries"]], ["TS-02", "TS-01"])
        self.assertEqual(sheet["summary"]["entry_count"], 2)
        self.assertEqual(sheet["summary"]["total_hours"], 6)
        self.assertEqual(sheet["summary"]["total_cost"], 420.5)

    def test_duplicate_number_conflicts(self):
        rfi = self.seed_rfi()
        gw = self.gateway()
        gw.add_timesheet_entry(str(rfi["id"]), {"timesheetNumber": "TS-01"})
        with self.assertRaises(ConflictError):
            gw.add_timesheet_entry(str(rfi["id"]), {"timesheetNumber": "TS-01"})
        self.assertEqual(len(self.store.tables["rfi_timesheet_entries"]), 1)

    def test_delete_entry(self):
        rfi = self.seed_rfi()
        gw = self.gateway()
        entry = gw.add_timesheet_entry(str(rfi["id"]), {"timesheetNumber": "TS-01"})
        gw.delete_timesheet_entry(str(rfi["id"]), str(entry["id"]))
        self.assertEqual(self.store.tables["rfi_timesheet_entries"], [])
        with self.assertRaises(NotFoundError):
            gw.delete_timesheet_entry(str(rfi["id"]), str(entry["id"]))

    def test_deleting_rfi_removes_its_timesheet(self):
        rfi = self.seed_rfi()
        self.gateway().add_timesheet_entry(str(rfi["id"]), {"timesheetNumber": "TS-01"})
        self.gateway(UserRole.ADMIN).delete_rfi(str(rfi["id"]))
        self.assertEqual(self.store.tables["rfi_timesheet_entries"], [])


class TestRecentActivity(GatewayTestCase):
    def test_merges_creation_moves_and_responses_newest_first(self):
        rfi = self.seed_rfi()
        gw = self.gateway()
        gw.change_status(str(rfi["id"]), {"status": "in_progress"})
        gw.add_response(str(rfi["id"]), {"content": "Checking with the engineer"})

        events = gw.recent_activity()
        self.assertEqual(
            {e["type"] for e in events}, {"rfi_created", "status_changed", "response_added"}
        )
        self.assertEqual(events[-1]["type"], "rfi_created")
        self.assertEqual(events[0]["project_name"], "Harbour Wall")
        self.assertEqual(len(gw.recent_activity(limit=1)), 1)

    def test_other_companies_are_left_out(self):
        other = self.store.insert("projects", {"name": "Elsewhere", "company_id": uuid.uuid4()})
        self.store.insert(
            "rfis",
            {
                "rfi_number": "RFI-001",
                "project_id": other.data["id"],
                "title": "Hidden",
                "status": RFIStatus.OPEN,
                "created_at": datetime.now(timezone.utc),
                "updated_at": datetime.now(timezone.utc),
            },
        )
        self.seed_rfi()
        titles = {e["title"] for e in self.gateway().recent_activity()}
        self.assertEqual(titles, {"Beam size"})

    def test_limit_is_validated(self):
        with self.assertRaises(ValidationError):
            self.gateway().recent_activity(limit=0)


class TestSpreadsheetExport(GatewayTestCase):
    def test_rows_carry_project_attachments_and_latest_response(self):
        rfi = self.seed_rfi()
        gw = self.gateway(UserRole.PROJECT_MANAGER)
        gw.add_attachment(str(rfi["id"]), {"file_name": "S-101.pdf", "file_path": "rfis/S-101.pdf"})
        gw.add_response(str(rfi["id"]), {"content": "Use 406x178 UB"})

        (row,) = gw.export_rfis()
        self.assertEqual(row["project_name"], "Harbour Wall")
        self.assertEqual(row["attachment_count"], 1)
        self.assertEqual(row["response"], "Use 406x178 UB")

        lines = rfis_to_csv([row]).splitlines()
        self.assertTrue(lines[0].startswith("RFI Number,Title,Status"))
        self.assertTrue(lines[1].startswith("RFI-001,Beam size,open"))

    def test_export_needs_export_capability(self):
        self.seed_rfi()
        with self.assertRaises(PermissionDenied):
            self.gateway().export_rfis()


class TestInvitationCleanup(GatewayTestCase):
    def test_user_is_removed_when_invitation_cannot_be_stored(self):
        company = self.store.insert("companies", {"name": "Acme"}).data
        real_insert = self.store.insert

        def insert(table, payload):
            if table == "user_invitations":
                return BackendResponse(
                    error=BackendFault("The database is unavailable", FAULT_NETWORK)
                )
            return real_insert(table, payload)

        self.store.insert = insert
        response = AuthService(self.store).invite_user(
            "new@example.com", "New User", company["id"], UserRole.RFI_USER
        )
        self.assertFalse(response.ok)
        self.assertEqual(self.store.tables["users"], [])
        self.assertIn(("delete", "users"), [c[:2] for c in self.store.writes("users")])


if __name__ == "__main__":
    unittest.main()
