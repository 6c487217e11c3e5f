import asyncio
import os
import sys
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite://")

TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)


from api.app.notifications import NotificationCenter  # noqa: E402


class TestNotificationCenter(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.center = NotificationCenter(default_ttl=0.05)

    async def asyncTearDown(self):
        await self.center.shutdown()

    async def test_auto_dismisses_after_ttl(self):
        note = self.center.notify("u1", "RFI-001 is now closed")
        self.assertEqual([n.id for n in self.center.list("u1")], [note.id])
        await asyncio.sleep(0.15)
        self.assertEqual(self.center.list("u1"), [])
        self.assertEqual(self.center.pending_timers(), 0)

    async def test_dismiss_cancels_the_timer(self):
        note = self.center.notify("u1", "hello", ttl=5)
        timer = self.center._timers[note.id]
        self.assertTrue(self.center.dismiss("u1", note.id))
        await asyncio.sleep(0)
        self.assertTrue(timer.cancelled())
        self.assertEqual(self.center.pending_timers(), 0)
        self.assertFalse(self.center.dismiss("u1", note.id))

    async def test_cannot_dismiss_someone_elses_notification(self):
        note = self.center.notify("u1", "hello", ttl=5)
        self.assertFalse(self.center.dismiss("u2", note.id))
        self.assertEqual(len(self.center.list("u1")), 1)
        self.assertEqual(self.center.pending_timers(), 1)

    async def test_zero_ttl_is_sticky(self):
        self.center.notify("u1", "sticky", ttl=0)
        self.assertEqual(self.center.pending_timers(), 0)
        await asyncio.sleep(0.1)
        self.assertEqual(len(self.center.list("u1")), 1)


if __name__ == "__main__":
    unittest.main()
