"""
In-app notifications.

Each notification with a TTL gets its own asyncio task that removes it when the
TTL runs out; dismissing a notification cancels that task so it can never fire
against an entry that is already gone.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException

from .access import Capability
from .config import settings
from .session_context import SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@dataclass
class Notification:
    user_id: str
    message: str
    level: str = "info"
    link: str | None = None
    ttl: float | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "message": self.message,
            "level": self.level,
            "link": self.link,
            "ttl": self.ttl,
            "created_at": self.created_at.isoformat(),
        }


class NotificationCenter:
    def __init__(self, default_ttl: float | None = None) -> None:
        self.default_ttl = default_ttl
        self._items: dict[str, dict[str, Notification]] = {}
        self._timers: dict[str, asyncio.Task] = {}

    def notify(
        self,
        user_id: Any,
        message: str,
        *,
        level: str = "info",
        link: str | None = None,
        ttl: float | None = None,
    ) -> Notification:
        """Queue a notification; a TTL needs a running event loop to schedule expiry."""
        ttl = self.default_ttl if ttl is None else ttl
        note = Notification(
            user_id=str(user_id), message=message, level=level, link=link, ttl=ttl
        )
        self._items.setdefault(note.user_id, {})[note.id] = note
        if ttl and ttl > 0:
            self._timers[note.id] = asyncio.get_running_loop().create_task(
                self._expire(note, ttl)
            )
        return note

    async def _expire(self, note: Notification, ttl: float) -> None:
        await asyncio.sleep(ttl)
        self._timers.pop(note.id, None)
        self._remove(note.user_id, note.id)

    def _remove(self, user_id: str, notification_id: str) -> bool:
        items = self._items.get(user_id)
        if not items or notification_id not in items:
            return False
        del items[notification_id]
        if not items:
            del self._items[user_id]
        return True

    def list(self, user_id: Any) -> list[Notification]:
        items = self._items.get(str(user_id), {})
        return sorted(items.values(), key=lambda n: n.created_at, reverse=True)

    def dismiss(self, user_id: Any, notification_id: str) -> bool:
        timer = self._timers.pop(notification_id, None)
        removed = self._remove(str(user_id), notification_id)
        logger.debug(f"Dismiss {notification_id} for {user_id}: removed={removed}")
        if timer is not None:
            if removed:
                timer.cancel()
            else:
                # Belongs to someone else; leave their timer running
                self._timers[notification_id] = timer
        return removed

    def pending_timers(self) -> int:
        return len(self._timers)

    async def shutdown(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        self._items.clear()


notification_center = NotificationCenter(default_ttl=settings.NOTIFICATION_TTL_SECONDS)


def notify_status_change(rfi: dict[str, Any], actor_id: Any) -> Notification | None:
    """Tell the RFI's creator that someone else moved it."""
    creator = rfi.get("created_by")
    if creator is None or str(creator) == str(actor_id):
        return None
    status = getattr(rfi.get("status"), "value", rfi.get("status"))
    return notification_center.notify(
        creator,
        f"{rfi.get('rfi_number', 'RFI')} is now {status}",
        level="success" if status == "closed" else "info",
        link=f"/rfis/{rfi.get('id')}",
    )


def notify_client_response(rfi: dict[str, Any], submitted_by: str) -> Notification | None:
    creator = rfi.get("created_by")
    if creator is None:
        return None
    return notification_center.notify(
        creator,
        f"{rfi.get('rfi_number', 'RFI')} received a client response from {submitted_by}",
        level="info",
        link=f"/rfis/{rfi.get('id')}",
    )


@router.get("")
async def list_notifications(ctx: SessionDep):
    ctx.require(Capability.VIEW_RFIS)
    return {
        "success": True,
        "data": [n.to_dict() for n in notification_center.list(ctx.user_id)],
    }


@router.delete("/{notification_id}")
async def dismiss_notification(notification_id: str, ctx: SessionDep):
    ctx.require(Capability.VIEW_RFIS)
    if not notification_center.dismiss(ctx.user_id, notification_id):
        raise HTTPException(404, "Notification not found")
    return {"success": True, "data": {"id": notification_id}}
