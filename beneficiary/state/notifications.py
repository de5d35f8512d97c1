"""Notification list state."""

from __future__ import annotations

from typing import Any

from ..models import Notification
from .base import DashboardState


class NotificationState(DashboardState):
    name = "notifications"

    def __init__(self, bsp: Any) -> None:
        super().__init__(bsp)
        self.notifications: list[Notification] = []

    def fetch(self, unread_only: bool = False) -> bool:
        with self._lock:
            ok, notifications = self._call("fetch", self.bsp.get_notifications, unread_only)
            if ok:
                self.notifications = notifications
            return ok

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    def mark_read(self, notification_id: str) -> bool:
        """Mark one notification read; an already read one is left alone."""
        with self._lock:
            target = next((n for n in self.notifications if n.id == notification_id), None)
            if target is not None and target.read:
                return True
            ok, _ = self._call("mark_read", self.bsp.mark_notification_read, notification_id)
            if ok:
                self.notifications = [
                    n.model_copy(update={"read": True}) if n.id == notification_id else n
                    for n in self.notifications
                ]
            return ok

    def mark_all_read(self) -> bool:
        with self._lock:
            ok, _ = self._call("mark_all_read", self.bsp.mark_all_notifications_read)
            if ok:
                self.notifications = [
                    n.model_copy(update={"read": True}) for n in self.notifications
                ]
            return ok
