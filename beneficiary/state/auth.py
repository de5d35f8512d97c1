"""Authentication state for the login screens."""

from __future__ import annotations

import logging
from typing import Any

from ..models import AuthSession, Beneficiary
from .base import DashboardState

logger = logging.getLogger(__name__)


class AuthState(DashboardState):
    name = "auth"

    def __init__(self, bsp: Any, store: Any) -> None:
        super().__init__(bsp)
        self.store = store
        self.user: Beneficiary | None = None
        self.session: AuthSession | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None and self.bsp.is_authenticated()

    def restore(self) -> bool:
        """Pick up a session persisted by an earlier launch."""
        with self._lock:
            self.session = self.store.load_session()
            self.user = self.store.cached_profile() if self.session else None
            return self.session is not None

    def login(self, phone: str, otp: str) -> bool:
        with self._lock:
            ok, session = self._call("login", self.bsp.login, phone, otp)
            if ok:
                self.session = session
                self.user = self.store.cached_profile()
            return ok

    def login_with_national_id(self, national_id: str, password: str) -> bool:
        with self._lock:
            ok, session = self._call(
                "login_with_national_id", self.bsp.login_with_national_id, national_id, password
            )
            if ok:
                self.session = session
                self.user = self.store.cached_profile()
            return ok

    def fetch_profile(self) -> bool:
        with self._lock:
            ok, profile = self._call("fetch_profile", self.bsp.get_profile)
            if ok:
                self.user = profile
            elif self.last_error is not None and self.last_error.code == "SESSION_EXPIRED":
                self._forget()
            return ok

    def logout(self) -> None:
        with self._lock:
            self._call("logout", self.bsp.logout)
            self._forget()

    def _forget(self) -> None:
        self.session = None
        self.user = None
