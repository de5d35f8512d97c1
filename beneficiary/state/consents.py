"""Consent requests awaiting the beneficiary's decision.

Approving or denying removes the request from ``pending`` exactly once
and moves it to ``history``. An id that is not pending is refused
without contacting the backend. A failed backend call changes nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ..errors import ConflictError
from ..models import ConsentRequest, ConsentStatus
from .base import DashboardState

logger = logging.getLogger(__name__)


class ConsentState(DashboardState):
    name = "consents"

    def __init__(self, bsp: Any) -> None:
        super().__init__(bsp)
        self.pending: list[ConsentRequest] = []
        self.history: list[ConsentRequest] = []

    def fetch_pending(self) -> bool:
        with self._lock:
            ok, requests = self._call(
                "fetch_pending", self.bsp.get_consent_requests, ConsentStatus.PENDING.value
            )
            if ok:
                self.pending = [r for r in requests if r.is_pending]
            return ok

    def fetch_history(self) -> bool:
        with self._lock:
            ok, history = self._call("fetch_history", self.bsp.get_consent_history)
            if ok:
                self.history = history
            return ok

    def get(self, consent_id: str) -> ConsentRequest | None:
        for request in self.pending + self.history:
            if request.id == consent_id:
                return request
        return None

    def _find_pending(self, consent_id: str) -> ConsentRequest | None:
        return next((r for r in self.pending if r.id == consent_id), None)

    def _decide(self, consent_id: str, status: ConsentStatus, fn: Any, *args: Any) -> bool:
        with self._lock:
            request = self._find_pending(consent_id)
            if request is None:
                self._record(
                    ConflictError(
                        f"Consent request {consent_id} is not pending",
                        code="CONSENT_NOT_PENDING",
                        status_code=409,
                    )
                )
                return False

            ok, _ = self._call(status.value, fn, consent_id, *args)
            if not ok:
                return False

            self.pending = [r for r in self.pending if r.id != consent_id]
            decided = request.model_copy(
                update={
                    "status": status,
                    "response_date": datetime.now(timezone.utc).isoformat(),
                }
            )
            self.history = [decided] + [r for r in self.history if r.id != consent_id]
            logger.info(f"Consent {consent_id} {status.value}")
            return True

    def approve(self, consent_id: str) -> bool:
        return self._decide(consent_id, ConsentStatus.APPROVED, self.bsp.approve_consent)

    def deny(self, consent_id: str, reason: str | None = None) -> bool:
        return self._decide(consent_id, ConsentStatus.REJECTED, self.bsp.reject_consent, reason)

    def revoke(self, consent_id: str) -> bool:
        """Withdraw a consent that was approved earlier."""
        with self._lock:
            ok, _ = self._call("revoke", self.bsp.revoke_consent, consent_id)
            if ok:
                self.history = [
                    r.model_copy(update={"status": ConsentStatus.REVOKED})
                    if r.id == consent_id
                    else r
                    for r in self.history
                ]
            return ok

    @property
    def pending_count(self) -> int:
        return len(self.pending)
