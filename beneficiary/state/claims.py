"""Claims screen state."""

from __future__ import annotations

from collections import Counter
from typing import Any

from ..models import Claim, ClaimStatus, TimelineEvent
from .base import DashboardState


class ClaimState(DashboardState):
    name = "claims"

    def __init__(self, bsp: Any) -> None:
        super().__init__(bsp)
        self.claims: list[Claim] = []
        self.status_filter: ClaimStatus | None = None
        self.selected: Claim | None = None
        self.timeline: list[TimelineEvent] = []

    def fetch(
        self,
        status: ClaimStatus | str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> bool:
        with self._lock:
            self.status_filter = ClaimStatus(status) if status else None
            ok, claims = self._call(
                "fetch",
                self.bsp.get_claims,
                status=self.status_filter.value if self.status_filter else None,
                start_date=start_date,
                end_date=end_date,
            )
            if ok:
                self.claims = claims
            return ok

    def select(self, claim_id: str) -> bool:
        """Load a claim with its timeline."""
        with self._lock:
            self.selected = None
            self.timeline = []
            ok, claim = self._call("select", self.bsp.get_claim, claim_id)
            if not ok:
                return False
            self.selected = claim
            if claim.timeline:
                self.timeline = claim.timeline
                return True
            ok, timeline = self._call("timeline", self.bsp.get_claim_timeline, claim_id)
            if ok:
                self.timeline = timeline
            return ok

    def recent(self, limit: int = 3) -> list[Claim]:
        return sorted(self.claims, key=lambda c: c.submission_date, reverse=True)[:limit]

    def counts_by_status(self) -> dict[str, int]:
        counts = Counter(c.status.value for c in self.claims)
        return {status.value: counts.get(status.value, 0) for status in ClaimStatus}
