"""Policies screen state."""

from __future__ import annotations

from typing import Any

from ..models import Policy
from .base import DashboardState


class PolicyState(DashboardState):
    name = "policies"

    def __init__(self, bsp: Any) -> None:
        super().__init__(bsp)
        self.policies: list[Policy] = []
        self.selected: Policy | None = None
        self.search_results: list[Policy] = []

    def fetch(self) -> bool:
        with self._lock:
            ok, policies = self._call("fetch", self.bsp.get_policies)
            if ok:
                self.policies = policies
            return ok

    def select(self, policy_id: str) -> bool:
        with self._lock:
            ok, policy = self._call("select", self.bsp.get_policy, policy_id)
            self.selected = policy if ok else None
            return ok

    def search(self, query: str) -> bool:
        with self._lock:
            ok, policies = self._call("search", self.bsp.search_policies, query)
            self.search_results = policies if ok else []
            return ok

    @property
    def active_policies(self) -> list[Policy]:
        return [p for p in self.policies if p.is_active]

    def totals(self) -> dict[str, float]:
        """Coverage, used and remaining amounts over the active policies."""
        active = self.active_policies
        return {
            "coverage": sum(p.coverage_amount for p in active),
            "used": sum(p.used_amount for p in active),
            "remaining": sum(p.remaining_coverage for p in active),
        }
