"""Home screen summary."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import ClientError
from ..models import Claim, InsuranceCard

logger = logging.getLogger(__name__)


@dataclass
class HomeSummary:
    """Card, policy count, recent claims and pending consents in one view."""

    card: InsuranceCard | None = None
    active_policy_count: int = 0
    recent_claims: list[Claim] = field(default_factory=list)
    pending_consent_count: int = 0
    unread_notification_count: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def load(
        cls,
        bsp: Any,
        store: Any,
        policies: Any,
        claims: Any,
        consents: Any,
        notifications: Any | None = None,
    ) -> "HomeSummary":
        """Refresh each section, keeping whatever loaded.

        The card falls back to the cached copy when the backend cannot be
        reached.
        """
        summary = cls()

        try:
            summary.card = bsp.get_eshic_card(bsp.beneficiary_id)
        except ClientError as e:
            logger.warning(f"Home card refresh failed: {e.code}")
            summary.errors.append(e.to_dict())
            summary.card = store.cached_card()

        for section in (policies, claims, consents, notifications):
            if section is None:
                continue
            loaded = section.fetch_pending() if section is consents else section.fetch()
            if not loaded:
                summary.errors.append(section.error)

        summary.active_policy_count = len(policies.active_policies)
        summary.recent_claims = claims.recent()
        summary.pending_consent_count = consents.pending_count
        if notifications is not None:
            summary.unread_notification_count = notifications.unread_count
        return summary

    def to_dict(self) -> dict[str, Any]:
        return {
            "card": self.card.to_wire() if self.card else None,
            "active_policy_count": self.active_policy_count,
            "recent_claims": [c.to_wire() for c in self.recent_claims],
            "pending_consent_count": self.pending_consent_count,
            "unread_notification_count": self.unread_notification_count,
            "errors": self.errors,
        }
