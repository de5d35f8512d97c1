"""Tests for the dashboard state objects."""

import httpx
import pytest

from beneficiary.clients.bsp import BSPClient
from beneficiary.errors import ConflictError, TransportError
from beneficiary.models import ConsentStatus, InsuranceCard
from beneficiary.state import (
    AuthState,
    ClaimState,
    ConsentState,
    HomeSummary,
    NotificationState,
    PolicyState,
)


@pytest.fixture
def bsp(config, store, bsp_api, clock, session_factory):
    store.save_session(session_factory())
    return BSPClient(config, store, transport=bsp_api.transport, clock=clock)


def notification(notification_id, read=False):
    return {
        "id": notification_id,
        "type": "claim_update",
        "title": "Claim approved",
        "message": "Your claim was approved",
        "timestamp": "2024-05-03T10:00:00Z",
        "read": read,
    }


class TestConsentState:
    """Pending consent decisions."""

    @pytest.fixture
    def consents(self, bsp, bsp_api, consent_payload):
        bsp_api.add(
            "GET",
            "/beneficiary/consents",
            [consent_payload("CON-1"), consent_payload("CON-2"), consent_payload("CON-3", "approved")],
        )
        state = ConsentState(bsp)
        assert state.fetch_pending()
        return state

    def test_fetch_keeps_only_pending(self, consents, bsp_api):
        assert [c.id for c in consents.pending] == ["CON-1", "CON-2"]
        assert bsp_api.last("GET", "/beneficiary/consents").url.params["status"] == "pending"

    def test_approve_removes_exactly_once(self, consents, bsp_api):
        """The approved request leaves pending and enters history."""
        bsp_api.add("POST", "/beneficiary/consents/CON-1/approve", {"success": True})

        assert consents.approve("CON-1")
        assert [c.id for c in consents.pending] == ["CON-2"]
        assert consents.history[0].id == "CON-1"
        assert consents.history[0].status == ConsentStatus.APPROVED
        assert consents.history[0].response_date is not None

        assert not consents.approve("CON-1")
        assert isinstance(consents.last_error, ConflictError)
        assert consents.error["code"] == "CONSENT_NOT_PENDING"
        assert bsp_api.count("POST", "/beneficiary/consents/CON-1/approve") == 1
        assert consents.pending_count == 1

    def test_unknown_id_refused_locally(self, consents, bsp_api):
        assert not consents.deny("CON-404")
        assert bsp_api.count("POST", "/beneficiary/consents/CON-404/reject") == 0
        assert consents.last_error.status_code == 409

    def test_deny_with_reason(self, consents, bsp_api):
        bsp_api.add("POST", "/beneficiary/consents/CON-2/reject", {"success": True})
        assert consents.deny("CON-2", "Unknown requester")
        assert consents.get("CON-2").status == ConsentStatus.REJECTED
        assert bsp_api.last_json("POST", "/beneficiary/consents/CON-2/reject") == {
            "reason": "Unknown requester"
        }

    def test_failed_call_changes_nothing(self, consents, bsp_api):
        """A backend failure leaves the request pending."""
        bsp_api.add("POST", "/beneficiary/consents/CON-1/approve", {"message": "boom"}, status=500)
        assert not consents.approve("CON-1")
        assert [c.id for c in consents.pending] == ["CON-1", "CON-2"]
        assert consents.history == []
        assert consents.error["status_code"] == 500
        assert not consents.is_loading

    def test_revoke_marks_history(self, consents, bsp_api):
        bsp_api.add("POST", "/beneficiary/consents/CON-1/approve", {})
        bsp_api.add("POST", "/beneficiary/consents/CON-1/revoke", {})
        consents.approve("CON-1")
        assert consents.revoke("CON-1")
        assert consents.history[0].status == ConsentStatus.REVOKED

    def test_history(self, bsp, bsp_api, consent_payload):
        bsp_api.add("GET", "/beneficiary/consents/history", [consent_payload("CON-9", "denied")])
        consents = ConsentState(bsp)
        assert consents.fetch_history()
        assert consents.get("CON-9").status == ConsentStatus.REJECTED


class TestNotificationState:
    """Unread counts and marking read."""

    @pytest.fixture
    def notifications(self, bsp, bsp_api):
        bsp_api.add("GET", "/beneficiary/notifications", [notification("N-1"), notification("N-2", read=True)])
        state = NotificationState(bsp)
        state.fetch()
        return state

    def test_unread_count(self, notifications):
        assert notifications.unread_count == 1

    def test_mark_read_once(self, notifications, bsp_api):
        """Already read notifications are not sent again."""
        bsp_api.add("POST", "/beneficiary/notifications/N-1/read", {})
        assert notifications.mark_read("N-1")
        assert notifications.mark_read("N-1")
        assert notifications.mark_read("N-2")
        assert bsp_api.count("POST", "/beneficiary/notifications/N-1/read") == 1
        assert bsp_api.count("POST", "/beneficiary/notifications/N-2/read") == 0
        assert notifications.unread_count == 0

    def test_mark_all(self, notifications, bsp_api):
        bsp_api.add("POST", "/beneficiary/notifications/read-all", {})
        assert notifications.mark_all_read()
        assert all(n.read for n in notifications.notifications)


class TestClaimState:
    """Claims list, detail and counts."""

    def test_counts_and_recent(self, bsp, bsp_api, claim_payload):
        bsp_api.add(
            "GET",
            "/beneficiary/claims",
            [
                claim_payload,
                {**claim_payload, "id": "CLM-2", "status": "pending", "submissionDate": "2024-06-01"},
                {**claim_payload, "id": "CLM-3", "status": "pending", "submissionDate": "2024-04-01"},
                {**claim_payload, "id": "CLM-4", "submissionDate": "2024-03-01"},
            ],
        )
        claims = ClaimState(bsp)
        assert claims.fetch()
        counts = claims.counts_by_status()
        assert counts["approved"] == 2
        assert counts["pending"] == 2
        assert counts["settled"] == 0
        assert [c.id for c in claims.recent()] == ["CLM-2", "CLM-1", "CLM-3"]

    def test_status_filter(self, bsp, bsp_api):
        bsp_api.add("GET", "/beneficiary/claims", [])
        claims = ClaimState(bsp)
        claims.fetch(status="rejected", end_date="2024-12-31")
        params = bsp_api.last("GET", "/beneficiary/claims").url.params
        assert params["status"] == "rejected"
        assert params["endDate"] == "2024-12-31"

    def test_unknown_status(self, bsp):
        with pytest.raises(ValueError):
            ClaimState(bsp).fetch(status="lost")

    def test_select_fetches_timeline(self, bsp, bsp_api, claim_payload):
        """The timeline is fetched when the claim has none embedded."""
        bsp_api.add("GET", "/beneficiary/claims/CLM-1", claim_payload)
        bsp_api.add(
            "GET",
            "/beneficiary/claims/CLM-1/timeline",
            [{"id": "E-1", "status": "submitted", "date": "2024-05-01"}],
        )
        claims = ClaimState(bsp)
        assert claims.select("CLM-1")
        assert claims.selected.id == "CLM-1"
        assert claims.timeline[0].status == "submitted"

    def test_select_uses_embedded_timeline(self, bsp, bsp_api, claim_payload):
        embedded = {**claim_payload, "timeline": [{"id": "E-1", "status": "approved", "date": "2024-05-02"}]}
        bsp_api.add("GET", "/beneficiary/claims/CLM-1", embedded)
        claims = ClaimState(bsp)
        assert claims.select("CLM-1")
        assert bsp_api.count("GET", "/beneficiary/claims/CLM-1/timeline") == 0


class TestPolicyState:
    def test_totals_over_active_policies(self, bsp, bsp_api, policy_payload):
        bsp_api.add(
            "GET",
            "/beneficiary/policies",
            [policy_payload, {**policy_payload, "id": "POL-2", "status": "expired"}],
        )
        policies = PolicyState(bsp)
        assert policies.fetch()
        assert len(policies.active_policies) == 1
        assert policies.totals() == {"coverage": 100000, "used": 25000, "remaining": 75000}

    def test_failed_search_clears_results(self, bsp, bsp_api, policy_payload):
        bsp_api.add("GET", "/beneficiary/policies/search", [policy_payload])
        policies = PolicyState(bsp)
        assert policies.search("Misr")
        assert len(policies.search_results) == 1

        bsp_api.add("GET", "/beneficiary/policies/search", {"message": "down"}, status=503)
        assert not policies.search("Misr")
        assert policies.search_results == []


class TestAuthState:
    def test_restore(self, bsp, store, beneficiary_payload):
        from beneficiary.models import Beneficiary

        store.cache_profile(Beneficiary.model_validate(beneficiary_payload))
        auth = AuthState(bsp, store)
        assert auth.restore()
        assert auth.user.id == "BEN-001"
        assert auth.is_authenticated

    def test_expired_session_forgets_user(self, bsp, bsp_api, store):
        bsp_api.add("GET", "/beneficiary/profile", {"message": "expired"}, status=401)
        auth = AuthState(bsp, store)
        auth.restore()
        assert not auth.fetch_profile()
        assert auth.error["code"] == "SESSION_EXPIRED"
        assert auth.session is None
        assert not auth.is_authenticated

    def test_failed_login(self, config, store, bsp_api, clock):
        bsp_api.add("POST", "/auth/login", {"message": "Invalid OTP"}, status=401)
        bsp = BSPClient(config, store, transport=bsp_api.transport, clock=clock)
        auth = AuthState(bsp, store)
        assert not auth.login("+201012345678", "000000")
        assert auth.error["message"] == "Invalid OTP"
        assert auth.session is None


class TestHomeSummary:
    """Home screen aggregation."""

    def test_load(self, bsp, bsp_api, card_payload, policy_payload, claim_payload, consent_payload):
        bsp_api.add("GET", "/beneficiary/eshic-card", card_payload)
        bsp_api.add("GET", "/beneficiary/policies", [policy_payload])
        bsp_api.add("GET", "/beneficiary/claims", [claim_payload])
        bsp_api.add("GET", "/beneficiary/consents", [consent_payload()])
        bsp_api.add("GET", "/beneficiary/notifications", [notification("N-1")])

        summary = HomeSummary.load(
            bsp, bsp.store, PolicyState(bsp), ClaimState(bsp), ConsentState(bsp), NotificationState(bsp)
        )
        view = summary.to_dict()
        assert view["card"]["cardNumber"] == "ESHIC-0001"
        assert view["active_policy_count"] == 1
        assert view["recent_claims"][0]["id"] == "CLM-1"
        assert view["pending_consent_count"] == 1
        assert view["unread_notification_count"] == 1
        assert view["errors"] == []

    def test_offline_card_and_partial_errors(self, bsp, bsp_api, store, card_payload, policy_payload):
        """The cached card is shown and failed sections are reported."""
        store.cache_card(InsuranceCard.model_validate(card_payload))

        def offline(request):
            raise httpx.ConnectError("offline", request=request)

        bsp_api.add("GET", "/beneficiary/eshic-card", offline)
        bsp_api.add("GET", "/beneficiary/policies", [policy_payload])
        bsp_api.add("GET", "/beneficiary/claims", offline)
        bsp_api.add("GET", "/beneficiary/consents", [])

        summary = HomeSummary.load(bsp, store, PolicyState(bsp), ClaimState(bsp), ConsentState(bsp))
        assert summary.card.card_number == "ESHIC-0001"
        assert summary.active_policy_count == 1
        assert summary.recent_claims == []
        assert [e["code"] for e in summary.errors] == ["NETWORK_ERROR", "NETWORK_ERROR"]


def test_transport_error_recorded(bsp, bsp_api):
    """State objects record errors instead of raising them."""

    def offline(request):
        raise httpx.ConnectError("offline", request=request)

    bsp_api.add("GET", "/beneficiary/policies", offline)
    policies = PolicyState(bsp)
    assert not policies.fetch()
    assert isinstance(policies.last_error, TransportError)
