"""Backend (BSP) client for the HCX protocol endpoints.

Each method maps one backend endpoint to a typed request and response.
The bearer token comes from the persisted session. An expired session is
refreshed once before the request goes out. If the refresh fails or the
backend answers 401, the session is destroyed and the caller gets a
``SessionExpiredError``.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import httpx

from ..config import AppConfig
from ..errors import (
    ClientError,
    FeatureDisabledError,
    HTTPStatusError,
    MalformedResponseError,
    SessionExpiredError,
)
from ..fhir import resources as fhir
from ..kyc.capture import CapturedImage
from ..models import (
    AuthSession,
    Beneficiary,
    Claim,
    ClaimDocument,
    ConsentRequest,
    InsuranceCard,
    Notification,
    Policy,
    RegistrationRequest,
    RegistrationResult,
    TimelineEvent,
)
from ..session.store import SessionStore
from .base import BaseAPIClient

logger = logging.getLogger(__name__)

# Lifetime assumed for bare tokens that arrive without an expiry
DEFAULT_TOKEN_TTL = 3600


class BSPClient(BaseAPIClient):
    """Client for the beneficiary service provider backend."""

    service_name = "bsp"

    def __init__(
        self,
        config: AppConfig,
        store: SessionStore,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        headers = {
            "X-HCX-Version": config.hcx.api_version,
            "X-HCX-Participant-Code": config.hcx.participant_code,
        }
        if config.bsp.api_key:
            headers["X-API-Key"] = config.bsp.api_key

        super().__init__(
            config.bsp.api_url,
            timeout=config.bsp.timeout,
            transport=transport,
            default_headers=headers,
        )
        self.config = config
        self.store = store
        self._clock = clock
        self._refresh_lock = threading.Lock()
        self._session: AuthSession | None = store.load_session()

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------

    @property
    def session(self) -> AuthSession | None:
        return self._session

    @property
    def beneficiary_id(self) -> str | None:
        return self._session.beneficiary_id if self._session else None

    def is_authenticated(self) -> bool:
        return self._session is not None and not self._session.is_expired(self._clock())

    def _save_session(self, session: AuthSession) -> AuthSession:
        self._session = session
        self.store.save_session(session)
        return session

    def _expire_session(self) -> None:
        self._session = None
        self.store.clear_session()

    def _session_from(self, payload: Any) -> AuthSession:
        """Read a session from a login, refresh or registration response.

        Accepts nested ``tokens``, top-level ``accessToken`` fields, or a
        bare ``token``. A relative ``expiresIn`` and a missing expiry are
        both resolved against this client's clock.
        """
        if not isinstance(payload, dict):
            raise MalformedResponseError("Expected an object with session tokens")

        tokens = payload.get("tokens") or payload
        if not isinstance(tokens, dict):
            raise MalformedResponseError("Expected an object with session tokens")
        tokens = dict(tokens)
        if "accessToken" not in tokens and "access_token" not in tokens and "token" in payload:
            tokens = {"accessToken": payload["token"], "refreshToken": payload.get("refreshToken")}

        if tokens.get("expiresAt", tokens.get("expires_at")) is None:
            expires_in = tokens.get("expiresIn", tokens.get("expires_in"))
            try:
                lifetime = float(expires_in) if expires_in is not None else DEFAULT_TOKEN_TTL
            except (TypeError, ValueError) as e:
                raise MalformedResponseError(f"Invalid token lifetime: {expires_in!r}") from e
            tokens["expiresAt"] = self._clock() + lifetime

        if "beneficiaryId" not in tokens:
            beneficiary = payload.get("beneficiary") or {}
            if isinstance(beneficiary, dict) and beneficiary.get("id"):
                tokens["beneficiaryId"] = beneficiary["id"]
            elif payload.get("beneficiaryId"):
                tokens["beneficiaryId"] = payload["beneficiaryId"]

        return self._parse(AuthSession, tokens)

    def _ensure_session(self) -> AuthSession:
        """Return a session whose access token has not expired.

        Raises:
            SessionExpiredError: No session, or the refresh failed
        """
        session = self._session
        if session is None:
            raise SessionExpiredError("Not logged in")
        if not session.is_expired(self._clock()):
            return session

        with self._refresh_lock:
            # A concurrent caller may already have refreshed
            session = self._session
            if session is not None and not session.is_expired(self._clock()):
                return session
            return self._refresh_locked(session)

    def _refresh_locked(self, session: AuthSession | None) -> AuthSession:
        if session is None or not session.refresh_token:
            self._expire_session()
            raise SessionExpiredError("No refresh token available")

        self._log("info", "Access token expired, refreshing")
        try:
            payload = self._request(
                "POST",
                "/auth/refresh",
                json_data={"refreshToken": session.refresh_token},
                authenticated=False,
            )
            refreshed = self._session_from(payload)
        except ClientError as e:
            self._log("warning", f"Token refresh failed: {e.code}")
            self._expire_session()
            raise SessionExpiredError("Token refresh failed") from e

        if refreshed.beneficiary_id is None:
            refreshed = refreshed.model_copy(update={"beneficiary_id": session.beneficiary_id})
        if refreshed.refresh_token is None:
            refreshed = refreshed.model_copy(update={"refresh_token": session.refresh_token})
        if refreshed.is_expired(self._clock()):
            self._expire_session()
            raise SessionExpiredError("Refreshed token is already expired")

        return self._save_session(refreshed)

    def refresh_session(self) -> AuthSession:
        """Force a refresh regardless of expiry."""
        with self._refresh_lock:
            return self._refresh_locked(self._session)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._ensure_session().access_token}"}

    def _request(self, method: str, path: str, *args: Any, **kwargs: Any) -> Any:
        authenticated = kwargs.get("authenticated", True)
        try:
            return super()._request(method, path, *args, **kwargs)
        except HTTPStatusError as e:
            if e.status_code == 401 and authenticated:
                self._expire_session()
                raise SessionExpiredError(
                    "Session expired, please log in again", status_code=401
                ) from e
            raise

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def verify_phone(self, phone: str) -> bool:
        """Ask the backend to send an OTP to ``phone``."""
        payload = self._post("/auth/verify-phone", {"phone": phone}, authenticated=False)
        return bool(isinstance(payload, dict) and payload.get("otpSent", True))

    def login(self, phone: str, otp: str) -> AuthSession:
        payload = self._post(
            "/auth/login", {"phone": phone, "otp": otp}, authenticated=False
        )
        session = self._save_session(self._session_from(payload))
        self._cache_beneficiary(payload)
        self._log("info", f"Logged in beneficiary {session.beneficiary_id}")
        return session

    def login_with_national_id(self, national_id: str, password: str) -> AuthSession:
        payload = self._post(
            "/beneficiary/login",
            {"national_id": national_id, "password": password},
            authenticated=False,
        )
        session = self._save_session(self._session_from(payload))
        self._cache_beneficiary(payload)
        return session

    def _cache_beneficiary(self, payload: Any) -> None:
        if isinstance(payload, dict) and isinstance(payload.get("beneficiary"), dict):
            self.store.cache_profile(self._parse(Beneficiary, payload["beneficiary"]))

    def register(self, request: RegistrationRequest) -> RegistrationResult:
        """Create the beneficiary record and its insurance card.

        The backend may answer with nested ``tokens`` or a bare ``token``;
        either way the session is saved so the card can be fetched next.
        """
        payload = self._post("/auth/register", request.to_wire(), authenticated=False)
        result = self._parse(RegistrationResult, payload)

        if any(payload.get(key) for key in ("tokens", "token", "accessToken")):
            session = self._session_from(payload)
            if session.beneficiary_id is None:
                session = session.model_copy(update={"beneficiary_id": result.beneficiary_id})
            self._save_session(session)
            result = result.model_copy(update={"session": session})
        if result.beneficiary is not None:
            self.store.cache_profile(result.beneficiary)

        self._log("info", f"Registered beneficiary {result.beneficiary_id}")
        return result

    def logout(self) -> None:
        """Tell the backend, then destroy the local session regardless."""
        try:
            if self._session is not None:
                self._post("/auth/logout")
        except ClientError as e:
            self._log("warning", f"Logout request failed: {e.code}")
        finally:
            self._expire_session()

    # ------------------------------------------------------------------
    # Profile and card
    # ------------------------------------------------------------------

    def get_profile(self) -> Beneficiary:
        profile = self._parse(Beneficiary, self._get("/beneficiary/profile"))
        self.store.cache_profile(profile)
        return profile

    def update_profile(self, updates: dict[str, Any]) -> Beneficiary:
        profile = self._parse(Beneficiary, self._put("/beneficiary/profile", updates))
        self.store.cache_profile(profile)
        return profile

    def update_password(self, current_password: str, new_password: str) -> bool:
        payload = self._put(
            "/beneficiary/profile/password",
            {"currentPassword": current_password, "newPassword": new_password},
        )
        return bool(isinstance(payload, dict) and payload.get("success", True))

    def upload_profile_photo(self, image: CapturedImage) -> str:
        payload = self._post("/beneficiary/profile/photo", {"image": image.as_base64()})
        if not isinstance(payload, dict) or not payload.get("url"):
            raise MalformedResponseError("Photo upload response is missing url")
        return payload["url"]

    def get_eshic_card(self, beneficiary_id: str | None = None) -> InsuranceCard:
        params = {"beneficiaryId": beneficiary_id} if beneficiary_id else None
        card = self._parse(InsuranceCard, self._get("/beneficiary/eshic-card", params))
        if card.beneficiary_id is None:
            card = card.model_copy(update={"beneficiary_id": beneficiary_id or self.beneficiary_id})
        self.store.cache_card(card)
        return card

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def get_policies(self) -> list[Policy]:
        return self._parse_list(Policy, self._get("/beneficiary/policies"))

    def get_policy(self, policy_id: str) -> Policy:
        return self._parse(Policy, self._get(f"/beneficiary/policies/{policy_id}"))

    def search_policies(self, query: str) -> list[Policy]:
        return self._parse_list(
            Policy, self._get("/beneficiary/policies/search", {"q": query})
        )

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def get_claims(
        self,
        status: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[Claim]:
        params = {"status": status, "startDate": start_date, "endDate": end_date}
        return self._parse_list(Claim, self._get("/beneficiary/claims", params))

    def get_claim(self, claim_id: str) -> Claim:
        return self._parse(Claim, self._get(f"/beneficiary/claims/{claim_id}"))

    def get_claim_documents(self, claim_id: str) -> list[ClaimDocument]:
        return self._parse_list(
            ClaimDocument, self._get(f"/beneficiary/claims/{claim_id}/documents")
        )

    def get_claim_timeline(self, claim_id: str) -> list[TimelineEvent]:
        return self._parse_list(
            TimelineEvent, self._get(f"/beneficiary/claims/{claim_id}/timeline")
        )

    def download_claim_document(self, document_id: str) -> str:
        payload = self._get(f"/beneficiary/documents/{document_id}/download")
        if not isinstance(payload, dict) or not payload.get("url"):
            raise MalformedResponseError("Document download response is missing url")
        return payload["url"]

    def submit_reimbursement_claim(
        self,
        policy_id: str,
        provider_id: str,
        treatment_date: str,
        diagnosis: str,
        claimed_amount: float,
        documents: list[str],
    ) -> str:
        """Submit a reimbursement claim and return the new claim id."""
        if not self.config.features.reimbursement_claims:
            raise FeatureDisabledError("Reimbursement claims are disabled")
        if claimed_amount <= 0:
            raise ValueError("claimed_amount must be positive")

        payload = self._post(
            "/beneficiary/claims/submit",
            {
                "policyId": policy_id,
                "providerId": provider_id,
                "treatmentDate": treatment_date,
                "diagnosis": diagnosis,
                "claimedAmount": claimed_amount,
                "documents": documents,
            },
        )
        if not isinstance(payload, dict) or not payload.get("claimId"):
            raise MalformedResponseError("Claim submission response is missing claimId")
        return payload["claimId"]

    # ------------------------------------------------------------------
    # Consents
    # ------------------------------------------------------------------

    def get_consent_requests(self, status: str | None = None) -> list[ConsentRequest]:
        return self._parse_list(
            ConsentRequest, self._get("/beneficiary/consents", {"status": status})
        )

    def get_consent(self, consent_id: str) -> ConsentRequest:
        return self._parse(ConsentRequest, self._get(f"/beneficiary/consents/{consent_id}"))

    def get_consent_history(self) -> list[ConsentRequest]:
        return self._parse_list(ConsentRequest, self._get("/beneficiary/consents/history"))

    def approve_consent(self, consent_id: str) -> None:
        self._post(f"/beneficiary/consents/{consent_id}/approve")

    def reject_consent(self, consent_id: str, reason: str | None = None) -> None:
        self._post(f"/beneficiary/consents/{consent_id}/reject", {"reason": reason})

    def revoke_consent(self, consent_id: str) -> None:
        self._post(f"/beneficiary/consents/{consent_id}/revoke")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def get_notifications(self, unread_only: bool = False) -> list[Notification]:
        params = {"unread": "true"} if unread_only else None
        return self._parse_list(Notification, self._get("/beneficiary/notifications", params))

    def subscribe_notifications(self, device_token: str) -> bool:
        payload = self._post(
            "/beneficiary/notifications/subscribe", {"fcmToken": device_token}
        )
        return bool(isinstance(payload, dict) and payload.get("subscribed", True))

    def mark_notification_read(self, notification_id: str) -> None:
        self._post(f"/beneficiary/notifications/{notification_id}/read")

    def mark_all_notifications_read(self) -> None:
        self._post("/beneficiary/notifications/read-all")

    # ------------------------------------------------------------------
    # HCX (FHIR) submissions
    # ------------------------------------------------------------------

    def submit_fhir_bundle(self, path: str, bundle: dict[str, Any], **extra: Any) -> Any:
        """Validate a FHIR bundle and post it to the backend.

        Raises:
            ValueError: If the bundle is structurally invalid
        """
        valid, errors = fhir.validate_bundle(bundle)
        if not valid:
            raise ValueError("; ".join(errors))
        return self._post(path, {**extra, "bundle": bundle})

    def check_eligibility(self, service_code: str, policy: Policy) -> dict[str, Any]:
        """Ask the insurer whether ``service_code`` is covered under ``policy``."""
        beneficiary_id = self._ensure_session().beneficiary_id
        if not beneficiary_id:
            raise SessionExpiredError("Session has no beneficiary")

        request = fhir.create_coverage_eligibility_request(
            patient_id=beneficiary_id,
            insurer_code=policy.insurer_code or policy.insurer_name,
            coverage_id=policy.id,
            service_code=service_code,
        )
        bundle = fhir.create_bundle("collection", [request])
        payload = self.submit_fhir_bundle(
            "/beneficiary/eligibility/check", bundle, service_code=service_code
        )
        if not isinstance(payload, dict):
            raise MalformedResponseError("Eligibility response must be an object")
        return payload

    def search_providers(
        self,
        provider_type: str | None = None,
        location: str | None = None,
        specialty: str | None = None,
    ) -> list[dict[str, Any]]:
        payload = self._get(
            "/beneficiary/providers/search",
            {"type": provider_type, "location": location, "specialty": specialty},
        )
        if not isinstance(payload, list):
            raise MalformedResponseError("Provider search response must be a list")
        return payload
