"""Tests for the KYC state machine."""

import pytest

from conftest import NOW

from beneficiary.clients.bsp import BSPClient
from beneficiary.errors import (
    FeatureDisabledError,
    HTTPStatusError,
    KYCStateError,
    TransportError,
    VerificationError,
)
from beneficiary.kyc.capture import CaptureError
from beneficiary.kyc.flow import KYCFlow, KYCStep
from beneficiary.models import (
    FaceMatchResult,
    InsuranceCard,
    LivenessResult,
    NationalIDData,
    RegistrationResult,
)


class FakeValify:
    """Scripted identity-verification client."""

    def __init__(self, ocr_response, scores=(92.0,)):
        self.ocr = NationalIDData.model_validate(
            {**ocr_response["data"], "transaction_id": ocr_response["transaction_id"]}
        )
        self.scores = list(scores)
        self.ocr_error = None
        self.face_error = None
        self.ocr_calls = 0
        self.face_calls = 0

    def scan_national_id(self, front, back):
        self.ocr_calls += 1
        if self.ocr_error:
            raise self.ocr_error
        return self.ocr

    def verify_face_match(self, selfie, id_front):
        self.face_calls += 1
        if self.face_error:
            raise self.face_error
        score = self.scores.pop(0) if len(self.scores) > 1 else self.scores[0]
        return FaceMatchResult(transaction_id="TX-FACE", match_score=score, is_match=score >= 50)

    def verify_liveness(self, video):
        return LivenessResult(transaction_id="TX-LIVE", is_live=True, confidence_score=0.97)


class FakeBSP:
    """Records registration requests."""

    def __init__(self, card_payload, beneficiary_payload):
        self.card = InsuranceCard.model_validate(card_payload)
        self.beneficiary_payload = beneficiary_payload
        self.requests = []
        self.register_error = None

    def register(self, request):
        self.requests.append(request)
        if self.register_error:
            raise self.register_error
        return RegistrationResult.model_validate(
            {
                "beneficiaryId": "BEN-001",
                "eshicNumber": "ESHIC-0001",
                "beneficiary": self.beneficiary_payload,
            }
        )

    def get_eshic_card(self, beneficiary_id=None):
        return self.card


@pytest.fixture
def valify(ocr_response):
    return FakeValify(ocr_response)


@pytest.fixture
def bsp(card_payload, beneficiary_payload):
    return FakeBSP(card_payload, beneficiary_payload)


@pytest.fixture
def flow(valify, bsp, store):
    return KYCFlow(valify, bsp, store, "+201012345678")


def capture_ids(flow, id_image):
    flow.start()
    flow.capture_id_front(id_image)
    flow.capture_id_back(id_image)


class TestHappyPath:
    """Capture, verify and register."""

    def test_completes_registration(self, flow, bsp, store, id_image, selfie_image):
        """A passing face match registers and issues the card."""
        capture_ids(flow, id_image)
        assert flow.capture_selfie(selfie_image) == KYCStep.COMPLETED

        assert flow.outcome.beneficiary_id == "BEN-001"
        assert flow.outcome.eshic_number == "ESHIC-0001"
        assert not flow.outcome.face_match_overridden
        request = bsp.requests[0]
        assert request.national_id == "29001011234567"
        assert request.phone == "+201012345678"
        assert request.name == "Ahmed Hassan"
        assert request.face_match_score == 92.0
        assert store.cached_card().card_number == "ESHIC-0001"
        assert store.cached_profile().id == "BEN-001"

    def test_progress(self, flow, id_image):
        """Progress reports the step position."""
        assert flow.progress == {"step": "intro", "index": 0, "total": 6, "message": None}
        capture_ids(flow, id_image)
        assert flow.progress["step"] == "selfie"
        assert flow.progress["index"] == 3

    def test_view(self, flow, id_image, selfie_image):
        capture_ids(flow, id_image)
        flow.capture_selfie(selfie_image)
        view = flow.to_dict()
        assert view["captured"] == {"id_front": True, "id_back": True, "selfie": True}
        assert view["national_id"]["gender"] == "male"
        assert view["outcome"]["card"]["cardNumber"] == "ESHIC-0001"
        assert view["progress"]["message"] == "Identity verified successfully"

    def test_arabic_messages(self, valify, bsp, store, id_image, selfie_image):
        flow = KYCFlow(valify, bsp, store, "+201012345678", lang="ar")
        capture_ids(flow, id_image)
        flow.capture_selfie(selfie_image)
        assert flow.progress["message"] == "تم التحقق من الهوية بنجاح"


class TestOrdering:
    """Steps cannot be skipped or repeated."""

    def test_capture_before_start(self, flow, id_image):
        with pytest.raises(KYCStateError):
            flow.capture_id_front(id_image)

    def test_selfie_before_back(self, flow, id_image, selfie_image):
        """Skipping the back of the ID is refused."""
        flow.start()
        flow.capture_id_front(id_image)
        with pytest.raises(KYCStateError) as exc_info:
            flow.capture_selfie(selfie_image)
        assert exc_info.value.details == {"step": "id_back"}

    def test_rejected_capture_stays_on_step(self, flow):
        """A bad image leaves the flow where it was."""
        flow.start()
        with pytest.raises(CaptureError):
            flow.capture_id_front(b"garbage")
        assert flow.step == KYCStep.ID_FRONT
        assert flow.id_front is None

    def test_continue_without_mismatch(self, flow, bsp, id_image):
        """Override is only possible after a mismatch."""
        capture_ids(flow, id_image)
        with pytest.raises(KYCStateError):
            flow.force_continue()
        assert bsp.requests == []

    def test_restart(self, flow, id_image):
        capture_ids(flow, id_image)
        assert flow.restart() == KYCStep.INTRO
        assert flow.id_front is None
        assert flow.national_id_data is None


class TestFaceMismatch:
    """Low face-match scores."""

    @pytest.fixture
    def mismatched(self, flow, valify, id_image, selfie_image):
        valify.scores = [40.0, 95.0]
        capture_ids(flow, id_image)
        flow.capture_selfie(selfie_image)
        return flow

    def test_mismatch_offers_retry_and_continue(self, mismatched, bsp):
        assert mismatched.step == KYCStep.FACE_MISMATCH
        actions = [a.action for a in mismatched.alert.actions]
        assert actions == ["retry_selfie", "continue"]
        assert bsp.requests == []
        assert not mismatched.can_register()

    def test_retry_keeps_ocr(self, mismatched, valify, bsp, selfie_image):
        """Retaking the selfie does not repeat OCR."""
        assert mismatched.retry_selfie() == KYCStep.SELFIE
        assert mismatched.id_front is not None
        assert mismatched.national_id_data is not None

        assert mismatched.capture_selfie(selfie_image) == KYCStep.COMPLETED
        assert valify.ocr_calls == 1
        assert valify.face_calls == 2
        assert bsp.requests[0].face_match_overridden is False

    def test_force_continue_records_override(self, mismatched, bsp):
        assert mismatched.force_continue() == KYCStep.COMPLETED
        assert bsp.requests[0].face_match_overridden is True
        assert bsp.requests[0].face_match_score == 40.0
        assert mismatched.outcome.face_match_overridden

    def test_threshold(self, valify, bsp, store, id_image, selfie_image):
        """A match below the configured threshold is a mismatch."""
        valify.scores = [80.0]
        flow = KYCFlow(valify, bsp, store, "+201012345678", threshold=85.0)
        capture_ids(flow, id_image)
        assert flow.capture_selfie(selfie_image) == KYCStep.FACE_MISMATCH

    def test_face_match_failure_is_mismatch(self, flow, valify, bsp, id_image, selfie_image):
        """A failed face-match call still lets the user choose."""
        valify.face_error = TransportError("down")
        capture_ids(flow, id_image)
        assert flow.capture_selfie(selfie_image) == KYCStep.FACE_MISMATCH
        assert flow.face_match is None
        assert bsp.requests == []


class TestFailures:
    """OCR and registration failures."""

    def test_ocr_failure(self, flow, valify, bsp, id_image, selfie_image):
        """OCR failure ends the flow with a restart action."""
        valify.ocr_error = VerificationError("ID not readable", code="OCR_FAILED")
        capture_ids(flow, id_image)
        assert flow.capture_selfie(selfie_image) == KYCStep.FAILED
        assert flow.error["code"] == "OCR_FAILED"
        assert flow.alert.message == "ID not readable"
        assert [a.action for a in flow.alert.actions] == ["restart"]
        assert valify.face_calls == 0
        assert bsp.requests == []

    def test_registration_failure(self, flow, bsp, store, id_image, selfie_image):
        bsp.register_error = HTTPStatusError("Duplicate national ID", status_code=409)
        capture_ids(flow, id_image)
        assert flow.capture_selfie(selfie_image) == KYCStep.FAILED
        assert flow.outcome is None
        assert store.cached_card() is None
        assert flow.alert.actions[0].action == "restart"

    def test_restart_after_failure(self, flow, valify, id_image, selfie_image):
        valify.ocr_error = VerificationError("blurry")
        capture_ids(flow, id_image)
        flow.capture_selfie(selfie_image)
        flow.restart()
        valify.ocr_error = None
        capture_ids(flow, id_image)
        assert flow.capture_selfie(selfie_image) == KYCStep.COMPLETED


class TestLiveness:
    """Optional liveness check."""

    def test_disabled(self, flow):
        with pytest.raises(FeatureDisabledError):
            flow.check_liveness(b"video")

    def test_enabled(self, valify, bsp, store, id_image, selfie_image):
        flow = KYCFlow(valify, bsp, store, "+201012345678", liveness_enabled=True)
        capture_ids(flow, id_image)
        assert flow.check_liveness(b"video") is True
        flow.capture_selfie(selfie_image)
        assert bsp.requests[0].liveness_verified is True

    def test_wrong_step(self, valify, bsp, store):
        flow = KYCFlow(valify, bsp, store, "+201012345678", liveness_enabled=True)
        with pytest.raises(KYCStateError):
            flow.check_liveness(b"video")


class TestRegistrationSession:
    """Registering a new user against the real backend client."""

    def test_bare_token_session_used_for_card(
        self, valify, config, store, bsp_api, clock, beneficiary_payload, card_payload, id_image, selfie_image
    ):
        """A first-time user with no session still gets their card."""
        bsp_api.add(
            "POST",
            "/auth/register",
            {"beneficiaryId": "BEN-001", "token": "fresh-token", "beneficiary": beneficiary_payload},
        )
        bsp_api.add("GET", "/beneficiary/eshic-card", card_payload)
        client = BSPClient(config, store, transport=bsp_api.transport, clock=clock)
        assert not client.is_authenticated()

        flow = KYCFlow(valify, client, store, "+201012345678")
        capture_ids(flow, id_image)
        assert flow.capture_selfie(selfie_image) == KYCStep.COMPLETED

        card_request = bsp_api.last("GET", "/beneficiary/eshic-card")
        assert card_request.headers["authorization"] == "Bearer fresh-token"
        session = store.load_session()
        assert session.beneficiary_id == "BEN-001"
        assert session.expires_at == NOW + 3600
        assert flow.outcome.card.card_number == "ESHIC-0001"
