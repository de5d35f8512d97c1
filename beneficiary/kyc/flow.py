"""KYC orchestration.

Walks a new beneficiary through capturing both sides of the national ID
and a selfie, then runs OCR, face matching and registration:

    INTRO -> ID_FRONT -> ID_BACK -> SELFIE -> PROCESSING
          -> (FACE_MISMATCH) -> REGISTERING -> COMPLETED

Any step after PROCESSING may end in FAILED with an alert whose only
action restarts the flow. A face mismatch offers retaking the selfie or
continuing with the override recorded. Nothing is rolled back: a failure
after registration leaves the backend record in place.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import ClientError, FeatureDisabledError, KYCStateError
from ..i18n import Alert, AlertAction, translate
from ..models import (
    Beneficiary,
    FaceMatchResult,
    InsuranceCard,
    NationalIDData,
    RegistrationRequest,
)
from .capture import CapturedImage, CaptureKind, ImageSource, capture_image

logger = logging.getLogger(__name__)

DEFAULT_FACE_MATCH_THRESHOLD = 70.0


class KYCStep(str, Enum):
    INTRO = "intro"
    ID_FRONT = "id_front"
    ID_BACK = "id_back"
    SELFIE = "selfie"
    PROCESSING = "processing"
    FACE_MISMATCH = "face_mismatch"
    REGISTERING = "registering"
    COMPLETED = "completed"
    FAILED = "failed"


# Position shown in the progress indicator
STEP_INDEX = {
    KYCStep.INTRO: 0,
    KYCStep.ID_FRONT: 1,
    KYCStep.ID_BACK: 2,
    KYCStep.SELFIE: 3,
    KYCStep.PROCESSING: 4,
    KYCStep.FACE_MISMATCH: 4,
    KYCStep.REGISTERING: 5,
    KYCStep.COMPLETED: 6,
    KYCStep.FAILED: 6,
}
TOTAL_STEPS = 6


@dataclass
class KYCOutcome:
    """What a completed registration produced."""

    beneficiary_id: str
    eshic_number: str | None
    card: InsuranceCard | None
    beneficiary: Beneficiary | None
    face_match_score: float | None
    face_match_overridden: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "beneficiary_id": self.beneficiary_id,
            "eshic_number": self.eshic_number,
            "card": self.card.to_wire() if self.card else None,
            "beneficiary": self.beneficiary.to_wire() if self.beneficiary else None,
            "face_match_score": self.face_match_score,
            "face_match_overridden": self.face_match_overridden,
        }


class KYCFlow:
    """State machine for one identity verification and registration."""

    def __init__(
        self,
        valify: Any,
        bsp: Any,
        store: Any,
        phone_number: str,
        threshold: float = DEFAULT_FACE_MATCH_THRESHOLD,
        lang: str | None = None,
        liveness_enabled: bool = False,
        flow_id: str | None = None,
    ) -> None:
        """Initialize the flow.

        Args:
            valify: Identity-verification client
            bsp: Backend client used for registration and the card
            store: Session store receiving the profile and card
            phone_number: Verified phone number (E.164)
            threshold: Minimum face-match score (0-100)
            lang: Language for alerts and progress messages
            liveness_enabled: Whether the liveness check may be used
            flow_id: Identifier; generated when omitted
        """
        self.id = flow_id or str(uuid.uuid4())
        self.valify = valify
        self.bsp = bsp
        self.store = store
        self.phone_number = phone_number
        self.threshold = threshold
        self.lang = lang
        self.liveness_enabled = liveness_enabled
        self._lock = threading.Lock()
        self._reset()

    def _reset(self) -> None:
        self.step = KYCStep.INTRO
        self.id_front: CapturedImage | None = None
        self.id_back: CapturedImage | None = None
        self.selfie: CapturedImage | None = None
        self.national_id_data: NationalIDData | None = None
        self.face_match: FaceMatchResult | None = None
        self.face_match_passed = False
        self.face_match_overridden = False
        self.liveness_verified = False
        self.alert: Alert | None = None
        self.error: dict[str, Any] | None = None
        self.outcome: KYCOutcome | None = None
        self._message_key: str | None = None

    # --- transitions ---

    def _move(self, step: KYCStep) -> None:
        logger.info(f"KYC {self.id}: {self.step.value} -> {step.value}")
        self.step = step

    def _require(self, *steps: KYCStep) -> None:
        if self.step not in steps:
            expected = ", ".join(s.value for s in steps)
            raise KYCStateError(
                f"Cannot do this at step {self.step.value} (expected {expected})",
                details={"step": self.step.value},
            )

    def start(self) -> KYCStep:
        with self._lock:
            self._require(KYCStep.INTRO)
            self._move(KYCStep.ID_FRONT)
            return self.step

    def capture_id_front(self, source: ImageSource) -> KYCStep:
        with self._lock:
            self._require(KYCStep.ID_FRONT)
            self.id_front = capture_image(source, CaptureKind.ID_FRONT)
            self._move(KYCStep.ID_BACK)
            return self.step

    def capture_id_back(self, source: ImageSource) -> KYCStep:
        with self._lock:
            self._require(KYCStep.ID_BACK)
            self.id_back = capture_image(source, CaptureKind.ID_BACK)
            self._move(KYCStep.SELFIE)
            return self.step

    def capture_selfie(self, source: ImageSource) -> KYCStep:
        """Store the selfie and run OCR, face matching and registration."""
        with self._lock:
            self._require(KYCStep.SELFIE)
            self.selfie = capture_image(source, CaptureKind.SELFIE)
            self._move(KYCStep.PROCESSING)
            self._process()
            return self.step

    def check_liveness(self, video: bytes) -> bool:
        with self._lock:
            if not self.liveness_enabled:
                raise FeatureDisabledError("Liveness check is disabled")
            self._require(KYCStep.SELFIE, KYCStep.FACE_MISMATCH)
            result = self.valify.verify_liveness(video)
            self.liveness_verified = result.is_live
            return self.liveness_verified

    def retry_selfie(self) -> KYCStep:
        """Go back to the selfie, keeping the ID images and the OCR result."""
        with self._lock:
            self._require(KYCStep.FACE_MISMATCH)
            self.selfie = None
            self.face_match = None
            self.face_match_passed = False
            self.alert = None
            self._move(KYCStep.SELFIE)
            return self.step

    def force_continue(self) -> KYCStep:
        """Register despite a failed face match."""
        with self._lock:
            self._require(KYCStep.FACE_MISMATCH)
            self.face_match_overridden = True
            self.alert = None
            logger.warning(f"KYC {self.id}: face match overridden by user")
            self._register()
            return self.step

    def restart(self) -> KYCStep:
        with self._lock:
            logger.info(f"KYC {self.id}: restarted from {self.step.value}")
            self._reset()
            return self.step

    # --- processing ---

    def _process(self) -> None:
        if self.national_id_data is None:
            self._message_key = "kyc.reading_id"
            try:
                self.national_id_data = self.valify.scan_national_id(
                    self.id_front, self.id_back
                )
            except ClientError as e:
                self._fail("kyc.verification_failed", e)
                return

        self._message_key = "kyc.matching_face"
        try:
            self.face_match = self.valify.verify_face_match(self.selfie, self.id_front)
        except ClientError as e:
            logger.warning(f"KYC {self.id}: face match call failed: {e.code}")
            self.face_match = None

        self.face_match_passed = bool(
            self.face_match and self.face_match.passes(self.threshold)
        )
        if not self.face_match_passed:
            self.alert = Alert(
                title=translate("kyc.face_mismatch.title", self.lang),
                message=translate("kyc.face_mismatch.message", self.lang),
                actions=[
                    AlertAction(translate("action.retry", self.lang), "retry_selfie"),
                    AlertAction(translate("action.continue", self.lang), "continue"),
                ],
            )
            self._move(KYCStep.FACE_MISMATCH)
            return

        self._register()

    def can_register(self) -> bool:
        return (
            self.id_front is not None
            and self.id_back is not None
            and self.selfie is not None
            and self.national_id_data is not None
            and (self.face_match_passed or self.face_match_overridden)
        )

    def _registration_request(self) -> RegistrationRequest:
        data = self.national_id_data
        return RegistrationRequest(
            national_id=data.national_id,
            phone=self.phone_number,
            name=data.full_name,
            full_name_arabic=data.full_name_arabic or None,
            full_name_english=data.full_name_english or None,
            date_of_birth=data.date_of_birth,
            gender=data.gender,
            address=data.address or None,
            governorate=data.governorate or None,
            nationality=data.nationality,
            id_front_image=self.id_front.as_base64(),
            id_back_image=self.id_back.as_base64(),
            selfie_image=self.selfie.as_base64(),
            valify_transaction_id=data.transaction_id,
            face_match_score=self.face_match.match_score if self.face_match else None,
            face_match_overridden=self.face_match_overridden,
            liveness_verified=self.liveness_verified,
        )

    def _register(self) -> None:
        if not self.can_register():
            raise KYCStateError(
                "Registration requires both ID images, the selfie, OCR data "
                "and a passing or overridden face match",
                details={"step": self.step.value},
            )

        self._move(KYCStep.REGISTERING)
        self._message_key = "kyc.creating_account"
        try:
            result = self.bsp.register(self._registration_request())
            self._message_key = "kyc.issuing_card"
            card = self.bsp.get_eshic_card(result.beneficiary_id)
        except ClientError as e:
            self._fail("kyc.registration_failed", e)
            return

        if result.beneficiary is not None:
            self.store.cache_profile(result.beneficiary)
        self.store.cache_card(card)

        self.outcome = KYCOutcome(
            beneficiary_id=result.beneficiary_id,
            eshic_number=result.eshic_number or card.card_number,
            card=card,
            beneficiary=result.beneficiary,
            face_match_score=self.face_match.match_score if self.face_match else None,
            face_match_overridden=self.face_match_overridden,
        )
        self._message_key = "kyc.completed"
        self._move(KYCStep.COMPLETED)

    def _fail(self, key: str, error: ClientError) -> None:
        logger.warning(f"KYC {self.id}: {key} ({error.code})")
        self.error = error.to_dict()
        self.alert = Alert(
            title=translate(f"{key}.title", self.lang),
            message=error.message or translate(f"{key}.message", self.lang),
            actions=[AlertAction(translate("action.retry", self.lang), "restart")],
        )
        self._message_key = None
        self._move(KYCStep.FAILED)

    # --- views ---

    @property
    def progress(self) -> dict[str, Any]:
        return {
            "step": self.step.value,
            "index": STEP_INDEX[self.step],
            "total": TOTAL_STEPS,
            "message": translate(self._message_key, self.lang) if self._message_key else None,
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.national_id_data
        return {
            "id": self.id,
            "progress": self.progress,
            "captured": {
                "id_front": self.id_front is not None,
                "id_back": self.id_back is not None,
                "selfie": self.selfie is not None,
            },
            "national_id": data.model_dump(mode="json") if data else None,
            "face_match": self.face_match.model_dump(mode="json") if self.face_match else None,
            "face_match_overridden": self.face_match_overridden,
            "liveness_verified": self.liveness_verified,
            "alert": self.alert.to_dict() if self.alert else None,
            "error": self.error,
            "outcome": self.outcome.to_dict() if self.outcome else None,
        }
