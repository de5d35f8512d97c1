"""Identity-verification (Valify) client.

Exchanges vendor credentials for a short-lived bearer token, submits
national ID images for OCR and selfie/ID pairs for face matching.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Union

import httpx

from ..config import ValifyConfig
from ..errors import AuthenticationError, HTTPStatusError, VerificationError
from ..kyc.capture import CapturedImage
from ..models import FaceMatchResult, LivenessResult, NationalIDData
from .base import BaseAPIClient
from .oauth2 import OAuth2Settings, OAuth2TokenManager

logger = logging.getLogger(__name__)

TOKEN_PATH = "/o/token/"
OCR_PATH = "/v1/services/national-id/ocr"
FACE_MATCH_PATH = "/v1/services/face-match"
LIVENESS_PATH = "/v1/services/liveness"

# Tokens are treated as expired this many seconds early
TOKEN_EXPIRY_MARGIN = 300

ImageInput = Union[CapturedImage, bytes]


def _file_part(name: str, image: ImageInput) -> tuple[str, bytes, str]:
    if isinstance(image, CapturedImage):
        return (f"{name}.jpg", image.content, image.mime_type)
    if isinstance(image, (bytes, bytearray)):
        return (f"{name}.jpg", bytes(image), "image/jpeg")
    raise TypeError(f"Unsupported image type: {type(image).__name__}")


class ValifyClient(BaseAPIClient):
    """Client for the identity-verification vendor."""

    service_name = "valify"

    def __init__(
        self,
        config: ValifyConfig,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(config.api_url, timeout=config.timeout, transport=transport)
        self.config = config
        self._clock = clock
        self._token_manager: OAuth2TokenManager | None = None

    @property
    def token_manager(self) -> OAuth2TokenManager:
        if self._token_manager is None:
            self._token_manager = OAuth2TokenManager(
                OAuth2Settings(
                    token_url=TOKEN_PATH,
                    client_id=self.config.client_id,
                    client_secret=self.config.client_secret,
                ),
                expiry_margin=TOKEN_EXPIRY_MARGIN,
                client=self.client,
                clock=self._clock,
            )
        return self._token_manager

    def get_access_token(self) -> str:
        """Return a cached token, exchanging credentials when it has expired.

        Raises:
            AuthenticationError: If credentials are missing or rejected
        """
        if not self.config.client_id or not self.config.client_secret:
            raise AuthenticationError("Valify credentials not configured")
        return self.token_manager.get_token()

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.get_access_token()}"}

    def _submit(
        self,
        path: str,
        files: dict[str, Any],
        failure_code: str,
        failure_message: str,
    ) -> dict[str, Any]:
        try:
            body = self._request("POST", path, files=files)
        except HTTPStatusError as e:
            if e.status_code == 401:
                self.token_manager.invalidate()
                raise AuthenticationError(
                    "Identity verification service rejected the access token",
                    status_code=401,
                ) from e
            raise VerificationError(
                e.message or failure_message,
                code=failure_code,
                status_code=e.status_code,
                details=e.details,
            ) from e

        if not isinstance(body, dict):
            raise VerificationError(failure_message, code=failure_code)
        return body

    def scan_national_id(self, front: ImageInput, back: ImageInput) -> NationalIDData:
        """Extract identity fields from both sides of a national ID.

        Args:
            front: Front side image
            back: Back side image

        Returns:
            Extracted identity fields with the vendor transaction ID

        Raises:
            VerificationError: If the vendor cannot read the document
            MalformedResponseError: If the response is missing fields
        """
        body = self._submit(
            OCR_PATH,
            files={
                "front_image": _file_part("front_image", front),
                "back_image": _file_part("back_image", back),
            },
            failure_code="OCR_FAILED",
            failure_message="Failed to scan National ID",
        )

        data = body.get("data")
        if not isinstance(data, dict):
            raise VerificationError("Failed to scan National ID", code="OCR_FAILED")

        result = self._parse(
            NationalIDData,
            {
                **data,
                "transaction_id": body.get("transaction_id"),
                "trials_remaining": body.get("trials_remaining"),
            },
        )
        self._log("info", f"National ID scanned (transaction {result.transaction_id})")
        return result

    def verify_face_match(self, selfie: ImageInput, id_image: ImageInput) -> FaceMatchResult:
        """Score the similarity between a selfie and the ID photo."""
        body = self._submit(
            FACE_MATCH_PATH,
            files={
                "selfie_image": _file_part("selfie_image", selfie),
                "id_image": _file_part("id_image", id_image),
            },
            failure_code="FACE_MATCH_FAILED",
            failure_message="Failed to verify face match",
        )
        result = self._parse(FaceMatchResult, body)
        self._log(
            "info",
            f"Face match scored {result.match_score} "
            f"(match={result.is_match}, confidence={result.confidence.value})",
        )
        return result

    def verify_liveness(self, video: bytes) -> LivenessResult:
        """Check a short selfie video for liveness."""
        body = self._submit(
            LIVENESS_PATH,
            files={"video": ("video.mp4", video, "video/mp4")},
            failure_code="LIVENESS_FAILED",
            failure_message="Failed to verify liveness",
        )
        return self._parse(LivenessResult, body)
