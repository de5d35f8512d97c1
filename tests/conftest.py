"""Pytest configuration and fixtures."""

from __future__ import annotations

import io
import json
from typing import Any, Callable

import httpx
import pytest
from cryptography.fernet import Fernet
from PIL import Image

from beneficiary.config import AppConfig, BSPConfig, RuntimeConfig, ValifyConfig
from beneficiary.models import AuthSession
from beneficiary.session.store import SessionStore

BSP_URL = "http://bsp.test/api/v1"
VALIFY_URL = "http://valify.test"
NOW = 1_700_000_000.0


class FakeClock:
    """Controllable time source."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAPI:
    """Routes requests to canned responses and records every call.

    Paths are registered relative to ``prefix``. A route may be a JSON
    body, an ``httpx.Response``, or a callable taking the request.
    """

    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, body: Any = None, status: int = 200) -> None:
        if callable(body) or isinstance(body, httpx.Response):
            self.routes[(method, self.prefix + path)] = body
        else:
            self.routes[(method, self.prefix + path)] = httpx.Response(status, json=body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": f"No route for {request.url.path}"})
        if isinstance(route, httpx.Response):
            return httpx.Response(
                route.status_code, content=route.content, headers=route.headers
            )
        return route(request)

    def count(self, method: str, path: str) -> int:
        full = self.prefix + path
        return sum(1 for r in self.calls if r.method == method and r.url.path == full)

    def last(self, method: str, path: str) -> httpx.Request:
        full = self.prefix + path
        return [r for r in self.calls if r.method == method and r.url.path == full][-1]

    def last_json(self, method: str, path: str) -> Any:
        return json.loads(self.last(method, path).content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def make_jpeg(width: int, height: int, level: int | None = None) -> bytes:
    """Encode a JPEG; a gradient by default, a flat gray when ``level`` is set."""
    if level is None:
        image = Image.linear_gradient("L").resize((width, height)).convert("RGB")
    else:
        image = Image.new("RGB", (width, height), (level, level, level))
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def fernet_key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "session.db")


@pytest.fixture
def store(db_path: str, fernet_key: str) -> SessionStore:
    return SessionStore(db_path, fernet_key)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(db_path: str, fernet_key: str) -> AppConfig:
    return AppConfig(
        bsp=BSPConfig(api_url=BSP_URL, api_key="bsp-key", timeout=5.0),
        valify=ValifyConfig(
            api_url=VALIFY_URL, client_id="vid", client_secret="vsecret", timeout=5.0
        ),
        app=RuntimeConfig(
            enable_logging=False, session_db_path=db_path, encryption_key=fernet_key
        ),
    )


@pytest.fixture
def bsp_api() -> FakeAPI:
    return FakeAPI(prefix="/api/v1")


@pytest.fixture
def valify_api() -> FakeAPI:
    api = FakeAPI()
    api.add("POST", "/o/token/", {"access_token": "vtoken", "expires_in": 3600})
    return api


@pytest.fixture
def session_factory() -> Callable[..., AuthSession]:
    def factory(
        expires_at: float = NOW + 3600,
        refresh_token: str | None = "refresh-1",
        access_token: str = "access-1",
    ) -> AuthSession:
        return AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            beneficiary_id="BEN-001",
        )

    return factory


@pytest.fixture
def id_image() -> bytes:
    return make_jpeg(800, 500)


@pytest.fixture
def selfie_image() -> bytes:
    return make_jpeg(400, 400)


@pytest.fixture
def beneficiary_payload() -> dict[str, Any]:
    return {
        "id": "BEN-001",
        "nationalId": "29001011234567",
        "name": "Ahmed Hassan",
        "fullNameArabic": "أحمد حسن",
        "phone": "+201012345678",
        "dateOfBirth": "1990-01-01",
        "gender": "M",
        "address": "12 Tahrir St, Cairo",
        "governorate": "Cairo",
        "eshicNumber": "ESHIC-0001",
        "isVerified": True,
    }


@pytest.fixture
def card_payload() -> dict[str, Any]:
    return {
        "cardNumber": "ESHIC-0001",
        "beneficiaryName": "Ahmed Hassan",
        "membershipId": "MEM-1",
        "issueDate": "2024-01-01",
        "expiryDate": "2030-12-31",
        "coverageType": "comprehensive",
        "insurerInfo": {"name": "Misr Insurance", "phone": "19000"},
    }


@pytest.fixture
def policy_payload() -> dict[str, Any]:
    return {
        "id": "POL-1",
        "policyNumber": "P-2024-001",
        "insurerName": "Misr Insurance",
        "insurerCode": "INS001",
        "coverageAmount": 100000,
        "usedAmount": 25000,
        "status": "active",
        "startDate": "2024-01-01",
        "endDate": "2030-12-31",
        "policyType": "family",
    }


@pytest.fixture
def claim_payload() -> dict[str, Any]:
    return {
        "id": "CLM-1",
        "claimNumber": "C-0001",
        "policyId": "POL-1",
        "providerName": "Cairo Hospital",
        "status": "APPROVED",
        "claimType": "cashless",
        "treatmentType": "OPD",
        "submissionDate": "2024-05-01",
        "claimedAmount": 1500.0,
        "approvedAmount": 1200.0,
    }


@pytest.fixture
def consent_payload() -> Callable[..., dict[str, Any]]:
    def factory(consent_id: str = "CON-1", status: str = "pending") -> dict[str, Any]:
        return {
            "id": consent_id,
            "requesterId": "PRV-9",
            "requesterName": "Cairo Hospital",
            "requesterType": "provider",
            "purpose": "Treatment",
            "dataRequested": ["claims", "diagnoses"],
            "status": status,
            "requestDate": "2024-05-02",
        }

    return factory


@pytest.fixture
def ocr_response() -> dict[str, Any]:
    return {
        "transaction_id": "TX-OCR",
        "trials_remaining": 4,
        "data": {
            "national_id": "29001011234567",
            "full_name_arabic": "أحمد حسن",
            "full_name_english": "Ahmed Hassan",
            "date_of_birth": "1990-01-01",
            "gender": "ذكر",
            "address": "12 Tahrir St",
            "governorate": "Cairo",
            "nationality": "Egyptian",
        },
    }


@pytest.fixture
def face_match_response() -> Callable[..., dict[str, Any]]:
    def factory(score: float = 92.0, is_match: bool = True) -> dict[str, Any]:
        return {
            "transaction_id": "TX-FACE",
            "match_score": score,
            "is_match": is_match,
            "confidence": "high" if is_match else "low",
        }

    return factory
