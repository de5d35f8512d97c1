"""Pydantic models for beneficiary records.

Backend (BSP) payloads use camelCase keys; the models accept either the
camelCase alias or the Python field name and dump camelCase with
``by_alias=True``. Identity-verification vendor payloads use snake_case
and are modelled separately.
"""

from __future__ import annotations

import time
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Epoch values above this are milliseconds (the mobile backend sends ms)
_EPOCH_MS_THRESHOLD = 10_000_000_000


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "Gender":
        """Map ``M``/``F`` style codes and free text to a Gender."""
        if not value:
            return cls.UNKNOWN
        normalized = value.strip().lower()
        if normalized in ("m", "male", "ذكر"):
            return cls.MALE
        if normalized in ("f", "female", "أنثى"):
            return cls.FEMALE
        if normalized == "other":
            return cls.OTHER
        return cls.UNKNOWN


class PolicyStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class PolicyType(str, Enum):
    INDIVIDUAL = "individual"
    FAMILY = "family"
    GROUP = "group"


class ClaimStatus(str, Enum):
    SUBMITTED = "submitted"
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    SETTLED = "settled"


class ClaimType(str, Enum):
    CASHLESS = "cashless"
    REIMBURSEMENT = "reimbursement"


class TreatmentType(str, Enum):
    OPD = "opd"
    IPD = "ipd"


class ConsentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    REVOKED = "revoked"


class RequesterType(str, Enum):
    PROVIDER = "provider"
    PAYOR = "payor"
    RESEARCHER = "researcher"
    GOVERNMENT = "government"


class NotificationType(str, Enum):
    CLAIM_UPDATE = "claim_update"
    CONSENT_REQUEST = "consent_request"
    POLICY_UPDATE = "policy_update"
    PAYMENT = "payment"
    SYSTEM = "system"


class MatchConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BSPModel(BaseModel):
    """Base for backend records (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Profile and card ---


class Address(BSPModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None

    def one_line(self) -> str:
        parts = [self.street, self.city, self.state, self.postal_code, self.country]
        return ", ".join(p for p in parts if p)


class EmergencyContact(BSPModel):
    name: str
    relationship: str
    phone: str


class Beneficiary(BSPModel):
    """A registered beneficiary profile."""

    id: str
    national_id: str
    name: str = ""
    full_name_arabic: str | None = None
    full_name_english: str | None = None
    phone: str | None = None
    email: str | None = None
    date_of_birth: str | None = None
    gender: Gender = Gender.UNKNOWN
    address: Address | None = None
    governorate: str | None = None
    eshic_number: str | None = None
    emergency_contact: EmergencyContact | None = None
    profile_photo: str | None = None
    registered_at: str | None = None
    is_verified: bool = False

    @field_validator("gender", mode="before")
    @classmethod
    def parse_gender(cls, v: Any) -> Gender:
        if isinstance(v, Gender):
            return v
        return Gender.parse(v)

    @field_validator("address", mode="before")
    @classmethod
    def parse_address(cls, v: Any) -> Any:
        # Older backend builds send the address as a single line
        if isinstance(v, str):
            return {"street": v}
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.full_name_english or self.full_name_arabic or ""


class InsurerInfo(BSPModel):
    name: str
    phone: str | None = None
    email: str | None = None


class InsuranceCard(BSPModel):
    """ESHIC insurance card issued at registration."""

    card_number: str
    member_name: str | None = None
    membership_id: str | None = None
    beneficiary_id: str | None = None
    national_id: str | None = None
    valid_from: date | None = None
    valid_to: date | None = None
    coverage_type: str | None = None
    qr_code: str | None = None
    insurer_info: InsurerInfo | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_issue_expiry(cls, data: Any) -> Any:
        # The web backend names the window issueDate/expiryDate
        if isinstance(data, dict):
            data = dict(data)
            if "validFrom" not in data and "issueDate" in data:
                data["validFrom"] = data["issueDate"]
            if "validTo" not in data and "expiryDate" in data:
                data["validTo"] = data["expiryDate"]
            if "memberName" not in data and "beneficiaryName" in data:
                data["memberName"] = data["beneficiaryName"]
        return data

    def is_valid_on(self, day: date | None = None) -> bool:
        day = day or date.today()
        if self.valid_from and day < self.valid_from:
            return False
        if self.valid_to and day > self.valid_to:
            return False
        return True


# --- Policies ---


class PolicyMember(BSPModel):
    id: str
    name: str
    relationship: str
    date_of_birth: str | None = None
    gender: str | None = None
    membership_number: str | None = None


class Benefit(BSPModel):
    id: str
    category: str
    description: str = ""
    coverage_limit: float = 0.0
    copay_percentage: float | None = None
    conditions: list[str] = Field(default_factory=list)


class Policy(BSPModel):
    id: str
    policy_number: str
    insurer_name: str
    insurer_code: str | None = None
    insurer_logo: str | None = None
    plan_name: str | None = None
    coverage_amount: float = 0.0
    used_amount: float = 0.0
    currency: str = "EGP"
    status: PolicyStatus
    start_date: date
    end_date: date
    policy_type: PolicyType = PolicyType.INDIVIDUAL
    premium_amount: float | None = None
    members: list[PolicyMember] = Field(default_factory=list)
    benefits: list[Benefit] = Field(default_factory=list)
    network_providers: list[str] = Field(default_factory=list)

    @property
    def remaining_coverage(self) -> float:
        return max(self.coverage_amount - self.used_amount, 0.0)

    @property
    def is_active(self) -> bool:
        return self.status == PolicyStatus.ACTIVE


# --- Claims ---


class ClaimDocument(BSPModel):
    id: str
    name: str
    type: str
    url: str
    uploaded_at: str | None = None
    size: int | None = None


class TimelineEvent(BSPModel):
    id: str
    status: str
    date: str
    description: str = ""
    actor: str | None = None


class Claim(BSPModel):
    id: str
    claim_number: str
    policy_id: str
    policy_number: str | None = None
    insurer_name: str | None = None
    provider_name: str
    provider_type: str | None = None
    status: ClaimStatus
    claim_type: ClaimType = ClaimType.CASHLESS
    treatment_type: TreatmentType = TreatmentType.OPD
    submission_date: str
    treatment_date: str | None = None
    claimed_amount: float
    approved_amount: float | None = None
    settled_amount: float | None = None
    diagnosis: str | None = None
    documents: list[ClaimDocument] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    rejection_reason: str | None = None

    @field_validator("treatment_type", "claim_type", "status", mode="before")
    @classmethod
    def lowercase_enum(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


# --- Consent and notifications ---


class ConsentRequest(BSPModel):
    id: str
    requester_id: str
    requester_name: str
    requester_type: RequesterType = RequesterType.PROVIDER
    purpose: str
    data_requested: list[str] = Field(default_factory=list)
    valid_from: str | None = None
    valid_to: str | None = None
    status: ConsentStatus = ConsentStatus.PENDING
    request_date: str | None = None
    response_date: str | None = None
    description: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        # The web backend reports a denied request as "denied"
        if v == "denied":
            return ConsentStatus.REJECTED
        return v

    @property
    def is_pending(self) -> bool:
        return self.status == ConsentStatus.PENDING


class Notification(BSPModel):
    id: str
    type: NotificationType = NotificationType.SYSTEM
    title: str
    message: str
    timestamp: str
    read: bool = False
    action_url: str | None = None
    metadata: dict[str, Any] | None = None


# --- Session ---


class AuthSession(BSPModel):
    """Tokens issued by the backend at login or registration."""

    access_token: str
    refresh_token: str | None = None
    expires_at: float
    beneficiary_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_expiry(cls, data: Any) -> Any:
        # Relative lifetimes are resolved by the client against its own clock
        if not isinstance(data, dict):
            return data
        data = dict(data)
        expires_at = data.get("expiresAt", data.get("expires_at"))
        if expires_at is not None and float(expires_at) > _EPOCH_MS_THRESHOLD:
            data["expiresAt"] = float(expires_at) / 1000
            data.pop("expires_at", None)
        return data

    def is_expired(self, now: float | None = None) -> bool:
        """A token at or past its expiry timestamp must not be reused."""
        now = time.time() if now is None else now
        return now >= self.expires_at

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at)


# --- Identity verification (vendor, snake_case) ---


class NationalIDData(BaseModel):
    """Fields extracted from the front and back of a national ID."""

    transaction_id: str
    national_id: str
    full_name_arabic: str = ""
    full_name_english: str = ""
    date_of_birth: str
    gender: Gender = Gender.UNKNOWN
    address: str = ""
    governorate: str = ""
    religion: str | None = None
    marital_status: str | None = None
    nationality: str | None = None
    trials_remaining: int | None = None

    @field_validator("gender", mode="before")
    @classmethod
    def parse_gender(cls, v: Any) -> Gender:
        if isinstance(v, Gender):
            return v
        return Gender.parse(v)

    @property
    def full_name(self) -> str:
        return self.full_name_english or self.full_name_arabic


class FaceMatchResult(BaseModel):
    transaction_id: str
    match_score: float = Field(ge=0, le=100)
    is_match: bool
    confidence: MatchConfidence = MatchConfidence.LOW

    def passes(self, threshold: float) -> bool:
        return self.is_match and self.match_score >= threshold


class LivenessResult(BaseModel):
    transaction_id: str
    is_live: bool
    confidence_score: float


# --- Registration ---


class RegistrationRequest(BSPModel):
    """Identity fields and captured images submitted at registration."""

    national_id: str
    phone: str
    name: str
    full_name_arabic: str | None = None
    full_name_english: str | None = None
    date_of_birth: str
    gender: Gender = Gender.UNKNOWN
    address: str | None = None
    governorate: str | None = None
    nationality: str | None = None
    email: str | None = None
    id_front_image: str
    id_back_image: str
    selfie_image: str
    valify_transaction_id: str | None = None
    face_match_score: float | None = None
    face_match_overridden: bool = False
    liveness_verified: bool = False


class RegistrationResult(BSPModel):
    beneficiary_id: str
    eshic_number: str | None = None
    beneficiary: Beneficiary | None = None
    # Filled in by the client from the response tokens
    session: AuthSession | None = Field(default=None, exclude=True)
