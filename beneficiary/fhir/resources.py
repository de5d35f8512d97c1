"""HL7 FHIR R4 resource helpers.

Builds the Patient, Coverage, Claim, CoverageEligibilityRequest and
Communication resources submitted through the HCX gateway, following the
HCX implementation guide v0.9 profiles, and reads values back out of
resources and bundles returned by the backend.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable

logger = logging.getLogger(__name__)

HCX_PROFILE_BASE = "https://ig.hcxprotocol.io/v0.9/StructureDefinition"
NATIONAL_ID_SYSTEM = "https://nid.gov.eg"
HCX_IDENTIFIER_BASE = "https://hcx.eg/identifiers"
IDENTIFIER_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/v2-0203"
CLAIM_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/claim-type"
PROCESS_PRIORITY_SYSTEM = "http://terminology.hl7.org/CodeSystem/processpriority"
DEFAULT_CURRENCY = "EGP"

BUNDLE_TYPES = ("document", "message", "transaction", "collection")
CLAIM_USES = ("claim", "preauthorization", "predetermination")

# HCX identifier kinds and their v2-0203 type codes
HCX_IDENTIFIER_TYPES = {
    "claim": "CLM",
    "preauth": "PAU",
    "policy": "POL",
}

GENDER_CODES = {
    "m": "male",
    "male": "male",
    "f": "female",
    "female": "female",
    "other": "other",
}


def generate_id() -> str:
    return str(uuid.uuid4())


def format_date(value: date | datetime) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def format_datetime(value: datetime | None = None) -> str:
    value = value or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def fhir_gender(value: str | None) -> str:
    if not value:
        return "unknown"
    return GENDER_CODES.get(value.strip().lower(), "unknown")


def _profile(name: str) -> dict[str, Any]:
    return {"profile": [f"{HCX_PROFILE_BASE}/{name}"]}


# --- Datatypes ---


def codeable_concept(
    system: str,
    code: str,
    display: str | None = None,
    text: str | None = None,
) -> dict[str, Any]:
    coding: dict[str, Any] = {"system": system, "code": code}
    if display:
        coding["display"] = display
    concept: dict[str, Any] = {"coding": [coding]}
    if text:
        concept["text"] = text
    return concept


def reference(resource_type: str, resource_id: str, display: str | None = None) -> dict[str, Any]:
    ref: dict[str, Any] = {"reference": f"{resource_type}/{resource_id}"}
    if display:
        ref["display"] = display
    return ref


def money(value: float, currency: str = DEFAULT_CURRENCY) -> dict[str, Any]:
    return {"value": round(float(value), 2), "currency": currency}


def hcx_identifier(value: str, kind: str) -> dict[str, Any]:
    """Build an HCX business identifier for a claim, pre-auth or policy.

    Raises:
        ValueError: For an unknown identifier kind
    """
    if kind not in HCX_IDENTIFIER_TYPES:
        raise ValueError(
            f"Unknown identifier kind: {kind}. Available: {list(HCX_IDENTIFIER_TYPES)}"
        )
    return {
        "system": f"{HCX_IDENTIFIER_BASE}/{kind}",
        "value": value,
        "type": codeable_concept(
            IDENTIFIER_TYPE_SYSTEM, HCX_IDENTIFIER_TYPES[kind], kind.capitalize()
        ),
    }


# --- Resources ---


def create_patient(
    national_id: str,
    name: str,
    gender: str,
    birth_date: str,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
    patient_id: str | None = None,
) -> dict[str, Any]:
    """Build an HCX Patient resource identified by the national ID."""
    patient: dict[str, Any] = {
        "resourceType": "Patient",
        "id": patient_id or generate_id(),
        "meta": _profile("HCXPatient"),
        "identifier": [
            {
                "system": NATIONAL_ID_SYSTEM,
                "value": national_id,
                "type": codeable_concept(
                    IDENTIFIER_TYPE_SYSTEM, "NI", "National Identifier"
                ),
            }
        ],
        "name": [{"use": "official", "text": name}],
        "gender": fhir_gender(gender),
        "birthDate": birth_date,
    }

    telecom = []
    if phone:
        telecom.append({"system": "phone", "value": phone, "use": "mobile"})
    if email:
        telecom.append({"system": "email", "value": email})
    if telecom:
        patient["telecom"] = telecom

    if address:
        patient["address"] = [{"use": "home", "text": address, "country": "EG"}]

    return patient


def create_coverage(
    patient_id: str,
    insurer_code: str,
    policy_number: str,
    status: str = "active",
    period_start: str | None = None,
    period_end: str | None = None,
    coverage_id: str | None = None,
) -> dict[str, Any]:
    coverage: dict[str, Any] = {
        "resourceType": "Coverage",
        "id": coverage_id or generate_id(),
        "meta": _profile("HCXCoverage"),
        "identifier": [hcx_identifier(policy_number, "policy")],
        "status": status,
        "subscriberId": policy_number,
        "beneficiary": reference("Patient", patient_id),
        "payor": [reference("Organization", insurer_code)],
    }
    if period_start or period_end:
        coverage["period"] = {
            k: v for k, v in (("start", period_start), ("end", period_end)) if v
        }
    return coverage


def create_claim(
    claim_number: str,
    patient_id: str,
    insurer_code: str,
    provider_code: str,
    coverage_id: str,
    items: Iterable[dict[str, Any]],
    use: str = "claim",
    claim_type: str = "institutional",
    currency: str = DEFAULT_CURRENCY,
    claim_id: str | None = None,
) -> dict[str, Any]:
    """Build an HCX Claim (or pre-authorization) resource.

    Args:
        claim_number: Business identifier for the claim
        patient_id: Patient resource id
        insurer_code: Payor participant code
        provider_code: Provider participant code
        coverage_id: Coverage resource id
        items: Service lines with ``code``, optional ``display``,
            ``quantity`` (default 1) and ``unit_price``
        use: claim, preauthorization or predetermination
        claim_type: HL7 claim-type code
        currency: Currency for all amounts

    Raises:
        ValueError: For an unknown use or an item without a code
    """
    if use not in CLAIM_USES:
        raise ValueError(f"Invalid claim use: {use}")

    claim_items = []
    total = 0.0
    for sequence, item in enumerate(items, start=1):
        if not item.get("code"):
            raise ValueError(f"Claim item {sequence} is missing a code")
        quantity = item.get("quantity", 1)
        unit_price = float(item.get("unit_price", 0))
        net = quantity * unit_price
        total += net
        claim_items.append(
            {
                "sequence": sequence,
                "productOrService": {
                    "coding": [
                        {
                            "system": item.get("system", f"{HCX_IDENTIFIER_BASE}/services"),
                            "code": item["code"],
                            **({"display": item["display"]} if item.get("display") else {}),
                        }
                    ]
                },
                "quantity": {"value": quantity},
                "unitPrice": money(unit_price, currency),
                "net": money(net, currency),
            }
        )

    kind = "preauth" if use == "preauthorization" else "claim"
    return {
        "resourceType": "Claim",
        "id": claim_id or generate_id(),
        "meta": _profile("HCXClaim"),
        "identifier": [hcx_identifier(claim_number, kind)],
        "status": "active",
        "type": codeable_concept(CLAIM_TYPE_SYSTEM, claim_type),
        "use": use,
        "patient": reference("Patient", patient_id),
        "created": format_datetime(),
        "insurer": reference("Organization", insurer_code),
        "provider": reference("Organization", provider_code),
        "priority": codeable_concept(PROCESS_PRIORITY_SYSTEM, "normal"),
        "insurance": [
            {"sequence": 1, "focal": True, "coverage": reference("Coverage", coverage_id)}
        ],
        "item": claim_items,
        "total": money(total, currency),
    }


def create_coverage_eligibility_request(
    patient_id: str,
    insurer_code: str,
    coverage_id: str,
    service_code: str | None = None,
    provider_code: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    request: dict[str, Any] = {
        "resourceType": "CoverageEligibilityRequest",
        "id": request_id or generate_id(),
        "meta": _profile("CoverageEligibilityRequest"),
        "status": "active",
        "purpose": ["benefits", "validation"],
        "patient": reference("Patient", patient_id),
        "created": format_datetime(),
        "insurer": reference("Organization", insurer_code),
        "insurance": [{"focal": True, "coverage": reference("Coverage", coverage_id)}],
    }
    if provider_code:
        request["provider"] = reference("Organization", provider_code)
    if service_code:
        request["item"] = [
            {
                "productOrService": codeable_concept(
                    f"{HCX_IDENTIFIER_BASE}/services", service_code
                )
            }
        ]
    return request


def create_communication(
    about_reference: dict[str, Any],
    text: str,
    sender: dict[str, Any] | None = None,
    recipient: dict[str, Any] | None = None,
    attachments: Iterable[dict[str, Any]] = (),
    communication_id: str | None = None,
) -> dict[str, Any]:
    """Build a Communication answering an information request.

    ``attachments`` are FHIR Attachment dicts (contentType, data, title).
    """
    payload: list[dict[str, Any]] = [{"contentString": text}]
    payload.extend({"contentAttachment": a} for a in attachments)

    communication: dict[str, Any] = {
        "resourceType": "Communication",
        "id": communication_id or generate_id(),
        "meta": _profile("HCXCommunication"),
        "status": "completed",
        "about": [about_reference],
        "sent": format_datetime(),
        "payload": payload,
    }
    if sender:
        communication["sender"] = sender
    if recipient:
        communication["recipient"] = [recipient]
    return communication


# --- Bundles ---


def create_bundle(bundle_type: str, resources: Iterable[dict[str, Any]]) -> dict[str, Any]:
    if bundle_type not in BUNDLE_TYPES:
        raise ValueError(f"Invalid bundle type: {bundle_type}")

    entries = []
    for resource in resources:
        resource_id = resource.get("id") or generate_id()
        entries.append({"fullUrl": f"urn:uuid:{resource_id}", "resource": resource})

    return {
        "resourceType": "Bundle",
        "id": generate_id(),
        "type": bundle_type,
        "timestamp": format_datetime(),
        "entry": entries,
    }


def parse_bundle(bundle: dict[str, Any]) -> list[dict[str, Any]]:
    return [entry["resource"] for entry in bundle.get("entry", []) if entry.get("resource")]


def find_resource(bundle: dict[str, Any], resource_type: str) -> dict[str, Any] | None:
    for resource in parse_bundle(bundle):
        if resource.get("resourceType") == resource_type:
            return resource
    return None


def find_all_resources(bundle: dict[str, Any], resource_type: str) -> list[dict[str, Any]]:
    return [r for r in parse_bundle(bundle) if r.get("resourceType") == resource_type]


def validate_bundle(bundle: Any) -> tuple[bool, list[str]]:
    """Check the structural requirements of a bundle.

    Returns:
        Tuple of (valid, errors)
    """
    errors: list[str] = []

    if not isinstance(bundle, dict):
        return False, ["Invalid bundle: expected an object"]

    if bundle.get("resourceType") != "Bundle":
        errors.append('Invalid bundle: resourceType must be "Bundle"')

    if not bundle.get("type"):
        errors.append("Invalid bundle: type is required")
    elif bundle["type"] not in BUNDLE_TYPES:
        errors.append(f"Invalid bundle: unsupported type {bundle['type']!r}")

    entries = bundle.get("entry")
    if not isinstance(entries, list):
        errors.append("Invalid bundle: entry array is required")
    else:
        for index, entry in enumerate(entries):
            resource = entry.get("resource") if isinstance(entry, dict) else None
            if not resource:
                errors.append(f"Invalid entry at index {index}: resource is required")
            elif not resource.get("resourceType"):
                errors.append(f"Invalid entry at index {index}: resourceType is required")

    return not errors, errors


# --- Readers ---


def get_codeable_concept_code(concept: dict[str, Any] | None) -> str | None:
    """Extract the first code from a CodeableConcept, falling back to its text."""
    if not concept:
        return None
    codings = concept.get("coding", [])
    if codings:
        return codings[0].get("code")
    return concept.get("text")


def get_reference(ref: dict[str, Any] | None) -> str | None:
    if not ref:
        return None
    return ref.get("reference")


def get_money(value: dict[str, Any] | None) -> float | None:
    if not value:
        return None
    return value.get("value")


def extract_claim_amount(claim: dict[str, Any]) -> float:
    """Claim total, else the sum of item nets, else 0."""
    total = get_money(claim.get("total"))
    if total:
        return float(total)
    items = claim.get("item") or []
    return float(sum(get_money(item.get("net")) or 0 for item in items))


def extract_patient_name(patient: dict[str, Any]) -> str:
    names = patient.get("name") or []
    if names:
        name = names[0]
        if name.get("text"):
            return name["text"]
        parts = list(name.get("given", []))
        if name.get("family"):
            parts.append(name["family"])
        if parts:
            return " ".join(parts)
    return "Unknown Patient"


def extract_identifier_value(resource: dict[str, Any], system: str) -> str | None:
    for identifier in resource.get("identifier") or []:
        if identifier.get("system") == system:
            return identifier.get("value")
    return None
