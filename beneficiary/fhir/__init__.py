"""FHIR R4 resource builders and readers for HCX submissions."""

from .resources import (
    create_bundle,
    create_claim,
    create_communication,
    create_coverage,
    create_coverage_eligibility_request,
    create_patient,
    find_all_resources,
    find_resource,
    parse_bundle,
    validate_bundle,
)

__all__ = [
    "create_bundle",
    "create_claim",
    "create_communication",
    "create_coverage",
    "create_coverage_eligibility_request",
    "create_patient",
    "find_all_resources",
    "find_resource",
    "parse_bundle",
    "validate_bundle",
]
