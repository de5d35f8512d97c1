"""Policies, eligibility checks and provider search."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from .deps import Services, ensure, get_services, wire

router = APIRouter(prefix="/api/policies", tags=["policies"])


class EligibilityRequest(BaseModel):
    service_code: str


@router.get("")
def list_policies(services: Services = Depends(get_services)):
    state = services.policies
    ensure(state, state.fetch())
    return {
        "policies": wire(state.policies),
        "active_count": len(state.active_policies),
        "totals": state.totals(),
    }


@router.get("/search")
def search_policies(
    q: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
):
    state = services.policies
    ensure(state, state.search(q))
    return {"query": q, "policies": wire(state.search_results)}


@router.get("/providers/search")
def search_providers(
    provider_type: str | None = Query(default=None, alias="type"),
    location: str | None = None,
    specialty: str | None = None,
    services: Services = Depends(get_services),
):
    providers = services.bsp.search_providers(provider_type, location, specialty)
    return {"providers": providers, "count": len(providers)}


@router.get("/{policy_id}")
def get_policy(policy_id: str, services: Services = Depends(get_services)):
    state = services.policies
    ensure(state, state.select(policy_id))
    policy = state.selected
    return {
        **policy.to_wire(),
        "remainingCoverage": policy.remaining_coverage,
    }


@router.post("/{policy_id}/eligibility")
def check_eligibility(
    policy_id: str,
    body: EligibilityRequest,
    services: Services = Depends(get_services),
):
    """Ask the insurer whether a service is covered under this policy."""
    policy = services.bsp.get_policy(policy_id)
    return services.bsp.check_eligibility(body.service_code, policy)
