"""Claims, documents and reimbursement submission."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..models import ClaimStatus
from .deps import Services, ensure, get_services, wire

router = APIRouter(prefix="/api/claims", tags=["claims"])


class ReimbursementRequest(BaseModel):
    policy_id: str
    provider_id: str
    treatment_date: date
    diagnosis: str
    claimed_amount: float = Field(gt=0)
    documents: list[str] = Field(default_factory=list)


@router.get("")
def list_claims(
    status: ClaimStatus | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    services: Services = Depends(get_services),
):
    state = services.claims
    ensure(
        state,
        state.fetch(
            status=status,
            start_date=start_date.isoformat() if start_date else None,
            end_date=end_date.isoformat() if end_date else None,
        ),
    )
    return {"claims": wire(state.claims), "counts": state.counts_by_status()}


@router.post("/reimbursement", status_code=201)
def submit_reimbursement(
    body: ReimbursementRequest,
    services: Services = Depends(get_services),
):
    claim_id = services.bsp.submit_reimbursement_claim(
        policy_id=body.policy_id,
        provider_id=body.provider_id,
        treatment_date=body.treatment_date.isoformat(),
        diagnosis=body.diagnosis,
        claimed_amount=body.claimed_amount,
        documents=body.documents,
    )
    return {"claim_id": claim_id}


@router.get("/documents/{document_id}/download")
def download_document(document_id: str, services: Services = Depends(get_services)):
    return {"url": services.bsp.download_claim_document(document_id)}


@router.get("/{claim_id}")
def get_claim(claim_id: str, services: Services = Depends(get_services)):
    state = services.claims
    ensure(state, state.select(claim_id))
    return {"claim": state.selected.to_wire(), "timeline": wire(state.timeline)}


@router.get("/{claim_id}/documents")
def get_claim_documents(claim_id: str, services: Services = Depends(get_services)):
    return {"documents": wire(services.bsp.get_claim_documents(claim_id))}


@router.get("/{claim_id}/timeline")
def get_claim_timeline(claim_id: str, services: Services = Depends(get_services)):
    return {"timeline": wire(services.bsp.get_claim_timeline(claim_id))}
