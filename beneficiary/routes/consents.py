"""Consent requests: review, approve, deny and revoke."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..i18n import translate
from .deps import Services, ensure, get_language, get_services, wire

router = APIRouter(prefix="/api/consents", tags=["consents"])


class DenyRequest(BaseModel):
    reason: str | None = None


@router.get("")
def list_pending(services: Services = Depends(get_services)):
    state = services.consents
    ensure(state, state.fetch_pending())
    return {"pending": wire(state.pending), "count": state.pending_count}


@router.get("/history")
def list_history(services: Services = Depends(get_services)):
    state = services.consents
    ensure(state, state.fetch_history())
    return {"history": wire(state.history)}


@router.get("/{consent_id}")
def get_consent(consent_id: str, services: Services = Depends(get_services)):
    return services.bsp.get_consent(consent_id).to_wire()


@router.post("/{consent_id}/approve")
def approve(
    consent_id: str,
    services: Services = Depends(get_services),
    lang: str = Depends(get_language),
):
    state = services.consents
    ensure(state, state.approve(consent_id))
    return {"id": consent_id, "status": "approved", "message": translate("consent.approved", lang)}


@router.post("/{consent_id}/deny")
def deny(
    consent_id: str,
    body: DenyRequest | None = None,
    services: Services = Depends(get_services),
    lang: str = Depends(get_language),
):
    state = services.consents
    ensure(state, state.deny(consent_id, body.reason if body else None))
    return {"id": consent_id, "status": "rejected", "message": translate("consent.denied", lang)}


@router.post("/{consent_id}/revoke")
def revoke(
    consent_id: str,
    services: Services = Depends(get_services),
    lang: str = Depends(get_language),
):
    state = services.consents
    ensure(state, state.revoke(consent_id))
    return {"id": consent_id, "status": "revoked", "message": translate("consent.revoked", lang)}
