"""Home screen and insurance card."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from ..errors import TransportError
from ..state import HomeSummary
from .deps import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["home"])


@router.get("/home")
def get_home(services: Services = Depends(get_services)):
    summary = HomeSummary.load(
        services.bsp,
        services.store,
        policies=services.policies,
        claims=services.claims,
        consents=services.consents,
        notifications=services.notifications,
    )
    return summary.to_dict()


@router.get("/card")
def get_card(services: Services = Depends(get_services)):
    """The ESHIC card, served from the local copy when offline."""
    try:
        card = services.bsp.get_eshic_card(services.bsp.beneficiary_id)
    except TransportError:
        cached = services.store.cached_card()
        if cached is None:
            raise
        logger.info("Serving cached card (backend unreachable)")
        return {"card": cached.to_wire(), "cached": True, "valid": cached.is_valid_on()}
    return {"card": card.to_wire(), "cached": False, "valid": card.is_valid_on()}
