"""Profile, password, photo, notifications and preferences."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel, Field

from ..kyc.capture import CaptureKind, capture_image
from ..utils.sanitization import sanitize_filename
from .deps import Services, ensure, get_services, wire

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["profile"])

# Fields the beneficiary may change; identity fields come from KYC only
EDITABLE_FIELDS = {"email", "phone", "address", "governorate", "emergencyContact"}


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


class SubscribeRequest(BaseModel):
    device_token: str


@router.get("/profile")
def get_profile(services: Services = Depends(get_services)):
    state = services.auth
    ensure(state, state.fetch_profile())
    return state.user.to_wire()


@router.put("/profile")
def update_profile(updates: dict[str, Any], services: Services = Depends(get_services)):
    allowed = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS}
    profile = services.bsp.update_profile(allowed)
    services.auth.user = profile
    return profile.to_wire()


@router.put("/profile/password")
def change_password(body: PasswordChangeRequest, services: Services = Depends(get_services)):
    updated = services.bsp.update_password(body.current_password, body.new_password)
    return {"updated": updated}


@router.post("/profile/photo")
def upload_photo(file: UploadFile = File(...), services: Services = Depends(get_services)):
    logger.info(f"Profile photo upload: {sanitize_filename(file.filename)}")
    image = capture_image(file.file.read(), CaptureKind.SELFIE)
    return {"url": services.bsp.upload_profile_photo(image)}


@router.get("/profile/preferences")
def get_preferences(services: Services = Depends(get_services)):
    return services.store.preferences()


@router.put("/profile/preferences")
def set_preferences(values: dict[str, Any], services: Services = Depends(get_services)):
    for name, value in values.items():
        services.store.set_preference(name, value)
    return services.store.preferences()


@router.get("/notifications")
def list_notifications(unread_only: bool = False, services: Services = Depends(get_services)):
    state = services.notifications
    ensure(state, state.fetch(unread_only))
    return {"notifications": wire(state.notifications), "unread_count": state.unread_count}


@router.post("/notifications/subscribe")
def subscribe(body: SubscribeRequest, services: Services = Depends(get_services)):
    return {"subscribed": services.bsp.subscribe_notifications(body.device_token)}


@router.post("/notifications/read-all")
def mark_all_read(services: Services = Depends(get_services)):
    state = services.notifications
    ensure(state, state.mark_all_read())
    return {"unread_count": state.unread_count}


@router.post("/notifications/{notification_id}/read")
def mark_read(notification_id: str, services: Services = Depends(get_services)):
    state = services.notifications
    ensure(state, state.mark_read(notification_id))
    return {"unread_count": state.unread_count}
