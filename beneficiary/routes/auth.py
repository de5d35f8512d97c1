"""Phone verification, login and logout."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from ..i18n import translate
from ..utils.validation import normalize_phone, validate_national_id, validate_otp
from .deps import Services, ensure, get_language, get_services, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class VerifyPhoneRequest(BaseModel):
    phone: str


class LoginRequest(BaseModel):
    phone: str
    otp: str


class NationalIDLoginRequest(BaseModel):
    national_id: str
    password: str


def _session_view(services: Services) -> dict:
    session = services.auth.session
    user = services.auth.user
    return {
        "authenticated": services.auth.is_authenticated,
        "beneficiary_id": session.beneficiary_id if session else None,
        "expires_at": session.expires_at if session else None,
        "user": user.to_wire() if user else None,
    }


@router.post("/verify-phone")
@limiter.limit("5/minute")
def verify_phone(
    request: Request,
    body: VerifyPhoneRequest,
    services: Services = Depends(get_services),
    lang: str = Depends(get_language),
):
    """Send a one-time code to the phone number."""
    phone = normalize_phone(body.phone)

    remaining = services.cooldown.remaining(phone)
    if remaining:
        raise HTTPException(
            status_code=429,
            detail=translate("auth.resend_wait", lang, seconds=remaining),
        )

    services.bsp.verify_phone(phone)
    services.cooldown.start(phone)
    return {
        "phone": phone,
        "otp_sent": True,
        "resend_in": services.cooldown.seconds,
        "message": translate("auth.otp_sent", lang, phone=phone),
    }


@router.post("/login")
def login(
    body: LoginRequest,
    services: Services = Depends(get_services),
    lang: str = Depends(get_language),
):
    phone = normalize_phone(body.phone)
    otp = validate_otp(body.otp)
    ensure(services.auth, services.auth.login(phone, otp))
    return {"message": translate("auth.login_success", lang), **_session_view(services)}


@router.post("/login/national-id")
def login_with_national_id(
    body: NationalIDLoginRequest,
    services: Services = Depends(get_services),
    lang: str = Depends(get_language),
):
    national_id = validate_national_id(body.national_id)
    ensure(
        services.auth,
        services.auth.login_with_national_id(national_id, body.password),
    )
    return {"message": translate("auth.login_success", lang), **_session_view(services)}


@router.post("/logout")
def logout(services: Services = Depends(get_services)):
    services.auth.logout()
    return {"authenticated": False}


@router.get("/session")
def get_session(services: Services = Depends(get_services)):
    return _session_view(services)
