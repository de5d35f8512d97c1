"""API routers for the beneficiary screens.

Routers:
- auth: phone verification, login and logout
- kyc: identity verification and registration
- home: home summary and the insurance card
- policies: policies, eligibility and provider search
- claims: claims, documents and reimbursement
- consents: consent request decisions
- profile: profile, notifications and preferences
"""

from .auth import router as auth_router
from .claims import router as claims_router
from .consents import router as consents_router
from .deps import Services, get_services, limiter
from .home import router as home_router
from .kyc import router as kyc_router
from .policies import router as policies_router
from .profile import router as profile_router

__all__ = [
    "Services",
    "auth_router",
    "claims_router",
    "consents_router",
    "get_services",
    "home_router",
    "kyc_router",
    "limiter",
    "policies_router",
    "profile_router",
]
