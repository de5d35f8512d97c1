"""State objects behind the dashboard screens."""

from .auth import AuthState
from .claims import ClaimState
from .consents import ConsentState
from .home import HomeSummary
from .notifications import NotificationState
from .policies import PolicyState

__all__ = [
    "AuthState",
    "ClaimState",
    "ConsentState",
    "HomeSummary",
    "NotificationState",
    "PolicyState",
]
