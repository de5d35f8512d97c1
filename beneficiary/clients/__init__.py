"""HTTP clients for the backend and the identity-verification vendor."""

from .base import BaseAPIClient
from .bsp import BSPClient
from .oauth2 import OAuth2Error, OAuth2Settings, OAuth2TokenManager, fetch_token
from .valify import ValifyClient

__all__ = [
    "BaseAPIClient",
    "BSPClient",
    "OAuth2Error",
    "OAuth2Settings",
    "OAuth2TokenManager",
    "ValifyClient",
    "fetch_token",
]
