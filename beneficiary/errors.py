"""Exception hierarchy shared by the clients, the KYC flow and the API.

Every failure a caller can see is a ``ClientError`` carrying a stable
``code`` so it can be rendered the same way regardless of where it came
from (transport, HTTP status, malformed body, or a domain check).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


class ClientError(Exception):
    """Base exception for all client-side errors."""

    default_code = "CLIENT_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Uniform error shape."""
        return {
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class TransportError(ClientError):
    """Network or timeout failure before a response was received."""

    default_code = "NETWORK_ERROR"


class HTTPStatusError(ClientError):
    """The remote service answered with an error status."""

    default_code = "HTTP_ERROR"


class MalformedResponseError(ClientError):
    """The response body was not JSON or not the expected shape."""

    default_code = "MALFORMED_RESPONSE"


class AuthenticationError(ClientError):
    """Credentials are missing or were rejected."""

    default_code = "AUTH_FAILED"


class SessionExpiredError(AuthenticationError):
    """The session could not be refreshed; the user must log in again."""

    default_code = "SESSION_EXPIRED"


class VerificationError(ClientError):
    """A domain check failed (OCR, face match, capture quality)."""

    default_code = "VERIFICATION_FAILED"


class FeatureDisabledError(ClientError):
    """The requested operation is switched off for this deployment."""

    default_code = "FEATURE_DISABLED"


class ConfigurationError(ClientError):
    """Configuration is missing or invalid."""

    default_code = "CONFIG_ERROR"


class ConflictError(ClientError):
    """The request conflicts with the current local state."""

    default_code = "CONFLICT"


class KYCStateError(ConflictError):
    """A KYC step was attempted out of order."""

    default_code = "KYC_INVALID_STATE"


def error_response(error: ClientError) -> dict[str, Any]:
    """Wrap an error in the response envelope used by the API."""
    return {
        "success": False,
        "error": error.to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
