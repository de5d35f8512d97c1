"""Bearer tokens for the identity-verification vendor.

``fetch_token`` performs one exchange against a token endpoint.
``OAuth2TokenManager`` keeps the most recent token and only exchanges
again once it has expired (``expiry_margin`` seconds early).
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Union

import httpx

from ..errors import AuthenticationError

logger = logging.getLogger(__name__)

# Lifetime assumed when the endpoint omits expires_in
DEFAULT_EXPIRES_IN = 3600

GRANT_TYPES = ("client_credentials", "password", "refresh_token")


class OAuth2Error(AuthenticationError):
    """The token endpoint could not be reached or refused the grant."""

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message, details={"error": error_code} if error_code else None)
        self.error_code = error_code


@dataclass(frozen=True)
class OAuth2Settings:
    """Where and how to ask for a token."""

    token_url: str
    client_id: str
    client_secret: str
    grant_type: str = "client_credentials"
    scope: str | None = None
    username: str | None = None
    password: str | None = None
    refresh_token: str | None = None
    # "basic" sends the client credentials in an Authorization header,
    # "body" sends them as form fields
    auth_method: str = "basic"
    timeout: float = 30.0

    @classmethod
    def coerce(cls, value: Union["OAuth2Settings", Mapping[str, Any]]) -> "OAuth2Settings":
        if isinstance(value, OAuth2Settings):
            return value
        known = cls.__dataclass_fields__
        return cls(
            token_url=value.get("token_url") or "",
            client_id=value.get("client_id") or "",
            client_secret=value.get("client_secret") or "",
            **{k: v for k, v in value.items() if k in known and k not in (
                "token_url", "client_id", "client_secret"
            )},
        )

    def form(self) -> dict[str, str]:
        """Form fields for this grant.

        Raises:
            OAuth2Error: When the grant is unknown or incomplete
        """
        if self.grant_type not in GRANT_TYPES:
            raise OAuth2Error(f"Unsupported grant type: {self.grant_type}")

        fields = {"grant_type": self.grant_type}
        if self.scope:
            fields["scope"] = self.scope

        if self.grant_type == "password":
            if not (self.username and self.password):
                raise OAuth2Error("Password grant needs a username and password")
            fields.update(username=self.username, password=self.password)
        elif self.grant_type == "refresh_token":
            if not self.refresh_token:
                raise OAuth2Error("Refresh grant needs a refresh token")
            fields["refresh_token"] = self.refresh_token

        if self.auth_method == "body":
            fields.update(client_id=self.client_id, client_secret=self.client_secret)
        return fields

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth_method != "body":
            pair = f"{self.client_id}:{self.client_secret}".encode()
            headers["Authorization"] = "Basic " + base64.b64encode(pair).decode()
        return headers


def _error_from(response: httpx.Response) -> OAuth2Error:
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return OAuth2Error(f"Token endpoint answered {response.status_code}: {response.text[:200]}")

    code = body.get("error") or "unknown"
    description = body.get("error_description") or f"status {response.status_code}"
    return OAuth2Error(f"{code}: {description}", error_code=code)


def fetch_token(
    settings: Union[OAuth2Settings, Mapping[str, Any]],
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    """Exchange credentials for a token.

    Args:
        settings: ``OAuth2Settings`` or a mapping with the same keys
        client: httpx client to send the request with; a short-lived one
            is created when omitted

    Returns:
        The decoded token response (``access_token``, ``expires_in``, ...)

    Raises:
        OAuth2Error: Missing credentials, network failure, or a refused grant
    """
    settings = OAuth2Settings.coerce(settings)
    if not (settings.token_url and settings.client_id and settings.client_secret):
        raise OAuth2Error("Token URL, client id and client secret must all be set")

    form = settings.form()
    headers = settings.headers()
    try:
        if client is None:
            with httpx.Client(timeout=settings.timeout) as owned:
                response = owned.post(settings.token_url, data=form, headers=headers)
        else:
            response = client.post(settings.token_url, data=form, headers=headers)
    except httpx.HTTPError as e:
        raise OAuth2Error(f"Token endpoint unreachable ({type(e).__name__})") from e

    if response.status_code != 200:
        raise _error_from(response)

    try:
        payload = response.json()
    except ValueError as e:
        raise OAuth2Error("Token endpoint returned a non-JSON body") from e
    if not isinstance(payload, dict) or not payload.get("access_token"):
        raise OAuth2Error("Token endpoint returned no access_token")

    logger.debug(f"Obtained {settings.grant_type} token (expires_in={payload.get('expires_in')})")
    return payload


class OAuth2TokenManager:
    """Caches a single access token and exchanges credentials when it expires.

    The cached token is treated as expired ``expiry_margin`` seconds before
    the expiry the server reported. Concurrent callers that find the token
    expired wait on one exchange instead of issuing their own.
    """

    def __init__(
        self,
        settings: Union[OAuth2Settings, Mapping[str, Any]],
        expiry_margin: float = 300,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = OAuth2Settings.coerce(settings)
        self.expiry_margin = expiry_margin
        self._client = client
        self._clock = clock
        self._token: str | None = None
        self._refresh: str | None = self.settings.refresh_token
        self._expires_at = 0.0
        self._lock = threading.Lock()

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def has_valid_token(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    def get_token(self) -> str:
        """Return the cached token, or exchange credentials for a new one.

        Raises:
            OAuth2Error: If no token can be obtained
        """
        token = self._token
        if token is not None and self._clock() < self._expires_at:
            return token

        with self._lock:
            if self.has_valid_token():
                return self._token  # type: ignore[return-value]
            return self._accept(self._obtain())

    def _obtain(self) -> dict[str, Any]:
        if self._refresh:
            try:
                return fetch_token(
                    replace(self.settings, grant_type="refresh_token", refresh_token=self._refresh),
                    client=self._client,
                )
            except OAuth2Error as e:
                logger.warning(f"Refresh grant refused ({e.error_code}), using credentials")
                self._refresh = None
        return fetch_token(self.settings, client=self._client)

    def _accept(self, payload: dict[str, Any]) -> str:
        lifetime = float(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        self._token = payload["access_token"]
        self._expires_at = self._clock() + max(lifetime - self.expiry_margin, 0.0)
        self._refresh = payload.get("refresh_token") or self._refresh
        return self._token

    def invalidate(self) -> None:
        """Forget the cached token; the next call exchanges again."""
        with self._lock:
            self._token = None
            self._expires_at = 0.0
