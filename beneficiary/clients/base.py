"""Base HTTP client for the backend and vendor APIs.

Provides:
- A lazily created httpx client with a fixed timeout
- Authentication header injection through ``_auth_headers``
- Mapping of transport failures, error statuses and malformed bodies
  to the ``ClientError`` hierarchy

Requests are attempted exactly once. There is no retry or backoff.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..errors import (
    ClientError,
    HTTPStatusError,
    MalformedResponseError,
    TransportError,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class BaseAPIClient:
    """Base class for JSON-over-HTTPS API clients."""

    service_name = "api"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
            default_headers: Headers sent with every request
        """
        if not base_url:
            raise ValueError("base_url is required")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._default_headers = {"Accept": "application/json", **(default_headers or {})}
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
                headers=self._default_headers,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "BaseAPIClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _auth_headers(self) -> dict[str, str]:
        """Headers that authenticate a request. Subclasses override."""
        return {}

    def _log(self, level: str, message: str, **context: Any) -> None:
        log_fn = getattr(logger, level.lower(), logger.info)
        log_fn(f"[{self.service_name}] {message}", extra={"service": self.service_name, **context})

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            params: Query parameters (None values are dropped)
            json_data: JSON body
            data: Form fields
            files: Multipart files
            headers: Extra headers
            authenticated: Whether to add ``_auth_headers``

        Returns:
            Decoded body; ``{"data": X}`` envelopes are unwrapped to ``X``

        Raises:
            TransportError: Network failure or timeout
            HTTPStatusError: Status code >= 400
            MalformedResponseError: Body is not valid JSON
        """
        request_headers: dict[str, str] = {}
        if authenticated:
            request_headers.update(self._auth_headers())
        if headers:
            request_headers.update(headers)

        if params:
            params = {k: v for k, v in params.items() if v is not None}

        start = time.monotonic()
        try:
            response = self.client.request(
                method,
                path,
                params=params or None,
                json=json_data,
                data=data,
                files=files,
                headers=request_headers,
            )
        except httpx.TimeoutException as e:
            self._log("warning", f"{method} {path} timed out")
            raise TransportError(
                f"Request timed out after {self.timeout}s", code="TIMEOUT"
            ) from e
        except httpx.HTTPError as e:
            self._log("warning", f"{method} {path} failed: {type(e).__name__}")
            raise TransportError(f"Network request failed: {e}") from e

        elapsed_ms = round((time.monotonic() - start) * 1000, 2)
        self._log(
            "debug",
            f"{method} {path} -> {response.status_code} ({elapsed_ms}ms)",
            status_code=response.status_code,
            latency_ms=elapsed_ms,
        )

        if response.status_code >= 400:
            raise self._status_error(response)

        return self._decode(response)

    def _decode(self, response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                "Response body is not valid JSON",
                status_code=response.status_code,
                details={"body": response.text[:200]},
            ) from e

        if isinstance(body, dict) and "data" in body and set(body) <= {
            "data",
            "success",
            "timestamp",
            "message",
        }:
            return body["data"]
        return body

    def _status_error(self, response: httpx.Response) -> ClientError:
        """Build an HTTPStatusError from an error response."""
        code = f"HTTP_{response.status_code}"
        message = response.reason_phrase or f"Status {response.status_code}"
        details: Any = None

        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                code = error.get("code") or code
                message = error.get("message") or message
                details = error.get("details")
            elif isinstance(error, str):
                message = body.get("error_description") or body.get("message") or error
            else:
                message = body.get("message") or body.get("detail") or message

        self._log("warning", f"{response.request.method} {response.request.url.path} -> {response.status_code}: {code}")
        return HTTPStatusError(
            str(message), code=code, status_code=response.status_code, details=details
        )

    def _parse(self, model: Type[ModelT], payload: Any) -> ModelT:
        """Validate a payload into ``model``.

        Raises:
            MalformedResponseError: If the payload does not fit the model
        """
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"Expected an object for {model.__name__}, got {type(payload).__name__}"
            )
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponseError(
                f"Invalid {model.__name__} in response",
                details=e.errors(include_url=False, include_input=False),
            ) from e

    def _parse_list(self, model: Type[ModelT], payload: Any) -> list[ModelT]:
        if not isinstance(payload, list):
            raise MalformedResponseError(
                f"Expected a list of {model.__name__}, got {type(payload).__name__}"
            )
        return [self._parse(model, item) for item in payload]

    def _get(self, path: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return self._request("GET", path, params=params, **kwargs)

    def _post(self, path: str, json_data: Any = None, **kwargs: Any) -> Any:
        return self._request("POST", path, json_data=json_data, **kwargs)

    def _put(self, path: str, json_data: Any = None, **kwargs: Any) -> Any:
        return self._request("PUT", path, json_data=json_data, **kwargs)
