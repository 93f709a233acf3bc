"""
Error taxonomy for the network client layer.

Every error raised by the HTTP client, the refresh coordinator and the
socket manager derives from :class:`NetlayerError`.  Each error carries a
``kind`` string (e.g. ``"TIMEOUT_ERROR"``) so that callers can branch on
the category without importing every subclass, plus a ``details`` dict
with structured context for logging.

Callers typically only need two helpers:

* :func:`is_retryable` tells a caller-side retry policy whether an error
  is transient (network failures, timeouts, 502/503/429 and any status in
  a supplied allowlist).
* :func:`is_auth_error` tells the UI shell whether the user has to log in
  again.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional


TIMEOUT_ERROR = "TIMEOUT_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
API_ERROR = "API_ERROR"
AUTH_ERROR = "AUTH_ERROR"
UNAUTHORIZED = "UNAUTHORIZED"
FORBIDDEN = "FORBIDDEN"
SESSION_EXPIRED = "SESSION_EXPIRED"
VALIDATION_ERROR = "VALIDATION_ERROR"
INVALID_INPUT = "INVALID_INPUT"
NOT_FOUND = "NOT_FOUND"
CONFLICT = "CONFLICT"
INTERNAL_ERROR = "INTERNAL_ERROR"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
RATE_LIMITED = "RATE_LIMITED"
PROTOCOL_ERROR = "PROTOCOL_ERROR"
REMOTE_ERROR = "REMOTE_ERROR"

HTTP_STATUS_TO_KIND: Dict[int, str] = {
    400: INVALID_INPUT,
    401: UNAUTHORIZED,
    403: FORBIDDEN,
    404: NOT_FOUND,
    409: CONFLICT,
    422: VALIDATION_ERROR,
    429: RATE_LIMITED,
    500: INTERNAL_ERROR,
    502: SERVICE_UNAVAILABLE,
    503: SERVICE_UNAVAILABLE,
    504: TIMEOUT_ERROR,
}

_RETRYABLE_KINDS = frozenset({NETWORK_ERROR, TIMEOUT_ERROR, SERVICE_UNAVAILABLE, RATE_LIMITED})
_AUTH_KINDS = frozenset({AUTH_ERROR, UNAUTHORIZED, SESSION_EXPIRED})


class NetlayerError(Exception):
    """Base class for all errors raised by the client layer."""

    kind: str = API_ERROR

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details: Dict[str, Any] = dict(details or {})
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class RequestTimeoutError(NetlayerError, TimeoutError):
    """A request, refresh or correlated send exceeded its deadline."""

    kind = TIMEOUT_ERROR

    def __init__(self, message: str, *, elapsed: float, timeout: Optional[float] = None, **kwargs: Any) -> None:
        details = dict(kwargs.pop("details", None) or {})
        details.update({"elapsed": elapsed, "timeout": timeout})
        super().__init__(message, details=details, **kwargs)
        self.elapsed = elapsed
        self.timeout = timeout


class NetworkError(NetlayerError):
    """Transport-level failure; no response was received."""

    kind = NETWORK_ERROR


class NotConnectedError(NetworkError):
    """A correlated socket send was attempted while the connection is not open."""


class ConnectionClosedError(NetworkError):
    """The connection closed while a correlated request was still pending."""


class HttpError(NetlayerError):
    """A response was received with a failing status code."""

    def __init__(
        self,
        message: str,
        *,
        status: int,
        body: Any = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            kind=HTTP_STATUS_TO_KIND.get(status, API_ERROR),
            details={"status": status, "url": url, "method": method},
        )
        self.status = status
        self.body = body
        self.url = url
        self.method = method

    @classmethod
    def from_response(cls, response: Any) -> "HttpError":
        """Build an error from a :class:`~netlayer.clients.http_client.Response`.

        The server's own ``message`` field is preferred over a generic
        description when the body is a JSON object carrying one.
        """
        body = response.data
        message = None
        if isinstance(body, dict) and body.get("message"):
            message = str(body["message"])
        config = response.config
        return cls(
            message or f"HTTP {response.status} {response.reason or ''}".strip(),
            status=response.status,
            body=body,
            url=getattr(config, "url", None),
            method=getattr(config, "method", None),
        )


class AuthError(NetlayerError):
    """Token refresh failed or no refresh token is available."""

    kind = AUTH_ERROR


class ProtocolError(NetlayerError):
    """A socket frame could not be decoded into an envelope."""

    kind = PROTOCOL_ERROR


class RemoteError(NetlayerError):
    """A correlated socket response carried an ``error`` instead of a payload."""

    kind = REMOTE_ERROR

    def __init__(self, message: str, *, error: Any = None, request_id: Optional[int] = None) -> None:
        super().__init__(message, details={"error": error, "id": request_id})
        self.error = error
        self.request_id = request_id


def is_retryable(error: BaseException, retry_status_codes: Iterable[int] = ()) -> bool:
    """Return True if ``error`` is worth retrying by a caller-side policy."""
    if isinstance(error, HttpError) and error.status in set(retry_status_codes):
        return True
    return isinstance(error, NetlayerError) and error.kind in _RETRYABLE_KINDS


def is_auth_error(error: BaseException) -> bool:
    """Return True if ``error`` means the user has to authenticate again."""
    return isinstance(error, NetlayerError) and error.kind in _AUTH_KINDS
