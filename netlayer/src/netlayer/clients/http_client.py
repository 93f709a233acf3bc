"""
HTTP client with an interceptor pipeline and coordinated token refresh.

Every request flows through two ordered lists of interceptors:

* request interceptors receive the :class:`RequestConfig` before dispatch
  and return the (possibly modified) config;
* response interceptors receive the :class:`Response` after receipt and
  return a response (possibly a replacement) or raise.

Interceptors may be plain functions or coroutine functions.  The default
pipeline is::

    request:  auth_interceptor -> timing_interceptor
    response: logging_interceptor -> error_interceptor

The auth interceptor attaches ``Authorization: Bearer <token>`` to every
private endpoint, refreshing the token first through the shared
:class:`~netlayer.clients.refresh.RefreshCoordinator` when it has expired.
The error interceptor converts failing responses into typed errors and is
the only place a request is retried automatically: one refresh-and-retry
cycle after a 401 on a non-auth endpoint.  If that refresh fails the
credentials are cleared and ``auth:logout`` is emitted on the event bus.

Transient failures (429, 5xx, timeouts) are *not* retried by ``request``;
callers that want that opt into :meth:`HttpClient.request_with_retry`,
which wraps the call in a ``tenacity`` policy.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
import os
import time
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import urlsplit

import aiohttp
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config import HttpConfig
from ..errors import (
    SESSION_EXPIRED,
    AuthError,
    HttpError,
    NetworkError,
    RequestTimeoutError,
    is_retryable,
)
from ..services.credential_store import CredentialStore
from ..services.event_bus import AUTH_LOGOUT, EventBus
from ..telemetry import HTTP_LATENCY, HTTP_REQUESTS
from .refresh import RefreshCoordinator

logger = logging.getLogger(__name__)

RESPONSE_TYPES = ("auto", "json", "text", "bytes")


@dataclass
class RequestConfig:
    """Description of one HTTP request as it moves through the pipeline."""

    method: str = "GET"
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    data: Any = None  # JSON-encoded body
    body: Any = None  # raw body, e.g. aiohttp.FormData for uploads
    params: Optional[Mapping[str, Any]] = None
    timeout: Optional[float] = None
    public: Optional[bool] = None  # overrides the public endpoint allowlist
    response_type: str = "auto"
    retried: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Response:
    status: int
    reason: str
    headers: Mapping[str, str]
    data: Any
    content: bytes
    config: RequestConfig
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


RequestInterceptor = Callable[[RequestConfig], Any]
ResponseInterceptor = Callable[[Response], Any]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _decode_body(content: bytes, content_type: str, charset: Optional[str], response_type: str) -> Any:
    if response_type == "bytes":
        return content
    if response_type == "json" or (response_type == "auto" and "application/json" in content_type):
        if not content:
            return None
        try:
            return json.loads(content)
        except ValueError:
            logger.debug("Response declared JSON but could not be parsed; returning text")
    return content.decode(charset or "utf-8", errors="replace")


class HttpClient:
    """Asynchronous JSON-over-HTTP client with auth, timing and error interceptors."""

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        config: Optional[HttpConfig] = None,
        *,
        event_bus: Optional[EventBus] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Construct the client.

        Args:
            credentials: Credential store shared with the socket manager.  A
                private in-memory store is created when omitted.
            config: HTTP configuration; defaults to :class:`HttpConfig` ().
            event_bus: Bus on which ``auth:logout`` is emitted when the session
                cannot be recovered.
            session: Optional caller-owned ``aiohttp.ClientSession``.  When
                omitted, a short-lived session is opened per request.
        """
        self.credentials = credentials if credentials is not None else CredentialStore()
        self.config = config or HttpConfig()
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self._session = session
        self.request_interceptors: List[RequestInterceptor] = []
        self.response_interceptors: List[ResponseInterceptor] = []
        self.refresh_coordinator = RefreshCoordinator(
            self.credentials,
            self._call_refresh_endpoint,
            timeout=self.config.refresh_timeout,
        )

        self.add_request_interceptor(self.auth_interceptor)
        self.add_request_interceptor(self.timing_interceptor)
        self.add_response_interceptor(self.logging_interceptor)
        self.add_response_interceptor(self.error_interceptor)

    def add_request_interceptor(self, interceptor: RequestInterceptor) -> None:
        self.request_interceptors.append(interceptor)

    def add_response_interceptor(self, interceptor: ResponseInterceptor) -> None:
        self.response_interceptors.append(interceptor)

    # ------------------------------------------------------------------
    # Endpoint classification
    # ------------------------------------------------------------------

    def endpoint_path(self, url: str) -> str:
        """Return the logical endpoint path of ``url`` (no base URL, no query)."""
        base = self.config.base_url.rstrip("/")
        if url.startswith(base):
            path = url[len(base):]
        elif url.startswith(("http://", "https://")):
            path = urlsplit(url).path
        else:
            path = url
        path = path.split("?", 1)[0].split("#", 1)[0]
        return "/" + path.lstrip("/")

    def is_public(self, url: str) -> bool:
        """True if ``url`` is on the public endpoint allowlist.

        Entries ending in ``/`` name a namespace and match every path below
        it; all other entries must match the logical path exactly.
        """
        path = self.endpoint_path(url)
        for endpoint in self.config.public_endpoints:
            if endpoint.endswith("/"):
                if path.startswith(endpoint):
                    return True
            elif path.rstrip("/") == endpoint:
                return True
        return False

    def is_auth_endpoint(self, url: str) -> bool:
        return self.endpoint_path(url).startswith(self.config.auth_prefix)

    def _is_public_request(self, config: RequestConfig) -> bool:
        if config.public is not None:
            return config.public
        return self.is_public(config.url)

    # ------------------------------------------------------------------
    # Default interceptors
    # ------------------------------------------------------------------

    async def auth_interceptor(self, config: RequestConfig) -> RequestConfig:
        if self._is_public_request(config):
            return config
        credential = self.credentials.get()
        token = credential.access_token
        if self.credentials.is_expired():
            if not credential.refresh_token:
                # nothing to refresh with; a stale token is never sent
                token = None
            else:
                token = await self.refresh_coordinator.ensure_fresh_token()
                if token is None:
                    raise self._session_expired()
        if token:
            config.headers["Authorization"] = f"Bearer {token}"
        return config

    def timing_interceptor(self, config: RequestConfig) -> RequestConfig:
        config.meta["start_time"] = time.monotonic()
        logger.debug("HTTP %s %s", config.method, config.url)
        return config

    def logging_interceptor(self, response: Response) -> Response:
        config = response.config
        started = config.meta.get("start_time")
        duration = time.monotonic() - started if started is not None else response.elapsed
        HTTP_REQUESTS.labels(method=config.method, status=str(response.status)).inc()
        HTTP_LATENCY.labels(method=config.method).observe(duration)
        logger.info("HTTP %s %s -> %d (%.1f ms)", config.method, config.url, response.status, duration * 1000)
        return response

    async def error_interceptor(self, response: Response) -> Response:
        if response.ok:
            return response
        config = response.config
        if response.status == 401 and not config.retried and not self.is_auth_endpoint(config.url):
            token = await self.refresh_coordinator.ensure_fresh_token(force=True)
            if token:
                logger.info("Retrying %s %s with refreshed token", config.method, config.url)
                headers = dict(config.headers)
                headers["Authorization"] = f"Bearer {token}"
                return await self.request(replace(config, headers=headers, retried=True, meta={}))
            raise self._session_expired()
        raise HttpError.from_response(response)

    def _session_expired(self) -> AuthError:
        """Clear credentials, broadcast ``auth:logout`` and return the error to raise."""
        self.credentials.clear()
        logger.warning("Session expired; credentials cleared")
        self.event_bus.emit(AUTH_LOGOUT, {"reason": "session_expired"})
        return AuthError("Your session has expired. Please log in again.", kind=SESSION_EXPIRED)

    async def _call_refresh_endpoint(self, refresh_token: str) -> Any:
        response = await self.post(
            self.config.refresh_path,
            {"refreshToken": refresh_token},
            public=True,
            # a failing refresh must not re-enter the 401 recovery path
            retried=True,
        )
        return response.data

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    def default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Client-Version": self.config.client_version,
            "X-Platform": self.config.platform,
        }

    def _prepare(self, config: RequestConfig) -> RequestConfig:
        if config.response_type not in RESPONSE_TYPES:
            raise ValueError(f"Unknown response_type {config.response_type!r}")
        url = config.url
        if not url.startswith(("http://", "https://")):
            url = f"{self.config.base_url.rstrip('/')}/{url.lstrip('/')}"
        headers = self.default_headers()
        if config.body is not None:
            # let the transport negotiate the content type (multipart boundary)
            del headers["Content-Type"]
        headers.update(config.headers)
        return replace(config, method=config.method.upper(), url=url, headers=headers, meta=dict(config.meta))

    @contextlib.asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    async def _dispatch(self, config: RequestConfig) -> Response:
        timeout = config.timeout if config.timeout is not None else self.config.timeout
        if config.body is not None:
            body = config.body
        elif config.data is not None:
            body = json.dumps(config.data)
        else:
            body = None
        started = time.monotonic()
        try:
            async with self._session_scope() as session:
                async with session.request(
                    config.method,
                    config.url,
                    headers=config.headers,
                    params=config.params,
                    data=body,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                ) as resp:
                    content = await resp.read()
                    data = _decode_body(content, resp.content_type or "", resp.charset, config.response_type)
                    return Response(
                        status=resp.status,
                        reason=resp.reason or "",
                        headers=dict(resp.headers),
                        data=data,
                        content=content,
                        config=config,
                        elapsed=time.monotonic() - started,
                    )
        except asyncio.TimeoutError as exc:
            elapsed = time.monotonic() - started
            logger.warning("HTTP %s %s timed out after %.3fs", config.method, config.url, elapsed)
            raise RequestTimeoutError(
                f"{config.method} {config.url} timed out after {elapsed:.3f}s",
                elapsed=elapsed,
                timeout=timeout,
                details={"url": config.url, "method": config.method},
            ) from exc
        except (aiohttp.ClientError, OSError) as exc:
            logger.warning("HTTP %s %s failed: %s", config.method, config.url, exc)
            raise NetworkError(
                f"{config.method} {config.url} failed: {exc}",
                details={"url": config.url, "method": config.method, "error": str(exc)},
            ) from exc

    async def request(self, config: RequestConfig) -> Response:
        """Run ``config`` through the pipeline and return the final response."""
        config = self._prepare(config)
        for request_interceptor in self.request_interceptors:
            config = await _maybe_await(request_interceptor(config))
        response = await self._dispatch(config)
        for response_interceptor in self.response_interceptors:
            response = await _maybe_await(response_interceptor(response))
            if response.config.retried and not config.retried:
                # the retried request already ran the whole response pipeline
                return response
        return response

    async def request_with_retry(self, config: RequestConfig, *, max_retries: Optional[int] = None) -> Response:
        """Like :meth:`request`, retrying transient failures with exponential backoff.

        Errors are retried when :func:`~netlayer.errors.is_retryable` holds for
        the configured ``retry_status_codes``; anything else propagates at once.
        """
        retries = self.config.max_retries if max_retries is None else max_retries
        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential(multiplier=self.config.retry_delay, max=self.config.retry_delay * 8),
            retry=retry_if_exception(lambda exc: is_retryable(exc, self.config.retry_status_codes)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self.request(replace(config))
        raise RuntimeError("retry policy ended without a result")

    # Convenience verbs
    async def get(self, url: str, **kwargs: Any) -> Response:
        return await self.request(RequestConfig(method="GET", url=url, **kwargs))

    async def post(self, url: str, data: Any = None, **kwargs: Any) -> Response:
        return await self.request(RequestConfig(method="POST", url=url, data=data, **kwargs))

    async def put(self, url: str, data: Any = None, **kwargs: Any) -> Response:
        return await self.request(RequestConfig(method="PUT", url=url, data=data, **kwargs))

    async def patch(self, url: str, data: Any = None, **kwargs: Any) -> Response:
        return await self.request(RequestConfig(method="PATCH", url=url, data=data, **kwargs))

    async def delete(self, url: str, **kwargs: Any) -> Response:
        return await self.request(RequestConfig(method="DELETE", url=url, **kwargs))

    async def upload(self, url: str, form: Union[aiohttp.FormData, Mapping[str, Any]], **kwargs: Any) -> Response:
        """POST multipart form data; the default ``Content-Type`` is omitted."""
        if not isinstance(form, aiohttp.FormData):
            form_data = aiohttp.FormData()
            for name, value in form.items():
                if hasattr(value, "read"):
                    form_data.add_field(name, value, filename=os.path.basename(getattr(value, "name", name)))
                else:
                    form_data.add_field(name, value if isinstance(value, (str, bytes)) else str(value))
            form = form_data
        return await self.request(RequestConfig(method="POST", url=url, body=form, **kwargs))

    async def download(self, url: str, **kwargs: Any) -> bytes:
        """GET ``url`` and return the raw response body."""
        kwargs.setdefault("response_type", "bytes")
        response = await self.request(RequestConfig(method="GET", url=url, **kwargs))
        return response.content
