"""
Single-flight token refresh.

When several requests discover an expired token at the same time, only
the first one issues the refresh call; everyone arriving while it is in
flight queues a future behind it.  When the call settles, every queued
future is resolved with the new access token (or rejected with the same
:class:`AuthError`) in arrival order.

The coordinator is the one piece of shared mutable state in the HTTP
layer.  It holds no lock: on a single event loop the check-and-set of
``_waiters`` happens between await points and cannot interleave.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Mapping, Optional

from pydantic import ValidationError

from ..errors import AuthError
from ..models import Credential, RefreshResult
from ..services.credential_store import CredentialStore
from ..telemetry import TOKEN_REFRESHES

logger = logging.getLogger(__name__)

RefreshCall = Callable[[str], Awaitable[Mapping[str, Any]]]


class RefreshCoordinator:
    """Guarantee at most one in-flight refresh call."""

    def __init__(
        self,
        credentials: CredentialStore,
        refresh_call: RefreshCall,
        *,
        timeout: float = 15.0,
    ) -> None:
        """
        :param credentials: Store read for the refresh token and updated on success.
        :param refresh_call: Coroutine performing the network call; receives the
            refresh token and returns the decoded response body.
        :param timeout: Upper bound in seconds on a single refresh call.
        """
        self.credentials = credentials
        self.refresh_call = refresh_call
        self.timeout = timeout
        # None when idle; a list (possibly empty) while a refresh is in flight
        self._waiters: Optional[List[asyncio.Future]] = None

    @property
    def in_flight(self) -> bool:
        return self._waiters is not None

    async def ensure_fresh_token(self, force: bool = False) -> Optional[str]:
        """Return a usable access token, refreshing it at most once concurrently.

        :param force: Refresh even if the stored token has not expired yet
            (e.g. after the server answered 401).
        :returns: The access token, or ``None`` if no refresh token is stored or
            the refresh failed.  Callers queued behind a failing refresh receive
            the :class:`AuthError` instead.
        """
        if self._waiters is not None:
            future = asyncio.get_running_loop().create_future()
            self._waiters.append(future)
            return await future

        refresh_token = self.credentials.refresh_token
        if not refresh_token:
            return None
        if not force and not self.credentials.is_expired():
            return self.credentials.access_token

        self._waiters = []
        try:
            result = await self._refresh(refresh_token)
        except AuthError as exc:
            logger.error("Token refresh failed: %s", exc)
            TOKEN_REFRESHES.labels(outcome="failure").inc()
            waiters, self._waiters = self._waiters, None
            self.credentials.clear()
            for future in waiters:
                if not future.done():
                    future.set_exception(exc)
            return None
        except BaseException:
            # cancellation of the initiating task must not strand the queue
            waiters, self._waiters = self._waiters, None
            for future in waiters:
                if not future.done():
                    future.set_exception(AuthError("Token refresh was interrupted"))
            raise

        self.credentials.set(
            Credential(
                access_token=result.access_token,
                refresh_token=result.refresh_token or refresh_token,
                expires_at=result.expires_at,
            )
        )
        TOKEN_REFRESHES.labels(outcome="success").inc()
        logger.info("Access token refreshed; releasing %d queued caller(s)", len(self._waiters))
        waiters, self._waiters = self._waiters, None
        for future in waiters:
            if not future.done():
                future.set_result(result.access_token)
        return result.access_token

    async def _refresh(self, refresh_token: str) -> RefreshResult:
        """Perform the refresh call, mapping every failure to :class:`AuthError`."""
        started = time.monotonic()
        try:
            body = await asyncio.wait_for(self.refresh_call(refresh_token), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            elapsed = time.monotonic() - started
            raise AuthError(
                "Token refresh timed out",
                details={"elapsed": elapsed, "timeout": self.timeout},
            ) from exc
        except Exception as exc:
            raise AuthError(f"Token refresh rejected: {exc}", details={"cause": type(exc).__name__}) from exc
        try:
            return RefreshResult.model_validate(body)
        except ValidationError as exc:
            raise AuthError("Malformed token refresh response", details={"error": str(exc)}) from exc
