"""Tests for single-flight token refresh."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from netlayer.clients.refresh import RefreshCoordinator
from netlayer.errors import AuthError
from netlayer.models import Credential
from netlayer.services.credential_store import CredentialStore


def _expired_store() -> CredentialStore:
    store = CredentialStore()
    store.set(
        Credential(
            access_token="old",
            refresh_token="refresh-1",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
    )
    return store


def _future_expiry() -> str:
    return (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()


class SlowRefresh:
    """Refresh call that blocks until released and counts invocations."""

    def __init__(self, result=None, error=None) -> None:
        self.calls = []
        self.release = asyncio.Event()
        self.result = result
        self.error = error

    async def __call__(self, refresh_token):
        self.calls.append(refresh_token)
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh() -> None:
    store = _expired_store()
    refresh = SlowRefresh(
        result={"accessToken": "new", "refreshToken": "refresh-2", "expiresAt": _future_expiry()}
    )
    coordinator = RefreshCoordinator(store, refresh)

    callers = [asyncio.ensure_future(coordinator.ensure_fresh_token()) for _ in range(5)]
    await asyncio.sleep(0)
    assert coordinator.in_flight
    refresh.release.set()
    results = await asyncio.gather(*callers)

    assert results == ["new"] * 5
    assert refresh.calls == ["refresh-1"]
    assert not coordinator.in_flight
    credential = store.get()
    assert credential.access_token == "new"
    assert credential.refresh_token == "refresh-2"
    assert not store.is_expired()


@pytest.mark.asyncio
async def test_failed_refresh_rejects_every_waiter_and_clears_store() -> None:
    store = _expired_store()
    refresh = SlowRefresh(error=RuntimeError("401 from refresh endpoint"))
    coordinator = RefreshCoordinator(store, refresh)

    initiator = asyncio.ensure_future(coordinator.ensure_fresh_token())
    await asyncio.sleep(0)
    waiters = [asyncio.ensure_future(coordinator.ensure_fresh_token()) for _ in range(3)]
    await asyncio.sleep(0)
    refresh.release.set()

    assert await initiator is None
    outcomes = await asyncio.gather(*waiters, return_exceptions=True)
    assert all(isinstance(outcome, AuthError) for outcome in outcomes)
    assert len({id(outcome) for outcome in outcomes}) == 1
    assert refresh.calls == ["refresh-1"]
    assert store.get().is_empty


@pytest.mark.asyncio
async def test_missing_refresh_token_returns_none_without_calling() -> None:
    store = CredentialStore()
    store.set(Credential(access_token="only-access"))
    refresh = SlowRefresh()
    coordinator = RefreshCoordinator(store, refresh)
    assert await coordinator.ensure_fresh_token(force=True) is None
    assert refresh.calls == []


@pytest.mark.asyncio
async def test_unexpired_token_is_returned_unless_forced() -> None:
    store = CredentialStore()
    store.set(Credential(access_token="current", refresh_token="r", expires_at=_future_expiry()))
    refresh = SlowRefresh(result={"accessToken": "forced", "expiresAt": _future_expiry()})
    refresh.release.set()
    coordinator = RefreshCoordinator(store, refresh)

    assert await coordinator.ensure_fresh_token() == "current"
    assert refresh.calls == []
    assert await coordinator.ensure_fresh_token(force=True) == "forced"
    # refresh token is kept when the response omits it
    assert store.refresh_token == "r"


@pytest.mark.asyncio
async def test_refresh_timeout_is_an_auth_failure() -> None:
    store = _expired_store()
    refresh = SlowRefresh(result={"accessToken": "never"})
    coordinator = RefreshCoordinator(store, refresh, timeout=0.01)
    assert await coordinator.ensure_fresh_token() is None
    assert not coordinator.in_flight
    assert store.get().is_empty


@pytest.mark.asyncio
async def test_malformed_response_is_an_auth_failure() -> None:
    store = _expired_store()
    refresh = SlowRefresh(result={"token": "wrong-shape"})
    refresh.release.set()
    coordinator = RefreshCoordinator(store, refresh)
    assert await coordinator.ensure_fresh_token() is None
    assert store.get().is_empty


@pytest.mark.asyncio
async def test_next_refresh_after_completion_calls_again() -> None:
    store = _expired_store()
    refresh = SlowRefresh(result={"accessToken": "new", "expiresAt": _future_expiry()})
    refresh.release.set()
    coordinator = RefreshCoordinator(store, refresh)
    await coordinator.ensure_fresh_token()
    await coordinator.ensure_fresh_token(force=True)
    assert refresh.calls == ["refresh-1", "refresh-1"]
