"""Tests for the credential store expiry rules and failure handling."""

from datetime import datetime, timedelta, timezone

from netlayer.models import Credential, parse_expiry
from netlayer.services.credential_store import CredentialStore
from netlayer.services.storage import MemoryStore


class BrokenStore(MemoryStore):
    def _read(self, full_key):
        raise OSError("disk unavailable")

    def _write(self, full_key, value):
        raise OSError("disk unavailable")


NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_set_and_get_roundtrip_through_storage() -> None:
    storage = MemoryStore()
    store = CredentialStore(storage)
    store.set(Credential(access_token="a", refresh_token="r", expires_at=NOW))
    assert storage.get("access_token") == "a"
    assert storage.get("token_expiry") == NOW.isoformat()
    credential = CredentialStore(storage).get()
    assert credential.access_token == "a"
    assert credential.refresh_token == "r"
    assert credential.expires_at == NOW


def test_absent_expiry_counts_as_expired() -> None:
    store = CredentialStore()
    store.set(Credential(access_token="a"))
    assert store.is_expired(now=NOW) is True


def test_expiry_must_be_strictly_in_the_future() -> None:
    store = CredentialStore()
    store.set(Credential(access_token="a", expires_at=NOW))
    assert store.is_expired(now=NOW) is True
    assert store.is_expired(now=NOW - timedelta(seconds=1)) is False


def test_set_keeps_fields_that_are_absent() -> None:
    store = CredentialStore()
    store.set(Credential(access_token="a", refresh_token="r", expires_at=NOW))
    store.set(Credential(access_token="b"))
    credential = store.get()
    assert credential.access_token == "b"
    assert credential.refresh_token == "r"


def test_clear_removes_everything() -> None:
    store = CredentialStore()
    store.set(Credential(access_token="a", refresh_token="r", expires_at=NOW))
    store.clear()
    assert store.get().is_empty


def test_storage_failures_are_swallowed() -> None:
    store = CredentialStore(BrokenStore())
    store.set(Credential(access_token="a"))
    credential = store.get()
    assert credential.is_empty
    assert store.is_expired() is True


def test_wire_names_and_epoch_expiry_are_accepted() -> None:
    credential = Credential.model_validate(
        {"accessToken": "a", "refreshToken": "r", "expiresAt": int(NOW.timestamp() * 1000)}
    )
    assert credential.expires_at == NOW
    assert parse_expiry("2030-01-01T12:00:00Z") == NOW
    assert parse_expiry(str(int(NOW.timestamp()))) == NOW
