"""Tests for the key-value stores and their TTL cache helpers."""

import json

from netlayer.services.storage import JsonFileStore, MemoryStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_memory_store_prefixes_keys() -> None:
    store = MemoryStore()
    store.set("access_token", "abc")
    assert store.get("access_token") == "abc"
    assert store.keys() == ["access_token"]
    assert list(store._data) == ["gps_access_token"]
    store.remove("access_token")
    assert store.get("access_token", "missing") == "missing"


def test_cache_entry_expires_after_ttl() -> None:
    clock = FakeClock()
    store = MemoryStore(clock=clock)
    store.set_cache("profile", {"name": "Ada"})
    clock.now += 299
    assert store.get_cache("profile") == {"name": "Ada"}
    clock.now += 2
    assert store.get_cache("profile") is None
    # expired entries are removed on read
    assert "cache_profile" not in store.keys()


def test_clear_cache_keeps_other_keys() -> None:
    store = MemoryStore()
    store.set("token_expiry", "2030-01-01T00:00:00+00:00")
    store.set_cache("a", 1)
    store.set_cache("b", 2)
    store.clear_cache()
    assert store.keys() == ["token_expiry"]


def test_json_file_store_persists_between_instances(tmp_path) -> None:
    path = tmp_path / "store.json"
    JsonFileStore(str(path)).set("refresh_token", "r-1")
    assert JsonFileStore(str(path)).get("refresh_token") == "r-1"
    assert json.loads(path.read_text()) == {"gps_refresh_token": "r-1"}


def test_json_file_store_missing_file_is_empty(tmp_path) -> None:
    store = JsonFileStore(str(tmp_path / "absent.json"))
    assert store.get("anything") is None
    assert store.keys() == []
