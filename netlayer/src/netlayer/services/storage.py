"""
Durable key-value storage used for credential persistence and caching.

Two backends are provided:

* :class:`MemoryStore` keeps values in a dictionary.  It is the default
  backend and the one used throughout the test-suite.
* :class:`JsonFileStore` writes a single JSON document to disk.  It is
  not optimised for throughput (the whole document is read and written
  on every operation) but needs no external service.

Both share the cache helpers of :class:`KeyValueStore`.  Cached entries
are stored as ``{"data": ..., "timestamp": <epoch seconds>}`` under a
``cache_`` key and expire lazily when read after their TTL.

Backends do not swallow their own errors; callers that want to degrade
gracefully (such as the credential store) catch them.
"""

from __future__ import annotations

import json
import os
import time
from typing import Any, Callable, Dict, List, Optional

CACHE_PREFIX = "cache_"
DEFAULT_CACHE_TTL = 300.0


class KeyValueStore:
    """Abstract key-value store with namespaced keys and TTL cache helpers."""

    def __init__(self, prefix: str = "gps_", clock: Callable[[], float] = time.time) -> None:
        self.prefix = prefix
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    # Backend primitives operate on fully prefixed keys.
    def _read(self, full_key: str) -> Optional[Any]:  # pragma: no cover - override
        raise NotImplementedError

    def _write(self, full_key: str, value: Any) -> None:  # pragma: no cover - override
        raise NotImplementedError

    def _delete(self, full_key: str) -> None:  # pragma: no cover - override
        raise NotImplementedError

    def _all_keys(self) -> List[str]:  # pragma: no cover - override
        raise NotImplementedError

    def get(self, key: str, default: Any = None) -> Any:
        value = self._read(self._key(key))
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        self._write(self._key(key), value)

    def remove(self, key: str) -> None:
        self._delete(self._key(key))

    def keys(self) -> List[str]:
        """Return the un-prefixed keys owned by this store."""
        return [k[len(self.prefix):] for k in self._all_keys() if k.startswith(self.prefix)]

    def get_cache(self, key: str, ttl: float = DEFAULT_CACHE_TTL) -> Any:
        """Return cached data for ``key`` if it is younger than ``ttl`` seconds."""
        cached = self.get(f"{CACHE_PREFIX}{key}")
        if not isinstance(cached, dict) or "timestamp" not in cached:
            return None
        if self._clock() - float(cached["timestamp"]) > ttl:
            self.remove(f"{CACHE_PREFIX}{key}")
            return None
        return cached.get("data")

    def set_cache(self, key: str, data: Any) -> None:
        self.set(f"{CACHE_PREFIX}{key}", {"data": data, "timestamp": self._clock()})

    def clear_cache(self) -> None:
        for key in self.keys():
            if key.startswith(CACHE_PREFIX):
                self.remove(key)


class MemoryStore(KeyValueStore):
    """In-process store backed by a plain dictionary."""

    def __init__(self, prefix: str = "gps_", clock: Callable[[], float] = time.time) -> None:
        super().__init__(prefix=prefix, clock=clock)
        self._data: Dict[str, Any] = {}

    def _read(self, full_key: str) -> Optional[Any]:
        return self._data.get(full_key)

    def _write(self, full_key: str, value: Any) -> None:
        self._data[full_key] = value

    def _delete(self, full_key: str) -> None:
        self._data.pop(full_key, None)

    def _all_keys(self) -> List[str]:
        return list(self._data)


class JsonFileStore(KeyValueStore):
    """Store persisted as a JSON object in ``path``.

    A missing file is treated as an empty store.  Values must be JSON
    serialisable.
    """

    def __init__(
        self,
        path: str = "netlayer_store.json",
        prefix: str = "gps_",
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(prefix=prefix, clock=clock)
        self.path = path

    def _read_file(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    def _write_file(self, data: Dict[str, Any]) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def _read(self, full_key: str) -> Optional[Any]:
        return self._read_file().get(full_key)

    def _write(self, full_key: str, value: Any) -> None:
        data = self._read_file()
        data[full_key] = value
        self._write_file(data)

    def _delete(self, full_key: str) -> None:
        data = self._read_file()
        if full_key in data:
            del data[full_key]
            self._write_file(data)

    def _all_keys(self) -> List[str]:
        return list(self._read_file())
