"""
Credential store: single source of truth for the current token pair.

The store is synchronous and reads through to the backing
:class:`~netlayer.services.storage.KeyValueStore` on every call, so that
several components sharing one store always observe the latest value.

Losing cached credentials must degrade to re-authentication rather than
crash the caller, so every storage failure is logged and swallowed:
failed reads behave as "no credential", failed writes leave the previous
value in place.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from ..models import Credential, parse_expiry
from .storage import KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
TOKEN_EXPIRY_KEY = "token_expiry"


class CredentialStore:
    """Holds the access/refresh tokens and expiry for the process."""

    def __init__(self, storage: Optional[KeyValueStore] = None) -> None:
        self.storage = storage if storage is not None else MemoryStore()

    def get(self) -> Credential:
        try:
            access = self.storage.get(ACCESS_TOKEN_KEY)
            refresh = self.storage.get(REFRESH_TOKEN_KEY)
            expiry = self.storage.get(TOKEN_EXPIRY_KEY)
            return Credential(
                access_token=access or None,
                refresh_token=refresh or None,
                expires_at=parse_expiry(expiry),
            )
        except Exception as exc:
            logger.warning("Failed to read credentials; treating as logged out: %s", exc)
            return Credential()

    def set(self, credential: Credential) -> None:
        """Persist the fields present on ``credential``.

        Absent fields keep their stored value, so a refresh response that
        omits the refresh token does not erase the current one.
        """
        try:
            if credential.access_token:
                self.storage.set(ACCESS_TOKEN_KEY, credential.access_token)
            if credential.refresh_token:
                self.storage.set(REFRESH_TOKEN_KEY, credential.refresh_token)
            if credential.expires_at is not None:
                self.storage.set(TOKEN_EXPIRY_KEY, credential.expires_at.isoformat())
        except Exception as exc:
            logger.warning("Failed to store credentials: %s", exc)

    def clear(self) -> None:
        try:
            self.storage.remove(ACCESS_TOKEN_KEY)
            self.storage.remove(REFRESH_TOKEN_KEY)
            self.storage.remove(TOKEN_EXPIRY_KEY)
        except Exception as exc:
            logger.warning("Failed to clear credentials: %s", exc)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True when no expiry is stored or it is not strictly in the future."""
        expires_at = self.get().expires_at
        if expires_at is None:
            return True
        current = now or datetime.now(timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return expires_at <= current

    @property
    def access_token(self) -> Optional[str]:
        return self.get().access_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self.get().refresh_token
