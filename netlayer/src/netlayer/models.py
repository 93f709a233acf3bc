"""
Typed credential models using Pydantic.

The server speaks camelCase (``accessToken``, ``refreshToken``,
``expiresAt``) while Python callers use snake_case attributes; both
spellings are accepted when validating.  ``expires_at`` is normalised to
a timezone-aware UTC ``datetime`` regardless of whether the server sent
an ISO-8601 string, epoch seconds or epoch milliseconds.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Epoch values above this are treated as milliseconds (year 33658 in seconds).
_MILLIS_THRESHOLD = 1e12


def parse_expiry(value: Any) -> Optional[datetime]:
    """Coerce a wire expiry value into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > _MILLIS_THRESHOLD else float(value)
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = float(text)
        except ValueError:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        else:
            return parse_expiry(number)
    else:
        raise ValueError(f"Unsupported expiry value: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Credential(BaseModel):
    """Access/refresh token pair with its expiry."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    access_token: Optional[str] = Field(default=None, alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    @field_validator("expires_at", mode="before")
    @classmethod
    def _coerce_expiry(cls, value: Any) -> Optional[datetime]:
        return parse_expiry(value)

    @property
    def is_empty(self) -> bool:
        return not (self.access_token or self.refresh_token or self.expires_at)


class RefreshResult(BaseModel):
    """Body of a successful ``POST /auth/refresh-token`` response."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_at: datetime = Field(alias="expiresAt")

    @field_validator("expires_at", mode="before")
    @classmethod
    def _coerce_expiry(cls, value: Any) -> Optional[datetime]:
        return parse_expiry(value)
