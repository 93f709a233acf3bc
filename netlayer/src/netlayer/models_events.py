"""Socket envelope schema and frame helpers.

Every frame on the socket is a JSON object::

    {"type": str, "payload": object, "id": int?, "timestamp": str}

A response frame reuses the ``id`` of the request it answers and may
carry ``error`` instead of ``payload``.  :func:`parse_frame` decodes an
inbound frame into an :class:`Envelope` and fails closed: anything that
is not a JSON object with a non-empty string ``type`` raises
:class:`~netlayer.errors.ProtocolError`, which the receive path logs and
drops.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ProtocolError

PING = "ping"
PONG = "pong"
SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"


class Envelope(BaseModel):
    """Decoded socket frame."""

    model_config = ConfigDict(extra="allow")

    type: str = Field(min_length=1)
    payload: Any = None
    id: Optional[int] = None
    error: Any = None
    timestamp: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _reject_bool_id(cls, value: Any) -> Any:
        # bool is an int subclass; a JSON true/false is never a valid id
        if isinstance(value, bool):
            raise ValueError("id must be an integer")
        return value

    @property
    def is_heartbeat_reply(self) -> bool:
        return self.type == PONG


def build_frame(type: str, payload: Any = None, id: Optional[int] = None) -> Dict[str, Any]:
    """Build an outbound frame stamped with the current UTC time."""
    frame: Dict[str, Any] = {
        "type": type,
        "payload": payload if payload is not None else {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if id is not None:
        frame["id"] = id
    return frame


def encode_frame(frame: Dict[str, Any]) -> str:
    return json.dumps(frame)


def parse_frame(raw: Union[str, bytes]) -> Envelope:
    """Decode ``raw`` into an :class:`Envelope` or raise :class:`ProtocolError`."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError("Frame is not valid JSON", details={"error": str(exc)}) from exc
    if not isinstance(data, dict):
        raise ProtocolError("Frame is not a JSON object", details={"frame": data})
    try:
        return Envelope.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError("Frame does not match the envelope schema", details={"error": str(exc)}) from exc
