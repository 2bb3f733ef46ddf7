"""Envelope message model and JSON codec for the relay tunnel.

Every frame exchanged with the relay is one JSON object per WebSocket text
message. Field names match the relay's wire schema; ``body`` travels as
standard base64 text and empty fields are omitted.
"""

from __future__ import annotations

import base64
import binascii
import json
from enum import StrEnum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)

from relay_agent.core.exceptions import DecodingError, EncodingError


class MessageType(StrEnum):
    """Envelope kinds understood by the agent."""

    REQUEST = "request"
    RESPONSE = "response"
    PING = "ping"
    PONG = "pong"


class Envelope(BaseModel):
    """The single message type carried over the tunnel connection."""

    model_config = ConfigDict(extra="ignore")

    # Plain string so unknown kinds still decode and can be discarded.
    type: str = ""
    app_id: str = ""
    req_id: str = ""
    method: str = ""
    path: str = ""
    headers: dict[str, list[str]] = Field(default_factory=dict)
    status: int = 0
    body: bytes = b""

    @field_validator("type", "app_id", "req_id", "method", "path", mode="before")
    @classmethod
    def _null_string(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("headers", mode="before")
    @classmethod
    def _null_headers(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _null_status(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("body", mode="before")
    @classmethod
    def _decode_body(cls, value: Any) -> Any:
        if value is None:
            return b""
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as e:
                raise ValueError(f"body is not valid base64: {e}") from e
        return value

    @field_serializer("body", when_used="json")
    def _encode_body(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    @property
    def effective_status(self) -> int:
        """HTTP status to report, 200 when unset."""
        return self.status or 200

    @property
    def is_request(self) -> bool:
        return self.type == MessageType.REQUEST

    @property
    def is_ping(self) -> bool:
        return self.type == MessageType.PING

    @classmethod
    def pong(cls) -> Envelope:
        return cls(type=MessageType.PONG.value)

    @classmethod
    def response(
        cls,
        req_id: str,
        status: int,
        headers: dict[str, list[str]] | None = None,
        body: bytes = b"",
    ) -> Envelope:
        """Build a response envelope answering the request ``req_id``."""
        return cls(
            type=MessageType.RESPONSE.value,
            req_id=req_id,
            status=status,
            headers=headers or {},
            body=body,
        )


def encode_envelope(envelope: Envelope) -> bytes:
    """Serialize an envelope to its JSON wire form.

    Empty fields (blank strings, zero status, no headers, empty body) are
    left out of the frame.

    Raises:
        EncodingError: If the envelope holds values JSON cannot represent.
    """
    try:
        fields = envelope.model_dump(mode="json")
        payload = {name: value for name, value in fields.items() if value}
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (ValueError, TypeError) as e:
        raise EncodingError(f"Failed to encode envelope: {e}") from e


def decode_envelope(data: bytes | str) -> Envelope:
    """Parse a JSON wire frame into an envelope.

    Absent or null fields take their empty default and unknown fields are
    ignored.

    Raises:
        DecodingError: If the frame is not a JSON object or a known field
            carries a value of the wrong shape.
    """
    try:
        return Envelope.model_validate_json(data)
    except ValidationError as e:
        raise DecodingError(f"Malformed envelope: {e.error_count()} validation error(s)") from e
