"""Tunnel wire protocol."""

from .envelope import Envelope, MessageType, decode_envelope, encode_envelope

__all__ = [
    "Envelope",
    "MessageType",
    "decode_envelope",
    "encode_envelope",
]
