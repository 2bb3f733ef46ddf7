"""Exception hierarchy and user-facing error formatting."""

from __future__ import annotations


class RelayAgentError(Exception):
    """Base class for all relay agent errors.

    Attributes:
        message: Human readable description.
        code: Short machine readable error code.
    """

    code = "AGENT_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigurationError(RelayAgentError):
    """A required option is missing or invalid."""

    code = "CONFIG_ERROR"

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class EncodingError(RelayAgentError):
    """An envelope could not be serialized."""

    code = "ENCODING_ERROR"


class DecodingError(RelayAgentError):
    """A frame could not be parsed into an envelope."""

    code = "DECODING_ERROR"


class DialError(RelayAgentError):
    """Opening the tunnel connection to the relay failed."""

    code = "DIAL_ERROR"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to connect to {url}: {reason}")
        self.url = url
        self.reason = reason


class SessionError(RelayAgentError):
    """The tunnel connection failed while a session was running."""

    code = "SESSION_ERROR"


class ReadTimeoutError(SessionError):
    """No frame arrived within the read window. Not fatal to a session."""

    code = "READ_TIMEOUT"


def format_error_for_user(exc: BaseException) -> str:
    """Render an exception as a single line suitable for the operator."""
    if isinstance(exc, RelayAgentError):
        return exc.message
    if isinstance(exc, TimeoutError):
        return "Operation timed out"
    if isinstance(exc, ConnectionRefusedError):
        return "Connection refused - is the relay server reachable?"
    text = str(exc).strip()
    if not text:
        return type(exc).__name__
    return f"{type(exc).__name__}: {text}"
