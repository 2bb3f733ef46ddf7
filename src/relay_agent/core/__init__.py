"""Core."""

from .config import (
    AgentConfig,
    PerformanceConfig,
    RelayAgentConfig,
    TimeoutConfig,
    clear_config,
    get_config,
)
from .exceptions import (
    ConfigurationError,
    DecodingError,
    DialError,
    EncodingError,
    ReadTimeoutError,
    RelayAgentError,
    SessionError,
    format_error_for_user,
)

__all__ = [
    # Config
    "AgentConfig",
    "PerformanceConfig",
    "RelayAgentConfig",
    "TimeoutConfig",
    "clear_config",
    "get_config",
    # Errors
    "ConfigurationError",
    "DecodingError",
    "DialError",
    "EncodingError",
    "ReadTimeoutError",
    "RelayAgentError",
    "SessionError",
    "format_error_for_user",
]
