"""Configuration types with environment variable support.

Tunable settings can be configured via environment variables with the
RELAY_AGENT_ prefix. Example: RELAY_AGENT_REQUEST_TIMEOUT=30 raises the local
request timeout to 30 seconds.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay_agent.core.urls import access_url, relay_dial_url, target_base_url


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Read agent options from a ``--config`` file.

    The file may be YAML (``.yaml``/``.yml``) or TOML (``.toml``) and holds any
    of ``server``, ``app_id``, ``token`` and ``port``, either at the top level
    or under ``[relay]`` / ``[target]`` tables.

    Raises:
        FileNotFoundError: The file does not exist.
        ValueError: The file cannot be read or parsed, or is neither YAML
            nor TOML.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Agent config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"{path} is not UTF-8 text: {e}") from e

    if path.suffix in (".yaml", ".yml"):
        try:
            loaded = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in agent config {path}: {e}") from e
    elif path.suffix == ".toml":
        try:
            loaded = tomllib.loads(content)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in agent config {path}: {e}") from e
    else:
        raise ValueError(
            f"Unsupported config format {path.suffix!r}: use .yaml, .yml or .toml"
        )

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Agent config {path} must be a mapping of option names")
    return loaded


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Join nested tables into ``table_key`` names.

    ``{"relay": {"app_id": "a"}, "target": {"port": 80}}`` becomes
    ``{"relay_app_id": "a", "target_port": 80}``, the spellings the CLI
    accepts next to the plain option names.
    """
    flat: dict[str, Any] = {}
    for key, value in config.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten_config(value, name))
        else:
            flat[name] = value
    return flat


class AgentConfig(BaseModel):
    """Connection settings supplied by the operator."""

    server: str = Field(description="Relay server address, e.g. https://relay.example.com")
    app_id: str = Field(description="Application identifier registered with the relay.")
    token: str = Field(repr=False, description="Relay authorization token.")
    port: int = Field(ge=1, le=65535, description="Local target service port.")

    @field_validator("server", "app_id", "token")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def relay_url(self) -> str:
        """WebSocket URL the agent dials."""
        return relay_dial_url(self.server, self.app_id)

    @property
    def access_url(self) -> str:
        """Public URL operators use to reach the local service."""
        return access_url(self.server, self.app_id)

    @property
    def target_url(self) -> str:
        """Base URL of the local service."""
        return target_base_url(self.port)

    @property
    def auth_headers(self) -> dict[str, str]:
        """Headers sent with the relay handshake."""
        if not self.token:
            return {}
        return {"Relay-Authorization": f"bearer {self.token}"}


class TimeoutConfig(BaseSettings):
    """Timeout and retry delay configuration. All values are in seconds."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    dial_retry_delay: float = Field(
        default=2.0,
        gt=0,
        description="Delay before re-dialing after a failed dial.",
    )
    reconnect_delay: float = Field(
        default=1.0,
        gt=0,
        description="Delay before re-dialing after a session ends.",
    )
    read_deadline: float = Field(
        default=60.0,
        gt=0,
        description="Read window; extended by this much whenever it expires idle.",
    )
    request_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Total timeout for one request to the local service.",
    )
    pong_write_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Write bound for answering transport-level pings.",
    )
    connect_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for the relay WebSocket handshake.",
    )


class PerformanceConfig(BaseSettings):
    """Frame size limits."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ws_max_size: int = Field(
        default=64 * 1024 * 1024,
        description="Maximum inbound WebSocket message size (bytes). Default 64MB.",
    )


class RelayAgentConfig(BaseSettings):
    """Master configuration combining all tunable settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.timeouts.request_timeout)
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def timeouts(self) -> TimeoutConfig:
        """Get timeout configuration."""
        return TimeoutConfig()

    @property
    def performance(self) -> PerformanceConfig:
        """Get performance configuration."""
        return PerformanceConfig()

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display."""
        return {
            "timeouts": self.timeouts.model_dump(),
            "performance": self.performance.model_dump(),
        }


_config: RelayAgentConfig | None = None


def get_config() -> RelayAgentConfig:
    """Get the global configuration instance.

    The instance is created once and cached for the lifetime of the process.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = RelayAgentConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration."""
    global _config
    _config = None
