"""Shared fixtures for relay agent tests."""

from __future__ import annotations

import pytest

from relay_agent.core.config import clear_config


@pytest.fixture(autouse=True)
def _reset_config():
    """Make every test read configuration from a clean environment."""
    clear_config()
    yield
    clear_config()
