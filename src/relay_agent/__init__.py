"""relay-agent - expose a private HTTP service through a public relay."""

__version__ = "0.1.0"
