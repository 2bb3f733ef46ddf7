"""Tunnel client: connection lifecycle, dispatch and request forwarding."""

from .forwarder import RequestForwarder, create_http_client, forward
from .keepalive import KeepaliveHandler
from .manager import ConnectionManager, ConnectionState
from .session import ConnectionSession
from .transport import Connection, RelayConnection, dial_relay

__all__ = [
    "Connection",
    "ConnectionManager",
    "ConnectionSession",
    "ConnectionState",
    "KeepaliveHandler",
    "RelayConnection",
    "RequestForwarder",
    "create_http_client",
    "dial_relay",
    "forward",
]
