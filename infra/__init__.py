"""Infrastructure layer for the Polymarket feed bridge.

This package provides the WebSocket transport, heartbeat supervision,
subscription requests, the named-pipe event sink and the connection
supervisor that ties them together.
"""

from infra.heartbeat import HeartbeatMonitor
from infra.sink import EventSink, PipeEventSink
from infra.subscription import SubscriptionDispatcher
from infra.supervisor import (
    BridgeConfig,
    ConnectionState,
    ConnectionSupervisor,
    FeedConnection,
)
from infra.transport import FeedSocket, open_websocket

__all__: list[str] = [
    "BridgeConfig",
    "ConnectionState",
    "ConnectionSupervisor",
    "EventSink",
    "FeedConnection",
    "FeedSocket",
    "HeartbeatMonitor",
    "PipeEventSink",
    "SubscriptionDispatcher",
    "open_websocket",
]
