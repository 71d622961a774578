"""WebSocket transport for the Polymarket live-data endpoint.

This module isolates the ``websockets`` library behind the small
:class:`FeedSocket` protocol the rest of the bridge depends on. The
connection supervisor only ever sees a ``FeedSocket``, which keeps it
testable with an in-memory fake and leaves room for other providers.

Architecture note:
    The bridge runs on a single asyncio event loop. ``websockets``'
    built-in keepalive is disabled (``ping_interval=None``) because
    liveness probing is owned by :class:`infra.heartbeat.HeartbeatMonitor`.
    Protocol-level pings from the server are still answered by the
    library.

Example::

    socket = await open_websocket("wss://ws-live-data.polymarket.com")
    await socket.send('{"action": "subscribe", ...}')
    async for frame in socket:
        ...
    await socket.close()
"""

import logging
from typing import AsyncIterator, Awaitable, Protocol, runtime_checkable

from websockets.asyncio.client import ClientConnection, connect
from websockets.protocol import State

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NORMAL_CLOSURE: int = 1000
"""WebSocket close code for a client-initiated normal close."""

CLIENT_DISCONNECT_REASON: str = "Client Disconnect"


# ---------------------------------------------------------------------------
# Capability protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class FeedSocket(Protocol):
    """Minimal socket capability used by the supervisor and its parts.

    Iterating a ``FeedSocket`` yields inbound frames (``str`` or
    ``bytes``) until the connection closes. Iteration ends normally on
    a clean close and raises
    :class:`websockets.exceptions.ConnectionClosedError` otherwise.
    """

    @property
    def is_open(self) -> bool: ...

    async def send(self, message: str) -> None: ...

    async def ping(self) -> Awaitable[float]: ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...

    def abort(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


# ---------------------------------------------------------------------------
# websockets implementation
# ---------------------------------------------------------------------------


class WebSocketFeedSocket:
    """:class:`FeedSocket` backed by a ``websockets`` client connection.

    Args:
        connection: An open ``websockets.asyncio.client.ClientConnection``.
    """

    def __init__(self, connection: ClientConnection) -> None:
        self._connection: ClientConnection = connection

    @property
    def is_open(self) -> bool:
        return self._connection.state is State.OPEN

    @property
    def remote_address(self) -> object:
        return self._connection.remote_address

    async def send(self, message: str) -> None:
        await self._connection.send(message)

    async def ping(self) -> Awaitable[float]:
        """Send a protocol ping.

        Returns:
            A waiter that resolves with the round-trip latency in
            seconds when the matching pong arrives.
        """
        return await self._connection.ping()

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        await self._connection.close(code=code, reason=reason)

    def abort(self) -> None:
        """Drop the TCP connection without a closing handshake."""
        transport = self._connection.transport
        if transport is not None:
            transport.abort()

    def __aiter__(self) -> AsyncIterator[str | bytes]:
        return self._connection.__aiter__()


async def open_websocket(url: str, open_timeout: float = 10.0) -> FeedSocket:
    """Open a WebSocket connection to ``url``.

    Args:
        url: ``ws://`` or ``wss://`` endpoint.
        open_timeout: Seconds to wait for the opening handshake.

    Returns:
        An open :class:`FeedSocket`.

    Raises:
        OSError: If the TCP connection fails.
        websockets.exceptions.WebSocketException: If the handshake
            fails or the URI is invalid.
        TimeoutError: If the handshake does not complete in time.
    """
    connection: ClientConnection = await connect(
        url,
        ping_interval=None,
        open_timeout=open_timeout,
    )
    logger.debug("WebSocket opened to %s", url)
    return WebSocketFeedSocket(connection)
