"""Heartbeat supervision for the feed connection.

``HeartbeatMonitor`` sends a protocol ping every ``interval`` seconds
while the connection is up, answers peer-initiated ``PING`` text probes,
and counts probes and replies in both directions.

Lifecycle:
    :meth:`HeartbeatMonitor.start` is called by the supervisor on
    entering ``CONNECTED`` and :meth:`HeartbeatMonitor.stop` on leaving
    it. Starting again cancels the previous task first, so a reconnect
    never leaves two probe loops running.

Liveness:
    The monitor does not treat a missing pong as a failure. Connection
    loss is detected only from the socket closing or erroring.

Peer probes:
    Only ``PING``/``PONG`` text frames are seen here. Protocol-level ping
    frames from the server are answered by ``websockets`` itself, which
    offers no hook for them, so they do not show up in ``stats()``.

Example::

    heartbeat = HeartbeatMonitor(interval=5.0)
    heartbeat.start(socket)
    ...
    heartbeat.stop()
    heartbeat.stats()["pings_sent"]
"""

import asyncio
import logging
from typing import Awaitable

from websockets.exceptions import ConnectionClosed, WebSocketException

from infra.transport import FeedSocket

logger: logging.Logger = logging.getLogger(__name__)

PING_TEXT: str = "PING"
PONG_TEXT: str = "PONG"


class HeartbeatMonitor:
    """Periodic liveness probe bound to one socket at a time.

    Args:
        interval: Seconds between probes. Must be positive.

    Raises:
        ValueError: If ``interval`` is not positive.
    """

    def __init__(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self._interval: float = interval
        self._task: asyncio.Task[None] | None = None

        self._pings_sent: int = 0
        self._pongs_received: int = 0
        self._pings_received: int = 0
        self._pongs_sent: int = 0
        self._probe_errors: int = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def active(self) -> bool:
        """Whether a probe loop is currently scheduled."""
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, socket: FeedSocket) -> None:
        """Start probing ``socket``. Must be called from the event loop."""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(
            self._run(socket),
            name="feed-heartbeat",
        )
        logger.debug("Heartbeat started (interval=%.1fs)", self._interval)

    def stop(self) -> None:
        """Cancel the probe loop. Idempotent."""
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            logger.debug("Heartbeat stopped")
        self._task = None

    async def _run(self, socket: FeedSocket) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if socket.is_open:
                await self.send_probe(socket)

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------

    async def send_probe(self, socket: FeedSocket) -> None:
        """Send one ping and count the pong when it arrives."""
        try:
            waiter: Awaitable[float] = await socket.ping()
        except ConnectionClosed:
            logger.debug("Skipping ping: connection closed")
            return
        except (WebSocketException, OSError):
            self._probe_errors += 1
            logger.exception("Failed to send ping")
            return
        self._pings_sent += 1
        logger.debug(">> PING")
        asyncio.ensure_future(waiter).add_done_callback(self._on_pong_waiter_done)

    async def on_peer_probe(self, socket: FeedSocket) -> None:
        """Answer a peer-initiated probe immediately if the socket is open."""
        self._pings_received += 1
        logger.debug("<< PING")
        if not socket.is_open:
            return
        try:
            await socket.send(PONG_TEXT)
        except ConnectionClosed:
            logger.debug("Skipping pong: connection closed")
            return
        except (WebSocketException, OSError):
            self._probe_errors += 1
            logger.exception("Failed to send pong")
            return
        self._pongs_sent += 1
        logger.debug(">> PONG")

    def on_probe_reply(self) -> None:
        """Record a probe reply received as a text frame."""
        self._pongs_received += 1
        logger.debug("<< PONG")

    def _on_pong_waiter_done(self, waiter: "asyncio.Future[float]") -> None:
        if waiter.cancelled() or waiter.exception() is not None:
            return
        self._pongs_received += 1
        logger.debug("<< PONG (%.1fms)", waiter.result() * 1000)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        """Return probe counters."""
        return {
            "pings_sent": self._pings_sent,
            "pongs_received": self._pongs_received,
            "pings_received": self._pings_received,
            "pongs_sent": self._pongs_sent,
            "probe_errors": self._probe_errors,
        }
