"""Connection supervisor for the Polymarket live-data bridge.

``ConnectionSupervisor`` owns the single upstream socket and drives the
connect / reconnect / shutdown state machine. It composes the heartbeat
monitor, the subscription dispatcher, the message validator and the
downstream event sink, and is the only place where their timers and
tasks are created or cancelled.

Architecture note:
    Everything runs on one asyncio event loop. State transitions, frame
    handling and counter updates never run in parallel, so no locks are
    needed. Validation and the sink write execute synchronously inside
    frame handling: a slow sink stalls the reader.

State machine::

    DISCONNECTED --start()--> CONNECTING --open ok--> CONNECTED
         ^                        |                      |
         |                     open failed          close / error
         +------------------------+----------------------+
                      (reconnect with backoff)

    CONNECTED / CONNECTING --shutdown()--> DRAINING --> TERMINATED
    DISCONNECTED          --shutdown()--------------> TERMINATED

Reconnect semantics:
    The attempt counter is advanced before each delay is computed, so
    with ``reconnect_interval=2.0`` the waits are 4s, 8s, 16s, ... Only
    one reconnect task exists at a time; a disconnect while one is
    pending is ignored. After ``max_reconnect_attempts`` consecutive
    failures the supervisor gives up: it logs an error, sets
    :attr:`ConnectionSupervisor.failed`, calls ``on_failure`` and
    releases :meth:`ConnectionSupervisor.wait_closed`. The process is not
    forced to exit.

Shutdown semantics:
    ``shutdown()`` requests a normal close (1000, ``"Client
    Disconnect"``) and waits for the reader to observe it. If that does
    not happen within the timeout the socket is aborted. The sink is
    closed exactly once and the state ends in ``TERMINATED``.

Example::

    config = BridgeConfig()
    supervisor = ConnectionSupervisor(
        config=config,
        sink=PipeEventSink(config.pipe_path),
    )
    await supervisor.start()
    await supervisor.wait_closed()
"""

import asyncio
import contextlib
import functools
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator
from websockets.exceptions import ConnectionClosed, WebSocketException

from core.events import InboundEvent
from core.metrics import BridgeMetrics
from core.reconnect import ReconnectPolicy
from core.validator import MessageValidator, Rejection
from infra.heartbeat import PING_TEXT, PONG_TEXT, HeartbeatMonitor
from infra.sink import EventSink, ReportingSink
from infra.subscription import SubscriptionDispatcher
from infra.transport import (
    CLIENT_DISCONNECT_REASON,
    NORMAL_CLOSURE,
    FeedSocket,
    open_websocket,
)

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

Connector = Callable[[str], Awaitable[FeedSocket]]
"""Coroutine function opening a socket to a URL."""

Sleeper = Callable[[float], Awaitable[None]]
"""Coroutine function sleeping for a number of seconds."""

FailureCallback = Callable[[], None]
"""Called once when reconnect attempts are exhausted."""

_CONNECT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    WebSocketException,
    asyncio.TimeoutError,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ConnectionState(str, Enum):
    """Connection state machine for :class:`ConnectionSupervisor`.

    States:
        DISCONNECTED: No socket. Initial state, and the state while a
            reconnect is pending or after reconnects were exhausted.
        CONNECTING: Socket open in progress.
        CONNECTED: Socket open, heartbeat running, topics subscribed.
        DRAINING: ``shutdown()`` called, waiting for the socket to close.
        TERMINATED: Resources released. Terminal state.
    """

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DRAINING = "DRAINING"
    TERMINATED = "TERMINATED"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class BridgeConfig(BaseModel):
    """Static configuration for :class:`ConnectionSupervisor`.

    Attributes:
        data_source: Provider label used in log messages.
        ws_url: WebSocket endpoint (``ws://`` or ``wss://``).
        ping_interval: Seconds between heartbeat probes.
        reconnect_interval: Base reconnect delay in seconds.
        max_reconnect_attempts: Consecutive reconnect attempts before
            giving up. Zero disables reconnection.
        shutdown_timeout: Seconds to wait for a close acknowledgment
            before forcing the socket down.
        open_timeout: Seconds to wait for the opening handshake.
        pipe_path: Named pipe the downstream reader listens on.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    data_source: str = Field(
        default="polymarket",
        min_length=1,
        description="Provider label used in log messages",
    )
    ws_url: str = Field(
        default="wss://ws-live-data.polymarket.com",
        description="WebSocket endpoint URL",
    )
    ping_interval: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds between heartbeat probes",
    )
    reconnect_interval: float = Field(
        default=2.0,
        gt=0.0,
        description="Base reconnect delay in seconds",
    )
    max_reconnect_attempts: int = Field(
        default=5,
        ge=0,
        description="Consecutive reconnect attempts before giving up",
    )
    shutdown_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds to wait for close acknowledgment on shutdown",
    )
    open_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds to wait for the opening handshake",
    )
    pipe_path: str = Field(
        default="/tmp/pipe_1",
        min_length=1,
        description="Named pipe read by the downstream analysis process",
    )

    @field_validator("ws_url")
    @classmethod
    def _validate_ws_scheme(cls, v: str) -> str:
        """Require a ws:// or wss:// URL."""
        v = v.strip()
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"ws_url must start with ws:// or wss://, got {v!r}")
        return v


# ---------------------------------------------------------------------------
# Capability protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class FeedConnection(Protocol):
    """A feed connection that can be connected and disconnected."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class ConnectionSupervisor:
    """Owns the feed socket and its connect/reconnect/shutdown lifecycle.

    Implements :class:`FeedConnection`. Constructed once per process and
    torn down once via :meth:`shutdown`.

    Args:
        config: Bridge configuration.
        sink: Receives every validated event. Closed exactly once on
            shutdown.
        dispatcher: Sends the subscription request after each connect.
            Defaults to activity trades only.
        validator: Parses inbound frames. Defaults to a new
            :class:`MessageValidator`.
        heartbeat: Probes the socket while connected. Defaults to a
            monitor using ``config.ping_interval``.
        connector: Coroutine function opening a socket. Defaults to
            :func:`infra.transport.open_websocket`.
        sleep: Coroutine function used for backoff delays. Defaults to
            :func:`asyncio.sleep`.
        on_failure: Called once when reconnect attempts are exhausted.
    """

    def __init__(
        self,
        config: BridgeConfig,
        sink: EventSink,
        dispatcher: SubscriptionDispatcher | None = None,
        validator: MessageValidator | None = None,
        heartbeat: HeartbeatMonitor | None = None,
        connector: Connector | None = None,
        sleep: Sleeper = asyncio.sleep,
        on_failure: FailureCallback | None = None,
    ) -> None:
        self._config: BridgeConfig = config
        self._sink: EventSink = sink
        self._dispatcher: SubscriptionDispatcher = dispatcher or SubscriptionDispatcher()
        self._validator: MessageValidator = validator or MessageValidator()
        self._heartbeat: HeartbeatMonitor = heartbeat or HeartbeatMonitor(
            interval=config.ping_interval,
        )
        self._connector: Connector = connector or functools.partial(
            open_websocket,
            open_timeout=config.open_timeout,
        )
        self._sleep: Sleeper = sleep
        self._on_failure: FailureCallback | None = on_failure

        self._policy: ReconnectPolicy = ReconnectPolicy(
            base_delay=config.reconnect_interval,
            max_attempts=config.max_reconnect_attempts,
        )

        # Socket and owned tasks
        self._socket: FeedSocket | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        # State machine
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._reconnecting: bool = False
        self._shutdown_requested: bool = False
        self._failed: bool = False
        self._closed_event: asyncio.Event = asyncio.Event()

        # Counters
        self._frames_received: int = 0
        self._events_forwarded: int = 0
        self._sink_errors: int = 0
        self._connects: int = 0
        self._connect_failures: int = 0
        self._reconnect_attempts: int = 0

        # Timestamps (monotonic)
        self._connected_at: float | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def failed(self) -> bool:
        """Whether reconnect attempts were exhausted."""
        return self._failed

    @property
    def reconnect_policy(self) -> ReconnectPolicy:
        return self._policy

    @property
    def reconnect_pending(self) -> bool:
        """Whether a reconnect task is scheduled or running."""
        return self._reconnecting

    async def start(self) -> None:
        """Open the socket; schedule a reconnect if that fails.

        Raises:
            RuntimeError: If the supervisor is not in ``DISCONNECTED``
                state, or is shutting down.
        """
        if self._state is not ConnectionState.DISCONNECTED or self._shutdown_requested:
            raise RuntimeError(f"Cannot start: supervisor is in {self._state.value} state")
        if self._reconnecting:
            raise RuntimeError("Cannot start: reconnect already in progress")

        if not await self._open() and not self._shutdown_requested:
            self._schedule_reconnect()

    async def connect(self) -> None:
        """Alias of :meth:`start` for :class:`FeedConnection`."""
        await self.start()

    async def disconnect(self) -> None:
        """Alias of :meth:`shutdown` for :class:`FeedConnection`."""
        await self.shutdown()

    async def shutdown(self, timeout: float | None = None) -> None:
        """Close the socket and release every resource.

        Safe to call in any state. Idempotent: later calls wait for the
        first one to finish.

        Args:
            timeout: Seconds to wait for the close acknowledgment before
                aborting the socket. Defaults to
                ``config.shutdown_timeout``.
        """
        if self._shutdown_requested:
            await self._closed_event.wait()
            return
        self._shutdown_requested = True
        limit: float = self._config.shutdown_timeout if timeout is None else timeout
        logger.info("Shutdown requested (state=%s)", self._state.value)

        await self._cancel_reconnect()
        self._heartbeat.stop()

        socket: FeedSocket | None = self._socket
        if socket is not None and self._state in (
            ConnectionState.CONNECTED,
            ConnectionState.CONNECTING,
        ):
            self._state = ConnectionState.DRAINING
            logger.info("Socket is connected, waiting for close acknowledgment...")
            await self._drain(socket, limit)
        else:
            if self._state is ConnectionState.CONNECTING:
                self._state = ConnectionState.DRAINING
            logger.info("Socket not connected, finishing shutdown immediately")

        self._finish_shutdown()

    async def wait_closed(self) -> None:
        """Wait until the supervisor terminates or gives up reconnecting."""
        await self._closed_event.wait()

    def metrics(self) -> BridgeMetrics:
        """Return a snapshot of all bridge counters."""
        validator_stats: dict[str, int] = self._validator.stats()
        heartbeat_stats: dict[str, int] = self._heartbeat.stats()
        dispatcher_stats: dict[str, int] = self._dispatcher.stats()
        sink_stats: dict[str, int] = (
            self._sink.stats() if isinstance(self._sink, ReportingSink) else {}
        )
        uptime: float = 0.0
        if self._connected_at is not None and self._state is ConnectionState.CONNECTED:
            uptime = max(0.0, time.monotonic() - self._connected_at)
        return BridgeMetrics(
            state=self._state.value,
            frames_received=self._frames_received,
            valid_messages=validator_stats["valid_messages"],
            invalid_messages=validator_stats["invalid_messages"],
            rejected_parse_error=validator_stats["rejected_parse_error"],
            rejected_missing_payload=validator_stats["rejected_missing_payload"],
            rejected_missing_type=validator_stats["rejected_missing_type"],
            rejected_unknown_type=validator_stats["rejected_unknown_type"],
            events_forwarded=self._events_forwarded,
            unsupported_payloads=sink_stats.get("unsupported_payloads", 0),
            unknown_payloads=sink_stats.get("unknown_payloads", 0),
            sink_errors=self._sink_errors,
            pings_sent=heartbeat_stats["pings_sent"],
            pongs_received=heartbeat_stats["pongs_received"],
            pings_received=heartbeat_stats["pings_received"],
            pongs_sent=heartbeat_stats["pongs_sent"],
            subscription_requests=dispatcher_stats["requests_sent"],
            connects=self._connects,
            connect_failures=self._connect_failures,
            reconnect_attempts=self._reconnect_attempts,
            attempt_count=self._policy.attempt_count,
            uptime_seconds=uptime,
        )

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    async def _open(self) -> bool:
        """Open the socket and bring up heartbeat, subscription and reader.

        Returns:
            ``True`` if the supervisor reached ``CONNECTED``.
        """
        self._state = ConnectionState.CONNECTING
        logger.info("Connecting to %s at %s", self._config.data_source, self._config.ws_url)
        try:
            socket: FeedSocket = await self._connector(self._config.ws_url)
        except _CONNECT_ERRORS as exc:
            self._connect_failures += 1
            logger.error("Connection to %s failed: %r", self._config.data_source, exc)
            if not self._shutdown_requested:
                self._state = ConnectionState.DISCONNECTED
            return False

        if self._shutdown_requested:
            logger.info("Shutdown requested while connecting, dropping new socket")
            socket.abort()
            return False

        self._socket = socket
        self._state = ConnectionState.CONNECTED
        self._policy.reset()
        self._connects += 1
        self._connected_at = time.monotonic()
        logger.info("Connected to %s", self._config.data_source)

        self._heartbeat.start(socket)
        await self._dispatcher.subscribe(socket)

        # The reader is started last; nothing below may await.
        if not self._shutdown_requested and self._socket is socket:
            self._reader_task = asyncio.get_running_loop().create_task(
                self._read_loop(socket),
                name="feed-reader",
            )
        return True

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    async def _read_loop(self, socket: FeedSocket) -> None:
        try:
            async for frame in socket:
                await self._handle_frame(socket, frame)
        except ConnectionClosed as exc:
            logger.warning(
                "Connection to %s closed unexpectedly: %s",
                self._config.data_source,
                exc,
            )
        except (WebSocketException, OSError):
            logger.exception("Socket error on %s", self._config.data_source)
        finally:
            self._on_socket_closed(socket)

    async def _handle_frame(self, socket: FeedSocket, frame: str | bytes) -> None:
        self._frames_received += 1
        text: str = frame.decode("utf-8", errors="replace") if isinstance(frame, bytes) else frame

        probe: str = text.strip().upper()
        if probe == PING_TEXT:
            await self._heartbeat.on_peer_probe(socket)
            return
        if probe == PONG_TEXT:
            self._heartbeat.on_probe_reply()
            return

        result: InboundEvent | Rejection = self._validator.validate(text)
        if isinstance(result, Rejection):
            return

        try:
            written: bool = self._sink.write(result)
        except OSError:
            self._sink_errors += 1
            logger.exception("Failed to write event to sink")
            return
        except Exception:
            self._sink_errors += 1
            logger.exception("Unexpected error writing event to sink")
            return
        if written:
            self._events_forwarded += 1

    def _on_socket_closed(self, socket: FeedSocket) -> None:
        if socket is not self._socket:
            return
        self._heartbeat.stop()
        self._socket = None
        self._reader_task = None
        self._connected_at = None

        if self._shutdown_requested:
            logger.info("Disconnected from %s", self._config.data_source)
            return

        self._state = ConnectionState.DISCONNECTED
        logger.warning("Disconnected from %s", self._config.data_source)
        self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        """Start the reconnect task unless one is already pending."""
        if self._reconnecting:
            logger.debug("Reconnect already pending, ignoring disconnect")
            return
        if self._shutdown_requested or self._failed:
            return
        self._state = ConnectionState.DISCONNECTED
        self._reconnecting = True
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_loop(),
            name="feed-reconnect",
        )

    async def _reconnect_loop(self) -> None:
        """Reconnect with exponential backoff until connected or exhausted."""
        try:
            while not self._shutdown_requested:
                attempt: int | None = self._policy.next_attempt()
                if attempt is None:
                    self._give_up()
                    return

                delay: float = self._policy.delay_for(attempt)
                self._reconnect_attempts += 1
                logger.info(
                    "Reconnecting in %.1fs (attempt %d/%d) for %s",
                    delay,
                    attempt,
                    self._policy.max_attempts,
                    self._config.data_source,
                )
                await self._sleep(delay)
                if self._shutdown_requested:
                    return
                if await self._open():
                    return
        finally:
            self._reconnecting = False
            self._reconnect_task = None

    def _give_up(self) -> None:
        self._failed = True
        self._state = ConnectionState.DISCONNECTED
        logger.error(
            "Max reconnect attempts reached (%d) for %s, giving up",
            self._policy.max_attempts,
            self._config.data_source,
        )
        self._closed_event.set()
        if self._on_failure is not None:
            self._on_failure()

    async def _cancel_reconnect(self) -> None:
        task: asyncio.Task[None] | None = self._reconnect_task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Pending reconnect cancelled")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def _drain(self, socket: FeedSocket, timeout: float) -> None:
        reader: asyncio.Task[None] | None = self._reader_task
        try:
            await asyncio.wait_for(self._close_and_wait(socket, reader), timeout=timeout)
            logger.info("Socket closed with code %d", NORMAL_CLOSURE)
        except asyncio.TimeoutError:
            logger.warning("Forced shutdown: no close acknowledgment within %.1fs", timeout)
            socket.abort()

        if reader is not None and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._socket = None
        self._reader_task = None

    @staticmethod
    async def _close_and_wait(
        socket: FeedSocket,
        reader: "asyncio.Task[None] | None",
    ) -> None:
        await socket.close(code=NORMAL_CLOSURE, reason=CLIENT_DISCONNECT_REASON)
        if reader is not None:
            await asyncio.shield(reader)

    def _finish_shutdown(self) -> None:
        if self._state is ConnectionState.TERMINATED:
            return
        try:
            self._sink.close()
        except OSError:
            logger.exception("Failed to close event sink")
        self._state = ConnectionState.TERMINATED
        self._closed_event.set()
        logger.info(
            "Shutdown complete (frames=%d, forwarded=%d, invalid=%d, reconnects=%d)",
            self._frames_received,
            self._events_forwarded,
            self._validator.stats()["invalid_messages"],
            self._reconnect_attempts,
        )
