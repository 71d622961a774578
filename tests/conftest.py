"""Shared test doubles for the feed bridge tests.

Nothing here touches the network: ``FakeSocket`` is an in-memory
:class:`infra.transport.FeedSocket`, ``FakeConnector`` hands out fake
sockets (optionally failing first), and the sleep doubles record backoff
delays instead of waiting.
"""

import asyncio
import json
from typing import Any, Callable

import pytest
from websockets.exceptions import ConnectionClosedError

from core.events import InboundEvent, PayloadKind

_CLOSE: object = object()
_DROP: object = object()


# ---------------------------------------------------------------------------
# Socket doubles
# ---------------------------------------------------------------------------


class FakeSocket:
    """In-memory FeedSocket.

    Frames queued with :meth:`feed` are yielded by iteration. ``close``
    and ``abort`` end iteration cleanly; :meth:`drop` ends it with
    ``ConnectionClosedError`` like an unexpected server close.
    """

    def __init__(
        self,
        hang_on_close: bool = False,
        send_error: BaseException | None = None,
        ping_error: BaseException | None = None,
        pong_latency: float = 0.002,
    ) -> None:
        self.sent: list[str] = []
        self.pings: int = 0
        self.closed_with: tuple[int, str] | None = None
        self.aborted: bool = False
        self._open: bool = True
        self._frames: asyncio.Queue = asyncio.Queue()
        self._hang_on_close = hang_on_close
        self._send_error = send_error
        self._ping_error = ping_error
        self._pong_latency = pong_latency

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, message: str) -> None:
        if self._send_error is not None:
            raise self._send_error
        self.sent.append(message)

    async def ping(self) -> "asyncio.Future[float]":
        if self._ping_error is not None:
            raise self._ping_error
        self.pings += 1
        waiter: asyncio.Future[float] = asyncio.get_running_loop().create_future()
        waiter.set_result(self._pong_latency)
        return waiter

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
        if self._hang_on_close:
            await asyncio.Event().wait()
        self._open = False
        self._frames.put_nowait(_CLOSE)

    def abort(self) -> None:
        self.aborted = True
        self._open = False
        self._frames.put_nowait(_CLOSE)

    def feed(self, frame: str | bytes) -> None:
        self._frames.put_nowait(frame)

    def drop(self) -> None:
        self._open = False
        self._frames.put_nowait(_DROP)

    def __aiter__(self) -> "FakeSocket":
        return self

    async def __anext__(self) -> str | bytes:
        frame = await self._frames.get()
        if frame is _CLOSE:
            raise StopAsyncIteration
        if frame is _DROP:
            raise ConnectionClosedError(None, None)
        return frame


class FakeConnector:
    """Connector coroutine that fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int = 0, **socket_kwargs: Any) -> None:
        self.failures: int = failures
        self.calls: list[str] = []
        self.sockets: list[FakeSocket] = []
        self._socket_kwargs = socket_kwargs

    async def __call__(self, url: str) -> FakeSocket:
        self.calls.append(url)
        if len(self.calls) <= self.failures:
            raise ConnectionRefusedError(f"connection refused ({len(self.calls)})")
        socket = FakeSocket(**self._socket_kwargs)
        self.sockets.append(socket)
        return socket

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


# ---------------------------------------------------------------------------
# Sleep doubles
# ---------------------------------------------------------------------------


class RecordingSleep:
    """Records requested delays and yields once instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class GatedSleep:
    """Records requested delays and blocks until :meth:`release`."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._gate: asyncio.Event = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._gate.wait()

    def release(self) -> None:
        self._gate.set()


# ---------------------------------------------------------------------------
# Sink double
# ---------------------------------------------------------------------------


class RecordingSink:
    """EventSink keeping accepted events in memory."""

    def __init__(self, write_error: BaseException | None = None) -> None:
        self.events: list[InboundEvent] = []
        self.rejected: list[InboundEvent] = []
        self.close_calls: int = 0
        self._write_error = write_error

    def write(self, event: InboundEvent) -> bool:
        if self._write_error is not None:
            raise self._write_error
        if event.kind is not PayloadKind.ACTIVITY_TRADE:
            self.rejected.append(event)
            return False
        self.events.append(event)
        return True

    def close(self) -> None:
        self.close_calls += 1


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------


def make_trade_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "asset": "71321045679252212594626385532706912750332728571942532289631379312455583992563",
        "bio": "",
        "conditionId": "0xabc",
        "eventSlug": "will-it-rain",
        "icon": "https://example.com/icon.png",
        "name": "alice",
        "outcome": "Yes",
        "outcomeIndex": 0,
        "price": 0.42,
        "profileImage": "",
        "proxyWallet": "0x123",
        "pseudonym": "Quiet-Otter",
        "side": "BUY",
        "size": 150,
        "slug": "will-it-rain-today",
        "timestamp": 1_700_000_000,
        "title": "Will it rain?",
        "transactionHash": "0xdeadbeef",
    }
    payload.update(overrides)
    return payload


def make_message(payload: Any, event_type: str = "trades", **extra: Any) -> str:
    message: dict[str, Any] = {
        "connection_id": "conn-1",
        "payload": payload,
        "timestamp": 1_700_000_000_123,
        "topic": "activity",
        "type": event_type,
    }
    message.update(extra)
    return json.dumps(message)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def trade_message() -> str:
    """A valid activity trade frame."""
    return make_message(make_trade_payload())


@pytest.fixture()
def crypto_message() -> str:
    """A valid crypto price update frame."""
    return make_message(
        {"symbol": "btcusdt", "value": 97000.5, "timestamp": 1_700_000_000_000},
        event_type="update",
        topic="crypto_prices",
    )


@pytest.fixture()
def settle() -> Callable[..., Any]:
    """Return a coroutine that spins the loop until a predicate holds."""

    async def _settle(predicate: Callable[[], bool], rounds: int = 500) -> None:
        for _ in range(rounds):
            if predicate():
                return
            await asyncio.sleep(0)
        raise AssertionError("condition not reached")

    return _settle


@pytest.fixture()
def fake_socket() -> FakeSocket:
    """An open in-memory socket."""
    return FakeSocket()


@pytest.fixture()
def make_socket() -> Callable[..., FakeSocket]:
    """Factory for sockets with custom failure behaviour."""
    return FakeSocket


@pytest.fixture()
def make_connector() -> Callable[..., FakeConnector]:
    """Factory for connectors failing a given number of times."""
    return FakeConnector


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def gated_sleep() -> GatedSleep:
    return GatedSleep()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def make_sink() -> Callable[..., RecordingSink]:
    return RecordingSink


@pytest.fixture(name="make_trade_payload")
def _make_trade_payload_fixture() -> Callable[..., dict[str, Any]]:
    """Builder for activity trade payload dicts."""
    return make_trade_payload


@pytest.fixture(name="make_message")
def _make_message_fixture() -> Callable[..., str]:
    """Builder for raw inbound frames."""
    return make_message
