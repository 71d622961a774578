"""Downstream event sink writing fixed-format records to a named pipe.

The analysis process reads one newline-terminated record per trade from
a Unix FIFO (``/tmp/pipe_1`` by default). Each record is eight fields,
each wrapped in braces, in this fixed order::

    {title}{name}{outcome}{outcomeIndex}{side}{size}{price}{localTimeOfDay}

The reader depends on the exact field count, order and delimiter. Any
change here needs a matching change on the reading side.

Accepted variants:
    Only :class:`~core.events.ActivityTrade` payloads are written. Crypto
    price updates are rejected with a "not supported" notice and
    unrecognized payloads with an error log. Neither counts as a sink
    failure.

Blocking:
    Writes are synchronous. Opening a FIFO for writing blocks until a
    reader attaches, and a full pipe blocks the writer. Both stall the
    caller's event loop.

Example::

    sink = PipeEventSink("/tmp/pipe_1")
    sink.write(event)
    sink.close()
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Protocol, TextIO, runtime_checkable

from core.events import ActivityTrade, InboundEvent, PayloadKind

logger: logging.Logger = logging.getLogger(__name__)

RECORD_FIELD_COUNT: int = 8
"""Number of brace-delimited fields in every record."""

_TIME_OF_DAY_FORMAT: str = "%H:%M:%S"

INVALID_TIME: str = "Invalid Date"
"""Time-of-day field written for a timestamp that cannot be rendered."""


# ---------------------------------------------------------------------------
# Sink contract
# ---------------------------------------------------------------------------


@runtime_checkable
class EventSink(Protocol):
    """Consumer of validated events.

    ``write`` returns ``True`` if the event was written and ``False`` if
    the sink declined it. ``close`` must be idempotent and safe to call
    on a sink that never opened its channel.
    """

    def write(self, event: InboundEvent) -> bool: ...

    def close(self) -> None: ...


@runtime_checkable
class ReportingSink(EventSink, Protocol):
    """:class:`EventSink` that also exposes counters via ``stats()``."""

    def stats(self) -> dict[str, int]: ...


# ---------------------------------------------------------------------------
# Record formatting
# ---------------------------------------------------------------------------


def _format_value(value: object) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def format_local_time(timestamp: float) -> str:
    """Render a seconds-since-epoch timestamp as local ``HH:MM:SS``.

    Timestamps the platform cannot represent, such as NaN or far-future
    values, render as ``INVALID_TIME`` instead of raising.
    """
    try:
        return datetime.fromtimestamp(timestamp).strftime(_TIME_OF_DAY_FORMAT)
    except (ValueError, OverflowError, OSError):
        logger.warning("Trade timestamp out of range: %r", timestamp)
        return INVALID_TIME


def format_trade_record(trade: ActivityTrade) -> str:
    """Build the newline-terminated IPC record for ``trade``.

    Integral floats are written without a decimal part (``3.0`` → ``3``)
    so sizes parse as integers on the reading side.

    Example:
        >>> trade = ActivityTrade(
        ...     title="Will it rain?", name="alice", outcome="Yes",
        ...     outcomeIndex=0, side="BUY", size=150, price=0.42,
        ...     timestamp=1_700_000_000, asset="123",
        ... )
        >>> format_trade_record(trade)  # doctest: +SKIP
        '{Will it rain?}{alice}{Yes}{0}{BUY}{150}{0.42}{22:13:20}\\n'
    """
    fields: tuple[object, ...] = (
        trade.title,
        trade.name,
        trade.outcome,
        trade.outcome_index,
        trade.side,
        trade.size,
        trade.price,
        format_local_time(trade.timestamp),
    )
    return "".join("{" + _format_value(field) + "}" for field in fields) + "\n"


def parse_trade_record(line: str) -> tuple[str, ...]:
    """Split a record back into its brace-delimited fields.

    Mirrors what the reading side does: text outside braces is ignored,
    nested or unbalanced braces are rejected.

    Raises:
        ValueError: If the braces are unbalanced or fewer than
            ``RECORD_FIELD_COUNT`` fields are present.
    """
    fields: list[str] = []
    current: list[str] | None = None
    for char in line.rstrip("\n"):
        if char == "{":
            if current is not None:
                raise ValueError(f"unexpected '{{' in record: {line!r}")
            current = []
        elif char == "}":
            if current is None:
                raise ValueError(f"unexpected '}}' in record: {line!r}")
            fields.append("".join(current))
            current = None
        elif current is not None:
            current.append(char)
    if current is not None:
        raise ValueError(f"unterminated field in record: {line!r}")
    if len(fields) < RECORD_FIELD_COUNT:
        raise ValueError(f"expected {RECORD_FIELD_COUNT} fields, found {len(fields)}")
    return tuple(fields)


# ---------------------------------------------------------------------------
# Named pipe sink
# ---------------------------------------------------------------------------


class PipeEventSink:
    """:class:`EventSink` writing trade records to a file or FIFO.

    The channel is opened lazily on the first accepted event, so
    constructing the sink never blocks and :meth:`close` is safe even if
    nothing was ever written.

    Args:
        path: Path of the named pipe (or regular file) to write to.
    """

    def __init__(self, path: str) -> None:
        self._path: str = path
        self._stream: TextIO | None = None
        self._closed: bool = False

        self._records_written: int = 0
        self._unsupported: int = 0
        self._unknown: int = 0

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: InboundEvent) -> bool:
        """Write ``event`` if it carries an activity trade.

        Returns:
            ``True`` if a record was written.

        Raises:
            RuntimeError: If the sink has been closed.
            OSError: If opening or writing the channel fails (for
                example ``BrokenPipeError`` when the reader exits).
        """
        if self._closed:
            raise RuntimeError("Cannot write: sink is closed")

        payload = event.payload
        if payload.kind is PayloadKind.CRYPTO_PRICE_UPDATE:
            self._unsupported += 1
            logger.warning(
                "Crypto price updates are not supported, dropping %s update",
                payload.symbol,  # type: ignore[union-attr]
            )
            return False
        if payload.kind is not PayloadKind.ACTIVITY_TRADE:
            self._unknown += 1
            logger.error("Received message with unknown payload type: %r", payload)
            return False

        record: str = format_trade_record(payload)  # type: ignore[arg-type]
        stream: TextIO = self._ensure_open()
        stream.write(record)
        stream.flush()
        self._records_written += 1
        return True

    def close(self) -> None:
        """Close the channel. Idempotent; safe if never opened."""
        if self._closed:
            return
        self._closed = True
        if self._stream is None:
            logger.info("Sink closed (channel never opened)")
            return
        stream: TextIO = self._stream
        self._stream = None
        try:
            stream.close()
        except OSError:
            logger.warning("Error closing sink channel %s", self._path, exc_info=True)
        logger.info("Sink closed (%d records written)", self._records_written)

    def stats(self) -> dict[str, int]:
        """Return sink counters."""
        return {
            "records_written": self._records_written,
            "unsupported_payloads": self._unsupported,
            "unknown_payloads": self._unknown,
        }

    def _ensure_open(self) -> TextIO:
        if self._stream is None:
            logger.info("Opening sink channel %s", self._path)
            self._stream = open(self._path, "w", encoding="utf-8")
            logger.info("Sink channel opened (fd=%d)", self._stream.fileno())
        return self._stream
