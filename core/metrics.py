"""Bridge metrics snapshot and human-readable report.

``BridgeMetrics`` is an immutable snapshot assembled by
:meth:`infra.supervisor.ConnectionSupervisor.metrics` from the counters
of the components the supervisor owns. There is no global metrics
registry: each supervisor instance owns its own counters.

Example:
    >>> metrics = BridgeMetrics(state="CONNECTED", frames_received=12)
    >>> for line in format_metrics_report(metrics):
    ...     print(line)  # doctest: +SKIP
"""

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Report layout
# ---------------------------------------------------------------------------

_REPORT_WIDTH: int = 58
_TITLE: str = " Bridge Metrics "
_END: str = " END "


# ---------------------------------------------------------------------------
# Snapshot model
# ---------------------------------------------------------------------------


class BridgeMetrics(BaseModel):
    """Immutable snapshot of bridge counters.

    All counters are monotonically increasing over the life of a
    supervisor. ``attempt_count`` and ``uptime_seconds`` describe the
    current connection and may go back to zero.

    Attributes:
        state: Connection state name at snapshot time.
        frames_received: Text/binary frames read from the socket,
            including heartbeat frames.
        valid_messages: Frames that passed validation.
        invalid_messages: Frames rejected by validation.
        rejected_parse_error: Rejections for unparsable frames.
        rejected_missing_payload: Rejections for a missing payload.
        rejected_missing_type: Rejections for a missing type. Each one
            is also counted in ``rejected_unknown_type``.
        rejected_unknown_type: Rejections for an unknown type.
        events_forwarded: Records written to the downstream channel.
        unsupported_payloads: Crypto updates rejected by the sink.
        unknown_payloads: Unrecognized payloads rejected by the sink.
        sink_errors: Failed writes to the downstream channel.
        pings_sent: Heartbeat probes sent.
        pongs_received: Probe replies received.
        pings_received: Peer ``PING`` text frames received. Protocol-level
            pings from the server are answered inside ``websockets`` and
            never counted here.
        pongs_sent: ``PONG`` text replies sent to peer ``PING`` frames.
        subscription_requests: Subscription messages sent.
        connects: Successful socket opens.
        connect_failures: Failed socket opens.
        reconnect_attempts: Reconnect attempts scheduled.
        attempt_count: Current consecutive attempt count.
        uptime_seconds: Seconds since the current connection opened.
            Zero when not connected.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: str
    frames_received: int = Field(default=0, ge=0)
    valid_messages: int = Field(default=0, ge=0)
    invalid_messages: int = Field(default=0, ge=0)
    rejected_parse_error: int = Field(default=0, ge=0)
    rejected_missing_payload: int = Field(default=0, ge=0)
    rejected_missing_type: int = Field(default=0, ge=0)
    rejected_unknown_type: int = Field(default=0, ge=0)
    events_forwarded: int = Field(default=0, ge=0)
    unsupported_payloads: int = Field(default=0, ge=0)
    unknown_payloads: int = Field(default=0, ge=0)
    sink_errors: int = Field(default=0, ge=0)
    pings_sent: int = Field(default=0, ge=0)
    pongs_received: int = Field(default=0, ge=0)
    pings_received: int = Field(default=0, ge=0)
    pongs_sent: int = Field(default=0, ge=0)
    subscription_requests: int = Field(default=0, ge=0)
    connects: int = Field(default=0, ge=0)
    connect_failures: int = Field(default=0, ge=0)
    reconnect_attempts: int = Field(default=0, ge=0)
    attempt_count: int = Field(default=0, ge=0)
    uptime_seconds: float = Field(default=0.0, ge=0.0)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_uptime(seconds: float) -> str:
    """Format a duration as ``"1d 2h 3m 4s 5ms"``.

    Example:
        >>> format_uptime(93784.005)
        '1d 2h 3m 4s 5ms'
        >>> format_uptime(0)
        '0d 0h 0m 0s 0ms'
    """
    total_ms: int = int(round(max(seconds, 0.0) * 1000))
    days, rem = divmod(total_ms, 86_400_000)
    hours, rem = divmod(rem, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{days}d {hours}h {minutes}m {secs}s {millis}ms"


def _banner(text: str) -> str:
    return "|" + text.center(_REPORT_WIDTH - 2, "-") + "|"


def _row(label: str, value: object) -> str:
    body: str = f" {label} {value}"
    return "|" + body.ljust(_REPORT_WIDTH - 2)[: _REPORT_WIDTH - 2] + "|"


def format_metrics_report(metrics: BridgeMetrics) -> list[str]:
    """Render a fixed-width boxed report of ``metrics``.

    Each returned line is exactly the report width, suitable for
    logging line by line at shutdown.

    Args:
        metrics: Snapshot to render.

    Returns:
        Report lines, top border first.
    """
    rule: str = _banner("")
    lines: list[str] = [rule, _banner(_TITLE), rule]
    rows: list[tuple[str, object]] = [
        ("State", metrics.state),
        ("Frames Received", metrics.frames_received),
        ("Valid Messages", metrics.valid_messages),
        ("Invalid Messages", metrics.invalid_messages),
        ("Events Forwarded", metrics.events_forwarded),
        ("Unsupported Payloads", metrics.unsupported_payloads),
        ("Unknown Payloads", metrics.unknown_payloads),
        ("Sink Errors", metrics.sink_errors),
        ("Pings Sent", metrics.pings_sent),
        ("Pongs Received", metrics.pongs_received),
        ("Text PINGs Received", metrics.pings_received),
        ("Text PONGs Sent", metrics.pongs_sent),
        ("Subscription Requests", metrics.subscription_requests),
        ("Connects", metrics.connects),
        ("Connect Failures", metrics.connect_failures),
        ("Reconnect Attempts", metrics.reconnect_attempts),
    ]
    lines.extend(_row(label, value) for label, value in rows)
    lines.append(rule)
    lines.append(_row("Uptime", format_uptime(metrics.uptime_seconds)))
    lines.extend([rule, _banner(_END), rule])
    return lines
