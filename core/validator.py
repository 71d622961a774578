"""Validation and classification of raw inbound feed messages.

The ``MessageValidator`` turns a raw text frame into either a validated
:class:`~core.events.InboundEvent` or a :class:`Rejection` listing every
rule the frame violated. Only validated events may be handed to the
sink.

Rules (checked independently, all violations reported):
    - empty, whitespace-only, unparsable or non-object JSON → ``PARSE_ERROR``
    - ``payload`` absent or falsy (``null``, ``false``, ``0``, ``""``) →
      ``MISSING_PAYLOAD``; ``{}`` and ``[]`` count as present
    - ``type`` absent or falsy → ``MISSING_TYPE``
    - ``type`` not ``"update"``/``"trades"`` → ``UNKNOWN_TYPE``. This
      includes an absent type, which therefore reports both reasons.

A parse error short-circuits: with no decoded object there is nothing
else to check.

Logging safety:
    Rejections are logged individually for the first ``_LOG_FIRST_N``
    occurrences, then every ``_LOG_EVERY_N``-th one, so a misbehaving
    provider cannot flood the log.

Example:
    >>> from core.validator import MessageValidator, RejectReason
    >>> validator = MessageValidator()
    >>> result = validator.validate('{"payload": {}, "type": "bogus"}')
    >>> result.reasons
    (<RejectReason.UNKNOWN_TYPE: 'unknown_type'>,)
    >>> validator.stats()["invalid_messages"]
    1
"""

import json
import logging
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from core.events import InboundEvent, classify_payload

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ACCEPTED_EVENT_TYPES: frozenset[str] = frozenset({"update", "trades"})
"""Values of the inbound ``type`` field the bridge accepts."""

_LOG_FIRST_N: int = 10
"""Log every rejection for the first N rejections."""

_LOG_EVERY_N: int = 1000
"""After the first N rejections, log every Nth occurrence."""

_RAW_PREVIEW_CHARS: int = 200


# ---------------------------------------------------------------------------
# Rejection model
# ---------------------------------------------------------------------------


class RejectReason(str, Enum):
    """Classified reason a raw message was rejected."""

    PARSE_ERROR = "parse_error"
    MISSING_PAYLOAD = "missing_payload"
    MISSING_TYPE = "missing_type"
    UNKNOWN_TYPE = "unknown_type"


class Rejection(BaseModel):
    """A rejected message and every rule it violated.

    Attributes:
        reasons: Violated rules in check order. Never empty.
        raw: The raw frame, truncated for logging.
        detail: Human-readable explanation of the first violation.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    reasons: tuple[RejectReason, ...] = Field(min_length=1)
    raw: str = ""
    detail: str = ""


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class MessageValidator:
    """Parse raw frames into validated events or classified rejections.

    Holds per-reason counters inspected via :meth:`stats`. Not
    thread-safe; owned by the connection supervisor and called from its
    event loop only.
    """

    def __init__(self) -> None:
        self._valid_messages: int = 0
        self._invalid_messages: int = 0
        self._reason_counts: dict[RejectReason, int] = {
            reason: 0 for reason in RejectReason
        }

    def validate(self, raw: str) -> InboundEvent | Rejection:
        """Validate a raw text frame.

        Args:
            raw: The text frame as received from the socket.

        Returns:
            The validated event with its payload variant assigned, or a
            :class:`Rejection` naming every violated rule.
        """
        if not raw or not raw.strip():
            return self._reject((RejectReason.PARSE_ERROR,), raw, "empty message")

        try:
            message: object = json.loads(raw)
        except json.JSONDecodeError as exc:
            return self._reject((RejectReason.PARSE_ERROR,), raw, f"invalid JSON: {exc}")

        if not isinstance(message, dict):
            return self._reject(
                (RejectReason.PARSE_ERROR,),
                raw,
                f"expected a JSON object, got {type(message).__name__}",
            )

        reasons: list[RejectReason] = []
        details: list[str] = []

        payload: object = message.get("payload")
        if _is_absent(payload):
            reasons.append(RejectReason.MISSING_PAYLOAD)
            details.append("message without payload")

        event_type: object = message.get("type")
        if _is_absent(event_type):
            reasons.append(RejectReason.MISSING_TYPE)
            details.append("message without type")
        if not isinstance(event_type, str) or event_type not in ACCEPTED_EVENT_TYPES:
            reasons.append(RejectReason.UNKNOWN_TYPE)
            details.append(f"unknown message type: {event_type!r}")

        if reasons:
            return self._reject(tuple(reasons), raw, "; ".join(details))

        event: InboundEvent = InboundEvent(
            connection_id=_optional_str(message.get("connection_id")),
            payload=classify_payload(payload),
            timestamp=_optional_number(message.get("timestamp")),
            topic=_optional_str(message.get("topic")),
            type=event_type,
        )
        self._valid_messages += 1
        return event

    def stats(self) -> dict[str, int]:
        """Return validator counters.

        Returns:
            ``valid_messages``, ``invalid_messages`` (one per rejected
            frame) and one ``rejected_<reason>`` counter per
            :class:`RejectReason`.
        """
        stats: dict[str, int] = {
            "valid_messages": self._valid_messages,
            "invalid_messages": self._invalid_messages,
        }
        for reason, count in self._reason_counts.items():
            stats[f"rejected_{reason.value}"] = count
        return stats

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _reject(
        self,
        reasons: tuple[RejectReason, ...],
        raw: str,
        detail: str,
    ) -> Rejection:
        self._invalid_messages += 1
        for reason in reasons:
            self._reason_counts[reason] += 1

        preview: str = (raw or "")[:_RAW_PREVIEW_CHARS]
        count: int = self._invalid_messages
        if count <= _LOG_FIRST_N:
            if reasons == (RejectReason.PARSE_ERROR,) and not (raw or "").strip():
                logger.warning("Received empty message")
            else:
                logger.error(
                    "Rejected message (%s): %s | raw=%s",
                    ",".join(r.value for r in reasons),
                    detail,
                    preview,
                )
        elif count % _LOG_EVERY_N == 0:
            logger.error("Invalid messages ongoing: %d total", count)

        return Rejection(reasons=reasons, raw=preview, detail=detail)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _optional_number(value: object) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def _is_absent(value: object) -> bool:
    """Whether a field counts as missing: null, false, zero, NaN or "".

    Objects and arrays count as present even when empty.
    """
    if value is None or value is False or value == "":
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0 or value != value
    return False
