"""Wire and domain models for the Polymarket live-data feed.

This module defines the subscription request the bridge sends upstream,
the inbound event envelope it receives, and the tagged payload variants
carried by that envelope. All models are Pydantic-based with
``frozen=True`` so a validated event cannot be mutated on its way to
the sink.

Payload variants:
    The provider does not tag payloads. The variant is decided once, in
    :func:`classify_payload`, from which fields are present:

    - ``asset`` present → :class:`ActivityTrade`
    - ``symbol`` present → :class:`CryptoPriceUpdate`
    - anything else → :class:`UnrecognizedPayload`

    The result carries a ``kind`` discriminator, so downstream code
    dispatches on ``payload.kind`` instead of re-checking fields.

No normalization:
    Numeric fields are typed ``int | float`` so values keep the exact
    type they had on the wire (``100`` stays ``100``, ``0.5`` stays
    ``0.5``). The downstream record format depends on this.

Example:
    >>> from core.events import ACTIVITY_TRADES, SubscriptionAction, SubscriptionRequest
    >>> request = SubscriptionRequest(
    ...     action=SubscriptionAction.SUBSCRIBE,
    ...     subscriptions=[ACTIVITY_TRADES],
    ... )
    >>> request.to_json()
    '{"action":"subscribe","subscriptions":[{"topic":"activity","type":"trades"}]}'
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SubscriptionAction(str, Enum):
    """Action field of an outbound subscription request."""

    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


class TradeSide(str, Enum):
    """Side of an activity trade."""

    BUY = "BUY"
    SELL = "SELL"


class CryptoSymbol(str, Enum):
    """Crypto price pairs published on the ``crypto_prices`` topic.

    Informational only. The bridge does not forward crypto updates, and
    :class:`CryptoPriceUpdate` accepts symbols outside this list.
    """

    BTC = "btcusdt"
    ETH = "ethusdt"
    SOL = "solusdt"
    XPR = "xprusdt"


class PayloadKind(str, Enum):
    """Discriminator assigned to every payload variant at parse time."""

    ACTIVITY_TRADE = "activity_trade"
    CRYPTO_PRICE_UPDATE = "crypto_price_update"
    UNRECOGNIZED = "unrecognized"


# ---------------------------------------------------------------------------
# Subscription models
# ---------------------------------------------------------------------------


class SubscriptionTopic(BaseModel):
    """A single topic entry inside a subscription request.

    Attributes:
        topic: Topic name (e.g. ``"activity"``).
        event_type: Event type within the topic (e.g. ``"trades"``).
            Serialized as ``"type"``.
        filters: Optional provider-side filter expression.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    topic: str = Field(min_length=1, description="Topic name")
    event_type: str = Field(
        alias="type",
        min_length=1,
        description="Event type within the topic",
    )
    filters: str | None = Field(
        default=None,
        description="Optional provider-side filter expression",
    )


ACTIVITY_TRADES: SubscriptionTopic = SubscriptionTopic(topic="activity", type="trades")
"""Trade activity across all markets. The only category forwarded downstream."""

CRYPTO_PRICES: SubscriptionTopic = SubscriptionTopic(topic="crypto_prices", type="update")
"""Crypto price updates. Subscribable, but rejected by the sink."""


class SubscriptionRequest(BaseModel):
    """Outbound subscribe/unsubscribe message batching one or more topics."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    action: SubscriptionAction
    subscriptions: tuple[SubscriptionTopic, ...] = Field(min_length=1)

    def to_json(self) -> str:
        """Serialize using wire field names, omitting unset filters."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Payload variants
# ---------------------------------------------------------------------------


Number = Union[int, float]


class ActivityTrade(BaseModel):
    """A single trade on a prediction market.

    Only ``title``, ``name``, ``outcome``, ``outcome_index``, ``side``,
    ``size``, ``price`` and ``timestamp`` are forwarded downstream. The
    remaining fields identify the trade and trader and are kept for
    logging only.

    Attributes:
        title: Market title.
        name: Trader display name.
        outcome: Outcome label (e.g. ``"Yes"``).
        outcome_index: Outcome position within the market.
        side: ``BUY`` or ``SELL``.
        size: Number of shares traded.
        price: Price per share.
        timestamp: Trade time in seconds since the epoch.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    kind: Literal[PayloadKind.ACTIVITY_TRADE] = PayloadKind.ACTIVITY_TRADE

    title: str
    name: str
    outcome: str
    outcome_index: int = Field(alias="outcomeIndex")
    side: TradeSide
    size: Number
    price: Number
    timestamp: Number

    asset: str | int | None = None
    condition_id: str | None = Field(default=None, alias="conditionId")
    event_slug: str | None = Field(default=None, alias="eventSlug")
    slug: str | None = None
    proxy_wallet: str | None = Field(default=None, alias="proxyWallet")
    pseudonym: str | None = None
    transaction_hash: str | None = Field(default=None, alias="transactionHash")
    bio: str | None = None
    icon: str | None = None
    profile_image: str | None = Field(default=None, alias="profileImage")


class CryptoPriceUpdate(BaseModel):
    """A crypto pair price tick from the ``crypto_prices`` topic."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    kind: Literal[PayloadKind.CRYPTO_PRICE_UPDATE] = PayloadKind.CRYPTO_PRICE_UPDATE

    symbol: str
    value: Number | None = None
    full_accuracy_value: Number | str | None = None
    timestamp: Number | None = None


class UnrecognizedPayload(BaseModel):
    """A payload matching no known variant, kept verbatim."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal[PayloadKind.UNRECOGNIZED] = PayloadKind.UNRECOGNIZED

    data: Any = None


PayloadVariant = Annotated[
    Union[ActivityTrade, CryptoPriceUpdate, UnrecognizedPayload],
    Field(discriminator="kind"),
]


def classify_payload(payload: Any) -> ActivityTrade | CryptoPriceUpdate | UnrecognizedPayload:
    """Assign the payload variant from the fields present.

    An ``asset``-bearing payload that lacks the forwarded trade fields
    (or carries an invalid ``side``) is classified as unrecognized
    rather than raising.

    Args:
        payload: The decoded ``payload`` member of an inbound message.

    Returns:
        The tagged payload variant.

    Example:
        >>> classify_payload({"symbol": "btcusdt", "value": 97000.5}).kind
        <PayloadKind.CRYPTO_PRICE_UPDATE: 'crypto_price_update'>
        >>> classify_payload({"foo": 1}).kind
        <PayloadKind.UNRECOGNIZED: 'unrecognized'>
    """
    if not isinstance(payload, dict):
        return UnrecognizedPayload(data=payload)
    try:
        if payload.get("asset") is not None:
            return ActivityTrade.model_validate(payload)
        if payload.get("symbol") is not None:
            return CryptoPriceUpdate.model_validate(payload)
    except ValidationError:
        return UnrecognizedPayload(data=payload)
    return UnrecognizedPayload(data=payload)


# ---------------------------------------------------------------------------
# Inbound envelope
# ---------------------------------------------------------------------------


class InboundEvent(BaseModel):
    """A validated inbound message with its classified payload.

    Attributes:
        connection_id: Provider-assigned connection identifier.
        payload: Tagged payload variant (see :func:`classify_payload`).
        timestamp: Provider send time (milliseconds since the epoch).
        topic: Topic the message was published on.
        event_type: ``"update"`` or ``"trades"``. Wire name ``"type"``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    connection_id: str | None = None
    payload: PayloadVariant
    timestamp: Number | None = None
    topic: str | None = None
    event_type: str = Field(alias="type")

    @property
    def kind(self) -> PayloadKind:
        """Shortcut for ``payload.kind``."""
        return self.payload.kind
