"""Core domain layer for the Polymarket feed bridge.

This package provides the wire and event models, the inbound message
validator, reconnect backoff bookkeeping and the metrics snapshot. All
event models are Pydantic-based with frozen configuration for
immutability.
"""

from core.events import (
    ACTIVITY_TRADES,
    CRYPTO_PRICES,
    ActivityTrade,
    CryptoPriceUpdate,
    InboundEvent,
    PayloadKind,
    SubscriptionAction,
    SubscriptionRequest,
    SubscriptionTopic,
    UnrecognizedPayload,
)
from core.metrics import BridgeMetrics, format_metrics_report
from core.reconnect import ReconnectPolicy
from core.validator import MessageValidator, RejectReason, Rejection

__all__: list[str] = [
    "ACTIVITY_TRADES",
    "ActivityTrade",
    "BridgeMetrics",
    "CRYPTO_PRICES",
    "CryptoPriceUpdate",
    "InboundEvent",
    "MessageValidator",
    "PayloadKind",
    "ReconnectPolicy",
    "RejectReason",
    "Rejection",
    "SubscriptionAction",
    "SubscriptionRequest",
    "SubscriptionTopic",
    "UnrecognizedPayload",
    "format_metrics_report",
]
