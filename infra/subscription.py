"""Subscription requests for the Polymarket live-data feed.

The ``SubscriptionDispatcher`` batches one or more
:class:`~core.events.SubscriptionTopic` entries into a single JSON
request and sends it over an open socket. The supervisor calls
:meth:`SubscriptionDispatcher.subscribe` after every successful connect,
so topics are re-subscribed after each reconnect.

Error handling:
    Sending never raises. A ``None`` socket, a socket that is not open,
    or a failed send is logged at ERROR, counted, and reported by a
    ``False`` return value.

Topic order:
    Topics are drained from the end of the list when building the
    request, so the wire order is the reverse of the argument order.
    The provider does not treat batch order as significant.

Example::

    dispatcher = SubscriptionDispatcher(topics=[ACTIVITY_TRADES])
    ok = await dispatcher.subscribe(socket)
"""

import logging
from typing import Iterable

from websockets.exceptions import WebSocketException

from core.events import (
    ACTIVITY_TRADES,
    SubscriptionAction,
    SubscriptionRequest,
    SubscriptionTopic,
)
from infra.transport import FeedSocket

logger: logging.Logger = logging.getLogger(__name__)


def build_request(
    action: SubscriptionAction,
    *topics: SubscriptionTopic,
) -> SubscriptionRequest:
    """Batch ``topics`` into one request.

    Args:
        action: ``subscribe`` or ``unsubscribe``.
        *topics: One or more topics.

    Returns:
        The request, with topics in reverse argument order.

    Raises:
        ValueError: If no topics are given.

    Example:
        >>> from core.events import ACTIVITY_TRADES, CRYPTO_PRICES
        >>> request = build_request(
        ...     SubscriptionAction.SUBSCRIBE, CRYPTO_PRICES, ACTIVITY_TRADES,
        ... )
        >>> [t.topic for t in request.subscriptions]
        ['activity', 'crypto_prices']
    """
    if not topics:
        raise ValueError("at least one subscription topic is required")
    pending: list[SubscriptionTopic] = list(topics)
    batched: list[SubscriptionTopic] = []
    while pending:
        batched.append(pending.pop())
    return SubscriptionRequest(action=action, subscriptions=tuple(batched))


class SubscriptionDispatcher:
    """Build and send subscription requests for configured topics.

    Args:
        topics: Topics subscribed on every connect. Defaults to activity
            trades only. Must not be empty.

    Raises:
        ValueError: If ``topics`` is empty.
    """

    def __init__(
        self,
        topics: Iterable[SubscriptionTopic] = (ACTIVITY_TRADES,),
    ) -> None:
        self._topics: tuple[SubscriptionTopic, ...] = tuple(topics)
        if not self._topics:
            raise ValueError("at least one subscription topic is required")

        self._requests_sent: int = 0
        self._send_errors: int = 0

    @property
    def topics(self) -> tuple[SubscriptionTopic, ...]:
        """Topics sent by :meth:`subscribe` when none are given."""
        return self._topics

    async def subscribe(
        self,
        socket: FeedSocket | None,
        *topics: SubscriptionTopic,
    ) -> bool:
        """Subscribe to ``topics`` (or the configured topics).

        Returns:
            ``True`` if the request was sent.
        """
        return await self.send(socket, SubscriptionAction.SUBSCRIBE, *(topics or self._topics))

    async def unsubscribe(
        self,
        socket: FeedSocket | None,
        *topics: SubscriptionTopic,
    ) -> bool:
        """Unsubscribe from ``topics`` (or the configured topics).

        Returns:
            ``True`` if the request was sent.
        """
        return await self.send(socket, SubscriptionAction.UNSUBSCRIBE, *(topics or self._topics))

    async def send(
        self,
        socket: FeedSocket | None,
        action: SubscriptionAction,
        *topics: SubscriptionTopic,
    ) -> bool:
        """Send one batched request over ``socket``.

        Args:
            socket: Target socket. ``None`` or a closed socket is
                rejected without raising.
            action: Request action.
            *topics: Topics to include. Must not be empty.

        Returns:
            ``True`` if the request was sent, ``False`` otherwise.
        """
        if socket is None:
            self._send_errors += 1
            logger.error("Cannot send %s request: socket is None", action.value)
            return False
        if not socket.is_open:
            self._send_errors += 1
            logger.error("Cannot send %s request: socket is not open", action.value)
            return False

        message: str = build_request(action, *topics).to_json()
        logger.info("Sending subscription message: %s", message)
        try:
            await socket.send(message)
        except (WebSocketException, OSError):
            self._send_errors += 1
            logger.exception("Failed to send %s request", action.value)
            return False

        self._requests_sent += 1
        logger.info("Subscription message sent")
        return True

    def stats(self) -> dict[str, int]:
        """Return request counters."""
        return {
            "requests_sent": self._requests_sent,
            "send_errors": self._send_errors,
        }
