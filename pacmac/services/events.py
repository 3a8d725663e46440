"""
In-process publisher for settlement domain events.

Services publish after their database work has been committed. Delivery to
users (push, sockets, email) is the subscribers' business: a failing
subscriber is logged and never propagates back into the state machine.
"""

from typing import Any, Awaitable, Callable

from pacmac.core.logging import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[str, dict[str, Any]], Awaitable[None]]

TRANSACTION_CREATED = "transaction.created"
TRANSACTION_PAID = "transaction.paid"
TRANSACTION_DELIVERED = "transaction.delivered"
TRANSACTION_COMPLETED = "transaction.completed"
TRANSACTION_DISPUTED = "transaction.disputed"
TRANSACTION_REFUNDED = "transaction.refunded"
DISPUTE_OPENED = "dispute.opened"
DISPUTE_UNDER_REVIEW = "dispute.under_review"
DISPUTE_ESCALATED = "dispute.escalated"
DISPUTE_MESSAGE_ADDED = "dispute.message_added"
DISPUTE_RESOLVED = "dispute.resolved"
DISPUTE_CLOSED = "dispute.closed"
AUCTION_STARTED = "auction.started"
AUCTION_ENDED = "auction.ended"
AUCTION_CANCELLED = "auction.cancelled"
BID_PLACED = "bid.placed"


class EventBus:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def publish(self, name: str, payload: dict[str, Any]) -> None:
        logger.info("event %s %s", name, payload)
        for subscriber in list(self._subscribers):
            try:
                await subscriber(name, payload)
            except Exception:
                logger.exception("Event subscriber failed for %s", name)


events = EventBus()
