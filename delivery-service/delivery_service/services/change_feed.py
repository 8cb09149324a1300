"""In-process change notifications for the ``orders`` table.

Writers (:class:`~delivery_service.services.orders_service.OrdersService`,
the Shopify import) publish :class:`OrderChangeEvent` after each successful
write; summary refreshers and live order sets subscribe to recompute.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

__all__ = [
    "ChangeType",
    "OrderChangeEvent",
    "ChangeFeed",
    "EchoSuppressor",
    "feed",
]

logger = logging.getLogger("change_feed")

ORDERS_TABLE = "orders"


class ChangeType(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class OrderChangeEvent:
    event_type: ChangeType
    row: dict[str, Any] = field(default_factory=dict)
    table: str = ORDERS_TABLE

    @property
    def order_id(self) -> int | None:
        value = self.row.get("id")
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None


Subscriber = Callable[[OrderChangeEvent], Awaitable[None]]


class ChangeFeed:
    """Fan-out of order change events to async subscribers.

    A failing subscriber is logged and does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: OrderChangeEvent) -> None:
        for callback in list(self._subscribers):
            try:
                await callback(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "change_feed subscriber failed: event=%s order=%s",
                    event.event_type.value,
                    event.order_id,
                )


class EchoSuppressor:
    """Remembers locally written orders for a short window.

    While an order id is remembered, ``update`` events for it are treated as
    the echo of our own write and skipped.
    """

    def __init__(
        self,
        window_seconds: float = 2.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = max(0.0, float(window_seconds))
        self._clock = clock
        self._recent: dict[int, float] = {}

    def mark(self, order_id: int) -> None:
        self._recent[order_id] = self._clock() + self._window

    def forget(self, order_id: int) -> None:
        self._recent.pop(order_id, None)

    def _expire(self) -> None:
        now = self._clock()
        for order_id in [oid for oid, until in self._recent.items() if until <= now]:
            del self._recent[order_id]

    def is_recent(self, order_id: int | None) -> bool:
        self._expire()
        return order_id is not None and order_id in self._recent

    def should_suppress(self, event: OrderChangeEvent) -> bool:
        if event.event_type is not ChangeType.UPDATE:
            return False
        suppressed = self.is_recent(event.order_id)
        if suppressed:
            logger.debug("echo suppressed: order=%s", event.order_id)
        return suppressed


# Process-wide feed used by the services by default
feed = ChangeFeed()
