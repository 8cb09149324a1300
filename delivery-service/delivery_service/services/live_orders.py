"""A courier's working set of orders kept in step with the store.

Local edits are applied optimistically, written through
:class:`~delivery_service.services.orders_service.OrdersService` and rolled
back if the write fails.  The change-feed echo of our own write is ignored
for a short window so the local state does not flicker.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from delivery_service.config import settings
from delivery_service.services.change_feed import (
    ChangeFeed,
    ChangeType,
    EchoSuppressor,
    OrderChangeEvent,
)
from delivery_service.services.order_updates import CourierUpdate, build_update_payload
from delivery_service.services.orders_service import OrdersService
from delivery_service.services.snapshots import OrderSnapshot
from delivery_service.services.view_state import ModifiedOrders

__all__ = ["LiveOrderSet", "submit_order_update"]

logger = logging.getLogger(__name__)

Writer = Callable[[int, Mapping[str, Any]], Awaitable[OrderSnapshot]]


class LiveOrderSet:
    def __init__(
        self,
        orders: Iterable[OrderSnapshot] = (),
        *,
        writer: Writer,
        suppressor: Optional[EchoSuppressor] = None,
        modified: Optional[ModifiedOrders] = None,
        courier_id: Optional[int] = None,
    ) -> None:
        self._orders: dict[int, OrderSnapshot] = {
            order.id: order for order in orders if order.id is not None
        }
        self._writer = writer
        self._suppressor = suppressor or EchoSuppressor(settings.echo_suppression_seconds)
        self._modified = modified
        self._courier_id = courier_id
        self._unsubscribe: Optional[Callable[[], None]] = None

    def __len__(self) -> int:
        return len(self._orders)

    def get(self, order_id: int) -> Optional[OrderSnapshot]:
        return self._orders.get(order_id)

    def snapshot(self) -> list[OrderSnapshot]:
        return list(self._orders.values())

    def replace_all(self, orders: Iterable[OrderSnapshot]) -> None:
        self._orders = {order.id: order for order in orders if order.id is not None}

    async def apply(self, order_id: int, fields: Mapping[str, Any]) -> OrderSnapshot:
        """Patch locally, persist, roll back on failure."""
        original = self._orders.get(order_id)
        if original is not None:
            merged = original.to_mapping()
            merged.update(fields)
            self._orders[order_id] = OrderSnapshot.from_mapping(merged)
        self._suppressor.mark(order_id)
        try:
            stored = await self._writer(order_id, fields)
        except Exception:
            if original is not None:
                self._orders[order_id] = original
            self._suppressor.forget(order_id)
            logger.warning("live_orders rollback: order=%s", order_id)
            raise
        self._orders[order_id] = stored
        if self._modified is not None:
            self._modified.add(order_id)
        return stored

    async def submit_courier_update(self, order_id: int, update: CourierUpdate) -> OrderSnapshot:
        """Validate a courier update against the current local copy and apply it."""
        current = self._orders.get(order_id)
        if current is None:
            raise KeyError(order_id)
        payload = build_update_payload(current, update)
        return await self.apply(order_id, payload)

    async def handle_event(self, event: OrderChangeEvent) -> bool:
        """Fold one change-feed event in; returns False when it was ignored."""
        if self._suppressor.should_suppress(event):
            return False
        order_id = event.order_id
        if order_id is None:
            return False
        if event.event_type is ChangeType.DELETE:
            return self._orders.pop(order_id, None) is not None

        incoming = OrderSnapshot.from_mapping(event.row)
        if self._courier_id is not None and incoming.assigned_courier_id != self._courier_id:
            # Reassigned away from this courier
            return self._orders.pop(order_id, None) is not None
        self._orders[order_id] = incoming
        return True

    def attach(self, change_feed: ChangeFeed) -> None:
        self.detach()
        self._unsubscribe = change_feed.subscribe(self._on_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_event(self, event: OrderChangeEvent) -> None:
        await self.handle_event(event)


async def submit_order_update(
    service: OrdersService,
    order_id: int,
    update: CourierUpdate,
    *,
    suppressor: Optional[EchoSuppressor] = None,
    modified: Optional[ModifiedOrders] = None,
) -> OrderSnapshot:
    """Load one order, validate *update* against it and write it.

    Raises UpdateValidationError before anything is written.
    """
    current = OrderSnapshot.from_row(await service.get_order(order_id))
    live = LiveOrderSet(
        [current],
        writer=service.update_order,
        suppressor=suppressor,
        modified=modified,
    )
    return await live.submit_courier_update(order_id, update)
