"""Per-order money rules shared by the courier view, admin reports and alerts."""
from __future__ import annotations

from delivery_service.db import models as m
from delivery_service.services.snapshots import OrderSnapshot

__all__ = [
    "COLLECTED_STATUSES",
    "ZERO_BASE_STATUSES",
    "courier_order_amount",
    "total_courier_amount",
    "total_fees",
]

# Statuses where the courier collected the full order value
COLLECTED_STATUSES = frozenset(
    {
        m.OrderStatus.DELIVERED.value,
        m.OrderStatus.PARTIAL.value,
        m.OrderStatus.HAND_TO_HAND.value,
    }
)
ZERO_BASE_STATUSES = frozenset({m.OrderStatus.CANCELED.value, m.OrderStatus.RETURN.value})


def courier_order_amount(order: OrderSnapshot) -> float:
    """Order value the courier collected, before any fee adjustments."""
    if order.partial_paid_amount > 0:
        return order.partial_paid_amount
    if order.status in COLLECTED_STATUSES:
        return order.total_order_fees
    return 0.0


def _base_amount(order: OrderSnapshot) -> float:
    if order.status in ZERO_BASE_STATUSES:
        return 0.0
    if order.is_split:
        return order.split.total
    return courier_order_amount(order)


def total_courier_amount(order: OrderSnapshot) -> float:
    """Net amount attributed to the courier for *order*.

    base + delivery_fee - hold_fee - admin_delivery_fee - extra_fee, where
    base is 0 for canceled/returned orders, the split sum for split orders
    and :func:`courier_order_amount` otherwise.  No rounding is applied.
    """
    return (
        _base_amount(order)
        + order.delivery_fee
        - order.hold_fee
        - order.admin_delivery_fee
        - order.extra_fee
    )


def total_fees(order: OrderSnapshot) -> float:
    return order.hold_fee + order.admin_delivery_fee + order.extra_fee
