from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from delivery_service.db import models as m
from delivery_service.services.money import total_courier_amount
from delivery_service.services.payment_methods import PaymentMethodNormalizer, default_normalizer
from delivery_service.services.snapshots import OrderSnapshot

__all__ = [
    "PaymentChannelEntry",
    "ZERO_AMOUNT_STATUSES",
    "should_include_order",
    "flatten_for_channel_summary",
]

# Statuses that still count as activity when the net amount is exactly zero
ZERO_AMOUNT_STATUSES = frozenset(
    {
        m.OrderStatus.DELIVERED.value,
        m.OrderStatus.PARTIAL.value,
        m.OrderStatus.ASSIGNED.value,
    }
)


@dataclass(slots=True, frozen=True)
class PaymentChannelEntry:
    order: OrderSnapshot
    channel: m.PaymentChannel
    amount: float


def should_include_order(order: OrderSnapshot) -> bool:
    amount = total_courier_amount(order)
    if amount > 0:
        return True
    return amount == 0 and order.status in ZERO_AMOUNT_STATUSES


def _channel_source(order: OrderSnapshot) -> str | None:
    if order.payment_sub_type and order.payment_sub_type != m.SPLIT_SUB_TYPE:
        return order.payment_sub_type
    return order.collected_by or order.payment_method


def flatten_for_channel_summary(
    orders: Iterable[OrderSnapshot],
    *,
    include_held_orders: bool = False,
    normalizer: PaymentMethodNormalizer | None = None,
) -> list[PaymentChannelEntry]:
    """Expand orders into per-channel money entries.

    Orders with hold-fee activity are skipped unless *include_held_orders*.
    Split orders yield one entry per positive sub-payment; the attached order
    copy carries the sub-payment channel and amount.  Other orders yield one
    entry when their net amount is positive or the channel is ``on_hand``.
    """
    normalizer = normalizer or default_normalizer
    entries: list[PaymentChannelEntry] = []
    for order in orders:
        if order.has_hold_activity and not include_held_orders:
            continue

        if order.is_split:
            for item in order.split.items:
                if item.amount <= 0:
                    continue
                channel = normalizer.normalize(item.method)
                entries.append(
                    PaymentChannelEntry(
                        order=order.with_split_amount(channel, item.amount),
                        channel=channel,
                        amount=item.amount,
                    )
                )
            continue

        channel = normalizer.normalize(_channel_source(order))
        amount = total_courier_amount(order)
        if amount > 0 or channel is m.PaymentChannel.ON_HAND:
            entries.append(PaymentChannelEntry(order=order, channel=channel, amount=amount))
    return entries
