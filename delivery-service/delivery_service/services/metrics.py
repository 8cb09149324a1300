"""Accounting rollups over a snapshot of orders.

Everything here is pure: the caller fetches orders (see
:mod:`delivery_service.services.orders_service`) and passes snapshots in.
Sums are plain float arithmetic; rounding happens only when rendering.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from delivery_service.db import models as m
from delivery_service.services.classification import (
    PaymentChannelEntry,
    flatten_for_channel_summary,
    should_include_order,
)
from delivery_service.services.money import total_courier_amount
from delivery_service.services.payment_methods import PaymentMethodNormalizer
from delivery_service.services.snapshots import OrderSnapshot

__all__ = [
    "MetricsFilters",
    "StatusMetrics",
    "ChannelMetrics",
    "Metrics",
    "status_metrics",
    "channel_metrics",
    "compute_metrics",
]

LOGGER = logging.getLogger(__name__)

EXPECTED_STATUSES: tuple[str, ...] = tuple(status.value for status in m.OrderStatus)

# Statuses whose collected money is already settled (everything but assigned)
SETTLED_STATUSES: tuple[m.OrderStatus, ...] = (
    m.OrderStatus.DELIVERED,
    m.OrderStatus.PARTIAL,
    m.OrderStatus.RECEIVING_PART,
    m.OrderStatus.HAND_TO_HAND,
    m.OrderStatus.CANCELED,
    m.OrderStatus.RETURN,
)
# Not-delivered value is netted against collected money only for these
NETTED_STATUSES: tuple[m.OrderStatus, ...] = (
    m.OrderStatus.PARTIAL,
    m.OrderStatus.HAND_TO_HAND,
    m.OrderStatus.RECEIVING_PART,
)
FULL_VALUE_STATUSES: tuple[m.OrderStatus, ...] = (
    m.OrderStatus.CANCELED,
    m.OrderStatus.ASSIGNED,
    m.OrderStatus.RETURN,
)


@dataclass(slots=True, frozen=True)
class MetricsFilters:
    courier_id: int | None = None
    include_held_orders: bool = False


@dataclass(slots=True, frozen=True)
class StatusMetrics:
    count: int = 0
    original_value: float = 0.0
    courier_collected: float = 0.0
    orders: tuple[OrderSnapshot, ...] = ()


@dataclass(slots=True, frozen=True)
class ChannelMetrics:
    count: int = 0
    amount: float = 0.0
    orders: tuple[OrderSnapshot, ...] = ()


@dataclass(slots=True, frozen=True)
class Metrics:
    by_status: dict[m.OrderStatus, StatusMetrics]
    by_channel: dict[m.PaymentChannel, ChannelMetrics]
    total_cod: ChannelMetrics
    total_hand_to_accounting: float
    total_collected_overall: float
    total_not_delivered: float
    accounting_difference: float
    total_orders_count: int = 0
    total_orders_original_value: float = 0.0
    total_hold_fees: float = 0.0
    total_extra_fees: float = 0.0
    total_admin_delivery_fees: float = 0.0
    adjusted_total: float = 0.0
    total_delivery_fees: float = 0.0
    total_partial_amounts: float = 0.0
    included_orders: tuple[OrderSnapshot, ...] = ()
    entries: tuple[PaymentChannelEntry, ...] = field(default_factory=tuple)

    def status(self, status: m.OrderStatus | str) -> StatusMetrics:
        return self.by_status[m.OrderStatus(status)]

    def channel(self, channel: m.PaymentChannel | str) -> ChannelMetrics:
        return self.by_channel[m.PaymentChannel(channel)]


def status_metrics(orders: Iterable[OrderSnapshot], status: m.OrderStatus) -> StatusMetrics:
    matching = tuple(order for order in orders if order.status == status.value)
    return StatusMetrics(
        count=len(matching),
        original_value=sum(order.total_order_fees for order in matching),
        courier_collected=sum(total_courier_amount(order) for order in matching),
        orders=matching,
    )


def channel_metrics(
    entries: Sequence[PaymentChannelEntry],
    channels: Iterable[m.PaymentChannel],
) -> ChannelMetrics:
    wanted = frozenset(channels)
    matching = [entry for entry in entries if entry.channel in wanted]
    return ChannelMetrics(
        count=len(matching),
        amount=sum(entry.amount for entry in matching),
        orders=tuple(entry.order for entry in matching),
    )


def _warn_on_statuses(orders: Sequence[OrderSnapshot]) -> None:
    missing = [order.id for order in orders if not order.status]
    if missing:
        LOGGER.warning("metrics_null_status: count=%s order_ids=%s", len(missing), missing)
    unexpected = [
        (order.id, order.status)
        for order in orders
        if order.status and order.status not in EXPECTED_STATUSES
    ]
    if unexpected:
        LOGGER.warning(
            "metrics_unexpected_status: count=%s orders=%s", len(unexpected), unexpected
        )


def compute_metrics(
    orders: Iterable[OrderSnapshot],
    filters: MetricsFilters | None = None,
    *,
    normalizer: PaymentMethodNormalizer | None = None,
) -> Metrics:
    """Build the full accounting summary for *orders*.

    When ``filters.courier_id`` is set only that courier's orders are used.
    Status tables count every order; the channel breakdown uses the
    flattened entries (held orders excluded unless requested).
    """
    filters = filters or MetricsFilters()
    scoped = [
        order
        for order in orders
        if filters.courier_id is None or order.assigned_courier_id == filters.courier_id
    ]
    _warn_on_statuses(scoped)

    by_status = {status: status_metrics(scoped, status) for status in m.OrderStatus}
    entries = flatten_for_channel_summary(
        scoped,
        include_held_orders=filters.include_held_orders,
        normalizer=normalizer,
    )
    by_channel = {channel: channel_metrics(entries, (channel,)) for channel in m.PaymentChannel}
    total_cod = channel_metrics(entries, m.COD_CHANNELS)

    total_collected_overall = sum(by_status[status].courier_collected for status in SETTLED_STATUSES)
    total_not_delivered = sum(
        by_status[status].original_value for status in FULL_VALUE_STATUSES
    ) + sum(
        max(0.0, by_status[status].original_value - by_status[status].courier_collected)
        for status in NETTED_STATUSES
    )
    accounting_difference = by_status[m.OrderStatus.ASSIGNED].courier_collected - total_collected_overall

    total_hold_fees = sum(order.hold_fee for order in scoped)
    total_extra_fees = sum(order.extra_fee for order in scoped)
    total_admin_delivery_fees = sum(order.admin_delivery_fee for order in scoped)
    total_orders_original_value = sum(metrics.original_value for metrics in by_status.values())

    return Metrics(
        by_status=by_status,
        by_channel=by_channel,
        total_cod=total_cod,
        total_hand_to_accounting=by_channel[m.PaymentChannel.ON_HAND].amount,
        total_collected_overall=total_collected_overall,
        total_not_delivered=total_not_delivered,
        accounting_difference=accounting_difference,
        total_orders_count=sum(metrics.count for metrics in by_status.values()),
        total_orders_original_value=total_orders_original_value,
        total_hold_fees=total_hold_fees,
        total_extra_fees=total_extra_fees,
        total_admin_delivery_fees=total_admin_delivery_fees,
        adjusted_total=sum(order.total_order_fees for order in scoped)
        - (total_hold_fees + total_extra_fees + total_admin_delivery_fees),
        total_delivery_fees=sum(order.delivery_fee for order in scoped),
        total_partial_amounts=sum(order.partial_paid_amount for order in scoped),
        included_orders=tuple(order for order in scoped if should_include_order(order)),
        entries=tuple(entries),
    )
