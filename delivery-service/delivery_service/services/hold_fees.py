"""Hold-fee ledger.

A hold fee is a temporary deduction an admin places on an order.  Adding it
stamps ``hold_fee_added_at``; removing it nulls the fee and stamps
``hold_fee_removed_at``.  Both record the acting admin in
``hold_fee_created_by`` / ``hold_fee_created_at``.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from delivery_service.services.change_feed import ChangeFeed
from delivery_service.services.orders_service import OrdersService
from delivery_service.services.snapshots import OrderSnapshot, parse_amount
from delivery_service.services.time_service import local_date, local_today

__all__ = [
    "HoldDateFilter",
    "HoldSummary",
    "hold_fee_fields",
    "hold_fee_removal_fields",
    "effective_hold_date",
    "filter_by_hold_date",
    "summarize_holds",
    "HoldFeeService",
]

LOGGER = logging.getLogger(__name__)
UTC = timezone.utc


class HoldDateFilter(str, enum.Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_7_DAYS = "last7days"
    LAST_30_DAYS = "last30days"
    CUSTOM = "custom"
    ALL = "all"


def hold_fee_removal_fields(actor: str, now: datetime) -> dict[str, Any]:
    return {
        "hold_fee": None,
        "hold_fee_comment": None,
        "hold_fee_created_by": actor,
        "hold_fee_created_at": now,
        "hold_fee_removed_at": now,
    }


def hold_fee_fields(
    amount: Any,
    comment: Optional[str],
    actor: str,
    now: datetime,
) -> dict[str, Any]:
    """Columns for placing a hold of *amount*; a non-positive amount clears it."""
    value = parse_amount(amount)
    if value <= 0:
        return hold_fee_removal_fields(actor, now)
    return {
        "hold_fee": value,
        "hold_fee_comment": comment,
        "hold_fee_created_by": actor,
        "hold_fee_created_at": now,
        "hold_fee_added_at": now,
        "hold_fee_removed_at": None,
    }


def effective_hold_date(
    order: OrderSnapshot,
    zone: Optional[str | ZoneInfo] = None,
) -> Optional[date]:
    """Removal date, else addition date, else the last ledger write."""
    moment = order.hold_fee_removed_at or order.hold_fee_added_at or order.hold_fee_created_at
    if moment is None:
        return None
    return local_date(moment, zone)


def filter_by_hold_date(
    orders: Iterable[OrderSnapshot],
    kind: HoldDateFilter | str,
    custom_date: Optional[date] = None,
    *,
    today: Optional[date] = None,
    zone: Optional[str | ZoneInfo] = None,
) -> list[OrderSnapshot]:
    orders = list(orders)
    try:
        kind = HoldDateFilter(kind)
    except ValueError:
        LOGGER.warning("hold_date_filter_unknown: kind=%r", kind)
        return orders
    if kind is HoldDateFilter.ALL:
        return orders
    if kind is HoldDateFilter.CUSTOM and custom_date is None:
        return orders

    today = today or local_today(zone=zone)
    if kind is HoldDateFilter.TODAY:
        first, last = today, today
    elif kind is HoldDateFilter.YESTERDAY:
        first = last = today - timedelta(days=1)
    elif kind is HoldDateFilter.LAST_7_DAYS:
        first, last = today - timedelta(days=7), today
    elif kind is HoldDateFilter.LAST_30_DAYS:
        first, last = today - timedelta(days=30), today
    else:
        first = last = custom_date

    selected: list[OrderSnapshot] = []
    for order in orders:
        held_on = effective_hold_date(order, zone)
        if held_on is not None and first <= held_on <= last:
            selected.append(order)
    return selected


@dataclass(slots=True, frozen=True)
class HoldSummary:
    active: tuple[OrderSnapshot, ...]
    removed: tuple[OrderSnapshot, ...]

    @property
    def active_total(self) -> float:
        return sum(order.hold_fee for order in self.active)

    @property
    def last_removed_at(self) -> Optional[datetime]:
        stamps = [
            order.hold_fee_removed_at or order.hold_fee_created_at
            for order in self.removed
            if order.hold_fee_removed_at or order.hold_fee_created_at
        ]
        return max(stamps) if stamps else None


def summarize_holds(orders: Iterable[OrderSnapshot]) -> HoldSummary:
    active: list[OrderSnapshot] = []
    removed: list[OrderSnapshot] = []
    for order in orders:
        if order.hold_fee > 0:
            active.append(order)
        elif order.hold_fee_created_at is not None and order.hold_fee_created_by:
            removed.append(order)
    removed.sort(
        key=lambda order: order.hold_fee_removed_at or order.hold_fee_created_at,
        reverse=True,
    )
    return HoldSummary(active=tuple(active), removed=tuple(removed))


class HoldFeeService:
    """Writes hold-fee changes through :class:`OrdersService`."""

    def __init__(self, session: AsyncSession, *, change_feed: ChangeFeed | None = None) -> None:
        self._orders = OrdersService(session, change_feed=change_feed)

    async def add_or_update_hold_fee(
        self,
        order_id: int,
        amount: Any,
        comment: Optional[str],
        actor: str,
        *,
        now: Optional[datetime] = None,
    ) -> OrderSnapshot:
        stamp = now or datetime.now(UTC)
        fields = hold_fee_fields(amount, comment, actor, stamp)
        snapshot = await self._orders.update_order(order_id, fields, now=stamp)
        if fields["hold_fee"] is None:
            LOGGER.info("hold_fee_cleared: order=%s actor=%s", order_id, actor)
        else:
            LOGGER.info(
                "hold_fee_set: order=%s amount=%s actor=%s", order_id, fields["hold_fee"], actor
            )
        return snapshot

    async def remove_hold_fee(
        self,
        order_id: int,
        actor: str,
        *,
        now: Optional[datetime] = None,
    ) -> OrderSnapshot:
        stamp = now or datetime.now(UTC)
        snapshot = await self._orders.update_order(
            order_id, hold_fee_removal_fields(actor, stamp), now=stamp
        )
        LOGGER.info("hold_fee_removed: order=%s actor=%s", order_id, actor)
        return snapshot
