"""Admin commands: reconciliation summary, hold-fee ledger and order status."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Optional

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from delivery_service.config import settings
from delivery_service.db import models as m
from delivery_service.db.session import SessionLocal
from delivery_service.infra.notify import send_report
from delivery_service.services.hold_fees import (
    HoldDateFilter,
    HoldFeeService,
    filter_by_hold_date,
    summarize_holds,
)
from delivery_service.services.live_orders import submit_order_update
from delivery_service.services.order_updates import CourierUpdate
from delivery_service.services.orders_service import OrderFilter, OrdersService
from delivery_service.services.reconciliation import SummaryRefresher
from delivery_service.services.snapshots import OrderSnapshot, parse_amount
from delivery_service.services.time_service import RangeKind, local_today
from delivery_service.services.view_state import (
    CourierFeeBook,
    DashboardStateStore,
    ViewStateStore,
)

from . import texts
from .filters import AdminFilter

router = Router(name="admin_reconciliation")
router.message.filter(AdminFilter())

_log = logging.getLogger(__name__)

_view_state = ViewStateStore.from_hours(settings.view_state_ttl_hours)
_dashboard_states = DashboardStateStore(_view_state)
_courier_fees = CourierFeeBook(_view_state)
_refreshers: dict[int, SummaryRefresher] = {}


@dataclass(slots=True, frozen=True)
class SummaryRequest:
    range_kind: RangeKind = RangeKind.TODAY
    custom_start: Optional[date] = None
    custom_end: Optional[date] = None
    courier_id: Optional[int] = None
    include_held_orders: bool = False
    publish: bool = False


def _parse_range(token: str) -> tuple[RangeKind, Optional[date], Optional[date]]:
    try:
        return RangeKind(token), None, None
    except ValueError:
        pass
    first, _, last = token.partition("..")
    start = date.fromisoformat(first)
    end = date.fromisoformat(last) if last else None
    if end is not None and end < start:
        raise ValueError("range end before start")
    return RangeKind.CUSTOM, start, end


def parse_summary_args(args: Optional[str]) -> SummaryRequest:
    """Parse ``/summary`` arguments; raises ValueError on anything unknown."""
    kind, start, end = RangeKind.TODAY, None, None
    courier_id: Optional[int] = None
    include_held = False
    publish = False
    for token in (args or "").split():
        lowered = token.lower()
        if lowered == "held":
            include_held = True
        elif lowered == "report":
            publish = True
        elif lowered == "all":
            courier_id = None
        elif token.isdigit():
            courier_id = int(token)
        else:
            kind, start, end = _parse_range(token)
    return SummaryRequest(
        range_kind=kind,
        custom_start=start,
        custom_end=end,
        courier_id=courier_id,
        include_held_orders=include_held,
        publish=publish,
    )


def parse_fee_args(args: Optional[str], *, today: date) -> tuple[date, Optional[float]]:
    """``/fee 150 [YYYY-MM-DD]``; ``clear`` instead of an amount removes the note."""
    parts = (args or "").split()
    if not parts or len(parts) > 2:
        raise ValueError("amount required")
    day = date.fromisoformat(parts[1]) if len(parts) == 2 else today
    if parts[0].lower() == "clear":
        return day, None
    if not parts[0][:1].isdigit():
        raise ValueError("amount must be a positive number")
    return day, parse_amount(parts[0])


def parse_holds_args(args: Optional[str]) -> tuple[HoldDateFilter, Optional[date], Optional[int]]:
    """``/holds [filter|YYYY-MM-DD] [courier_id]``."""
    tokens = (args or "").split()
    if len(tokens) > 2:
        raise ValueError("too many arguments")
    kind, custom_date = HoldDateFilter.TODAY, None
    courier_id: Optional[int] = None
    if tokens:
        first = tokens[0]
        if first.isdigit() and len(tokens) == 1:
            courier_id = int(first)
        else:
            try:
                kind = HoldDateFilter(first.lower())
            except ValueError:
                kind, custom_date = HoldDateFilter.CUSTOM, date.fromisoformat(first)
            if kind is HoldDateFilter.CUSTOM and custom_date is None:
                raise ValueError("custom filter needs a date")
    if len(tokens) == 2:
        if not tokens[1].isdigit():
            raise ValueError("courier id must be a number")
        courier_id = int(tokens[1])
    return kind, custom_date, courier_id


def parse_status_args(args: Optional[str]) -> tuple[int, CourierUpdate]:
    """``/status <order_id> <status> [fee] [collected_by] [sub_type] [paid=<amount>]``."""
    tokens = (args or "").split()
    partial: float = 0.0
    positional: list[str] = []
    for token in tokens:
        key, sep, value = token.partition("=")
        if sep and key.lower() == "paid":
            if not value[:1].isdigit():
                raise ValueError("paid amount must be a number")
            partial = parse_amount(value)
        else:
            positional.append(token)
    if len(positional) < 2 or len(positional) > 5 or not positional[0].isdigit():
        raise ValueError("order id and status required")
    status = m.OrderStatus(positional[1].lower())
    fee = 0.0
    if len(positional) > 2:
        if not positional[2][:1].isdigit():
            raise ValueError("fee must be a number")
        fee = parse_amount(positional[2])
    update = CourierUpdate(
        status=status,
        delivery_fee=fee,
        partial_paid_amount=partial,
        collected_by=positional[3].lower() if len(positional) > 3 else None,
        payment_sub_type=positional[4].lower() if len(positional) > 4 else None,
    )
    return int(positional[0]), update


def parse_hold_args(args: Optional[str]) -> tuple[int, float, Optional[str]]:
    parts = (args or "").split(maxsplit=2)
    if len(parts) < 2 or not parts[0].isdigit():
        raise ValueError("order id and amount required")
    amount = parse_amount(parts[1])
    comment = parts[2].strip() if len(parts) > 2 and parts[2].strip() else None
    return int(parts[0]), amount, comment


async def _fetch_orders(order_filter: OrderFilter) -> list[OrderSnapshot]:
    async with SessionLocal() as session:
        return await OrdersService(session).fetch_orders(order_filter)


def _single_day(request: SummaryRequest, today: date) -> Optional[date]:
    if request.range_kind is RangeKind.TODAY:
        return today
    if request.range_kind is RangeKind.YESTERDAY:
        return today - timedelta(days=1)
    if request.range_kind is RangeKind.CUSTOM and request.custom_end in (None, request.custom_start):
        return request.custom_start
    return None


def _refresher_for(user_id: int) -> SummaryRefresher:
    refresher = _refreshers.get(user_id)
    if refresher is None:
        refresher = SummaryRefresher(
            _fetch_orders,
            surface=f"admin-summary:{user_id}",
            dashboard_states=_dashboard_states,
            courier_fees=_courier_fees,
        )
        _refreshers[user_id] = refresher
    return refresher


async def _courier_label(courier_id: Optional[int]) -> str:
    if courier_id is None:
        return "all couriers"
    async with SessionLocal() as session:
        courier = await session.get(m.couriers, courier_id)
    if courier is None:
        return f"#{courier_id}"
    return f"{courier.name} (#{courier_id})"


def _actor(message: Message) -> str:
    user = message.from_user
    if user is None:
        return "admin"
    return user.full_name or f"tg:{user.id}"


@router.message(Command("summary"))
async def cmd_summary(message: Message, command: CommandObject) -> None:
    try:
        request = parse_summary_args(command.args)
    except ValueError:
        await message.answer(texts.SUMMARY_USAGE)
        return

    refresher = _refresher_for(message.from_user.id)
    metrics = await refresher.set_state(
        replace(
            refresher.state,
            courier_id=request.courier_id,
            range_kind=request.range_kind.value,
            custom_start=request.custom_start,
            custom_end=request.custom_end,
            include_held_orders=request.include_held_orders,
        )
    )
    if metrics is None:
        metrics = refresher.latest
    if metrics is None:
        return

    day = _single_day(request, local_today(zone=settings.timezone))
    range_label = texts.RANGE_LABELS[request.range_kind.value]
    if request.range_kind is RangeKind.CUSTOM:
        range_label = f"{request.custom_start} .. {request.custom_end or request.custom_start}"
    text = texts.metrics_text(
        metrics,
        range_label=range_label,
        courier_label=await _courier_label(request.courier_id),
        include_held_orders=request.include_held_orders,
        courier_fee=refresher.courier_fee_for(day) if day is not None else None,
    )
    await message.answer(text)
    if request.publish:
        await send_report(message.bot, text)


@router.message(Command("holds"))
async def cmd_holds(message: Message, command: CommandObject) -> None:
    try:
        kind, custom_date, courier_id = parse_holds_args(command.args)
    except ValueError:
        await message.answer(texts.HOLDS_USAGE)
        return

    async with SessionLocal() as session:
        orders = await OrdersService(session).fetch_hold_fee_orders(courier_id=courier_id)
    selected = filter_by_hold_date(orders, kind, custom_date, zone=settings.timezone)
    if kind is HoldDateFilter.CUSTOM:
        range_label = custom_date.isoformat()
    else:
        range_label = texts.HOLD_FILTER_LABELS[kind.value]
    await message.answer(texts.hold_summary_text(summarize_holds(selected), range_label=range_label))


@router.message(Command("status"))
async def cmd_status(message: Message, command: CommandObject) -> None:
    try:
        order_id, update = parse_status_args(command.args)
    except ValueError:
        await message.answer(texts.STATUS_USAGE)
        return

    # UpdateValidationError is answered by the error middleware
    async with SessionLocal() as session:
        order = await submit_order_update(OrdersService(session), order_id, update)
    _log.info("admin %s set order %s to %s", message.from_user.id, order_id, order.status)
    await message.answer(texts.status_updated_text(order))


@router.message(Command("hold"))
async def cmd_hold(message: Message, command: CommandObject) -> None:
    try:
        order_id, amount, comment = parse_hold_args(command.args)
    except ValueError:
        await message.answer(texts.HOLD_USAGE)
        return

    async with SessionLocal() as session:
        order = await HoldFeeService(session).add_or_update_hold_fee(
            order_id, amount, comment, _actor(message)
        )
    _log.info("admin %s set hold on order %s", message.from_user.id, order_id)
    await message.answer(texts.hold_set_text(order))


@router.message(Command("unhold"))
async def cmd_unhold(message: Message, command: CommandObject) -> None:
    raw = (command.args or "").strip()
    if not raw.isdigit():
        await message.answer(texts.UNHOLD_USAGE)
        return

    async with SessionLocal() as session:
        order = await HoldFeeService(session).remove_hold_fee(int(raw), _actor(message))
    _log.info("admin %s removed hold on order %s", message.from_user.id, raw)
    await message.answer(texts.hold_removed_text(order))


@router.message(Command("fee"))
async def cmd_fee(message: Message, command: CommandObject) -> None:
    try:
        day, amount = parse_fee_args(command.args, today=local_today(zone=settings.timezone))
    except ValueError:
        await message.answer(texts.FEE_USAGE)
        return

    courier_id = _refresher_for(message.from_user.id).state.courier_id
    if amount is None:
        _courier_fees.remove(courier_id, day)
    else:
        _courier_fees.set(courier_id, day, amount)
    await message.answer(
        texts.fee_set_text(day, amount, courier_label=await _courier_label(courier_id))
    )


__all__ = [
    "router",
    "parse_summary_args",
    "parse_hold_args",
    "parse_holds_args",
    "parse_fee_args",
    "parse_status_args",
    "SummaryRequest",
]
