"""Admin bot text formatting."""
from __future__ import annotations

import html
from datetime import date, datetime
from typing import Optional

from delivery_service.db import models as m
from delivery_service.services.hold_fees import HoldSummary
from delivery_service.services.metrics import Metrics
from delivery_service.services.snapshots import OrderSnapshot

STATUS_LABELS: dict[m.OrderStatus, str] = {
    m.OrderStatus.ASSIGNED: "Assigned",
    m.OrderStatus.DELIVERED: "Delivered",
    m.OrderStatus.CANCELED: "Canceled",
    m.OrderStatus.PARTIAL: "Partial",
    m.OrderStatus.HAND_TO_HAND: "Hand to hand",
    m.OrderStatus.RETURN: "Return",
    m.OrderStatus.RECEIVING_PART: "Receiving part",
}

HOLD_FILTER_LABELS: dict[str, str] = {
    "today": "today",
    "yesterday": "yesterday",
    "last7days": "last 7 days",
    "last30days": "last 30 days",
    "all": "all time",
}

CHANNEL_LABELS: dict[m.PaymentChannel, str] = {
    m.PaymentChannel.CASH: "Cash",
    m.PaymentChannel.PAYMOB: "Paymob",
    m.PaymentChannel.VALU: "valU",
    m.PaymentChannel.VISA_MACHINE: "Visa machine",
    m.PaymentChannel.INSTAPAY: "InstaPay",
    m.PaymentChannel.WALLET: "Wallet",
    m.PaymentChannel.ON_HAND: "On hand",
    m.PaymentChannel.OTHER: "Other",
}

RANGE_LABELS: dict[str, str] = {
    "today": "today",
    "yesterday": "yesterday",
    "last7days": "last 7 days",
    "last30days": "last 30 days",
    "thisMonth": "this month",
    "lastMonth": "last month",
    "custom": "custom range",
}

SUMMARY_USAGE = (
    "Usage: /summary [today|yesterday|last7days|last30days|thisMonth|lastMonth|YYYY-MM-DD[..YYYY-MM-DD]]"
    " [courier_id|all] [held] [report]"
)
# Usage texts go out with HTML parse mode
HOLD_USAGE = html.escape("Usage: /hold <order_id> <amount> [comment]")
UNHOLD_USAGE = html.escape("Usage: /unhold <order_id>")
HOLDS_USAGE = "Usage: /holds [today|yesterday|last7days|last30days|all|YYYY-MM-DD] [courier_id]"
FEE_USAGE = html.escape("Usage: /fee <amount|clear> [YYYY-MM-DD] (applies to the courier picked in /summary)")
STATUS_USAGE = html.escape(
    "Usage: /status <order_id> <status> [fee] [collected_by] [sub_type] [paid=<amount>]\n"
    "Statuses: assigned, delivered, canceled, partial, hand_to_hand, return, receiving_part"
)


def fmt_money(value: float) -> str:
    """Two decimals for display only; sums are never rounded before this."""
    return f"{value:,.2f}"


def _fmt_time(moment: Optional[datetime]) -> str:
    if moment is None:
        return "-"
    return moment.strftime("%Y-%m-%d %H:%M")


def metrics_text(
    metrics: Metrics,
    *,
    range_label: str,
    courier_label: str,
    include_held_orders: bool = False,
    courier_fee: Optional[float] = None,
) -> str:
    lines = [
        f"<b>📊 Summary: {html.escape(range_label)}</b>",
        f"Courier: {html.escape(courier_label)}",
        f"Orders: {metrics.total_orders_count} | value {fmt_money(metrics.total_orders_original_value)}",
    ]
    if include_held_orders:
        lines.append("Held orders included in channel totals")

    lines.append("")
    lines.append("<b>By status</b>")
    for status, label in STATUS_LABELS.items():
        entry = metrics.by_status[status]
        if not entry.count:
            continue
        lines.append(
            f"{label}: {entry.count} | value {fmt_money(entry.original_value)}"
            f" | collected {fmt_money(entry.courier_collected)}"
        )

    lines.append("")
    lines.append("<b>By channel</b>")
    for channel, label in CHANNEL_LABELS.items():
        entry = metrics.by_channel[channel]
        if not entry.count:
            continue
        lines.append(f"{label}: {entry.count} | {fmt_money(entry.amount)}")
    lines.append(f"Total COD: {metrics.total_cod.count} | {fmt_money(metrics.total_cod.amount)}")

    lines.append("")
    lines.append(f"Hand to accounting: <b>{fmt_money(metrics.total_hand_to_accounting)}</b>")
    lines.append(f"Collected overall: {fmt_money(metrics.total_collected_overall)}")
    lines.append(f"Not delivered: {fmt_money(metrics.total_not_delivered)}")
    lines.append(f"Accounting difference: {fmt_money(metrics.accounting_difference)}")
    lines.append(f"Delivery fees: {fmt_money(metrics.total_delivery_fees)}")
    lines.append(f"Partial amounts: {fmt_money(metrics.total_partial_amounts)}")
    lines.append(f"Hold fees: {fmt_money(metrics.total_hold_fees)}")
    lines.append(f"Extra fees: {fmt_money(metrics.total_extra_fees)}")
    lines.append(f"Admin delivery fees: {fmt_money(metrics.total_admin_delivery_fees)}")
    lines.append(f"Adjusted total: <b>{fmt_money(metrics.adjusted_total)}</b>")
    if courier_fee is not None:
        lines.append(f"Courier fee: {fmt_money(courier_fee)}")
        lines.append(f"After courier fee: {fmt_money(metrics.adjusted_total - courier_fee)}")
    return "\n".join(lines)


def hold_set_text(order: OrderSnapshot) -> str:
    if order.hold_fee > 0:
        comment = f"\nComment: {html.escape(order.hold_fee_comment)}" if order.hold_fee_comment else ""
        return (
            f"🔒 Hold on order #{html.escape(order.order_number)}: "
            f"{fmt_money(order.hold_fee)}{comment}"
        )
    return hold_removed_text(order)


def hold_removed_text(order: OrderSnapshot) -> str:
    return f"🔓 Hold removed from order #{html.escape(order.order_number)}"


def hold_summary_text(summary: HoldSummary, *, range_label: str) -> str:
    lines = [f"<b>🔒 Hold fees: {html.escape(range_label)}</b>"]
    if not summary.active and not summary.removed:
        lines.append("No hold activity.")
        return "\n".join(lines)

    lines.append(f"Active: {len(summary.active)} | {fmt_money(summary.active_total)}")
    for order in summary.active:
        by = html.escape(order.hold_fee_created_by or "-")
        lines.append(
            f"• #{html.escape(order.order_number)} {fmt_money(order.hold_fee)}"
            f" ({by}, {_fmt_time(order.hold_fee_added_at)})"
        )
    if summary.removed:
        lines.append(f"Removed: {len(summary.removed)}, last at {_fmt_time(summary.last_removed_at)}")
        for order in summary.removed:
            by = html.escape(order.hold_fee_created_by or "-")
            lines.append(
                f"• #{html.escape(order.order_number)} ({by}, "
                f"{_fmt_time(order.hold_fee_removed_at or order.hold_fee_created_at)})"
            )
    return "\n".join(lines)


def fee_set_text(day: date, amount: Optional[float], *, courier_label: str) -> str:
    if amount is None:
        return f"Courier fee cleared for {html.escape(courier_label)} on {day.isoformat()}"
    return f"Courier fee for {html.escape(courier_label)} on {day.isoformat()}: {fmt_money(amount)}"


def status_updated_text(order: OrderSnapshot) -> str:
    try:
        label = STATUS_LABELS[m.OrderStatus(order.status)]
    except ValueError:
        label = order.status or "-"
    lines = [f"✅ Order #{html.escape(order.order_number)}: {html.escape(label)}"]
    if order.delivery_fee:
        lines.append(f"Delivery fee: {fmt_money(order.delivery_fee)}")
    if order.partial_paid_amount:
        lines.append(f"Partial paid: {fmt_money(order.partial_paid_amount)}")
    if order.collected_by:
        collected = order.collected_by
        if order.payment_sub_type:
            collected = f"{collected} / {order.payment_sub_type}"
        lines.append(f"Collected by: {html.escape(collected)}")
    return "\n".join(lines)
