"""Courier status updates.

:func:`build_update_payload` turns what a courier entered for one order into
the exact column values to write.  All validation happens here, before
anything is sent to the store; an incomplete update raises
:class:`~delivery_service.services.errors.UpdateValidationError`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from delivery_service.db import models as m
from delivery_service.services.errors import UpdateValidationError
from delivery_service.services.snapshots import OrderSnapshot, SplitPayments, parse_amount

__all__ = [
    "COURIER_COLLECTOR",
    "CourierUpdate",
    "is_order_paid",
    "collection_method",
    "build_update_payload",
]

_log = logging.getLogger(__name__)
UTC = timezone.utc

COURIER_COLLECTOR = "courier"

_PAID_MARKERS: tuple[str, ...] = (
    "paymob", "pay mob", "valu", "val u", "fawry", "instapay", "insta pay",
    "vodafone cash", "vodafone-cash", "orange cash", "orange-cash",
    "we pay", "we-pay", "wepay",
    "visa", "mastercard", "amex", "discover", "card", "credit", "debit",
    "paypal", "stripe", "square", "razorpay",
    "paid", "completed", "successful", "success",
)
_UNPAID_MARKERS: tuple[str, ...] = (
    "cash", "cod", "failed", "cancelled", "declined", "rejected",
)

# Where the courier's own sub type lands in payment_method
SUB_TYPE_PAYMENT_METHODS: dict[str, str] = {
    "on_hand": "cash",
    "instapay": "instapay",
    "wallet": "wallet",
    "visa_machine": "card",
    "paymob": "paymob",
}
# Where a non-courier collector lands in payment_method
COLLECTOR_PAYMENT_METHODS: dict[str, str] = {
    "paymob": "paymob",
    "valu": "valu",
    "fawry": "paid",
    "instapay": "instapay",
    "vodafone_cash": "paid",
    "orange_cash": "paid",
    "we_pay": "paid",
}

_EDITABLE_STATUSES = frozenset(status.value for status in m.OrderStatus)


@dataclass(slots=True, frozen=True)
class CourierUpdate:
    status: m.OrderStatus | str
    delivery_fee: Any = 0
    partial_paid_amount: Any = 0
    collected_by: Optional[str] = None
    payment_sub_type: Optional[str] = None
    internal_comment: Optional[str] = None
    onther_payments: Any = None


def is_order_paid(order: OrderSnapshot) -> bool:
    """Whether the customer already paid online (explicit status wins)."""
    if order.payment_status:
        return order.payment_status == "paid"
    method = (order.payment_method or "").lower()
    if not method:
        return False
    if any(marker in method for marker in _PAID_MARKERS):
        return True
    if any(marker in method for marker in _UNPAID_MARKERS):
        return False
    return True


def collection_method(payment_method: Optional[str]) -> str:
    """Collector name implied by an order's own payment method."""
    if not payment_method:
        return "cash"
    value = payment_method.lower()
    if "paymob" in value:
        return "valu" if "valu" in value else "paymob"
    for marker, collector in (
        ("valu", "valu"),
        ("fawry", "fawry"),
        ("instapay", "instapay"),
        ("vodafone cash", "vodafone_cash"),
        ("orange cash", "orange_cash"),
        ("we pay", "we_pay"),
    ):
        if marker in value:
            return collector
    if any(marker in value for marker in ("visa", "mastercard", "card", "credit", "debit")):
        return "paymob"
    if "cash" in value or "cod" in value:
        return "cash"
    return payment_method


def _require_collection(update: CourierUpdate) -> tuple[str, Optional[str]]:
    collected = update.collected_by
    if not collected:
        raise UpdateValidationError(
            "collected_by", "select a collection method when entering fees"
        )
    if collected == COURIER_COLLECTOR:
        if not update.payment_sub_type:
            raise UpdateValidationError(
                "payment_sub_type", "select the courier payment sub type"
            )
        return collected, update.payment_sub_type
    return collected, None


def build_update_payload(
    order: OrderSnapshot,
    update: CourierUpdate,
    *,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Column values for applying *update* to *order*.

    Raises:
        UpdateValidationError: fees were entered without a collection method,
            without a courier sub type, or a canceled order carries a
            delivery fee but no sub type.
    """
    status = update.status.value if isinstance(update.status, m.OrderStatus) else str(update.status)
    if status not in _EDITABLE_STATUSES:
        raise UpdateValidationError("status", f"unknown status {status!r}")

    paid_online = is_order_paid(order)
    payload: dict[str, Any] = {
        "status": status,
        "updated_at": now or datetime.now(UTC),
        "payment_status": order.payment_status or ("paid" if paid_online else None),
        "payment_method": order.payment_method,
    }

    fee = parse_amount(update.delivery_fee)
    partial = parse_amount(update.partial_paid_amount)
    no_amounts = fee == 0 and partial == 0
    clears_fees = status == m.OrderStatus.RETURN.value or (
        no_amounts
        and status in (m.OrderStatus.RECEIVING_PART.value, m.OrderStatus.CANCELED.value)
    )

    collected_by: Optional[str] = None
    sub_type: Optional[str] = None

    if clears_fees:
        fee = 0.0
        partial = 0.0
        if paid_online:
            payload["payment_status"] = "paid"
    elif status == m.OrderStatus.ASSIGNED.value:
        pass
    elif status == m.OrderStatus.HAND_TO_HAND.value and no_amounts:
        pass
    elif paid_online:
        if update.collected_by:
            collected_by = update.collected_by
            sub_type = update.payment_sub_type or None
        elif update.payment_sub_type:
            collected_by = collection_method(order.payment_method)
        elif not no_amounts:
            collected_by = "paymob"
            payload["payment_method"] = "paymob"
            payload["payment_status"] = "paid"
        else:
            collected_by = collection_method(order.payment_method)
            payload["payment_status"] = "paid"
    elif status == m.OrderStatus.CANCELED.value and fee > 0:
        if not update.payment_sub_type:
            raise UpdateValidationError(
                "payment_sub_type",
                "select the courier payment sub type for a delivery fee on a canceled order",
            )
        collected_by, sub_type = COURIER_COLLECTOR, update.payment_sub_type
    elif update.payment_sub_type:
        collected_by, sub_type = COURIER_COLLECTOR, update.payment_sub_type
    elif update.collected_by or not no_amounts:
        collected_by, sub_type = _require_collection(update)

    payload["delivery_fee"] = fee
    payload["partial_paid_amount"] = partial
    payload["collected_by"] = collected_by
    payload["payment_sub_type"] = sub_type

    if update.internal_comment and update.internal_comment.strip():
        payload["internal_comment"] = update.internal_comment.strip()

    if sub_type == m.SPLIT_SUB_TYPE:
        split = SplitPayments.parse(update.onther_payments, order_ref=order.id)
        payload["onther_payments"] = split.to_payload()
    elif order.split.present:
        payload["onther_payments"] = None

    if collected_by == COURIER_COLLECTOR and sub_type:
        payload["payment_method"] = SUB_TYPE_PAYMENT_METHODS.get(sub_type, order.payment_method)
    elif collected_by and collected_by != COURIER_COLLECTOR:
        payload["payment_method"] = COLLECTOR_PAYMENT_METHODS.get(collected_by, payload["payment_method"])

    _log.debug(
        "build_update_payload: order=%s status=%s collected_by=%s sub_type=%s",
        order.id,
        status,
        collected_by,
        sub_type,
    )
    return payload
