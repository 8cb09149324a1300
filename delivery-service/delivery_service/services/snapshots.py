"""Immutable order records used by every money computation.

Rows arrive from the ORM, from change-feed payloads and from tests as plain
dicts.  :class:`OrderSnapshot` coerces all of them into one shape: money
fields are floats (unparseable values count as ``0``), timestamps are aware
UTC datetimes and split payments are parsed exactly once into
:class:`SplitPayments`.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping

from delivery_service.db import models as m

__all__ = [
    "parse_amount",
    "parse_timestamp",
    "SplitPayment",
    "SplitPayments",
    "OrderSnapshot",
    "DUPLICATE_SUFFIX",
]

LOGGER = logging.getLogger(__name__)
UTC = timezone.utc
DUPLICATE_SUFFIX = " (copy)"

# Leading numeric prefix, the same way "12.5 EGP" is read as 12.5
_NUMBER_PREFIX_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_amount(value: Any) -> float:
    """Coerce *value* to a finite float, falling back to ``0.0``."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _NUMBER_PREFIX_RE.match(str(value))
        if match is None:
            return 0.0
        try:
            number = float(match.group(1))
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            LOGGER.warning("timestamp_unparseable: value=%r", value)
            return None
    if parsed.tzinfo is None:
        # sqlite and some legacy rows drop the offset; stored values are UTC
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


@dataclass(slots=True, frozen=True)
class SplitPayment:
    method: str
    amount: float


@dataclass(slots=True, frozen=True)
class SplitPayments:
    """Parsed ``onther_payments`` payload.

    ``present`` is False when the order carries no split data at all.
    Malformed payloads are present but empty (``malformed`` is set).
    """

    items: tuple[SplitPayment, ...] = ()
    present: bool = False
    malformed: bool = False

    @classmethod
    def absent(cls) -> "SplitPayments":
        return cls()

    @classmethod
    def parse(cls, raw: Any, *, order_ref: Any = None) -> "SplitPayments":
        if raw is None or raw == "" or raw is False:
            return cls.absent()
        data = raw
        if isinstance(raw, (str, bytes)):
            try:
                data = json.loads(raw)
            except ValueError:
                LOGGER.warning("split_payments_malformed: order=%s reason=invalid_json", order_ref)
                return cls(present=True, malformed=True)
        if not isinstance(data, (list, tuple)):
            LOGGER.warning(
                "split_payments_malformed: order=%s reason=not_a_list type=%s",
                order_ref,
                type(data).__name__,
            )
            return cls(present=True, malformed=True)
        items: list[SplitPayment] = []
        for entry in data:
            if not isinstance(entry, Mapping):
                items.append(SplitPayment(method="", amount=0.0))
                continue
            method = entry.get("method")
            items.append(
                SplitPayment(
                    method="" if method is None else str(method),
                    amount=parse_amount(entry.get("amount")),
                )
            )
        return cls(items=tuple(items), present=True)

    @property
    def total(self) -> float:
        return sum(item.amount for item in self.items)

    def to_payload(self) -> list[dict[str, Any]]:
        return [{"method": item.method, "amount": item.amount} for item in self.items]


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _status_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, m.OrderStatus):
        return value.value
    return str(value)


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True, frozen=True)
class OrderSnapshot:
    id: int | None
    order_number: str = ""
    status: str | None = None
    total_order_fees: float = 0.0
    delivery_fee: float = 0.0
    partial_paid_amount: float = 0.0
    hold_fee: float = 0.0
    admin_delivery_fee: float = 0.0
    extra_fee: float = 0.0
    payment_method: str | None = None
    payment_sub_type: str | None = None
    collected_by: str | None = None
    payment_status: str | None = None
    split: SplitPayments = field(default_factory=SplitPayments)
    hold_fee_comment: str | None = None
    hold_fee_created_by: str | None = None
    hold_fee_created_at: datetime | None = None
    hold_fee_added_at: datetime | None = None
    hold_fee_removed_at: datetime | None = None
    assigned_courier_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    assigned_at: datetime | None = None
    # Set on the per-sub-payment copies produced when flattening split orders
    split_amount: float | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "OrderSnapshot":
        order_id = _int_or_none(data.get("id"))
        return cls(
            id=order_id,
            order_number=str(data.get("order_number") or ""),
            status=_status_value(data.get("status")),
            total_order_fees=parse_amount(data.get("total_order_fees")),
            delivery_fee=parse_amount(data.get("delivery_fee")),
            partial_paid_amount=parse_amount(data.get("partial_paid_amount")),
            hold_fee=parse_amount(data.get("hold_fee")),
            admin_delivery_fee=parse_amount(data.get("admin_delivery_fee")),
            extra_fee=parse_amount(data.get("extra_fee")),
            payment_method=_str_or_none(data.get("payment_method")),
            payment_sub_type=_str_or_none(data.get("payment_sub_type")),
            collected_by=_str_or_none(data.get("collected_by")),
            payment_status=_str_or_none(data.get("payment_status")),
            split=SplitPayments.parse(data.get("onther_payments"), order_ref=order_id),
            hold_fee_comment=_str_or_none(data.get("hold_fee_comment")),
            hold_fee_created_by=_str_or_none(data.get("hold_fee_created_by")),
            hold_fee_created_at=parse_timestamp(data.get("hold_fee_created_at")),
            hold_fee_added_at=parse_timestamp(data.get("hold_fee_added_at")),
            hold_fee_removed_at=parse_timestamp(data.get("hold_fee_removed_at")),
            assigned_courier_id=_int_or_none(data.get("assigned_courier_id")),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            assigned_at=parse_timestamp(data.get("assigned_at")),
        )

    @classmethod
    def from_row(cls, row: m.orders) -> "OrderSnapshot":
        return cls.from_mapping(
            {column.key: getattr(row, column.key) for column in m.orders.__table__.columns}
        )

    def to_mapping(self) -> dict[str, Any]:
        """Inverse of :meth:`from_mapping` (split payments re-serialized as a list)."""
        data: dict[str, Any] = {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if name not in ("split", "split_amount")
        }
        data["onther_payments"] = self.split.to_payload() if self.split.present else None
        return data

    @property
    def is_split(self) -> bool:
        return self.payment_sub_type == m.SPLIT_SUB_TYPE and self.split.present

    @property
    def has_hold_activity(self) -> bool:
        return self.hold_fee_added_at is not None or self.hold_fee_removed_at is not None

    @property
    def is_duplicate(self) -> bool:
        return self.order_number.endswith(DUPLICATE_SUFFIX)

    def with_split_amount(self, channel: m.PaymentChannel, amount: float) -> "OrderSnapshot":
        return replace(self, payment_sub_type=channel.value, split_amount=amount)
