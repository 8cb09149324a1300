from __future__ import annotations
import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, metadata

# ===== Enums =====


class OrderStatus(str, enum.Enum):
    """Order lifecycle statuses as stored in ``orders.status``."""

    ASSIGNED = "assigned"
    DELIVERED = "delivered"
    CANCELED = "canceled"
    PARTIAL = "partial"
    HAND_TO_HAND = "hand_to_hand"
    RETURN = "return"
    RECEIVING_PART = "receiving_part"


class PaymentChannel(str, enum.Enum):
    """Closed set of canonical payment channels."""

    CASH = "cash"
    PAYMOB = "paymob"
    VALU = "valu"
    VISA_MACHINE = "visa_machine"
    INSTAPAY = "instapay"
    WALLET = "wallet"
    ON_HAND = "on_hand"
    OTHER = "other"


# Channels that end up as cash-like money held by the courier
COD_CHANNELS: frozenset[PaymentChannel] = frozenset(
    {
        PaymentChannel.VISA_MACHINE,
        PaymentChannel.INSTAPAY,
        PaymentChannel.WALLET,
        PaymentChannel.ON_HAND,
    }
)

# Sentinel stored in payment_sub_type for split ("other") payments
SPLIT_SUB_TYPE = "onther"

# Split payments: JSONB on PostgreSQL, plain JSON elsewhere (tests use sqlite)
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


def _money() -> Numeric:
    return Numeric(12, 2, asdecimal=False)


# ===== Tables =====


class couriers(Base):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    tg_user_id: Mapped[Optional[int]] = mapped_column(Integer, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __mapper_args__ = {"eager_defaults": True}


class orders(Base):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    shopify_order_id: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, nullable=True
    )

    customer_name: Mapped[Optional[str]] = mapped_column(String(160))
    address: Mapped[Optional[str]] = mapped_column(Text)
    mobile_number: Mapped[Optional[str]] = mapped_column(String(32))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    internal_comment: Mapped[Optional[str]] = mapped_column(Text)

    # Free-form on purpose: legacy rows may carry statuses outside OrderStatus
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=OrderStatus.ASSIGNED.value,
        server_default=OrderStatus.ASSIGNED.value,
        index=True,
    )

    total_order_fees: Mapped[float] = mapped_column(
        _money(), nullable=False, default=0, server_default="0"
    )
    delivery_fee: Mapped[float] = mapped_column(
        _money(), nullable=False, default=0, server_default="0"
    )
    partial_paid_amount: Mapped[float] = mapped_column(
        _money(), nullable=False, default=0, server_default="0"
    )
    admin_delivery_fee: Mapped[float] = mapped_column(
        _money(), nullable=False, default=0, server_default="0"
    )
    extra_fee: Mapped[float] = mapped_column(
        _money(), nullable=False, default=0, server_default="0"
    )

    payment_method: Mapped[Optional[str]] = mapped_column(String(64))
    payment_status: Mapped[Optional[str]] = mapped_column(String(32))
    financial_status: Mapped[Optional[str]] = mapped_column(String(32))
    payment_sub_type: Mapped[Optional[str]] = mapped_column(String(64))
    collected_by: Mapped[Optional[str]] = mapped_column(String(64))
    onther_payments: Mapped[Optional[Any]] = mapped_column(JSONPayload, nullable=True)

    hold_fee: Mapped[Optional[float]] = mapped_column(_money(), nullable=True)
    hold_fee_comment: Mapped[Optional[str]] = mapped_column(Text)
    hold_fee_created_by: Mapped[Optional[str]] = mapped_column(String(160))
    hold_fee_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    hold_fee_added_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    hold_fee_removed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    assigned_courier_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("couriers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    courier: Mapped[Optional["couriers"]] = relationship(lazy="raise_on_sql")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    proofs: Mapped[list["order_proofs"]] = relationship(
        back_populates="order",
        lazy="raise_on_sql",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_orders__courier_created", "assigned_courier_id", "created_at"),
        Index("ix_orders__hold_removed_added", "hold_fee_removed_at", "hold_fee_added_at"),
    )
    # Load server-side defaults right after INSERT (async sessions cannot lazy-load)
    __mapper_args__ = {"eager_defaults": True}


class order_proofs(Base):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    image_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    order: Mapped["orders"] = relationship(back_populates="proofs", lazy="raise_on_sql")

    __mapper_args__ = {"eager_defaults": True}


__all__ = [
    "metadata",
    "OrderStatus",
    "PaymentChannel",
    "COD_CHANNELS",
    "SPLIT_SUB_TYPE",
    "couriers",
    "orders",
    "order_proofs",
]
