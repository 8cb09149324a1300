"""
Order store access.

Every read and write the reconciliation layer needs goes through
:class:`OrdersService`.  Each call is atomic on its own (one commit per
write); there are no multi-row transactions and no version checks, the last
write wins.  Successful writes are published on the change feed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_service.db import models as m
from delivery_service.services.change_feed import ChangeFeed, ChangeType, OrderChangeEvent, feed
from delivery_service.services.errors import (
    DuplicateOrderError,
    OrderNotFound,
    ProofNotFound,
    StorageError,
    UpdateValidationError,
)
from delivery_service.services.snapshots import DUPLICATE_SUFFIX, OrderSnapshot
from delivery_service.services.time_service import DateRange

_log = logging.getLogger(__name__)
UTC = timezone.utc

# Columns callers may not write through update_order
_READONLY_FIELDS = frozenset({"id", "created_at"})
_ORDER_FIELDS = frozenset(column.key for column in m.orders.__table__.columns)


@dataclass(slots=True, frozen=True)
class OrderFilter:
    """Query for :meth:`OrdersService.fetch_orders`.

    ``date_range`` matches ``assigned_at`` in range, or ``created_at`` in
    range for legacy orders without an assignment timestamp.  With
    ``match_updated`` an ``updated_at`` in range also matches.
    """

    courier_id: Optional[int] = None
    date_range: Optional[DateRange] = None
    assigned_only: bool = False
    match_updated: bool = False


@dataclass(slots=True, frozen=True)
class ProofRecord:
    id: int
    order_id: int
    image_url: str
    created_at: Optional[datetime]


def order_row(order: m.orders) -> dict[str, Any]:
    return {key: getattr(order, key) for key in _ORDER_FIELDS}


class OrdersService:
    """Reads and writes of ``orders`` / ``order_proofs``."""

    def __init__(self, session: AsyncSession, *, change_feed: ChangeFeed | None = None):
        self.session = session
        self.change_feed = change_feed if change_feed is not None else feed

    async def fetch_orders(self, order_filter: OrderFilter | None = None) -> list[OrderSnapshot]:
        order_filter = order_filter or OrderFilter()
        stmt = select(m.orders)
        if order_filter.courier_id is not None:
            stmt = stmt.where(m.orders.assigned_courier_id == order_filter.courier_id)
        if order_filter.assigned_only:
            stmt = stmt.where(m.orders.assigned_courier_id.is_not(None))
        if order_filter.date_range is not None:
            start, end = order_filter.date_range.start, order_filter.date_range.end
            conditions = [
                and_(m.orders.assigned_at >= start, m.orders.assigned_at < end),
                and_(
                    m.orders.assigned_at.is_(None),
                    m.orders.created_at >= start,
                    m.orders.created_at < end,
                ),
            ]
            if order_filter.match_updated:
                conditions.append(and_(m.orders.updated_at >= start, m.orders.updated_at < end))
            stmt = stmt.where(or_(*conditions))
        stmt = stmt.order_by(m.orders.id)

        rows = (await self.session.execute(stmt)).scalars().all()
        _log.debug(
            "fetch_orders: courier=%s range=%s count=%s",
            order_filter.courier_id,
            order_filter.date_range,
            len(rows),
        )
        return [OrderSnapshot.from_row(row) for row in rows]

    async def fetch_hold_fee_orders(self, *, courier_id: Optional[int] = None) -> list[OrderSnapshot]:
        """Orders with any hold-fee ledger entry; date selection is left to
        :func:`~delivery_service.services.hold_fees.filter_by_hold_date`."""
        stmt = select(m.orders).where(
            or_(
                m.orders.hold_fee_added_at.is_not(None),
                m.orders.hold_fee_removed_at.is_not(None),
                m.orders.hold_fee_created_at.is_not(None),
            )
        )
        if courier_id is not None:
            stmt = stmt.where(m.orders.assigned_courier_id == courier_id)
        rows = (await self.session.execute(stmt.order_by(m.orders.id))).scalars().all()
        return [OrderSnapshot.from_row(row) for row in rows]

    async def get_order(self, order_id: int) -> m.orders:
        try:
            order = await self.session.get(m.orders, order_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"order#{order_id} could not be read") from exc
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def update_order(
        self,
        order_id: int,
        fields: Mapping[str, Any],
        *,
        now: Optional[datetime] = None,
    ) -> OrderSnapshot:
        """Apply *fields* to one order and commit.

        ``updated_at`` is stamped with *now* unless the caller passes it.
        Raises :class:`UpdateValidationError` for unknown or read-only
        fields, :class:`OrderNotFound` or :class:`StorageError`.
        """
        unknown = sorted(set(fields) - _ORDER_FIELDS)
        if unknown:
            raise UpdateValidationError(unknown[0], f"unknown order fields: {unknown}")
        readonly = sorted(set(fields) & _READONLY_FIELDS)
        if readonly:
            raise UpdateValidationError(readonly[0], f"read-only order fields: {readonly}")

        order = await self.get_order(order_id)
        for key, value in fields.items():
            if key == "status" and isinstance(value, m.OrderStatus):
                value = value.value
            setattr(order, key, value)
        if "updated_at" not in fields:
            order.updated_at = now or datetime.now(UTC)

        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            _log.error("update_order failed: order=%s fields=%s", order_id, sorted(fields))
            raise StorageError(f"order#{order_id} update rejected") from exc

        _log.info("update_order: order=%s fields=%s", order_id, sorted(fields))
        snapshot = OrderSnapshot.from_row(order)
        await self.change_feed.publish(
            OrderChangeEvent(event_type=ChangeType.UPDATE, row=order_row(order))
        )
        return snapshot

    async def insert_order_proof(self, order_id: int, image_url: str) -> ProofRecord:
        await self.get_order(order_id)
        proof = m.order_proofs(order_id=order_id, image_url=image_url)
        self.session.add(proof)
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"proof for order#{order_id} rejected") from exc
        _log.info("insert_order_proof: order=%s proof=%s", order_id, proof.id)
        return ProofRecord(
            id=proof.id,
            order_id=proof.order_id,
            image_url=proof.image_url,
            created_at=proof.created_at,
        )

    async def delete_order_proof(self, proof_id: int) -> None:
        proof = await self.session.get(m.order_proofs, proof_id)
        if proof is None:
            raise ProofNotFound(proof_id)
        await self.session.delete(proof)
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"proof#{proof_id} delete rejected") from exc
        _log.info("delete_order_proof: proof=%s", proof_id)

    async def list_order_proofs(self, order_id: int) -> list[ProofRecord]:
        rows = (
            await self.session.execute(
                select(m.order_proofs)
                .where(m.order_proofs.order_id == order_id)
                .order_by(m.order_proofs.id)
            )
        ).scalars().all()
        return [
            ProofRecord(id=row.id, order_id=row.order_id, image_url=row.image_url, created_at=row.created_at)
            for row in rows
        ]

    async def duplicate_order(
        self,
        order_id: int,
        courier_id: int,
        *,
        now: Optional[datetime] = None,
    ) -> OrderSnapshot:
        """Copy an order for *courier_id* as a fresh assigned order dated *now*.

        Customer details, order value and payment method are kept; status,
        fees, collection details and comments are reset.
        """
        source = await self.get_order(order_id)
        if source.order_number.endswith(DUPLICATE_SUFFIX):
            raise DuplicateOrderError(f"order#{order_id} is already a copy")

        stamp = now or datetime.now(UTC)
        copy = m.orders(
            order_number=f"{source.order_number}{DUPLICATE_SUFFIX}",
            customer_name=source.customer_name,
            address=source.address,
            mobile_number=source.mobile_number,
            notes=source.notes,
            total_order_fees=source.total_order_fees,
            payment_method=source.payment_method,
            payment_status=source.payment_status,
            status=m.OrderStatus.ASSIGNED.value,
            delivery_fee=0,
            partial_paid_amount=0,
            payment_sub_type=None,
            collected_by=None,
            internal_comment=None,
            assigned_courier_id=courier_id,
            created_at=stamp,
            updated_at=stamp,
            assigned_at=stamp,
        )
        self.session.add(copy)
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"duplicate of order#{order_id} rejected") from exc

        _log.info("duplicate_order: source=%s copy=%s courier=%s", order_id, copy.id, courier_id)
        await self.change_feed.publish(
            OrderChangeEvent(event_type=ChangeType.INSERT, row=order_row(copy))
        )
        return OrderSnapshot.from_row(copy)

    async def delete_duplicate_order(self, order_id: int, courier_id: int) -> None:
        """Delete a copy made by :meth:`duplicate_order`; only its courier may do so."""
        order = await self.get_order(order_id)
        if not order.order_number.endswith(DUPLICATE_SUFFIX):
            raise DuplicateOrderError(f"order#{order_id} is not a copy")
        if order.assigned_courier_id != courier_id:
            raise DuplicateOrderError(f"order#{order_id} belongs to another courier")

        payload = order_row(order)
        try:
            await self.session.execute(
                delete(m.order_proofs).where(m.order_proofs.order_id == order_id)
            )
            await self.session.execute(delete(m.orders).where(m.orders.id == order_id))
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"order#{order_id} delete rejected") from exc

        _log.info("delete_duplicate_order: order=%s courier=%s", order_id, courier_id)
        await self.change_feed.publish(OrderChangeEvent(event_type=ChangeType.DELETE, row=payload))


__all__ = ["OrderFilter", "ProofRecord", "OrdersService", "order_row"]
