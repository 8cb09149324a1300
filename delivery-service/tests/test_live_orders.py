from __future__ import annotations

from typing import Any, Mapping

import pytest

from delivery_service.services.change_feed import ChangeFeed, ChangeType, EchoSuppressor, OrderChangeEvent
from delivery_service.services.errors import OrderNotFound, StorageError, UpdateValidationError
from delivery_service.services.live_orders import LiveOrderSet, submit_order_update
from delivery_service.services.order_updates import CourierUpdate
from delivery_service.services.orders_service import OrdersService
from delivery_service.services.snapshots import OrderSnapshot
from delivery_service.services.view_state import ModifiedOrders, ViewStateStore
from tests.factories import create_order, snapshot


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class RecordingWriter:
    def __init__(self, *, fail: bool = False, error: Exception | None = None) -> None:
        self.error = error or (StorageError("rejected") if fail else None)
        self.calls: list[tuple[int, dict[str, Any]]] = []

    async def __call__(self, order_id: int, fields: Mapping[str, Any]) -> OrderSnapshot:
        self.calls.append((order_id, dict(fields)))
        if self.error is not None:
            raise self.error
        return OrderSnapshot.from_mapping({"id": order_id, "assigned_courier_id": 5, **fields})


def make_set(writer, clock=None, **kwargs) -> LiveOrderSet:
    orders = [
        snapshot(id=1, status="assigned", total_order_fees=100, assigned_courier_id=5),
        snapshot(id=2, status="assigned", total_order_fees=250, assigned_courier_id=5),
    ]
    return LiveOrderSet(
        orders,
        writer=writer,
        suppressor=EchoSuppressor(2.0, clock=clock or FakeClock()),
        courier_id=5,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_apply_persists_and_tracks_modified() -> None:
    writer = RecordingWriter()
    modified = ModifiedOrders(ViewStateStore())
    live = make_set(writer, modified=modified)

    stored = await live.apply(1, {"status": "delivered"})
    assert stored.status == "delivered"
    assert live.get(1).status == "delivered"
    assert writer.calls == [(1, {"status": "delivered"})]
    assert 1 in modified


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_optimistic_state() -> None:
    writer = RecordingWriter(fail=True)
    live = make_set(writer)
    with pytest.raises(StorageError):
        await live.apply(1, {"status": "delivered"})
    assert live.get(1).status == "assigned"
    # a real update arriving afterwards is not mistaken for an echo
    assert await live.handle_event(
        OrderChangeEvent(ChangeType.UPDATE, {"id": 1, "status": "canceled", "assigned_courier_id": 5})
    )
    assert live.get(1).status == "canceled"


@pytest.mark.asyncio
async def test_missing_order_rolls_back_optimistic_state() -> None:
    writer = RecordingWriter(error=OrderNotFound(1))
    live = make_set(writer)
    with pytest.raises(OrderNotFound):
        await live.apply(1, {"status": "delivered"})
    assert live.get(1).status == "assigned"
    assert await live.handle_event(
        OrderChangeEvent(ChangeType.UPDATE, {"id": 1, "status": "partial", "assigned_courier_id": 5})
    )
    assert live.get(1).status == "partial"


@pytest.mark.asyncio
async def test_rejected_write_leaves_order_untouched() -> None:
    modified = ModifiedOrders(ViewStateStore())
    writer = RecordingWriter(error=UpdateValidationError("delivery_fee", "rejected"))
    live = make_set(writer, modified=modified)
    with pytest.raises(UpdateValidationError):
        await live.apply(2, {"status": "delivered", "delivery_fee": 40})
    assert live.get(2).status == "assigned"
    assert live.get(2).delivery_fee == 0
    assert 2 not in modified


@pytest.mark.asyncio
async def test_own_echo_is_ignored_within_window() -> None:
    clock = FakeClock()
    live = make_set(RecordingWriter(), clock=clock)
    await live.apply(2, {"status": "delivered"})

    echo = OrderChangeEvent(ChangeType.UPDATE, {"id": 2, "status": "delivered", "assigned_courier_id": 5})
    assert not await live.handle_event(echo)

    clock.now += 3
    later = OrderChangeEvent(ChangeType.UPDATE, {"id": 2, "status": "partial", "assigned_courier_id": 5})
    assert await live.handle_event(later)
    assert live.get(2).status == "partial"


@pytest.mark.asyncio
async def test_delete_and_reassignment_remove_orders() -> None:
    live = make_set(RecordingWriter())
    assert await live.handle_event(OrderChangeEvent(ChangeType.DELETE, {"id": 1}))
    assert live.get(1) is None

    moved = OrderChangeEvent(ChangeType.UPDATE, {"id": 2, "status": "assigned", "assigned_courier_id": 9})
    assert await live.handle_event(moved)
    assert len(live) == 0


@pytest.mark.asyncio
async def test_inserts_for_this_courier_are_added() -> None:
    live = make_set(RecordingWriter())
    event = OrderChangeEvent(ChangeType.INSERT, {"id": 3, "status": "assigned", "assigned_courier_id": 5})
    assert await live.handle_event(event)
    assert [o.id for o in live.snapshot()] == [1, 2, 3]


@pytest.mark.asyncio
async def test_courier_update_validated_before_write() -> None:
    writer = RecordingWriter()
    live = make_set(writer)
    with pytest.raises(UpdateValidationError):
        await live.submit_courier_update(1, CourierUpdate(status="delivered", delivery_fee=20))
    assert writer.calls == []

    stored = await live.submit_courier_update(
        1, CourierUpdate(status="delivered", delivery_fee=20, payment_sub_type="on_hand")
    )
    assert stored.collected_by == "courier"
    assert stored.payment_sub_type == "on_hand"


@pytest.mark.asyncio
async def test_attach_to_feed() -> None:
    feed = ChangeFeed()
    live = make_set(RecordingWriter())
    live.attach(feed)
    await feed.publish(OrderChangeEvent(ChangeType.DELETE, {"id": 2}))
    assert live.get(2) is None
    live.detach()
    assert feed.subscriber_count == 0


@pytest.mark.asyncio
async def test_submit_order_update_writes_validated_fields(async_session, change_feed) -> None:
    order = await create_order(async_session, payment_method="cash")
    service = OrdersService(async_session, change_feed=change_feed)

    stored = await submit_order_update(
        service,
        order.id,
        CourierUpdate(status="delivered", delivery_fee=30, collected_by="courier", payment_sub_type="on_hand"),
    )
    assert stored.status == "delivered"
    assert stored.delivery_fee == 30
    assert stored.collected_by == "courier"
    assert stored.payment_sub_type == "on_hand"

    row = await service.get_order(order.id)
    assert row.status == "delivered"
    assert row.collected_by == "courier"


@pytest.mark.asyncio
async def test_submit_order_update_rejects_fee_without_collector(
    async_session, change_feed, recorded_events
) -> None:
    order = await create_order(async_session, payment_method="cash")
    service = OrdersService(async_session, change_feed=change_feed)

    with pytest.raises(UpdateValidationError) as excinfo:
        await submit_order_update(service, order.id, CourierUpdate(status="partial", delivery_fee=30))
    assert excinfo.value.field == "collected_by"
    assert recorded_events == []
    assert (await service.get_order(order.id)).status == "assigned"

    with pytest.raises(OrderNotFound):
        await submit_order_update(service, 999_999, CourierUpdate(status="delivered"))
