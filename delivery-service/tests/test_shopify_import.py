from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from sqlalchemy import select

from delivery_service.db import models as m
from delivery_service.services.change_feed import ChangeType
from delivery_service.services.errors import ImportSourceError
from delivery_service.services.shopify_import import (
    ShopifyClient,
    ShopifyImporter,
    UpsertResult,
    convert_shopify_order,
    normalize_gateway_payment,
    shopify_import_loop,
)
from tests.factories import create_order, ensure_courier

UTC = timezone.utc
NOW = datetime(2025, 2, 1, 9, 0, tzinfo=UTC)


def shopify_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": 5501,
        "name": "#1042",
        "created_at": "2025-01-31T18:30:00+02:00",
        "current_total_price": "450.00",
        "financial_status": "pending",
        "gateway": "Cash on Delivery (COD)",
        "note": "Ring twice",
        "cancelled_at": None,
        "shipping_address": {
            "name": "Mona Adel",
            "phone": "+201000000000",
            "address1": "12 Nile St",
            "city": "Giza",
        },
    }
    payload.update(overrides)
    return payload


@pytest.mark.parametrize(
    "gateway,financial,expected",
    [
        ("Paymob Accept", "pending", ("paymob", "paid")),
        ("valU installments", "pending", ("valu", "paid")),
        ("stripe", "authorized", ("paid", "paid")),
        ("Credit Card", "pending", ("paid", "paid")),
        ("manual", "paid", ("paid", "paid")),
        ("Cash on Delivery (COD)", "pending", ("cash", "cod")),
        (None, None, ("cash", "cod")),
    ],
)
def test_normalize_gateway_payment(gateway, financial, expected) -> None:
    payment = normalize_gateway_payment(gateway, financial)
    assert (payment.payment_method, payment.payment_status) == expected


def test_convert_shopify_order() -> None:
    row = convert_shopify_order(shopify_payload())
    assert row["shopify_order_id"] == "5501"
    assert row["order_number"] == "#1042"
    assert row["customer_name"] == "Mona Adel"
    assert row["mobile_number"] == "+201000000000"
    assert row["address"] == "12 Nile St, Giza"
    assert row["total_order_fees"] == 450.0
    assert row["status"] == "pending"
    assert row["payment_method"] == "cash"
    assert row["created_at"] == datetime(2025, 1, 31, 16, 30, tzinfo=UTC)


def test_convert_falls_back_for_names_and_totals() -> None:
    row = convert_shopify_order(
        shopify_payload(
            name=None,
            order_number=1042,
            current_total_price=None,
            total_price="99.5",
            shipping_address=None,
            customer={"first_name": "Omar", "last_name": "Samy", "phone": "0100"},
            cancelled_at="2025-02-01T10:00:00Z",
            gateway=None,
            payment_gateway_names=["", "paymob"],
        )
    )
    assert row["order_number"] == "1042"
    assert row["customer_name"] == "Omar Samy"
    assert row["mobile_number"] == "0100"
    assert row["address"] is None
    assert row["total_order_fees"] == 99.5
    assert row["status"] == "canceled"
    assert row["payment_method"] == "paymob"


@pytest.mark.asyncio
async def test_new_order_inserted_then_unchanged(async_session, change_feed, recorded_events) -> None:
    importer = ShopifyImporter(async_session, change_feed=change_feed)

    assert await importer.upsert(shopify_payload(), now=NOW) is UpsertResult.INSERTED
    order = await async_session.scalar(select(m.orders).where(m.orders.shopify_order_id == "5501"))
    assert order.status == "pending"
    assert order.assigned_courier_id is None
    assert [event.event_type for event in recorded_events] == [ChangeType.INSERT]

    assert await importer.upsert(shopify_payload(), now=NOW) is UpsertResult.UNCHANGED
    assert len(recorded_events) == 1


@pytest.mark.asyncio
async def test_order_without_id_is_skipped(async_session, change_feed) -> None:
    importer = ShopifyImporter(async_session, change_feed=change_feed)
    stats = await importer.import_orders([shopify_payload(id=None)], now=NOW)
    assert stats.fetched == 1
    assert stats.skipped == 1


@pytest.mark.asyncio
async def test_unassigned_order_takes_customer_updates(async_session, change_feed, recorded_events) -> None:
    importer = ShopifyImporter(async_session, change_feed=change_feed)
    await importer.upsert(shopify_payload(), now=NOW)

    later = datetime(2025, 2, 2, 9, 0, tzinfo=UTC)
    result = await importer.upsert(
        shopify_payload(
            shipping_address={"name": "Mona A.", "address1": "14 Nile St"},
            cancelled_at="2025-02-02T08:00:00Z",
        ),
        now=later,
    )
    assert result is UpsertResult.UPDATED
    order = await async_session.scalar(select(m.orders).where(m.orders.shopify_order_id == "5501"))
    assert order.customer_name == "Mona A."
    assert order.address == "14 Nile St"
    assert order.status == "canceled"
    assert order.updated_at == later
    assert recorded_events[-1].event_type is ChangeType.UPDATE
    assert recorded_events[-1].order_id == order.id


@pytest.mark.asyncio
async def test_assigned_order_only_gets_shopify_metadata(async_session, change_feed) -> None:
    courier = await ensure_courier(async_session)
    stamp = datetime(2025, 1, 31, 20, 0, tzinfo=UTC)
    order = await create_order(
        async_session,
        shopify_order_id="5501",
        order_number="#1042",
        customer_name="Edited by dispatcher",
        assigned_courier_id=courier.id,
        status="assigned",
        total_order_fees=450,
        payment_method="cash",
        payment_status="cod",
        created_at=stamp,
    )

    importer = ShopifyImporter(async_session, change_feed=change_feed)
    result = await importer.upsert(
        shopify_payload(
            financial_status="paid",
            gateway="paymob",
            cancelled_at="2025-02-01T08:00:00Z",
            shipping_address={"name": "Someone Else"},
        ),
        now=NOW,
    )

    assert result is UpsertResult.UPDATED
    await async_session.refresh(order)
    assert order.financial_status == "paid"
    assert order.payment_method == "paymob"
    assert order.status == "assigned"
    assert order.customer_name == "Edited by dispatcher"
    assert order.assigned_courier_id == courier.id
    assert order.updated_at.replace(tzinfo=UTC) == stamp


@pytest.mark.asyncio
async def test_courier_edits_and_manual_totals_are_kept(async_session, change_feed) -> None:
    courier = await ensure_courier(async_session)
    order = await create_order(
        async_session,
        shopify_order_id="5501",
        assigned_courier_id=courier.id,
        status="delivered",
        delivery_fee=30,
        total_order_fees=520,
        payment_method="cash",
        payment_status="cod",
    )

    importer = ShopifyImporter(async_session, change_feed=change_feed)
    await importer.upsert(shopify_payload(gateway="Paymob", financial_status="paid"), now=NOW)

    await async_session.refresh(order)
    assert order.total_order_fees == 520
    assert order.payment_method == "cash"
    assert order.payment_status == "cod"
    assert order.financial_status == "paid"
    assert order.status == "delivered"


class FakeResponse:
    def __init__(self, status: int, payload: Any = None, *, next_url: str | None = None) -> None:
        self.status = status
        self._payload = payload
        self.links = {"next": {"url": next_url}} if next_url else {}

    async def json(self) -> Any:
        return self._payload

    async def text(self) -> str:
        return "boom"

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class FakeHttpSession:
    def __init__(self, responses: dict[str, FakeResponse]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, Any]] = []

    def get(self, url: str, *, params=None, headers=None) -> FakeResponse:
        self.calls.append((url, params))
        return self.responses.get(url, FakeResponse(404))


def make_client(responses: dict[str, FakeResponse], **kwargs: Any) -> tuple[ShopifyClient, FakeHttpSession]:
    http = FakeHttpSession(responses)
    client = ShopifyClient("https://shop.example.com/", "token", session=http, **kwargs)
    return client, http


@pytest.mark.asyncio
async def test_client_follows_next_links() -> None:
    first = "https://shop.example.com/admin/api/2024-10/orders.json"
    second = first + "?page_info=abc"
    client, http = make_client(
        {
            first: FakeResponse(200, {"orders": [{"id": 1}]}, next_url=second),
            second: FakeResponse(200, {"orders": [{"id": 2}]}),
        }
    )
    async with client:
        orders = await client.fetch_orders(updated_at_min=NOW)

    assert [order["id"] for order in orders] == [1, 2]
    assert http.calls[0][1]["updated_at_min"] == "2025-02-01T09:00:00+00:00"
    assert http.calls[0][1]["status"] == "any"
    assert http.calls[1][1] is None


@pytest.mark.asyncio
async def test_client_falls_back_to_older_api_version() -> None:
    fallback = "https://shop.example.com/admin/api/2024-04/orders.json"
    client, http = make_client({fallback: FakeResponse(200, {"orders": [{"id": 7}]})})
    async with client:
        orders = await client.fetch_orders()
    assert orders == [{"id": 7}]
    assert [url for url, _ in http.calls][-1] == fallback


@pytest.mark.asyncio
async def test_client_errors() -> None:
    client, _ = make_client({})
    async with client:
        with pytest.raises(ImportSourceError) as missing:
            await client.fetch_orders()
    assert missing.value.status == 404

    url = "https://shop.example.com/admin/api/2024-10/orders.json"
    client, _ = make_client({url: FakeResponse(401)})
    async with client:
        with pytest.raises(ImportSourceError) as denied:
            await client.fetch_orders()
    assert denied.value.status == 401


@pytest.mark.asyncio
async def test_import_loop_runs_once(session_factory) -> None:
    url = "https://shop.example.com/admin/api/2024-10/orders.json"
    client, _ = make_client({url: FakeResponse(200, {"orders": [shopify_payload()]})})

    await shopify_import_loop(session_factory, client=client, iterations=1)

    async with session_factory() as session:
        order = await session.scalar(select(m.orders).where(m.orders.shopify_order_id == "5501"))
    assert order is not None
    assert order.order_number == "#1042"


@pytest.mark.asyncio
async def test_import_loop_survives_source_errors(session_factory) -> None:
    url = "https://shop.example.com/admin/api/2024-10/orders.json"
    client, http = make_client({url: FakeResponse(503)})
    await shopify_import_loop(session_factory, client=client, iterations=1)
    assert len(http.calls) == 1


@pytest.mark.asyncio
async def test_import_loop_disabled_without_credentials(session_factory) -> None:
    client = ShopifyClient("", "", session=FakeHttpSession({}))
    await shopify_import_loop(session_factory, client=client, iterations=1)
