from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from delivery_service.bots.admin_bot import texts
from delivery_service.bots.admin_bot.filters import AdminFilter
from delivery_service.bots.admin_bot.handlers import (
    parse_fee_args,
    parse_hold_args,
    parse_holds_args,
    parse_status_args,
    parse_summary_args,
)
from delivery_service.bots.common.error_middleware import _AlertingErrorHandler, describe_business_error
from delivery_service.db import models as m
from delivery_service.infra.notify import _compose_alert, send_alert, send_report
from delivery_service.services.errors import OrderNotFound, UpdateValidationError
from delivery_service.services.hold_fees import HoldDateFilter, summarize_holds
from delivery_service.services.metrics import MetricsFilters, compute_metrics
from delivery_service.services.time_service import RangeKind
from tests.factories import snapshot

UTC = timezone.utc


def test_parse_summary_defaults() -> None:
    request = parse_summary_args(None)
    assert request.range_kind is RangeKind.TODAY
    assert request.courier_id is None
    assert not request.include_held_orders
    assert not request.publish


def test_parse_summary_tokens() -> None:
    request = parse_summary_args("last7days 12 held report")
    assert request.range_kind is RangeKind.LAST_7_DAYS
    assert request.courier_id == 12
    assert request.include_held_orders
    assert request.publish


def test_parse_summary_custom_range() -> None:
    request = parse_summary_args("2025-01-01..2025-01-31 all")
    assert request.range_kind is RangeKind.CUSTOM
    assert request.custom_start == date(2025, 1, 1)
    assert request.custom_end == date(2025, 1, 31)
    assert request.courier_id is None

    single = parse_summary_args("2025-03-02")
    assert single.custom_start == date(2025, 3, 2)
    assert single.custom_end is None


@pytest.mark.parametrize("args", ["someday", "2025-02-10..2025-02-01", "2025-13-01"])
def test_parse_summary_rejects_garbage(args: str) -> None:
    with pytest.raises(ValueError):
        parse_summary_args(args)


def test_parse_hold_args() -> None:
    assert parse_hold_args("15 120.5 waiting for refund") == (15, 120.5, "waiting for refund")
    assert parse_hold_args("15 1200") == (15, 1200.0, None)
    with pytest.raises(ValueError):
        parse_hold_args("15")
    with pytest.raises(ValueError):
        parse_hold_args("abc 10")


def test_parse_fee_args() -> None:
    today = date(2025, 4, 10)
    assert parse_fee_args("150", today=today) == (today, 150.0)
    assert parse_fee_args("80.5 2025-04-01", today=today) == (date(2025, 4, 1), 80.5)
    assert parse_fee_args("clear", today=today) == (today, None)
    for bad in (None, "-5", "abc", "10 2025-04-01 extra"):
        with pytest.raises(ValueError):
            parse_fee_args(bad, today=today)


def test_parse_holds_args() -> None:
    assert parse_holds_args(None) == (HoldDateFilter.TODAY, None, None)
    assert parse_holds_args("last7days 4") == (HoldDateFilter.LAST_7_DAYS, None, 4)
    assert parse_holds_args("ALL") == (HoldDateFilter.ALL, None, None)
    assert parse_holds_args("2025-03-02 7") == (HoldDateFilter.CUSTOM, date(2025, 3, 2), 7)
    # a lone number is a courier on today's holds
    assert parse_holds_args("12") == (HoldDateFilter.TODAY, None, 12)


@pytest.mark.parametrize("args", ["custom", "fortnight", "today courier", "today 1 2"])
def test_parse_holds_rejects_garbage(args: str) -> None:
    with pytest.raises(ValueError):
        parse_holds_args(args)


def test_parse_status_args() -> None:
    order_id, update = parse_status_args("42 delivered 30 courier on_hand")
    assert order_id == 42
    assert update.status is m.OrderStatus.DELIVERED
    assert update.delivery_fee == 30
    assert update.collected_by == "courier"
    assert update.payment_sub_type == "on_hand"
    assert update.partial_paid_amount == 0

    order_id, update = parse_status_args("7 Partial 20 paymob paid=150")
    assert order_id == 7
    assert update.status is m.OrderStatus.PARTIAL
    assert update.partial_paid_amount == 150
    assert update.collected_by == "paymob"
    assert update.payment_sub_type is None

    _, bare = parse_status_args("7 return")
    assert bare.delivery_fee == 0
    assert bare.collected_by is None


@pytest.mark.parametrize(
    "args",
    [None, "42", "abc delivered", "42 lost", "42 delivered free", "42 delivered 10 x y z", "42 delivered paid=-5"],
)
def test_parse_status_rejects_garbage(args) -> None:
    with pytest.raises(ValueError):
        parse_status_args(args)


def test_status_updated_text() -> None:
    order = snapshot(
        order_number="#1001",
        status="delivered",
        delivery_fee=1250,
        collected_by="courier",
        payment_sub_type="on_hand",
    )
    assert texts.status_updated_text(order) == (
        "✅ Order #1001: Delivered\n"
        "Delivery fee: 1,250.00\n"
        "Collected by: courier / on_hand"
    )
    legacy = texts.status_updated_text(snapshot(order_number="<b>9</b>", status="lost"))
    assert legacy == "✅ Order #&lt;b&gt;9&lt;/b&gt;: lost"


def test_metrics_text_rounds_only_for_display() -> None:
    orders = [
        snapshot(id=1, total_order_fees=100.333, payment_method="cash"),
        snapshot(id=2, total_order_fees=50.333, payment_method="paymob"),
    ]
    metrics = compute_metrics(orders, MetricsFilters())
    text = texts.metrics_text(metrics, range_label="today", courier_label="all couriers")

    assert "Orders: 2 | value 150.67" in text
    assert "Cash: 1 | 100.33" in text
    assert "Paymob: 1 | 50.33" in text
    assert "Total COD: 0 | 0.00" in text
    assert "Assigned" not in text
    assert "Courier fee" not in text

    with_fee = texts.metrics_text(
        metrics, range_label="today", courier_label="all couriers", courier_fee=50
    )
    assert "Courier fee: 50.00" in with_fee
    assert f"After courier fee: {texts.fmt_money(metrics.adjusted_total - 50)}" in with_fee


def test_hold_summary_text() -> None:
    empty = texts.hold_summary_text(summarize_holds([]), range_label="today")
    assert "No hold activity." in empty

    held = snapshot(
        id=3,
        order_number="1003",
        hold_fee=40,
        hold_fee_created_by="Admin <b>",
        hold_fee_added_at=datetime(2025, 1, 5, 9, 30, tzinfo=UTC),
    )
    text = texts.hold_summary_text(summarize_holds([held]), range_label="today")
    assert "Active: 1 | 40.00" in text
    assert "#1003 40.00 (Admin &lt;b&gt;, 2025-01-05 09:30)" in text


def test_describe_business_error() -> None:
    assert describe_business_error(UpdateValidationError("collected_by", "pick a collector")) == (
        "⚠️ collected_by: pick a collector"
    )
    assert describe_business_error(OrderNotFound(9)) == "⚠️ order#9 not found"
    assert describe_business_error(UpdateValidationError("status", "expected <status>")) == (
        "⚠️ status: expected &lt;status&gt;"
    )


def test_usage_texts_are_html_safe() -> None:
    for usage in (texts.STATUS_USAGE, texts.HOLD_USAGE, texts.UNHOLD_USAGE, texts.FEE_USAGE):
        assert "<" not in usage
    assert "&lt;order_id&gt;" in texts.STATUS_USAGE


class _User:
    def __init__(self, user_id: int) -> None:
        self.id = user_id


class _Event:
    def __init__(self, user_id: int | None) -> None:
        self.from_user = _User(user_id) if user_id is not None else None


@pytest.mark.asyncio
async def test_admin_filter() -> None:
    admin_filter = AdminFilter(admin_ids=[1, 2])
    assert await admin_filter(_Event(1))
    assert not await admin_filter(_Event(3))
    assert not await admin_filter(_Event(None))


def test_compose_alert_keeps_traceback_tail() -> None:
    try:
        raise RuntimeError("db down")
    except RuntimeError as exc:
        text = _compose_alert("shopify import failed", exc)
    assert text.startswith("shopify import failed\nRuntimeError: db down")
    assert "Traceback:" in text
    assert len(_compose_alert("x" * 5000, None)) == 4096


class _Bot:
    def __init__(self) -> None:
        self.sent: list[tuple[int, str]] = []

    async def send_message(self, chat_id, text, **kwargs):
        self.sent.append((chat_id, text))


@pytest.mark.asyncio
async def test_send_alert_escapes_html() -> None:
    bot = _Bot()
    await send_alert(bot, "<b>bad</b>", chat_id=77)
    await send_alert(None, "ignored", chat_id=77)
    assert bot.sent == [(77, "&lt;b&gt;bad&lt;/b&gt;")]


@pytest.mark.asyncio
async def test_send_report_keeps_html_and_splits_long_reports() -> None:
    bot = _Bot()
    await send_report(bot, "<b>Summary</b>\nCash: 1 | 10.00", chat_id=5)
    assert bot.sent == [(5, "<b>Summary</b>\nCash: 1 | 10.00")]

    bot = _Bot()
    lines = [f"line {index:04d} " + "x" * 90 for index in range(100)]
    await send_report(bot, "\n".join(lines), chat_id=5)
    assert len(bot.sent) > 1
    assert all(len(text) <= 4096 for _, text in bot.sent)
    assert "\n".join(text for _, text in bot.sent).splitlines() == lines


class _ErrorEvent:
    def __init__(self, exception: BaseException) -> None:
        self.update = None
        self.exception = exception


@pytest.mark.asyncio
async def test_error_handler_routes_failures_to_channels() -> None:
    bot = _Bot()
    handler = _AlertingErrorHandler(bot=bot, bot_label="admin_bot", logs_chat_id=1, alerts_chat_id=2)

    assert await handler(_ErrorEvent(RuntimeError("boom")))
    assert [chat for chat, _ in bot.sent] == [1, 2]
    assert bot.sent[0][1].startswith("❗ admin_bot error")
    assert "RuntimeError: boom" in bot.sent[1][1]

    bot.sent.clear()
    assert await handler(_ErrorEvent(OrderNotFound(3)))
    assert bot.sent == []
