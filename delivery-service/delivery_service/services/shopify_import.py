"""
Shopify order import.

Orders are pulled from the Shopify Admin REST API and upserted into
``orders`` keyed by ``shopify_order_id``.  Once a courier is assigned the
import only refreshes Shopify-side metadata (financial status, totals,
creation time); status, assignment and ``updated_at`` belong to the
courier workflow and are never touched.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

import aiohttp
from aiogram import Bot
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_service.config import settings
from delivery_service.db import models as m
from delivery_service.db.session import SessionLocal
from delivery_service.infra.notify import send_alert, send_log
from delivery_service.services.change_feed import ChangeFeed, ChangeType, OrderChangeEvent, feed
from delivery_service.services.errors import ImportSourceError, StorageError
from delivery_service.services.orders_service import order_row
from delivery_service.services.snapshots import parse_amount, parse_timestamp

__all__ = [
    "ImportedPayment",
    "UpsertResult",
    "ImportStats",
    "normalize_gateway_payment",
    "convert_shopify_order",
    "ShopifyClient",
    "ShopifyImporter",
    "run_import",
    "shopify_import_loop",
]

UTC = timezone.utc
logger = logging.getLogger("shopify_import")

IMPORTED_STATUS = "pending"
ORDERS_PAGE_LIMIT = 250
# Tried in order after the configured version answers 404
FALLBACK_API_VERSIONS: tuple[str, ...] = ("2024-07", "2024-04", "2024-01")
# Totals differing by more than this are treated as an admin edit
TOTAL_EDIT_TOLERANCE = 0.01

# Columns a courier owns once they touched the order
_COURIER_FIELDS: tuple[str, ...] = (
    "delivery_fee",
    "partial_paid_amount",
    "collected_by",
    "payment_sub_type",
    "internal_comment",
)
_CUSTOMER_FIELDS: tuple[str, ...] = (
    "order_number",
    "customer_name",
    "mobile_number",
    "address",
    "notes",
)


@dataclass(slots=True, frozen=True)
class ImportedPayment:
    payment_method: str
    payment_status: str


class UpsertResult(str, enum.Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


@dataclass(slots=True)
class ImportStats:
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, result: UpsertResult) -> None:
        if result is UpsertResult.INSERTED:
            self.inserted += 1
        elif result is UpsertResult.UPDATED:
            self.updated += 1
        elif result is UpsertResult.UNCHANGED:
            self.unchanged += 1
        else:
            self.skipped += 1

    def as_text(self) -> str:
        return (
            f"fetched={self.fetched} inserted={self.inserted} updated={self.updated} "
            f"unchanged={self.unchanged} skipped={self.skipped} failed={self.failed}"
        )


def normalize_gateway_payment(
    gateway: Optional[str],
    financial_status: Optional[str],
) -> ImportedPayment:
    """Map a Shopify gateway / financial status pair to our payment columns."""
    gateway_value = (gateway or "").lower()
    financial = (financial_status or "").lower()
    if "paymob" in gateway_value:
        return ImportedPayment("paymob", "paid")
    if "valu" in gateway_value:
        return ImportedPayment("valu", "paid")
    if "card" in gateway_value or "stripe" in gateway_value:
        return ImportedPayment("paid", "paid")
    if "paid" in financial:
        return ImportedPayment("paid", "paid")
    return ImportedPayment("cash", "cod")


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _customer_name(data: Mapping[str, Any]) -> str:
    for key in ("shipping_address", "billing_address"):
        name = _clean(_as_mapping(data.get(key)).get("name"))
        if name:
            return name
    customer = _as_mapping(data.get("customer"))
    parts = [_clean(customer.get("first_name")), _clean(customer.get("last_name"))]
    joined = " ".join(part for part in parts if part)
    return joined or "Unknown"


def _mobile_number(data: Mapping[str, Any]) -> Optional[str]:
    candidates = (
        _as_mapping(data.get("shipping_address")).get("phone"),
        _as_mapping(data.get("billing_address")).get("phone"),
        _as_mapping(data.get("customer")).get("phone"),
        data.get("phone"),
    )
    for candidate in candidates:
        phone = _clean(candidate)
        if phone:
            return phone
    return None


def _address(data: Mapping[str, Any]) -> Optional[str]:
    shipping = _as_mapping(data.get("shipping_address"))
    parts = [
        _clean(shipping.get(key))
        for key in ("address1", "address2", "city", "province")
    ]
    joined = ", ".join(part for part in parts if part)
    return joined or None


def _gateway(data: Mapping[str, Any]) -> Optional[str]:
    gateway = _clean(data.get("gateway"))
    if gateway:
        return gateway
    names = data.get("payment_gateway_names")
    if isinstance(names, (list, tuple)):
        for name in names:
            cleaned = _clean(name)
            if cleaned:
                return cleaned
    return None


def convert_shopify_order(data: Mapping[str, Any]) -> dict[str, Any]:
    """Column values for one Shopify order payload."""
    shopify_id = data.get("id")
    total = data.get("current_total_price")
    if total in (None, ""):
        total = data.get("total_price")
    payment = normalize_gateway_payment(_gateway(data), data.get("financial_status"))
    order_number = _clean(data.get("name")) or _clean(data.get("order_number")) or _clean(shopify_id)
    return {
        "shopify_order_id": _clean(shopify_id),
        "order_number": order_number or "",
        "customer_name": _customer_name(data),
        "mobile_number": _mobile_number(data),
        "address": _address(data),
        "notes": _clean(data.get("note")) or _clean(data.get("customer_note")),
        "total_order_fees": parse_amount(total),
        "financial_status": _clean(data.get("financial_status")),
        "payment_method": payment.payment_method,
        "payment_status": payment.payment_status,
        "status": m.OrderStatus.CANCELED.value if data.get("cancelled_at") else IMPORTED_STATUS,
        "created_at": parse_timestamp(data.get("created_at")),
    }


def _has_courier_edits(order: m.orders) -> bool:
    if any(getattr(order, name) for name in _COURIER_FIELDS):
        return True
    return bool(order.status) and order.status not in (IMPORTED_STATUS, m.OrderStatus.ASSIGNED.value)


def _differs(current: Any, value: Any) -> bool:
    if isinstance(current, datetime) or isinstance(value, datetime):
        # sqlite hands back naive datetimes
        return parse_timestamp(current) != parse_timestamp(value)
    if isinstance(current, float) or isinstance(value, float):
        return abs(parse_amount(current) - parse_amount(value)) > 1e-9
    return current != value


def _merged_total(existing: Optional[float], incoming: float) -> float:
    current = existing or 0.0
    if current > 0 and abs(current - incoming) > TOTAL_EDIT_TOLERANCE:
        return current
    return incoming


class ShopifyClient:
    """Thin aiohttp wrapper around ``GET /admin/api/{version}/orders.json``."""

    def __init__(
        self,
        store_url: str,
        access_token: str,
        *,
        api_version: str = "2024-10",
        session: aiohttp.ClientSession | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        store = store_url.strip().rstrip("/")
        if store.startswith("https://"):
            store = store[len("https://"):]
        elif store.startswith("http://"):
            store = store[len("http://"):]
        self.store = store
        self.access_token = access_token
        self.api_version = api_version
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @classmethod
    def from_settings(cls) -> "ShopifyClient":
        return cls(
            settings.shopify_store_url,
            settings.shopify_access_token,
            api_version=settings.shopify_api_version,
        )

    @property
    def configured(self) -> bool:
        return bool(self.store and self.access_token)

    async def __aenter__(self) -> "ShopifyClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def orders_url(self, api_version: str) -> str:
        return f"https://{self.store}/admin/api/{api_version}/orders.json"

    def _headers(self) -> dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

    async def _get_page(
        self,
        url: str,
        params: Optional[Mapping[str, Any]],
    ) -> tuple[int, list[dict[str, Any]], Optional[str]]:
        if self._session is None:
            raise RuntimeError("ShopifyClient used outside of 'async with'")
        try:
            async with self._session.get(url, params=params, headers=self._headers()) as resp:
                status = resp.status
                if status == 404:
                    return status, [], None
                if status >= 400:
                    body = await resp.text()
                    raise ImportSourceError(
                        f"shopify responded {status}: {body[:200]}", status=status
                    )
                payload = await resp.json()
                next_link = resp.links.get("next")
                next_url = str(next_link.get("url")) if next_link else None
        except aiohttp.ClientError as exc:
            raise ImportSourceError(f"shopify request failed: {exc}") from exc
        orders = payload.get("orders") if isinstance(payload, Mapping) else None
        return status, list(orders or []), next_url

    async def fetch_orders(
        self,
        *,
        updated_at_min: Optional[datetime] = None,
        limit: int = ORDERS_PAGE_LIMIT,
    ) -> list[dict[str, Any]]:
        """All orders (any status), following ``Link: rel="next"`` pages."""
        params: dict[str, Any] = {"limit": min(limit, ORDERS_PAGE_LIMIT), "status": "any"}
        if updated_at_min is not None:
            params["updated_at_min"] = updated_at_min.astimezone(UTC).isoformat()

        versions = (self.api_version,) + tuple(
            version for version in FALLBACK_API_VERSIONS if version != self.api_version
        )
        for version in versions:
            status, orders, next_url = await self._get_page(self.orders_url(version), params)
            if status == 404:
                logger.warning("shopify api version %s unavailable, trying next", version)
                continue
            while next_url:
                # page_info cursors carry the filters; extra params are rejected
                _, page, next_url = await self._get_page(next_url, None)
                orders.extend(page)
            logger.info("shopify fetched %s orders (api %s)", len(orders), version)
            return orders
        raise ImportSourceError("no supported shopify api version", status=404)


class ShopifyImporter:
    """Upserts converted Shopify orders and publishes the resulting changes."""

    def __init__(self, session: AsyncSession, *, change_feed: ChangeFeed | None = None):
        self.session = session
        self.change_feed = change_feed if change_feed is not None else feed

    async def _find(self, shopify_order_id: str) -> Optional[m.orders]:
        return await self.session.scalar(
            select(m.orders).where(m.orders.shopify_order_id == shopify_order_id).limit(1)
        )

    def _assigned_changes(self, order: m.orders, incoming: Mapping[str, Any]) -> dict[str, Any]:
        changes: dict[str, Any] = {
            "financial_status": incoming["financial_status"],
            "total_order_fees": _merged_total(order.total_order_fees, incoming["total_order_fees"]),
        }
        if incoming["created_at"] is not None:
            changes["created_at"] = incoming["created_at"]
        if not _has_courier_edits(order):
            changes["payment_method"] = incoming["payment_method"]
            changes["payment_status"] = incoming["payment_status"]
        return changes

    def _unassigned_changes(self, order: m.orders, incoming: Mapping[str, Any]) -> dict[str, Any]:
        changes = self._assigned_changes(order, incoming)
        for name in _CUSTOMER_FIELDS:
            changes[name] = incoming[name]
        if incoming["status"] == m.OrderStatus.CANCELED.value and not _has_courier_edits(order):
            changes["status"] = incoming["status"]
        return changes

    async def upsert(
        self,
        data: Mapping[str, Any],
        *,
        now: Optional[datetime] = None,
    ) -> UpsertResult:
        incoming = convert_shopify_order(data)
        shopify_id = incoming["shopify_order_id"]
        if not shopify_id:
            logger.warning("shopify order without id skipped: name=%r", data.get("name"))
            return UpsertResult.SKIPPED

        stamp = now or datetime.now(UTC)
        order = await self._find(shopify_id)
        if order is None:
            return await self._insert(incoming, stamp)

        if order.assigned_courier_id is not None:
            changes = self._assigned_changes(order, incoming)
        else:
            changes = self._unassigned_changes(order, incoming)
        changes = {
            key: value for key, value in changes.items() if _differs(getattr(order, key), value)
        }
        if not changes:
            return UpsertResult.UNCHANGED
        if order.assigned_courier_id is None:
            changes["updated_at"] = stamp

        for key, value in changes.items():
            setattr(order, key, value)
        await self._commit(shopify_id)
        logger.info(
            "shopify order updated: order=%s shopify=%s fields=%s",
            order.id,
            shopify_id,
            sorted(changes),
        )
        await self.change_feed.publish(
            OrderChangeEvent(event_type=ChangeType.UPDATE, row=order_row(order))
        )
        return UpsertResult.UPDATED

    async def _insert(self, incoming: Mapping[str, Any], now: datetime) -> UpsertResult:
        values = dict(incoming)
        if values["created_at"] is None:
            values["created_at"] = now
        values["updated_at"] = now
        order = m.orders(**values)
        self.session.add(order)
        await self._commit(values["shopify_order_id"])
        logger.info(
            "shopify order imported: order=%s shopify=%s", order.id, values["shopify_order_id"]
        )
        await self.change_feed.publish(
            OrderChangeEvent(event_type=ChangeType.INSERT, row=order_row(order))
        )
        return UpsertResult.INSERTED

    async def _commit(self, shopify_id: str) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"shopify order {shopify_id} rejected") from exc

    async def import_orders(
        self,
        payloads: Iterable[Mapping[str, Any]],
        *,
        now: Optional[datetime] = None,
    ) -> ImportStats:
        stats = ImportStats()
        for payload in payloads:
            stats.fetched += 1
            try:
                stats.record(await self.upsert(payload, now=now))
            except StorageError as exc:
                stats.failed += 1
                logger.error("shopify upsert failed: id=%s error=%s", payload.get("id"), exc)
        return stats


async def run_import(
    client: ShopifyClient,
    session_factory=SessionLocal,
    *,
    updated_at_min: Optional[datetime] = None,
    change_feed: ChangeFeed | None = None,
) -> ImportStats:
    """Fetch from Shopify and upsert everything in one session."""
    payloads = await client.fetch_orders(updated_at_min=updated_at_min)
    async with session_factory() as session:
        importer = ShopifyImporter(session, change_feed=change_feed)
        return await importer.import_orders(payloads)


async def shopify_import_loop(
    session_factory=SessionLocal,
    *,
    client: ShopifyClient | None = None,
    bot: Bot | None = None,
    interval_seconds: int | None = None,
    iterations: int | None = None,
) -> None:
    """
    Periodic Shopify import.

    Args:
        session_factory: DB session factory
        client: Shopify client (built from settings when omitted)
        bot: used for alerts to the alerts channel
        interval_seconds: pause between runs (default from settings)
        iterations: number of runs (None = forever)
    """
    client = client or ShopifyClient.from_settings()
    if not client.configured:
        logger.warning("Shopify import disabled: store url or access token missing")
        return

    sleep_for = max(60, interval_seconds or settings.import_interval_seconds)
    loops_done = 0
    last_run: Optional[datetime] = None
    logger.info("Shopify import started, interval=%ss", sleep_for)

    async with client:
        while True:
            started = datetime.now(UTC)
            try:
                stats = await run_import(client, session_factory, updated_at_min=last_run)
                last_run = started
                if stats.inserted or stats.updated or stats.failed:
                    logger.info("Shopify import: %s", stats.as_text())
                    await send_log(bot, f"shopify import: {stats.as_text()}")
            except ImportSourceError as exc:
                logger.warning("Shopify import source error: %s", exc)
                await send_alert(bot, "shopify import: source unavailable", exc=exc)
            except Exception as exc:
                logger.exception("Shopify import error: %s", exc)
                await send_alert(bot, "shopify import failed", exc=exc)

            loops_done += 1
            if iterations is not None and loops_done >= iterations:
                break

            await asyncio.sleep(sleep_for)
