"""Keeps an accounting summary current.

Any trigger (first load, filter change, change-feed event) re-fetches the
orders and recomputes :class:`~delivery_service.services.metrics.Metrics`.
Only the newest request may publish its result; a fetch that was overtaken
by a later one is dropped.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Awaitable, Callable, Optional

from delivery_service.services.change_feed import ChangeFeed, EchoSuppressor, OrderChangeEvent
from delivery_service.services.metrics import Metrics, MetricsFilters, compute_metrics
from delivery_service.services.orders_service import OrderFilter
from delivery_service.services.snapshots import OrderSnapshot
from delivery_service.services.time_service import RangeKind, date_range_for
from delivery_service.services.view_state import CourierFeeBook, DashboardState, DashboardStateStore

__all__ = ["SummaryRefresher"]

logger = logging.getLogger("reconciliation")

Fetcher = Callable[[OrderFilter], Awaitable[list[OrderSnapshot]]]


class SummaryRefresher:
    def __init__(
        self,
        fetch: Fetcher,
        *,
        surface: str = "admin-summary",
        dashboard_states: Optional[DashboardStateStore] = None,
        courier_fees: Optional[CourierFeeBook] = None,
        suppressor: Optional[EchoSuppressor] = None,
    ) -> None:
        self._fetch = fetch
        self._surface = surface
        self._dashboard_states = dashboard_states
        self._courier_fees = courier_fees
        self._suppressor = suppressor
        self._generation = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.latest: Optional[Metrics] = None
        self.state = self._restore_state()

    def _restore_state(self) -> DashboardState:
        if self._dashboard_states is None:
            return DashboardState()
        saved = self._dashboard_states.load(self._surface)
        if saved is None:
            return DashboardState()
        logger.debug("dashboard state restored: surface=%s state=%s", self._surface, saved)
        return saved

    def _persist_state(self) -> None:
        if self._dashboard_states is not None:
            self._dashboard_states.save(self._surface, self.state)

    def _order_filter(self) -> OrderFilter:
        kind = RangeKind(self.state.range_kind)
        date_range = date_range_for(
            kind,
            custom_start=self.state.custom_start,
            custom_end=self.state.custom_end,
        )
        return OrderFilter(
            courier_id=self.state.courier_id,
            date_range=date_range,
            # Freshly imported, unassigned orders are not part of any reconciliation
            assigned_only=True,
            match_updated=self.state.courier_id is not None,
        )

    async def refresh(self) -> Optional[Metrics]:
        """Fetch and recompute; returns None when a newer refresh overtook this one."""
        self._generation += 1
        generation = self._generation
        orders = await self._fetch(self._order_filter())
        if generation != self._generation:
            logger.debug("summary refresh superseded: generation=%s latest=%s", generation, self._generation)
            return None
        self.latest = compute_metrics(
            orders,
            MetricsFilters(
                courier_id=self.state.courier_id,
                include_held_orders=self.state.include_held_orders,
            ),
        )
        return self.latest

    async def select_courier(self, courier_id: Optional[int]) -> Optional[Metrics]:
        self.state = replace(self.state, courier_id=courier_id)
        self._persist_state()
        return await self.refresh()

    async def select_range(
        self,
        kind: RangeKind | str,
        *,
        custom_start: Optional[date] = None,
        custom_end: Optional[date] = None,
    ) -> Optional[Metrics]:
        kind = RangeKind(kind)
        if kind is RangeKind.CUSTOM and custom_start is None:
            raise ValueError("custom range requires custom_start")
        self.state = replace(
            self.state,
            range_kind=kind.value,
            custom_start=custom_start,
            custom_end=custom_end,
        )
        self._persist_state()
        return await self.refresh()

    async def set_state(self, state: DashboardState) -> Optional[Metrics]:
        """Replace all view settings at once and refresh a single time."""
        kind = RangeKind(state.range_kind)
        if kind is RangeKind.CUSTOM and state.custom_start is None:
            raise ValueError("custom range requires custom_start")
        self.state = state
        self._persist_state()
        return await self.refresh()

    async def set_include_held_orders(self, include: bool) -> Optional[Metrics]:
        self.state = replace(self.state, include_held_orders=include)
        self._persist_state()
        return await self.refresh()

    def courier_fee_for(self, day: date) -> Optional[float]:
        if self._courier_fees is None:
            return None
        return self._courier_fees.get(self.state.courier_id, day)

    async def on_change(self, event: OrderChangeEvent) -> None:
        if self._suppressor is not None and self._suppressor.should_suppress(event):
            return
        await self.refresh()

    def attach(self, change_feed: ChangeFeed) -> None:
        self.detach()
        self._unsubscribe = change_feed.subscribe(self.on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
