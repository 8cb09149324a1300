"""Short-lived view state shared by summary surfaces.

Per-day courier fee notes, the set of orders a courier changed locally and
the last dashboard filters live in a :class:`ViewStateStore` with a TTL.
Callers get the store injected; nothing here is module-global.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Iterable, Optional

__all__ = [
    "ViewStateStore",
    "CourierFeeBook",
    "ModifiedOrders",
    "DashboardState",
    "DashboardStateStore",
]

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class ViewStateStore:
    """In-memory key/value store whose entries go stale after ``ttl_seconds``."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._items: dict[str, tuple[float, Any]] = {}

    @classmethod
    def from_hours(cls, hours: float, **kwargs: Any) -> "ViewStateStore":
        return cls(ttl_seconds=hours * 3600, **kwargs)

    def _is_stale(self, saved_at: float) -> bool:
        return self._clock() - saved_at >= self._ttl

    def get(self, key: str, default: Any = None) -> Any:
        item = self._items.get(key)
        if item is None:
            return default
        saved_at, value = item
        if self._is_stale(saved_at):
            del self._items[key]
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        self._items[key] = (self._clock(), value)

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        self.purge()
        return [key for key in self._items if key.startswith(prefix)]

    def purge(self) -> int:
        stale = [key for key, (saved_at, _) in self._items.items() if self._is_stale(saved_at)]
        for key in stale:
            del self._items[key]
        return len(stale)


class CourierFeeBook:
    """Flat courier fee noted by an admin for a given day."""

    PREFIX = "courier_fee:"

    def __init__(self, store: ViewStateStore) -> None:
        self._store = store

    def _key(self, courier_id: int | None, day: date) -> str:
        owner = "all" if courier_id is None else str(courier_id)
        return f"{self.PREFIX}{owner}:{day.isoformat()}"

    def get(self, courier_id: int | None, day: date) -> Optional[float]:
        return self._store.get(self._key(courier_id, day))

    def set(self, courier_id: int | None, day: date, amount: float) -> None:
        self._store.set(self._key(courier_id, day), float(amount))

    def remove(self, courier_id: int | None, day: date) -> None:
        self._store.delete(self._key(courier_id, day))


class ModifiedOrders:
    """Ids of orders a courier has changed from their own session."""

    KEY = "modified_by_courier"

    def __init__(self, store: ViewStateStore) -> None:
        self._store = store

    def ids(self) -> frozenset[int]:
        return frozenset(self._store.get(self.KEY, ()))

    def add(self, order_id: int) -> None:
        self._store.set(self.KEY, tuple(sorted(self.ids() | {order_id})))

    def discard(self, order_id: int) -> None:
        self._store.set(self.KEY, tuple(sorted(self.ids() - {order_id})))

    def __contains__(self, order_id: object) -> bool:
        return order_id in self.ids()

    def clear(self) -> None:
        self._store.delete(self.KEY)


@dataclass(slots=True, frozen=True)
class DashboardState:
    courier_id: Optional[int] = None
    range_kind: str = "today"
    custom_start: Optional[date] = None
    custom_end: Optional[date] = None
    include_held_orders: bool = False
    expanded_sections: tuple[str, ...] = ()


class DashboardStateStore:
    """Last dashboard filters per surface (``admin-summary``, ``courier-orders``...)."""

    PREFIX = "dashboard_state:"

    def __init__(self, store: ViewStateStore) -> None:
        self._store = store

    def load(self, surface: str) -> Optional[DashboardState]:
        return self._store.get(f"{self.PREFIX}{surface}")

    def save(self, surface: str, state: DashboardState) -> None:
        self._store.set(f"{self.PREFIX}{surface}", state)

    def surfaces(self) -> Iterable[str]:
        return [key[len(self.PREFIX):] for key in self._store.keys(self.PREFIX)]
