from __future__ import annotations

from typing import Any, Iterable, Optional

from aiogram.filters import BaseFilter
from aiogram.types import CallbackQuery, Message

from delivery_service.config import settings


class AdminFilter(BaseFilter):
    """Lets through only Telegram users listed in ``ADMIN_TG_IDS``."""

    def __init__(self, admin_ids: Optional[Iterable[int]] = None) -> None:
        self._admin_ids = frozenset(admin_ids if admin_ids is not None else settings.admin_tg_ids)

    async def __call__(self, event: Message | CallbackQuery, *args: Any, **kwargs: Any) -> bool:
        user = getattr(event, "from_user", None)
        if user is None:
            return False
        return user.id in self._admin_ids
