from __future__ import annotations

import html
import logging
from typing import Optional

from aiogram import Dispatcher
from aiogram.types import ErrorEvent, Message, TelegramObject, Update

from delivery_service.infra.notify import send_alert, send_log
from delivery_service.services.errors import DeliveryServiceError, UpdateValidationError

__all__ = ["setup_error_middleware", "describe_business_error"]

logger = logging.getLogger(__name__)


def describe_business_error(exc: DeliveryServiceError) -> str:
    """Short text shown to the admin instead of an alert."""
    if isinstance(exc, UpdateValidationError):
        return f"⚠️ {html.escape(exc.field)}: {html.escape(exc.message)}"
    return f"⚠️ {html.escape(str(exc))}"


class _AlertingErrorHandler:
    def __init__(
        self,
        *,
        bot,
        bot_label: str,
        logs_chat_id: int | None,
        alerts_chat_id: int | None,
    ) -> None:
        self._bot = bot
        self._bot_label = bot_label
        self._logs_chat_id = logs_chat_id
        self._alerts_chat_id = alerts_chat_id

    async def __call__(self, event: ErrorEvent) -> bool:
        update = event.update
        exception = getattr(event, "exception", None)

        if isinstance(exception, DeliveryServiceError):
            # Business rule violations go back to the admin who caused them
            logger.info("%s: %s", self._bot_label, exception)
            message = _extract_message(update)
            if message is not None:
                await message.answer(describe_business_error(exception))
            return True

        update_type = _detect_update_type(update)
        user_id = _extract_user_id(update)
        lines = [f"❗ {self._bot_label} error", "See logs for details.", f"Update: {update_type}"]
        if user_id is not None:
            lines.append(f"User: {user_id}")
        text = "\n".join(lines)
        if exception is not None:
            logger.error(
                "Unhandled exception in %s",
                self._bot_label,
                exc_info=(type(exception), exception, exception.__traceback__),
            )
        else:
            logger.error("Unhandled error in %s without exception object", self._bot_label)
        await send_log(self._bot, text, chat_id=self._logs_chat_id)
        await send_alert(self._bot, text, chat_id=self._alerts_chat_id, exc=exception)
        return True


def setup_error_middleware(
    dp: Dispatcher,
    *,
    bot,
    bot_label: str,
    logs_chat_id: int | None,
    alerts_chat_id: int | None,
) -> None:
    """Attach the unified error handler to *dp*."""

    handler = _AlertingErrorHandler(
        bot=bot,
        bot_label=bot_label,
        logs_chat_id=logs_chat_id,
        alerts_chat_id=alerts_chat_id,
    )
    dp.errors.register(handler.__call__)


def _detect_update_type(update: Update | TelegramObject | None) -> str:
    if update is None:
        return "unknown"
    update_type = getattr(update, "event_type", None)
    if update_type:
        return str(update_type)
    return type(update).__name__


def _extract_message(update: Update | TelegramObject | None) -> Optional[Message]:
    if isinstance(update, Message):
        return update
    message = getattr(update, "message", None)
    if isinstance(message, Message):
        return message
    callback = getattr(update, "callback_query", None)
    callback_message = getattr(callback, "message", None)
    return callback_message if isinstance(callback_message, Message) else None


def _extract_user_id(update: Update | TelegramObject | None) -> Optional[int]:
    if update is None:
        return None
    direct = getattr(update, "from_user", None)
    if direct is not None:
        return getattr(direct, "id", None)
    for attr in ("message", "edited_message", "callback_query"):
        candidate = getattr(update, attr, None)
        user = getattr(candidate, "from_user", None)
        if user is not None and getattr(user, "id", None) is not None:
            return user.id
    return None
