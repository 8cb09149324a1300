"""Telegram channel notifications: operational logs, alerts and reports.

Logs and alerts are plain text and get HTML-escaped.  Reports are rendered
by the admin bot texts as HTML already and are sent as-is, split on line
boundaries when they do not fit into one message.  Delivery problems are
logged and never raised to the caller.
"""
from __future__ import annotations

import enum
import html
import logging
import traceback
from typing import Any, Iterator

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest

from delivery_service.config import settings

__all__ = ["NotifyChannel", "send_log", "send_alert", "send_report"]

_MAX_MESSAGE_LEN = 4096
_TRACEBACK_TAIL = 3
_logger = logging.getLogger(__name__)


class NotifyChannel(str, enum.Enum):
    LOGS = "logs"
    ALERTS = "alerts"
    REPORTS = "reports"

    @property
    def chat_id(self) -> int | None:
        if self is NotifyChannel.LOGS:
            return settings.logs_channel_id
        if self is NotifyChannel.ALERTS:
            return settings.alerts_channel_id
        return settings.reports_channel_id


def _trim_message(text: str) -> str:
    text = (text or "").strip()
    if len(text) <= _MAX_MESSAGE_LEN:
        return text
    return text[: _MAX_MESSAGE_LEN - 3] + "..."


def _split_message(text: str) -> Iterator[str]:
    """Yield chunks under the Telegram limit, breaking between lines."""
    chunk: list[str] = []
    size = 0
    for line in (text or "").strip().splitlines():
        line = _trim_message(line)
        if chunk and size + len(line) + 1 > _MAX_MESSAGE_LEN:
            yield "\n".join(chunk)
            chunk, size = [], 0
        chunk.append(line)
        size += len(line) + 1
    if chunk:
        yield "\n".join(chunk)


def _compose_alert(text: str, exc: BaseException | None) -> str:
    parts: list[str] = []
    if text:
        parts.append(text.strip())
    if exc is not None:
        parts.append(f"{type(exc).__name__}: {exc}")
        frames = traceback.format_exception(exc.__class__, exc, exc.__traceback__)
        cleaned = [line.strip() for line in frames if line.strip()]
        if cleaned:
            parts.append("Traceback:")
            parts.extend(cleaned[-_TRACEBACK_TAIL:])
    return _trim_message("\n".join(parts))


async def _deliver(bot: Bot | None, chat_id: int | None, text: str, **kwargs: Any) -> None:
    if bot is None or chat_id is None or not text:
        return
    try:
        await bot.send_message(chat_id, text, **kwargs)
    except TelegramBadRequest as exc:
        _logger.warning("notify: chat_id=%s rejected message: %s", chat_id, exc)
    except Exception:
        _logger.warning("notify: delivery to chat_id=%s failed", chat_id, exc_info=True)


def _target(channel: NotifyChannel, chat_id: int | None) -> int | None:
    return chat_id if chat_id is not None else channel.chat_id


async def send_log(
    bot: Bot | None,
    text: str,
    *,
    chat_id: int | None = None,
    **kwargs: Any,
) -> None:
    """Send *text* to the logs channel, if configured."""
    payload = html.escape(_trim_message(text), quote=False)
    await _deliver(bot, _target(NotifyChannel.LOGS, chat_id), payload, **kwargs)


async def send_alert(
    bot: Bot | None,
    text: str,
    *,
    chat_id: int | None = None,
    exc: BaseException | None = None,
    **kwargs: Any,
) -> None:
    """Send an alert, with the last traceback lines when *exc* is given."""
    payload = html.escape(_compose_alert(text, exc), quote=False)
    await _deliver(bot, _target(NotifyChannel.ALERTS, chat_id), payload, **kwargs)


async def send_report(
    bot: Bot | None,
    html_text: str,
    *,
    chat_id: int | None = None,
    **kwargs: Any,
) -> None:
    """Post an HTML reconciliation report to the reports channel."""
    target = _target(NotifyChannel.REPORTS, chat_id)
    for chunk in _split_message(html_text):
        await _deliver(bot, target, chunk, **kwargs)
