from __future__ import annotations

from aiohttp import ClientResponseError

from delivery_service.infra.notify import send_log

__all__ = ["poll_with_single_instance_guard"]


async def poll_with_single_instance_guard(
    dispatcher,
    bot,
    *,
    logs_chat_id: int | None = None,
) -> None:
    """Start polling; a 409 from Telegram means another copy of the bot owns the token."""

    try:
        await dispatcher.start_polling(bot)
    except ClientResponseError as error:
        if error.status == 409:
            await send_log(bot, "409 Conflict: another admin bot instance is polling, exiting", chat_id=logs_chat_id)
            raise SystemExit(0) from None
        raise
