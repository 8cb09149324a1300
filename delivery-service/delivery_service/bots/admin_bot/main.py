# delivery_service/bots/admin_bot/main.py
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import suppress

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from delivery_service.bots.common import poll_with_single_instance_guard, setup_error_middleware
from delivery_service.config import settings
from delivery_service.infra.logging_utils import setup_logging, utcnow_iso
from delivery_service.infra.notify import send_alert, send_log
from delivery_service.services.shopify_import import shopify_import_loop

from .handlers import router

logger = logging.getLogger(__name__)


async def main() -> int:
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    if not settings.admin_bot_token:
        logger.error("ADMIN_BOT_TOKEN is not set")
        return 1

    bot = Bot(
        settings.admin_bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    dp = Dispatcher()
    dp.include_router(router)
    setup_error_middleware(
        dp,
        bot=bot,
        bot_label="admin_bot",
        logs_chat_id=settings.logs_channel_id,
        alerts_chat_id=settings.alerts_channel_id,
    )

    import_task = asyncio.create_task(
        shopify_import_loop(bot=bot, interval_seconds=settings.import_interval_seconds),
        name="shopify_import",
    )

    logger.info("Admin bot starting, admins=%s", len(settings.admin_tg_ids))
    await send_log(bot, f"admin_bot started at {utcnow_iso()}")

    exit_code = 0
    try:
        await poll_with_single_instance_guard(dp, bot, logs_chat_id=settings.logs_channel_id)
    except SystemExit as conflict_exit:
        exit_code = int(conflict_exit.code or 0)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    except Exception as exc:
        logger.exception("Admin bot polling failed: %s", exc)
        message = f"❗ admin_bot polling failed: {type(exc).__name__}: {exc}"
        await send_alert(bot, message, exc=exc)
        exit_code = 1
    finally:
        import_task.cancel()
        with suppress(asyncio.CancelledError):
            await import_task
        await bot.session.close()

    return exit_code


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
