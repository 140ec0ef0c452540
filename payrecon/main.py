import asyncio
import logging

from aiogram import Bot, Dispatcher

from payrecon.bot.handlers import admin_payments as admin_payments_handlers
from payrecon.bot.middlewares.correlation import CorrelationMiddleware
from payrecon.config import settings
from payrecon.db.session import dispose_engine
from payrecon.logging_config import setup_logging
from payrecon.services.notifications import aclose_bot, dispatcher as notification_dispatcher

try:
    # Optional: load .env in non-production environments
    from dotenv import load_dotenv  # type: ignore
    load_dotenv()
except ImportError:
    pass


async def main() -> None:
    setup_logging()

    token = settings.telegram_bot_token
    if not token:
        logging.error("TELEGRAM_BOT_TOKEN is not set. Put it in the .env file.")
        raise SystemExit(1)
    if not settings.telegram_admin_ids:
        logging.warning("TELEGRAM_ADMIN_IDS is empty; nobody can review payments")

    bot = Bot(token=token)
    dp = Dispatcher()

    # Correlation id middleware for observability
    corr = CorrelationMiddleware()
    dp.message.middleware(corr)
    dp.callback_query.middleware(corr)

    dp.include_router(admin_payments_handlers.router)

    logging.info("Starting Telegram bot polling ...")
    await bot.delete_webhook(drop_pending_updates=True)
    try:
        await dp.start_polling(bot)
    finally:
        await notification_dispatcher.drain()
        await notification_dispatcher.aclose()
        try:
            await aclose_bot()
        except Exception:
            logging.warning("closing notification bot failed", exc_info=True)
        await dispose_engine()
        await bot.session.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
