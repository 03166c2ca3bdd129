import asyncio
import sys
import logging
from aiogram import Bot, Dispatcher, BaseMiddleware
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import Message, CallbackQuery
from typing import Callable, Dict, Any, Awaitable

from config import settings
from db.connection import init_database, close_db
from db.users import get_suspension, ensure_interest_tags
from services.matchmaking import MatchmakingService

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ============ MIDDLEWARE ============
class SuspensionCheckMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[Message, Dict[str, Any]], Awaitable[Any]],
        event: Message | CallbackQuery,
        data: Dict[str, Any],
    ) -> Any:
        user_id = event.from_user.id
        suspension = await get_suspension(user_id)

        if suspension:
            if suspension['until']:
                until_text = f"Suspended until: {suspension['until']:%Y-%m-%d %H:%M}"
            else:
                until_text = "Suspension is permanent"

            msg = (
                f"🚫 Your account is suspended\n\n"
                f"Reason: {suspension['reason']}\n"
                f"{until_text}"
            )

            if isinstance(event, Message):
                await event.answer(msg)
            else:
                await event.answer(msg, show_alert=True)

            return

        return await handler(event, data)


async def main():
    # Validate config
    if not settings.BOT_TOKEN:
        logger.error("BOT_TOKEN not set")
        sys.exit(1)

    if not settings.ADMIN_ID:
        logger.error("ADMIN_ID not set")
        sys.exit(1)

    # Init database
    await init_database()
    await ensure_interest_tags(settings.INTEREST_TAGS)

    # Init bot
    bot = Bot(token=settings.BOT_TOKEN)
    matchmaking = MatchmakingService()
    dp = Dispatcher(storage=MemoryStorage(), matchmaking=matchmaking)

    # Middleware
    dp.message.middleware(SuspensionCheckMiddleware())
    dp.callback_query.middleware(SuspensionCheckMiddleware())

    # Routers
    from handlers.start import router as start_router
    from handlers.matchmaking import router as matchmaking_router
    from handlers.safety import router as safety_router
    from handlers.admin import router as admin_router
    from handlers.notifications import TelegramNotifier

    dp.include_router(start_router)
    dp.include_router(matchmaking_router)
    dp.include_router(safety_router)
    dp.include_router(admin_router)

    logger.info("All handlers registered")

    TelegramNotifier(bot).register(matchmaking.events)
    matchmaking.start()

    me = await bot.get_me()
    logger.info(f"Bot online: @{me.username}")

    try:
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        await matchmaking.stop()
        await close_db()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped")
