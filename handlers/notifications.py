"""
Telegram delivery of engine events. Failures are logged; the engine never sees them.
"""
import logging

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from services.events import EventBus, MatchEnded, MatchFound, WaitTimedOut
from handlers.matchmaking import chat_controls

logger = logging.getLogger(__name__)


class TelegramNotifier:
    def __init__(self, bot: Bot):
        self.bot = bot

    def register(self, events: EventBus):
        events.subscribe(MatchFound, self.on_match_found)
        events.subscribe(WaitTimedOut, self.on_wait_timed_out)
        events.subscribe(MatchEnded, self.on_match_ended)

    async def _send(self, user_id: int, text: str, **kwargs):
        try:
            await self.bot.send_message(user_id, text, **kwargs)
        except TelegramAPIError as e:
            logger.warning("Notification to %s failed: %s", user_id, e)

    async def on_match_found(self, event: MatchFound):
        for user_id in event.participants:
            await self._send(
                user_id,
                f"✅ Match found (#{event.match_id})\n\n"
                "You have been connected with someone ready to talk.",
                reply_markup=chat_controls()
            )

    async def on_wait_timed_out(self, event: WaitTimedOut):
        await self._send(
            event.user_id,
            "⌛ No match found yet.\n\n"
            "You've been taken out of the queue. Try /find again in a little while."
        )

    async def on_match_ended(self, event: MatchEnded):
        for user_id in event.participants:
            await self._send(
                user_id,
                f"👋 Chat #{event.match_id} has ended. Use /find to talk to someone new."
            )
