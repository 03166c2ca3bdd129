"""
Matchmaking handlers - NO SQL, uses db modules and services
"""
from aiogram import Router, F
from aiogram.filters import Command, CommandObject
from aiogram.types import Message, CallbackQuery
from aiogram.utils.keyboard import InlineKeyboardBuilder

from config import settings
from db.users import user_exists, set_interests, get_interest_names
from services.errors import LookupFailed, MatchNotFound, NotActive
from services.matchmaking import MatchmakingService, MatchState

router = Router()

RETRY_TEXT = "⚠️ We could not reach our servers. Please try again shortly."


def chat_controls():
    builder = InlineKeyboardBuilder()
    builder.button(text="End Chat", callback_data="end")
    builder.button(text="Block", callback_data="block")
    builder.button(text="Report", callback_data="report")
    builder.adjust(1, 2)
    return builder.as_markup()


def search_controls():
    builder = InlineKeyboardBuilder()
    builder.button(text="Cancel Search", callback_data="cancel")
    return builder.as_markup()


def _message_of(event: Message | CallbackQuery) -> Message:
    return event.message if isinstance(event, CallbackQuery) else event


@router.message(Command("find"))
@router.callback_query(F.data == "find")
async def cmd_find(event: Message | CallbackQuery, matchmaking: MatchmakingService):
    """Request a private 1-on-1 match"""
    user_id = event.from_user.id
    message = _message_of(event)

    if not await user_exists(user_id):
        await message.answer("Please use /start first.")
    else:
        try:
            result = await matchmaking.request_match(user_id)
        except LookupFailed:
            result = None

        if result is None:
            await message.answer(RETRY_TEXT)
        elif result.status == MatchState.MATCHED:
            await message.answer(
                f"💬 You are in a private chat (match #{result.match_id}).",
                reply_markup=chat_controls()
            )
        elif result.status == MatchState.COOLDOWN:
            await message.answer(
                f"⏳ Please wait {result.remaining_seconds} seconds "
                f"before requesting another match."
            )
        else:
            await message.answer(
                "🔍 You are in the queue. We'll connect you with someone ready to talk.",
                reply_markup=search_controls()
            )

    if isinstance(event, CallbackQuery):
        await event.answer()


@router.message(Command("cancel"))
@router.callback_query(F.data == "cancel")
async def cmd_cancel(event: Message | CallbackQuery, matchmaking: MatchmakingService):
    """Leave the queue"""
    message = _message_of(event)

    if await matchmaking.cancel_match(event.from_user.id):
        await message.answer("✅ Match request cancelled.")
    else:
        await message.answer("You are not in the queue. Use /find.")

    if isinstance(event, CallbackQuery):
        await event.answer()


@router.message(Command("end"))
@router.callback_query(F.data == "end")
async def cmd_end(event: Message | CallbackQuery, matchmaking: MatchmakingService):
    """End the current private chat"""
    message = _message_of(event)

    try:
        duration = await matchmaking.end_current_match(event.from_user.id)
    except (MatchNotFound, NotActive):
        await message.answer("You're not in a chat. Use /find.")
    except LookupFailed:
        await message.answer(RETRY_TEXT)
    else:
        minutes, seconds = divmod(duration, 60)
        await message.answer(f"✅ Chat ended after {minutes}m {seconds}s.")

    if isinstance(event, CallbackQuery):
        await event.answer()


@router.message(Command("status"))
async def cmd_status(message: Message, matchmaking: MatchmakingService):
    """Show current match status"""
    try:
        result = await matchmaking.match_status(message.from_user.id)
    except LookupFailed:
        await message.answer(RETRY_TEXT)
        return

    if result.status == MatchState.MATCHED:
        await message.answer(
            f"💬 In a private chat (match #{result.match_id}).",
            reply_markup=chat_controls()
        )
    elif result.status == MatchState.WAITING:
        await message.answer("🔍 Waiting for a partner…", reply_markup=search_controls())
    else:
        await message.answer("Idle. Use /find to talk to someone.")


@router.message(Command("interests"))
async def cmd_interests(message: Message, command: CommandObject):
    """Show or set intent tags"""
    user_id = message.from_user.id

    if not await user_exists(user_id):
        await message.answer("Please use /start first.")
        return

    if not command.args:
        current = await get_interest_names(user_id)
        await message.answer(
            "🏷 Your topics: " + (", ".join(current) if current else "none") + "\n\n"
            "Available: " + ", ".join(settings.INTEREST_TAGS) + "\n"
            "Set with: /interests stress loneliness"
        )
        return

    requested = [name.strip().lower() for name in command.args.replace(",", " ").split()]
    unknown = [name for name in requested if name not in settings.INTEREST_TAGS]
    if unknown:
        await message.answer(f"Unknown topics: {', '.join(unknown)}")
        return

    await set_interests(user_id, requested)
    await message.answer("✅ Topics saved: " + ", ".join(sorted(set(requested))))
