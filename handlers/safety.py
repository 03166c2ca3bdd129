"""
Block / report handlers - NO SQL, uses services
"""
from aiogram import Router, F
from aiogram.filters import Command
from aiogram.types import Message, CallbackQuery
from aiogram.utils.keyboard import InlineKeyboardBuilder

from config import settings
from handlers.matchmaking import RETRY_TEXT, _message_of
from services.errors import LookupFailed
from services.matchmaking import MatchmakingService, MatchState

router = Router()


@router.message(Command("block"))
@router.callback_query(F.data == "block")
async def cmd_block(event: Message | CallbackQuery, matchmaking: MatchmakingService):
    """Block the current partner and end the chat"""
    user_id = event.from_user.id
    message = _message_of(event)

    try:
        status = await matchmaking.match_status(user_id)
        if status.status != MatchState.MATCHED:
            await message.answer("You can only block your current chat partner.")
        else:
            await matchmaking.block_user(user_id, status.partner_id)
            await message.answer("🚫 User blocked. You won't be matched with them again.")
    except LookupFailed:
        await message.answer(RETRY_TEXT)

    if isinstance(event, CallbackQuery):
        await event.answer()


@router.message(Command("report"))
@router.callback_query(F.data == "report")
async def cmd_report(event: Message | CallbackQuery, matchmaking: MatchmakingService):
    """Ask for a report reason"""
    message = _message_of(event)

    try:
        status = await matchmaking.match_status(event.from_user.id)
    except LookupFailed:
        status = None

    if status is None:
        await message.answer(RETRY_TEXT)
    elif status.status != MatchState.MATCHED:
        await message.answer("You can only report your current chat partner.")
    else:
        builder = InlineKeyboardBuilder()
        for reason in settings.REPORT_REASONS:
            builder.button(text=reason.capitalize(), callback_data=f"report:{reason}")
        builder.adjust(2)
        await message.answer("Why are you reporting this user?", reply_markup=builder.as_markup())

    if isinstance(event, CallbackQuery):
        await event.answer()


@router.callback_query(F.data.startswith("report:"))
async def select_report_reason(callback: CallbackQuery, matchmaking: MatchmakingService):
    """File the report against the current partner"""
    user_id = callback.from_user.id
    reason = callback.data.split(":")[1]

    try:
        status = await matchmaking.match_status(user_id)
    except LookupFailed:
        await callback.answer(RETRY_TEXT, show_alert=True)
        return

    if status.status != MatchState.MATCHED:
        await callback.answer("Chat already ended.", show_alert=True)
        return

    try:
        report_id = await matchmaking.report_user(user_id, status.partner_id, reason)
    except ValueError as e:
        await callback.answer(str(e), show_alert=True)
        return
    except LookupFailed:
        await callback.answer(RETRY_TEXT, show_alert=True)
        return

    await callback.message.edit_text(f"✅ Report #{report_id} submitted. Thank you.")
    await callback.answer()
