"""
Admin panel handlers - NO SQL, uses db.moderation and db.users
"""
import logging

from aiogram import Router, F
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command
from aiogram.types import Message, CallbackQuery
from aiogram.utils.keyboard import InlineKeyboardBuilder

from config import settings
from db.moderation import (
    get_bot_stats, get_open_reports, resolve_report, recalculate_risk_score, get_risk_level
)
from db.users import suspend_user, unsuspend_user, user_exists
from services.matchmaking import MatchmakingService

logger = logging.getLogger(__name__)

router = Router()


def is_admin(user_id: int) -> bool:
    """Check if user is admin"""
    return user_id == settings.ADMIN_ID


@router.message(Command("admin"))
async def cmd_admin(message: Message):
    """Admin panel"""
    if not is_admin(message.from_user.id):
        return

    builder = InlineKeyboardBuilder()
    builder.button(text="📊 Statistics", callback_data="admin_stats")
    builder.button(text="🚩 Open Reports", callback_data="admin_reports")
    builder.adjust(2)

    await message.answer(
        "🔐 Admin Panel\n\nSelect an action:",
        reply_markup=builder.as_markup()
    )


@router.callback_query(F.data == "admin_stats")
async def admin_stats(callback: CallbackQuery, matchmaking: MatchmakingService):
    """Show detailed statistics"""
    if not is_admin(callback.from_user.id):
        await callback.answer("Unauthorized", show_alert=True)
        return

    stats = await get_bot_stats()

    text = (
        f"📊 Bot Statistics\n\n"
        f"👥 Total Users: {stats['total_users']}\n"
        f"🔍 Waiting: {len(matchmaking.pool)}\n"
        f"💬 Active Matches: {stats['active_matches']}\n"
        f"🤝 Total Matches: {stats['total_matches']}\n"
        f"🚩 Open Reports: {stats['open_reports']}\n"
        f"🚫 Suspended Users: {stats['suspended_users']}\n"
        f"⚙️ Scheduler: {'HALTED' if matchmaking.scheduler.halted else matchmaking.scheduler.state}"
    )

    await callback.message.edit_text(text)
    await callback.answer()


@router.message(Command("reports"))
@router.callback_query(F.data == "admin_reports")
async def admin_reports(event: Message | CallbackQuery):
    """List oldest unresolved reports"""
    if not is_admin(event.from_user.id):
        return

    message = event.message if isinstance(event, CallbackQuery) else event
    reports = await get_open_reports(20)

    if not reports:
        text = "No open reports."
    else:
        text = "🚩 Open Reports\n\n"
        for report in reports:
            text += (
                f"#{report['report_id']} {report['reason']} ({report['status']}): "
                f"{report['reporter_id']} → {report['target_id']}\n"
            )
        text += "\nResolve with /resolve <report_id>"

    await message.answer(text)
    if isinstance(event, CallbackQuery):
        await event.answer()


@router.message(Command("resolve"))
async def cmd_resolve(message: Message):
    """Resolve a report"""
    if not is_admin(message.from_user.id):
        return

    parts = message.text.split()
    if len(parts) < 2 or not parts[1].isdigit():
        await message.answer("Usage: /resolve <report_id>")
        return

    if await resolve_report(int(parts[1])):
        await message.answer(f"✅ Report #{parts[1]} resolved.")
    else:
        await message.answer(f"Report #{parts[1]} not found or already resolved.")


@router.message(Command("suspend"))
async def cmd_suspend(message: Message, matchmaking: MatchmakingService):
    """Suspend a user"""
    if not is_admin(message.from_user.id):
        return

    usage = f"Usage: /suspend <user_id> <{'|'.join(settings.SUSPENSION_DURATIONS)}> [reason]"
    parts = message.text.split(maxsplit=3)
    if len(parts) < 3:
        await message.answer(usage)
        return

    try:
        user_id = int(parts[1])
    except ValueError:
        await message.answer("Invalid user ID.")
        return

    duration = parts[2]
    if duration not in settings.SUSPENSION_DURATIONS:
        await message.answer(usage)
        return

    if not await user_exists(user_id):
        await message.answer(f"User {user_id} not found.")
        return

    reason = parts[3] if len(parts) > 3 else f"Suspended for {duration}"
    until = await suspend_user(user_id, settings.SUSPENSION_DURATIONS[duration], reason)
    score = await recalculate_risk_score(user_id)

    # Suspended users stop waiting
    await matchmaking.cancel_match(user_id)

    await message.answer(
        f"✅ User {user_id} suspended until {until:%Y-%m-%d %H:%M}.\n"
        f"Reason: {reason}\n"
        f"Risk: {score} ({get_risk_level(score)})"
    )

    try:
        await message.bot.send_message(
            user_id,
            f"🚫 Your account has been suspended until {until:%Y-%m-%d %H:%M}.\n\n"
            f"Reason: {reason}"
        )
    except TelegramAPIError as e:
        logger.warning("Could not notify suspended user %s: %s", user_id, e)


@router.message(Command("unsuspend"))
async def cmd_unsuspend(message: Message):
    """Lift a suspension"""
    if not is_admin(message.from_user.id):
        return

    parts = message.text.split()
    if len(parts) < 2:
        await message.answer("Usage: /unsuspend <user_id>")
        return

    try:
        user_id = int(parts[1])
    except ValueError:
        await message.answer("Invalid user ID.")
        return

    await unsuspend_user(user_id)
    await message.answer(f"✅ User {user_id} unsuspended.")

    try:
        await message.bot.send_message(
            user_id,
            "✅ Your suspension has been lifted. You can use the bot again."
        )
    except TelegramAPIError as e:
        logger.warning("Could not notify user %s: %s", user_id, e)
