"""
Start command handler - NO SQL, uses db modules
"""
from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message
from aiogram.utils.keyboard import InlineKeyboardBuilder

from db.users import user_exists, create_user

router = Router()

HELP_TEXT = (
    "Commands:\n"
    "/interests - Pick what you want to talk about\n"
    "/find - Find someone to talk to\n"
    "/cancel - Leave the queue\n"
    "/status - Where am I?\n"
    "/end - End the current chat\n"
    "/block - Block your current partner\n"
    "/report - Report your current partner"
)


@router.message(CommandStart())
async def cmd_start(message: Message):
    """Handle /start command"""
    user_id = message.from_user.id

    if await user_exists(user_id):
        await message.answer("Welcome back!\n\n" + HELP_TEXT)
        return

    await create_user(user_id)

    welcome_text = (
        "🛡 Welcome to IronRoom 🛡\n\n"
        "Private, anonymous one-on-one conversations\n\n"
        "⚠️ Important:\n"
        "• Your identity is never shown to your partner\n"
        "• Blocked or reported users are never matched with you\n"
        "• After a chat ends there is a short cooldown\n\n"
        "Pick topics with /interests so we can find someone who gets it.\n\n"
        + HELP_TEXT
    )

    builder = InlineKeyboardBuilder()
    builder.button(text="Find someone now", callback_data="find")

    await message.answer(welcome_text, reply_markup=builder.as_markup())


@router.message(Command("help"))
async def cmd_help(message: Message):
    await message.answer(HELP_TEXT)
