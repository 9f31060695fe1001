"""
handlers/start_handler.py
--------------------------
Handles /start and /help commands.
"""

from telegram import Update
from telegram.ext import ContextTypes

from utils.logger import get_logger

logger = get_logger(__name__)

HELP_TEXT = """
🤖 *Recurring payments bot*
Reminders for rent, salary and subscriptions 🔁

*🔧 Commands:*
/start - start the bot
/help - show this help
/recurring - notifications and active recurring payments
/add\\_recurring - add a recurring payment
/done - complete an occurrence (e.g. /done 3, /done 3 820 Rent)
/skip - skip an occurrence (e.g. /skip 3)
/stop\\_recurring - stop a recurring payment
/dismiss\\_all - skip everything due today
/myid - show your Telegram ID
"""


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start command - show welcome message."""
    user = update.effective_user
    logger.info(f"User {user.id} ({user.first_name}) started the bot.")

    await update.message.reply_text(
        f"Hi {user.first_name}! 👋\n"
        f"I'll remind you before recurring payments are due.\n\n"
        f"Send /help to see every command.",
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command - show all available commands."""
    await update.message.reply_text(HELP_TEXT, parse_mode="Markdown")


async def myid_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /myid command - show user's Telegram ID for ALLOWED_USER_IDS."""
    user = update.effective_user
    await update.message.reply_text(
        f"🆔 Your ID: `{user.id}`\n"
        f"Add it to `ALLOWED_USER_IDS` in `.env` to get scheduled reminders.",
        parse_mode="Markdown",
    )
