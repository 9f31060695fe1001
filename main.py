"""
main.py
-------
Entry point for the recurring payments bot.

Responsibilities:
    - Initialize the database connection pool and schema.
    - Configure and start the Telegram bot with all handlers.
    - Run one notification feed session per configured user and
      push newly due items to them.
"""

from telegram import BotCommand
from telegram.ext import Application, CommandHandler

from config import ALLOWED_USER_IDS, TELEGRAM_BOT_TOKEN
from db.connection import init_pool, close_pool
from db.init_db import create_tables
from handlers.start_handler import start_command, help_command, myid_command
from handlers.recurring_handler import (
    recurring_service,
    recurring_command,
    add_recurring_command,
    done_command,
    skip_command,
    stop_recurring_command,
    dismiss_all_command,
)
from models.notification import SOURCE_RECURRING, NotificationFeed
from utils.logger import get_logger

logger = get_logger(__name__)


def make_feed_pusher(application: Application, owner_id: int):
    """
    Build a feed listener that messages the user about items
    they have not been told about yet.
    """
    announced: set[tuple] = set()

    async def push(feed: NotificationFeed) -> None:
        current = {
            (item.obligation_id, item.due_date)
            for item in feed.items
            if item.source == SOURCE_RECURRING
        }
        fresh = [
            item for item in feed.items
            if item.source == SOURCE_RECURRING and (item.obligation_id, item.due_date) not in announced
        ]
        announced.intersection_update(current)
        for item in fresh:
            await application.bot.send_message(
                chat_id=owner_id,
                text=(
                    f"⏰ *Recurring payment due: {item.label}*\n\n"
                    f"📌 #{item.obligation_id} {item.description}\n"
                    f"💶 {item.amount:.2f}€\n"
                    f"📅 {item.due_date}\n\n"
                    f"/done {item.obligation_id} · /skip {item.obligation_id}"
                ),
                parse_mode="Markdown",
            )
            announced.add((item.obligation_id, item.due_date))
            logger.info(f"Sent reminder for #{item.obligation_id} to user {owner_id}")

    return push


async def post_init(application: Application) -> None:
    """Register the command menu and start feed sessions."""
    commands = [
        BotCommand("start", "🚀 Start the bot"),
        BotCommand("help", "📖 Help"),
        BotCommand("recurring", "🔔 Notifications and recurring payments"),
        BotCommand("add_recurring", "➕ Add a recurring payment"),
        BotCommand("done", "✅ Complete an occurrence"),
        BotCommand("skip", "⏭️ Skip an occurrence"),
        BotCommand("stop_recurring", "❌ Stop a recurring payment"),
        BotCommand("dismiss_all", "🧹 Skip everything due today"),
        BotCommand("myid", "🆔 Your Telegram ID"),
    ]
    await application.bot.set_my_commands(commands)
    logger.info("Bot commands menu registered successfully.")

    for owner_id in ALLOWED_USER_IDS:
        session = recurring_service.session_for(owner_id)
        session.add_listener(make_feed_pusher(application, owner_id))
        await session.start()
    logger.info(f"Started {len(ALLOWED_USER_IDS)} feed session(s)")


async def post_shutdown(application: Application) -> None:
    """Stop feed sessions, letting refreshes in flight finish."""
    await recurring_service.stop_all()


def main() -> None:
    """Initialize and run the bot."""

    # ── 1. Database setup ─────────────────────────────────
    logger.info("Initializing database...")
    init_pool()
    create_tables()

    # ── 2. Build the Telegram application ─────────────────
    logger.info("Starting Telegram bot...")
    app = (
        Application.builder()
        .token(TELEGRAM_BOT_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    # ── 3. Register command handlers ──────────────────────
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("myid", myid_command))
    app.add_handler(CommandHandler("recurring", recurring_command))
    app.add_handler(CommandHandler("add_recurring", add_recurring_command))
    app.add_handler(CommandHandler("done", done_command))
    app.add_handler(CommandHandler("skip", skip_command))
    app.add_handler(CommandHandler("stop_recurring", stop_recurring_command))
    app.add_handler(CommandHandler("dismiss_all", dismiss_all_command))

    # ── 4. Start polling ──────────────────────────────────
    logger.info("🚀 Bot is running! Press Ctrl+C to stop.")
    app.run_polling(drop_pending_updates=True, allowed_updates=["message"])

    # ── 5. Cleanup on shutdown ────────────────────────────
    close_pool()
    logger.info("Bot stopped.")


if __name__ == "__main__":
    main()
