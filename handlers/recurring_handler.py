"""
handlers/recurring_handler.py
------------------------------
Telegram commands for recurring payments:
listing the notification feed, adding obligations, and the
Complete / Skip / Deactivate / Dismiss-all actions.
"""

import re
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta
from telegram import Update
from telegram.ext import ContextTypes

from models.notification import (
    SOURCE_REQUEST,
    STATUS_CONFLICT,
    ActionResult,
    DismissResult,
    NotificationFeed,
)
from models.recurring import (
    CompletionOverrides,
    CustomDayOfMonth,
    Daily,
    FrequencySpec,
    Monthly,
    Weekly,
    Yearly,
    frequency_to_db,
)
from services.recurring_service import RecurringService
from utils.errors import StoreUnavailable, ValidationError
from utils.logger import get_logger

logger = get_logger(__name__)
recurring_service = RecurringService()

# Frequency mapping
_FREQ_MAP: dict[str, FrequencySpec] = {
    "daily": Daily(),
    "weekly": Weekly(),
    "monthly": Monthly(),
    "yearly": Yearly(),
}
# "day 15" / "day15" = custom day of month
_CUSTOM_DAY_RE = re.compile(r"^day\s*(\d{1,2})$")

_FEED_ICONS = {"expense": "💸", "income": "💰", "money": "🤝", "friend": "👋"}


def _parse_frequency(text: str) -> FrequencySpec | None:
    text = text.strip().lower()
    if text in _FREQ_MAP:
        return _FREQ_MAP[text]
    match = _CUSTOM_DAY_RE.match(text)
    if match:
        return CustomDayOfMonth(int(match.group(1)))
    return None


def _first_due(frequency: FrequencySpec) -> date:
    """Default first due date when the user gives none."""
    today = date.today()
    if isinstance(frequency, Daily):
        return today + timedelta(days=1)
    if isinstance(frequency, Weekly):
        return today + timedelta(weeks=1)
    if isinstance(frequency, CustomDayOfMonth):
        return today + relativedelta(months=1, day=frequency.day)
    if isinstance(frequency, Yearly):
        return today + relativedelta(years=1)
    return today + relativedelta(months=1)


def _parse_manual(text: str) -> dict | None:
    """
    Parse the structured recurring format:
      name | amount | frequency [| first due date] [| income]
    Example:
      Netflix | 15 | monthly
      Rent | 800 | day 1 | 2026-03-01
      Salary | 2500 | monthly | 2026-03-25 | income
    """
    parts = [p.strip() for p in text.split("|")]
    if len(parts) < 3:
        return None

    name = parts[0]
    amount_str = re.sub(r"[^\d.]", "", parts[1])
    if not name or not amount_str:
        return None
    try:
        amount = float(amount_str)
    except ValueError:
        return None

    try:
        frequency = _parse_frequency(parts[2])
    except ValidationError:
        return None
    if frequency is None:
        return None

    next_due = None
    if len(parts) >= 4 and parts[3]:
        try:
            next_due = date.fromisoformat(parts[3])
        except ValueError:
            return None

    kind = "income" if len(parts) >= 5 and parts[4].lower() == "income" else "expense"

    return {
        "description": name,
        "amount": amount,
        "frequency": frequency,
        "anchor_due_date": next_due or _first_due(frequency),
        "kind": kind,
    }


def format_feed(feed: NotificationFeed) -> str:
    """Render a feed as a Telegram message."""
    if not feed.items and not feed.needs_review:
        text = "📭 Nothing due in the next few days."
        if feed.degraded:
            text += "\n⚠️ Partial data: some records could not be loaded."
        return text

    lines = [
        f"🔔 Notifications: {feed.today_count} today, "
        f"{feed.upcoming_count} upcoming, {feed.pending_count} pending requests\n"
    ]
    for item in feed.items:
        icon = _FEED_ICONS.get(item.kind, "•")
        amount = f" {item.amount:.2f}€" if item.amount is not None else ""
        if item.source == SOURCE_REQUEST:
            lines.append(f"  {icon} {item.label}: {item.description}{amount}")
        else:
            lines.append(
                f"  {icon} #{item.obligation_id} {item.description}:{amount} "
                f"- {item.label} ({item.due_date})"
            )
    if feed.needs_review:
        ids = ", ".join(f"#{i}" for i in feed.needs_review)
        lines.append(f"\n🛠️ Needs review (schedule too far behind or unreadable): {ids}")
    if feed.degraded:
        lines.append("\n⚠️ Partial data: some records could not be loaded.")
    return "\n".join(lines)


def format_result(result: ActionResult, verb: str) -> str:
    if result.success:
        msg = f"✅ #{result.obligation_id} {verb}. Next due: {result.new_anchor}"
        if result.realized is not None:
            msg += (
                f"\n  🧾 Recorded {result.realized.amount:.2f}€ "
                f"'{result.realized.description}' on {result.realized.resolved_date}"
            )
        return msg
    if result.status == STATUS_CONFLICT:
        return f"ℹ️ #{result.obligation_id} was already handled."
    prefix = "🔄" if result.retryable else "⚠️"
    return f"{prefix} {result.message}"


def format_dismiss(result: DismissResult) -> str:
    if not result.skipped and not result.failed:
        return "📭 Nothing due today."
    lines = []
    if result.skipped:
        ids = ", ".join(f"#{i}" for i in result.skipped)
        lines.append(f"⏭️ Skipped to next occurrence: {ids}")
    if result.failed:
        ids = ", ".join(f"#{i}" for i in result.failed)
        lines.append(f"🔄 Could not skip {ids} (storage unavailable). Those are unchanged; try again.")
    return "\n".join(lines)


def _obligation_id(context: ContextTypes.DEFAULT_TYPE) -> int | None:
    if not context.args:
        return None
    try:
        return int(context.args[0].lstrip("#"))
    except ValueError:
        return None


async def recurring_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /recurring - show the notification feed and active obligations."""
    user = update.effective_user
    feed = await recurring_service.get_feed(user.id)
    msg = format_feed(feed)

    try:
        obligations = await recurring_service.list_active(user.id)
    except StoreUnavailable:
        obligations = []
    if obligations:
        lines = ["\n🔁 Active recurring payments:"]
        for o in obligations:
            freq, day = frequency_to_db(o.frequency)
            freq_text = f"day {day}" if day else freq
            upcoming = recurring_service.upcoming_occurrences(o) or [o.anchor_due_date]
            dates = ", ".join(str(d) for d in upcoming)
            lines.append(f"  #{o.id} {o.description}: {o.amount:.2f}€ ({freq_text}) - next: {dates}")
        msg += "\n" + "\n".join(lines)
    await update.message.reply_text(msg)


async def add_recurring_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle /add_recurring - add a new recurring payment.

    Format:
        /add_recurring name | amount | frequency [| date] [| income]
    """
    user = update.effective_user

    if not context.args:
        await update.message.reply_text(
            "📝 *Add a recurring payment*\n\n"
            "`/add_recurring name | amount | frequency [| date] [| income]`\n\n"
            "*Examples:*\n"
            "• `/add_recurring Netflix | 15 | monthly`\n"
            "• `/add_recurring Rent | 800 | day 1 | 2026-03-01`\n"
            "• `/add_recurring Salary | 2500 | monthly | 2026-03-25 | income`\n\n"
            "*Frequency:* daily, weekly, monthly, yearly, day N",
            parse_mode="Markdown",
        )
        return

    parsed = _parse_manual(" ".join(context.args))
    if parsed is None:
        await update.message.reply_text("🤔 Couldn't read that. Send /add_recurring for the format.")
        return

    try:
        saved = await recurring_service.add_obligation(owner_id=user.id, **parsed)
    except ValidationError as e:
        await update.message.reply_text(f"⚠️ {e}")
        return
    except StoreUnavailable:
        await update.message.reply_text("⚠️ Storage is unavailable right now. Try again.")
        return

    await update.message.reply_text(
        f"🔁 Recurring payment added:\n"
        f"  📌 Name: {saved.description}\n"
        f"  💶 Amount: {saved.amount:.2f}€\n"
        f"  📅 Next due: {saved.anchor_due_date}\n"
        f"  🔖 ID: #{saved.id}"
    )


async def done_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle /done <id> [amount] [description] - complete the current occurrence.
    With an amount or description the entry is recorded with those values.
    """
    user = update.effective_user
    obligation_id = _obligation_id(context)
    if obligation_id is None:
        await update.message.reply_text("⚠️ Usage: /done <id> [amount] [description]")
        return

    extra = context.args[1:]
    amount = None
    if extra:
        try:
            amount = float(extra[0])
            extra = extra[1:]
        except ValueError:
            pass
    description = " ".join(extra) or None

    try:
        overrides = CompletionOverrides(amount=amount, description=description)
    except ValidationError as e:
        await update.message.reply_text(f"⚠️ {e}")
        return

    if overrides.is_empty():
        result = await recurring_service.complete(obligation_id, owner_id=user.id)
    else:
        result = await recurring_service.edit_and_complete(obligation_id, overrides, owner_id=user.id)
    await update.message.reply_text(format_result(result, "completed"))


async def skip_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /skip <id> - skip the current occurrence."""
    user = update.effective_user
    obligation_id = _obligation_id(context)
    if obligation_id is None:
        await update.message.reply_text("⚠️ Usage: /skip <id>")
        return
    result = await recurring_service.skip(obligation_id, owner_id=user.id)
    await update.message.reply_text(format_result(result, "skipped"))


async def stop_recurring_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stop_recurring <id> - deactivate a recurring payment (history is kept)."""
    user = update.effective_user
    obligation_id = _obligation_id(context)
    if obligation_id is None:
        await update.message.reply_text("⚠️ Usage: /stop_recurring <id>")
        return
    result = await recurring_service.deactivate(obligation_id, owner_id=user.id)
    if result.success:
        await update.message.reply_text(f"❌ Recurring payment #{obligation_id} stopped.")
    else:
        await update.message.reply_text(format_result(result, "stopped"))


async def dismiss_all_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /dismiss_all - skip every recurring payment due today."""
    user = update.effective_user
    try:
        result = await recurring_service.dismiss_today(user.id)
    except StoreUnavailable:
        await update.message.reply_text("⚠️ Storage is unavailable right now. Nothing was changed.")
        return
    await update.message.reply_text(format_dismiss(result))
