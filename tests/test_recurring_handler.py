"""Command parsing and message formatting for the Telegram handlers."""

from datetime import date, timedelta

import pytest

from handlers.recurring_handler import _parse_manual, format_dismiss, format_feed, format_result
from models.notification import (
    SOURCE_RECURRING,
    SOURCE_REQUEST,
    STATUS_CONFLICT,
    STATUS_ERROR,
    STATUS_OK,
    ActionResult,
    DismissResult,
    NotificationFeed,
    NotificationItem,
)
from models.recurring import CustomDayOfMonth, Monthly, RealizedTransaction, Weekly


def test_parse_manual_with_date_and_income():
    parsed = _parse_manual("Salary | 2,500 | monthly | 2026-03-25 | income")
    assert parsed == {
        "description": "Salary",
        "amount": 2500.0,
        "frequency": Monthly(),
        "anchor_due_date": date(2026, 3, 25),
        "kind": "income",
    }


def test_parse_manual_custom_day_defaults_date():
    parsed = _parse_manual("Rent | 800 | day 31")
    assert parsed["frequency"] == CustomDayOfMonth(31)
    assert parsed["kind"] == "expense"
    assert parsed["anchor_due_date"] > date.today()


def test_parse_manual_weekly_default_date():
    parsed = _parse_manual("Cleaner | 40 | weekly")
    assert parsed["frequency"] == Weekly()
    assert parsed["anchor_due_date"] == date.today() + timedelta(weeks=1)


@pytest.mark.parametrize(
    "text",
    ["Netflix | 15", "Netflix | abc | monthly", "Netflix | 15 | hourly", "Rent | 800 | day 45", "Rent | 800 | monthly | soon"],
)
def test_parse_manual_rejects_bad_input(text):
    assert _parse_manual(text) is None


def _item(**fields):
    defaults = dict(
        source=SOURCE_RECURRING, obligation_id=3, due_date=date(2024, 3, 1),
        time_until_due=timedelta(0), days_until_due=0, label="Today",
        kind="expense", amount=800.0, description="Rent",
    )
    defaults.update(fields)
    return NotificationItem(**defaults)


def test_format_feed_lists_items_and_flags():
    feed = NotificationFeed(
        items=[
            _item(source=SOURCE_REQUEST, obligation_id=9, kind="money", amount=20.0,
                  description="Sam", label="Money request"),
            _item(),
        ],
        today_count=1,
        pending_count=1,
        degraded=True,
        needs_review=[12],
    )
    text = format_feed(feed)
    assert "1 today, 0 upcoming, 1 pending" in text
    assert "Money request: Sam 20.00€" in text
    assert "#3 Rent: 800.00€ - Today (2024-03-01)" in text
    assert "#12" in text
    assert "Partial data" in text


def test_format_empty_feed():
    assert format_feed(NotificationFeed()).startswith("📭")


def test_format_results():
    realized = RealizedTransaction(
        obligation_id=3, owner_id=1, kind="expense", amount=500.0, description="Rent",
        resolved_date=date(2024, 3, 1), idempotency_key="3:2024-03-01",
    )
    ok = ActionResult(status=STATUS_OK, obligation_id=3, new_anchor=date(2024, 4, 1), realized=realized)
    assert "Next due: 2024-04-01" in format_result(ok, "completed")
    assert "500.00€ 'Rent'" in format_result(ok, "completed")

    conflict = ActionResult(status=STATUS_CONFLICT, obligation_id=3)
    assert "already handled" in format_result(conflict, "skipped")

    retry = ActionResult(status=STATUS_ERROR, obligation_id=3, retryable=True, message="try again")
    assert format_result(retry, "skipped") == "🔄 try again"


def test_format_dismiss_reports_both_outcomes():
    text = format_dismiss(DismissResult(skipped=[1, 3], failed=[2]))
    assert "Skipped to next occurrence: #1, #3" in text
    assert "#2" in text.splitlines()[1]
    assert "unchanged" in text
    assert "Nothing was changed" not in text


def test_format_dismiss_nothing_due():
    assert format_dismiss(DismissResult()) == "📭 Nothing due today."
