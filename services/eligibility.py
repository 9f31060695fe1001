"""
services/eligibility.py
-----------------------
Decides whether a due date should be shown as a notification right now,
and renders its "time left" label.

A due date counts as due at 00:00 local time on that day.
"""

from datetime import date, datetime, time, timedelta

from models.notification import NotificationWindowPolicy
from models.recurring import Daily, FrequencySpec


def time_until_due(due_date: date, now: datetime) -> timedelta:
    return datetime.combine(due_date, time.min) - now


def days_until_due(due_date: date, now: datetime) -> int:
    return (due_date - now.date()).days


class EligibilityWindow:
    """
    Notification window rules.

    Daily obligations use an hour window (they recur too often for a
    day window to mean anything); every other frequency uses days.
    Overdue dates are never eligible: stale anchors must be caught up first.
    """

    def __init__(self, policy: NotificationWindowPolicy):
        self.policy = policy

    def is_eligible(self, due_date: date, now: datetime, freq: FrequencySpec) -> bool:
        if isinstance(freq, Daily):
            delta = time_until_due(due_date, now)
            return timedelta(0) <= delta <= timedelta(hours=self.policy.daily_lookahead_hours)
        days = days_until_due(due_date, now)
        return 0 <= days <= self.policy.default_lookahead_days

    def label(self, due_date: date, now: datetime, freq: FrequencySpec) -> str:
        """
        Human label for a due date.

        Returns:
            'Due now' / 'N hours' for daily items,
            'Today' / 'Tomorrow' / 'N days' for everything else.
        """
        if isinstance(freq, Daily):
            hours = int(time_until_due(due_date, now) // timedelta(hours=1))
            if hours <= 0:
                return "Due now"
            return "1 hour" if hours == 1 else f"{hours} hours"
        return day_label(days_until_due(due_date, now))


def day_label(days: int) -> str:
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    return f"{days} days"
