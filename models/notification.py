"""
models/notification.py
----------------------
Window policy, feed items and action outcomes for recurring reminders.
Nothing here is persisted; feeds are recomputed every refresh.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from models.recurring import RealizedTransaction
from utils.errors import ValidationError


@dataclass(frozen=True)
class NotificationWindowPolicy:
    """
    Process-wide notification settings, loaded once at startup.

    Attributes:
        daily_lookahead_hours: Daily items show this many hours before due.
        default_lookahead_days: Other items show this many days before due.
        refresh_interval_ms: Period of the feed refresh timer.
        max_catch_up_iterations: Cap on steps when catching up a stale anchor.
        store_timeout_seconds: Bound on every store call.
        store_read_retries: Attempts for store reads before giving up.
        store_retry_backoff_seconds: First backoff delay (doubles per retry).
    """
    daily_lookahead_hours: int = 5
    default_lookahead_days: int = 5
    refresh_interval_ms: int = 60000
    max_catch_up_iterations: int = 1000
    store_timeout_seconds: float = 10.0
    store_read_retries: int = 3
    store_retry_backoff_seconds: float = 0.5

    def __post_init__(self):
        for name in (
            "daily_lookahead_hours",
            "default_lookahead_days",
            "refresh_interval_ms",
            "max_catch_up_iterations",
            "store_timeout_seconds",
            "store_read_retries",
        ):
            if getattr(self, name) <= 0:
                raise ValidationError(f"{name} must be positive")
        if self.store_retry_backoff_seconds < 0:
            raise ValidationError("store_retry_backoff_seconds must not be negative")

    @property
    def refresh_interval_seconds(self) -> float:
        return self.refresh_interval_ms / 1000

    @classmethod
    def from_config(cls) -> "NotificationWindowPolicy":
        """Build the policy from the values in config.py."""
        import config

        return cls(
            daily_lookahead_hours=config.DAILY_LOOKAHEAD_HOURS,
            default_lookahead_days=config.DEFAULT_LOOKAHEAD_DAYS,
            refresh_interval_ms=config.REFRESH_INTERVAL_MS,
            max_catch_up_iterations=config.MAX_CATCH_UP_ITERATIONS,
            store_timeout_seconds=config.STORE_TIMEOUT_SECONDS,
            store_read_retries=config.STORE_READ_RETRIES,
            store_retry_backoff_seconds=config.STORE_RETRY_BACKOFF_SECONDS,
        )


@dataclass(frozen=True)
class PendingRequestItem:
    """A pending peer request (money or friend) owned by another subsystem."""
    id: int
    owner_id: int
    request_type: str  # 'money' | 'friend'
    counterparty: str
    amount: Optional[float] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None


SOURCE_REQUEST = "request"
SOURCE_RECURRING = "recurring"


@dataclass(frozen=True)
class NotificationItem:
    """
    One entry in the notification feed.

    Attributes:
        source: 'request' for peer requests, 'recurring' for obligations.
        obligation_id: Obligation ID (or request ID for peer requests).
        due_date: Computed due date.
        time_until_due: Time from now until 00:00 of the due date.
        days_until_due: Calendar days from today to the due date.
        label: Human label such as 'Today' or '3 hours'.
    """
    source: str
    obligation_id: int
    due_date: date
    time_until_due: timedelta
    days_until_due: int
    label: str
    kind: Optional[str] = None
    amount: Optional[float] = None
    description: Optional[str] = None

    @property
    def is_today(self) -> bool:
        return self.source == SOURCE_RECURRING and self.days_until_due == 0


@dataclass
class NotificationFeed:
    """
    Result of one aggregation cycle.

    A feed with ``degraded=True`` is partial: some store call failed or
    timed out, and the items are whatever could still be computed.
    """
    items: list[NotificationItem] = field(default_factory=list)
    today_count: int = 0
    upcoming_count: int = 0
    pending_count: int = 0
    degraded: bool = False
    needs_review: list[int] = field(default_factory=list)
    generated_at: Optional[datetime] = None

    @property
    def recurring_count(self) -> int:
        return self.today_count + self.upcoming_count


STATUS_OK = "ok"
STATUS_CONFLICT = "conflict"
STATUS_ERROR = "error"


@dataclass
class ActionResult:
    """
    Outcome of Complete / Skip / Deactivate for the presentation layer.

    A conflict means the occurrence was already handled elsewhere and is
    safe to ignore. Errors with ``retryable=True`` left nothing changed.
    """
    status: str
    obligation_id: Optional[int] = None
    new_anchor: Optional[date] = None
    realized: Optional[RealizedTransaction] = None
    retryable: bool = False
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == STATUS_OK


@dataclass
class DismissResult:
    """
    Outcome of dismissing everything due today.

    Skips are committed one obligation at a time, so a store failure
    part-way leaves `skipped` done and `failed` untouched.
    """
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed
