"""
services/notification_service.py
---------------------------------
Builds the notification feed for one owner and keeps it fresh.

NotificationAggregator does one pass: catch up stale anchors, keep what
is inside the eligibility window, merge pending peer requests, sort and
dedupe. FeedSession owns the refresh timer for one owner and debounces
overlapping triggers (timer ticks, push events, completed actions).
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Optional

from models.notification import (
    SOURCE_RECURRING,
    SOURCE_REQUEST,
    NotificationFeed,
    NotificationItem,
    NotificationWindowPolicy,
    PendingRequestItem,
)
from models.recurring import ActiveScan, RecurringObligation
from repositories.obligation_store import ObligationStore, PendingRequestSource
from services.eligibility import EligibilityWindow, days_until_due, time_until_due
from services.recurrence import catch_up_to_today
from utils.errors import RunawayRecurrence, StoreUnavailable, ValidationError
from utils.logger import get_logger

logger = get_logger(__name__)

_SOURCE_RANK = {SOURCE_REQUEST: 0, SOURCE_RECURRING: 1}


@dataclass
class _Outcome:
    """Per-obligation result of one aggregation pass."""
    item: Optional[NotificationItem] = None
    degraded: bool = False
    needs_review: bool = False


def feed_sort_key(item: NotificationItem) -> tuple:
    """Soonest first; on equal days, peer requests before recurring items."""
    return (item.days_until_due, _SOURCE_RANK[item.source], item.time_until_due, item.obligation_id)


def _dedupe_key(item: NotificationItem) -> tuple:
    if item.source == SOURCE_REQUEST:
        return (item.source, item.kind, item.obligation_id)
    return (item.source, item.obligation_id)


class NotificationAggregator:
    """Computes NotificationFeed snapshots. Holds no per-owner state."""

    def __init__(
        self,
        store: ObligationStore,
        requests: PendingRequestSource,
        policy: NotificationWindowPolicy,
    ):
        self.store = store
        self.requests = requests
        self.policy = policy
        self.window = EligibilityWindow(policy)

    async def build_feed(self, owner_id: int, now: Optional[datetime] = None) -> NotificationFeed:
        """
        Build the feed for one owner.

        Store failures never propagate: the feed comes back with
        ``degraded=True`` and whatever could be computed.
        """
        now = now or datetime.now()
        feed = NotificationFeed(generated_at=now)

        try:
            scan = await self.store.scan_active(owner_id)
        except StoreUnavailable as e:
            logger.warning(f"Feed for user {owner_id} is partial: {e}")
            scan = ActiveScan()
            feed.degraded = True
        if scan.unreadable:
            logger.warning(f"Unreadable recurring rows for user {owner_id}: {scan.unreadable}")
            feed.needs_review.extend(scan.unreadable)
            feed.degraded = True
        obligations = scan.obligations

        outcomes = await asyncio.gather(*(self._process(o, now) for o in obligations))
        items: list[NotificationItem] = []
        for obligation, outcome in zip(obligations, outcomes):
            feed.degraded = feed.degraded or outcome.degraded
            if outcome.needs_review:
                feed.needs_review.append(obligation.id)
            if outcome.item is not None:
                items.append(outcome.item)

        try:
            pending = await self.requests.list_pending(owner_id)
        except StoreUnavailable as e:
            logger.warning(f"Pending requests unavailable for user {owner_id}: {e}")
            pending = []
            feed.degraded = True
        items.extend(self._request_item(req, now) for req in pending)

        seen = set()
        for item in sorted(items, key=feed_sort_key):
            key = _dedupe_key(item)
            if key in seen:
                continue
            seen.add(key)
            feed.items.append(item)

        feed.today_count = sum(1 for i in feed.items if i.is_today)
        feed.upcoming_count = sum(
            1 for i in feed.items if i.source == SOURCE_RECURRING and not i.is_today
        )
        feed.pending_count = sum(1 for i in feed.items if i.source == SOURCE_REQUEST)
        logger.debug(
            f"Feed for user {owner_id}: {feed.today_count} today, "
            f"{feed.upcoming_count} upcoming, {feed.pending_count} pending"
        )
        return feed

    async def _process(self, obligation: RecurringObligation, now: datetime) -> _Outcome:
        outcome = _Outcome()
        try:
            due = await self._repair_anchor(obligation, now.date(), outcome)
        except RunawayRecurrence as e:
            logger.warning(f"Recurring #{obligation.id} needs manual review: {e}")
            outcome.needs_review = True
            return outcome
        except StoreUnavailable as e:
            logger.warning(f"Could not refresh recurring #{obligation.id}: {e}")
            outcome.degraded = True
            return outcome
        except ValidationError as e:
            logger.error(f"Recurring #{obligation.id} has an unreadable schedule: {e}")
            outcome.needs_review = True
            outcome.degraded = True
            return outcome
        if due is None or not self.window.is_eligible(due, now, obligation.frequency):
            return outcome

        outcome.item = NotificationItem(
            source=SOURCE_RECURRING,
            obligation_id=obligation.id,
            due_date=due,
            time_until_due=time_until_due(due, now),
            days_until_due=days_until_due(due, now),
            label=self.window.label(due, now, obligation.frequency),
            kind=obligation.kind,
            amount=obligation.amount,
            description=obligation.description,
        )
        return outcome

    async def _repair_anchor(
        self, obligation: RecurringObligation, today: date, outcome: _Outcome
    ) -> Optional[date]:
        """
        Catch the anchor up to today and persist it with a CAS write.

        On a lost CAS the obligation is re-read: somebody else moved it,
        and their value wins. A failed write still returns the computed
        anchor so the feed stays useful.
        """
        caught_up = self._catch_up(obligation, today)
        if caught_up == obligation.anchor_due_date:
            return caught_up

        try:
            if await self.store.advance_anchor(obligation.id, obligation.anchor_due_date, caught_up):
                logger.info(
                    f"Caught up recurring #{obligation.id}: "
                    f"{obligation.anchor_due_date} -> {caught_up}"
                )
                return caught_up
        except StoreUnavailable as e:
            logger.warning(f"Catch-up write for recurring #{obligation.id} failed: {e}")
            outcome.degraded = True
            return caught_up

        fresh = await self.store.get(obligation.id)
        if fresh is None or not fresh.active:
            return None
        return self._catch_up(fresh, today)

    def _catch_up(self, obligation: RecurringObligation, today: date) -> date:
        try:
            return catch_up_to_today(
                obligation.anchor_due_date,
                obligation.frequency,
                today,
                self.policy.max_catch_up_iterations,
            )
        except RunawayRecurrence as e:
            e.obligation_id = obligation.id
            raise

    @staticmethod
    def _request_item(request: PendingRequestItem, now: datetime) -> NotificationItem:
        label = "Money request" if request.request_type == "money" else "Friend request"
        return NotificationItem(
            source=SOURCE_REQUEST,
            obligation_id=request.id,
            due_date=now.date(),
            time_until_due=timedelta(0),
            days_until_due=0,
            label=label,
            kind=request.request_type,
            amount=request.amount,
            description=request.note or request.counterparty,
        )


FeedListener = Callable[[NotificationFeed], Awaitable[None]]


class FeedSession:
    """
    Refresh scheduler for one owner.

    start() launches a timer task that triggers a refresh every
    ``refresh_interval_ms``; stop() cancels the timer and waits for the
    refresh in flight. trigger() may be called from anywhere on the loop:
    while a refresh runs, any number of triggers collapse into exactly one
    follow-up refresh. A running refresh is never cancelled.
    """

    def __init__(
        self,
        aggregator: NotificationAggregator,
        owner_id: int,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.aggregator = aggregator
        self.owner_id = owner_id
        self.clock = clock
        self.latest: Optional[NotificationFeed] = None
        self.refresh_count = 0
        self._listeners: list[FeedListener] = []
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._pending = False

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def add_listener(self, listener: FeedListener) -> None:
        self._listeners.append(listener)

    async def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._tick(), name=f"feed-timer-{self.owner_id}")
        logger.info(f"Feed session started for user {self.owner_id}")

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        if self._inflight is not None:
            await self._inflight
        logger.info(f"Feed session stopped for user {self.owner_id}")

    def trigger(self, reason: str = "manual") -> asyncio.Task:
        """
        Request a refresh.

        Returns:
            The task running the refresh (already running or newly started).
        """
        if self._inflight is not None and not self._inflight.done():
            self._pending = True
            logger.debug(f"Refresh for user {self.owner_id} queued ({reason})")
            return self._inflight
        logger.debug(f"Refresh for user {self.owner_id} started ({reason})")
        self._inflight = asyncio.create_task(self._refresh_loop())
        return self._inflight

    async def refresh(self, reason: str = "manual") -> Optional[NotificationFeed]:
        """Trigger a refresh and wait until it (and its follow-up) finish."""
        await asyncio.shield(self.trigger(reason))
        return self.latest

    async def on_advanced(self, owner_id: int, obligation_id: int) -> None:
        """AdvancementCoordinator hook: refresh right after Complete/Skip."""
        if owner_id == self.owner_id:
            self.trigger(f"advanced #{obligation_id}")

    async def _tick(self) -> None:
        interval = self.aggregator.policy.refresh_interval_seconds
        while True:
            self.trigger("timer")
            await asyncio.sleep(interval)

    async def _refresh_loop(self) -> None:
        while True:
            self._pending = False
            try:
                feed = await self.aggregator.build_feed(self.owner_id, self.clock())
            except Exception:
                logger.exception(f"Feed refresh failed for user {self.owner_id}")
            else:
                self.latest = feed
                self.refresh_count += 1
                await self._publish(feed)
            if not self._pending:
                return

    async def _publish(self, feed: NotificationFeed) -> None:
        for listener in self._listeners:
            try:
                await listener(feed)
            except Exception:
                logger.exception(f"Feed listener failed for user {self.owner_id}")
