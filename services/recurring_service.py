"""
services/recurring_service.py
------------------------------
Business logic entry point for recurring payments.
Handlers call this; it wires the coordinator, aggregator and per-user
feed sessions together and turns engine errors into ActionResults.
"""

from datetime import date, datetime
from itertools import islice
from typing import Awaitable, Optional

from dateutil.relativedelta import relativedelta

from models.notification import (
    STATUS_CONFLICT,
    STATUS_ERROR,
    ActionResult,
    DismissResult,
    NotificationFeed,
    NotificationWindowPolicy,
)
from models.recurring import (
    CompletionOverrides,
    FrequencySpec,
    RecurringObligation,
    is_valid_amount,
)
from repositories.obligation_store import (
    ObligationStore,
    PendingRequestSource,
    PostgresObligationStore,
    PostgresRequestSource,
)
from services.advancement import AdvancementCoordinator
from services.notification_service import FeedSession, NotificationAggregator
from services.recurrence import occurrences_between
from utils.errors import (
    ConflictError,
    ObligationInactive,
    ObligationNotFound,
    RunawayRecurrence,
    StoreUnavailable,
    ValidationError,
)
from utils.logger import get_logger

logger = get_logger(__name__)

KINDS = ("expense", "income")
UPCOMING_LIMIT = 3


class RecurringService:
    """
    Handles all business logic for recurring payments.

    Responsibilities:
        - Create recurring obligations.
        - Build the notification feed (GetFeed).
        - Complete / skip / deactivate occurrences.
        - Own one FeedSession per user.
    """

    def __init__(
        self,
        policy: Optional[NotificationWindowPolicy] = None,
        store: Optional[ObligationStore] = None,
        requests: Optional[PendingRequestSource] = None,
    ):
        self.policy = policy or NotificationWindowPolicy.from_config()
        self.store = store or PostgresObligationStore(self.policy)
        self.requests = requests or PostgresRequestSource(self.policy)
        self.coordinator = AdvancementCoordinator(self.store)
        self.aggregator = NotificationAggregator(self.store, self.requests, self.policy)
        self._sessions: dict[int, FeedSession] = {}
        self.coordinator.on_advanced(self._on_advanced)

    # ── Sessions ──────────────────────────────────────────

    def session_for(self, owner_id: int) -> FeedSession:
        """
        Get or create the feed session of a user.

        Sessions are only created here; the bot opens one per configured
        user at startup. Other users get feeds built on demand.
        """
        session = self._sessions.get(owner_id)
        if session is None:
            session = FeedSession(self.aggregator, owner_id)
            self._sessions[owner_id] = session
        return session

    async def stop_all(self) -> None:
        for session in self._sessions.values():
            await session.stop()

    def on_push(self, owner_id: int, reason: str = "push") -> None:
        """A peer request for this user was created or updated elsewhere."""
        self._trigger(owner_id, reason)

    def _trigger(self, owner_id: int, reason: str) -> None:
        session = self._sessions.get(owner_id)
        if session is not None:
            session.trigger(reason)

    async def _on_advanced(self, owner_id: int, obligation_id: int) -> None:
        session = self._sessions.get(owner_id)
        if session is not None:
            await session.on_advanced(owner_id, obligation_id)

    # ── Obligations ───────────────────────────────────────

    async def add_obligation(
        self,
        owner_id: int,
        kind: str,
        amount: float,
        description: str,
        frequency: FrequencySpec,
        anchor_due_date: date,
        category: Optional[str] = None,
    ) -> RecurringObligation:
        """
        Flag a transaction as recurring.

        Raises:
            ValidationError: Bad kind, amount or description.
        """
        if kind not in KINDS:
            raise ValidationError("Type must be income or expense.")
        if not is_valid_amount(amount):
            raise ValidationError("Amount must be a positive number.")
        if not description or not description.strip():
            raise ValidationError("Name cannot be empty.")
        obligation = RecurringObligation(
            owner_id=owner_id,
            kind=kind,
            amount=float(amount),
            description=description.strip(),
            frequency=frequency,
            anchor_due_date=anchor_due_date,
            category=category,
        )
        saved = await self.store.add(obligation)
        self._trigger(owner_id, "obligation added")
        return saved

    async def list_active(self, owner_id: int) -> list[RecurringObligation]:
        return await self.store.list_active(owner_id)

    def upcoming_occurrences(
        self,
        obligation: RecurringObligation,
        today: Optional[date] = None,
        limit: int = UPCOMING_LIMIT,
    ) -> list[date]:
        """
        The next `limit` occurrences from today on, within a year.

        Returns an empty list when the stored anchor is too far behind
        to walk forward.
        """
        today = today or date.today()
        dates = occurrences_between(
            obligation.anchor_due_date,
            obligation.frequency,
            today,
            today + relativedelta(years=1),
            self.policy.max_catch_up_iterations,
        )
        try:
            return list(islice(dates, limit))
        except RunawayRecurrence:
            return []

    # ── Feed ──────────────────────────────────────────────

    async def get_feed(self, owner_id: int, now: Optional[datetime] = None) -> NotificationFeed:
        """
        Current feed for a user.

        Users with a session get a session refresh (debounced with
        any refresh in flight). Otherwise, or with an explicit `now`, the
        feed is computed directly.
        """
        session = self._sessions.get(owner_id)
        if now is not None or session is None:
            return await self.aggregator.build_feed(owner_id, now)
        feed = await session.refresh("get_feed")
        return feed or await self.aggregator.build_feed(owner_id)

    # ── Actions ───────────────────────────────────────────

    async def complete(
        self,
        obligation_id: int,
        overrides: Optional[CompletionOverrides] = None,
        expected_anchor: Optional[date] = None,
        owner_id: Optional[int] = None,
    ) -> ActionResult:
        return await self._run(
            obligation_id,
            self.coordinator.complete(obligation_id, overrides, expected_anchor, owner_id),
        )

    async def edit_and_complete(
        self,
        obligation_id: int,
        overrides: CompletionOverrides,
        expected_anchor: Optional[date] = None,
        owner_id: Optional[int] = None,
    ) -> ActionResult:
        return await self._run(
            obligation_id,
            self.coordinator.edit_and_complete(obligation_id, overrides, expected_anchor, owner_id),
        )

    async def skip(
        self,
        obligation_id: int,
        expected_anchor: Optional[date] = None,
        owner_id: Optional[int] = None,
    ) -> ActionResult:
        return await self._run(
            obligation_id, self.coordinator.skip(obligation_id, expected_anchor, owner_id)
        )

    async def deactivate(self, obligation_id: int, owner_id: Optional[int] = None) -> ActionResult:
        return await self._run(obligation_id, self.coordinator.deactivate(obligation_id, owner_id))

    async def dismiss_today(self, owner_id: int, today: Optional[date] = None) -> DismissResult:
        """Skip everything due today. Raises StoreUnavailable if nothing could be listed."""
        return await self.coordinator.dismiss_today(owner_id, today or date.today())

    @staticmethod
    async def _run(obligation_id: int, action: Awaitable[ActionResult]) -> ActionResult:
        """Await a coordinator action and map engine errors to a result."""
        try:
            return await action
        except ConflictError as e:
            return ActionResult(
                status=STATUS_CONFLICT,
                obligation_id=obligation_id,
                message=f"Already handled: {e}",
            )
        except StoreUnavailable as e:
            logger.error(f"Action on recurring #{obligation_id} failed: {e}")
            return ActionResult(
                status=STATUS_ERROR,
                obligation_id=obligation_id,
                retryable=True,
                message="Storage is unavailable right now. Nothing was changed; try again.",
            )
        except (ObligationNotFound, ObligationInactive, ValidationError) as e:
            return ActionResult(status=STATUS_ERROR, obligation_id=obligation_id, message=str(e))
