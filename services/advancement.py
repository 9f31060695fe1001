"""
services/advancement.py
-----------------------
Executes the user actions that move an obligation's schedule:
Complete, EditAndComplete, Skip, Deactivate (and Dismiss-all-today).

Each occurrence is advanced at most once. The anchor update is a
compare-and-swap against the anchor that was read; whoever loses the
swap gets ConflictError and nothing is written for them.
"""

from datetime import date
from typing import Awaitable, Callable, Optional

from models.notification import STATUS_OK, ActionResult, DismissResult
from models.recurring import (
    CompletionOverrides,
    RealizedTransaction,
    RecurringObligation,
    idempotency_key,
)
from repositories.obligation_store import ObligationStore
from services.recurrence import compute_next_occurrence
from utils.errors import (
    ConflictError,
    ObligationInactive,
    ObligationNotFound,
    StoreUnavailable,
    ValidationError,
)
from utils.logger import get_logger

logger = get_logger(__name__)

AdvanceListener = Callable[[int, int], Awaitable[None]]


class AdvancementCoordinator:
    """
    State transitions for one obligation:

        NotDueYet -> EligibleWindow -> Complete | Skip -> NotDueYet (new anchor)
        any state -> Deactivated (terminal)

    Listeners registered with on_advanced(owner_id, obligation_id) run
    after every successful Complete or Skip.
    """

    def __init__(self, store: ObligationStore):
        self.store = store
        self._listeners: list[AdvanceListener] = []

    def on_advanced(self, listener: AdvanceListener) -> None:
        self._listeners.append(listener)

    # ── Actions ───────────────────────────────────────────

    async def complete(
        self,
        obligation_id: int,
        overrides: Optional[CompletionOverrides] = None,
        expected_anchor: Optional[date] = None,
        owner_id: Optional[int] = None,
    ) -> ActionResult:
        """
        Record the current occurrence in the ledger and advance the anchor.

        Args:
            obligation_id: The obligation to complete.
            overrides: Amount/description/date to use instead of the stored ones.
            expected_anchor: The occurrence the caller saw. If the stored anchor
                has moved on, the call conflicts instead of completing the next one.
            owner_id: When given, the obligation must belong to this user.

        Raises:
            ConflictError: The occurrence was already handled.
            ObligationNotFound / ObligationInactive: Nothing to advance.
            StoreUnavailable: The store failed; nothing was changed.
        """
        obligation = await self._load_active(obligation_id, expected_anchor, owner_id)
        anchor = obligation.anchor_due_date
        new_anchor = compute_next_occurrence(anchor, obligation.frequency)
        record = self._realize(obligation, overrides or CompletionOverrides())

        stored = await self.store.commit_occurrence(obligation_id, anchor, new_anchor, record)
        if stored is None:
            logger.info(f"Complete on recurring #{obligation_id} lost the race for {anchor}")
            raise ConflictError(obligation_id, anchor)

        logger.info(
            f"Completed recurring #{obligation_id} ({stored.amount:.2f} on "
            f"{stored.resolved_date}); next due {new_anchor}"
        )
        await self._notify(obligation.owner_id, obligation_id)
        return ActionResult(
            status=STATUS_OK,
            obligation_id=obligation_id,
            new_anchor=new_anchor,
            realized=stored,
        )

    async def edit_and_complete(
        self,
        obligation_id: int,
        overrides: CompletionOverrides,
        expected_anchor: Optional[date] = None,
        owner_id: Optional[int] = None,
    ) -> ActionResult:
        """Complete with user-edited values. Overrides are mandatory."""
        if overrides is None or overrides.is_empty():
            raise ValidationError("Edit and complete needs at least one changed value")
        return await self.complete(obligation_id, overrides, expected_anchor, owner_id)

    async def skip(
        self,
        obligation_id: int,
        expected_anchor: Optional[date] = None,
        owner_id: Optional[int] = None,
    ) -> ActionResult:
        """
        Advance the anchor without writing a ledger entry.

        Raises:
            ConflictError: The occurrence was already handled.
        """
        obligation = await self._load_active(obligation_id, expected_anchor, owner_id)
        anchor = obligation.anchor_due_date
        new_anchor = compute_next_occurrence(anchor, obligation.frequency)

        if not await self.store.advance_anchor(obligation_id, anchor, new_anchor):
            logger.info(f"Skip on recurring #{obligation_id} lost the race for {anchor}")
            raise ConflictError(obligation_id, anchor)

        logger.info(f"Skipped recurring #{obligation_id} {anchor}; next due {new_anchor}")
        await self._notify(obligation.owner_id, obligation_id)
        return ActionResult(status=STATUS_OK, obligation_id=obligation_id, new_anchor=new_anchor)

    async def deactivate(self, obligation_id: int, owner_id: Optional[int] = None) -> ActionResult:
        """Stop an obligation for good. Existing ledger rows are untouched."""
        obligation = await self.store.get(obligation_id)
        if obligation is None or (owner_id is not None and obligation.owner_id != owner_id):
            raise ObligationNotFound(f"Recurring #{obligation_id} not found")
        if obligation.active:
            await self.store.set_active(obligation_id, False)
            logger.info(f"Deactivated recurring #{obligation_id}")
        return ActionResult(
            status=STATUS_OK,
            obligation_id=obligation_id,
            new_anchor=obligation.anchor_due_date,
        )

    async def dismiss_today(self, owner_id: int, today: date) -> DismissResult:
        """
        Skip every active obligation of the owner that is due today.

        Occurrences another caller already handled are left alone. A store
        failure on one obligation does not stop the others; its id is
        reported in `failed` and its anchor is unchanged.

        Raises:
            StoreUnavailable: The obligations could not be listed; nothing was changed.
        """
        result = DismissResult()
        for obligation in await self.store.list_active(owner_id):
            if obligation.anchor_due_date != today:
                continue
            try:
                await self.skip(obligation.id, expected_anchor=today, owner_id=owner_id)
                result.skipped.append(obligation.id)
            except (ConflictError, ObligationInactive, ObligationNotFound):
                logger.info(f"Recurring #{obligation.id} already handled; not dismissing")
            except StoreUnavailable as e:
                logger.error(f"Dismissing recurring #{obligation.id} failed: {e}")
                result.failed.append(obligation.id)
        return result

    # ── Helpers ───────────────────────────────────────────

    async def _load_active(
        self, obligation_id: int, expected_anchor: Optional[date], owner_id: Optional[int]
    ) -> RecurringObligation:
        obligation = await self.store.get(obligation_id)
        if obligation is None or (owner_id is not None and obligation.owner_id != owner_id):
            raise ObligationNotFound(f"Recurring #{obligation_id} not found")
        if not obligation.active:
            raise ObligationInactive(f"Recurring #{obligation_id} is deactivated")
        if expected_anchor is not None and obligation.anchor_due_date != expected_anchor:
            raise ConflictError(obligation_id, expected_anchor)
        return obligation

    @staticmethod
    def _realize(obligation: RecurringObligation, overrides: CompletionOverrides) -> RealizedTransaction:
        anchor = obligation.anchor_due_date
        return RealizedTransaction(
            obligation_id=obligation.id,
            owner_id=obligation.owner_id,
            kind=obligation.kind,
            amount=overrides.amount if overrides.amount is not None else obligation.amount,
            description=(
                overrides.description
                if overrides.description is not None
                else obligation.description
            ),
            resolved_date=overrides.resolved_date or anchor,
            idempotency_key=idempotency_key(obligation.id, anchor),
            category=obligation.category,
            currency=obligation.currency,
        )

    async def _notify(self, owner_id: int, obligation_id: int) -> None:
        for listener in self._listeners:
            try:
                await listener(owner_id, obligation_id)
            except Exception:
                # The advance is already committed; a failed refresh only delays the feed.
                logger.exception(f"Advance listener failed for recurring #{obligation_id}")
