"""
repositories/obligation_store.py
---------------------------------
Async facade over the blocking psycopg2 repositories.

Every call runs in a worker thread with a bounded timeout. Reads are
retried with exponential backoff; writes are attempted once and any
failure is surfaced. psycopg2 errors and timeouts become
StoreUnavailable here and nowhere else.
"""

import asyncio
from datetime import date
from typing import Callable, Optional, Protocol, TypeVar

import psycopg2

from models.notification import NotificationWindowPolicy, PendingRequestItem
from models.recurring import ActiveScan, RealizedTransaction, RecurringObligation
from repositories.recurring_repo import RecurringRepository
from repositories.request_repo import RequestRepository
from utils.errors import StoreUnavailable
from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ObligationStore(Protocol):
    """What the engine needs from the obligation store."""

    async def list_active(self, owner_id: int) -> list[RecurringObligation]: ...

    async def scan_active(self, owner_id: int) -> ActiveScan: ...

    async def get(self, obligation_id: int) -> Optional[RecurringObligation]: ...

    async def add(self, obligation: RecurringObligation) -> RecurringObligation: ...

    async def advance_anchor(self, obligation_id: int, expected: date, new_anchor: date) -> bool: ...

    async def insert_realized(self, record: RealizedTransaction) -> bool: ...

    async def commit_occurrence(
        self,
        obligation_id: int,
        expected: date,
        new_anchor: date,
        record: RealizedTransaction,
    ) -> Optional[RealizedTransaction]: ...

    async def set_active(self, obligation_id: int, active: bool) -> bool: ...


class PendingRequestSource(Protocol):
    """Read-only source of pending peer requests."""

    async def list_pending(self, owner_id: int) -> list[PendingRequestItem]: ...


class _ThreadedCalls:
    """Shared timeout / retry / error translation for the adapters."""

    def __init__(self, policy: NotificationWindowPolicy):
        self.policy = policy

    async def _call(self, label: str, fn: Callable[..., T], *args) -> T:
        # A timed-out thread may still finish its write; idempotency keys
        # and the anchor CAS make that harmless.
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args),
                timeout=self.policy.store_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Store call {label} timed out after {self.policy.store_timeout_seconds}s")
            raise StoreUnavailable(f"{label} timed out") from e
        except (psycopg2.Error, RuntimeError) as e:
            logger.error(f"Store call {label} failed: {e}")
            raise StoreUnavailable(f"{label} failed: {e}") from e

    async def _read(self, label: str, fn: Callable[..., T], *args) -> T:
        delay = self.policy.store_retry_backoff_seconds
        attempts = self.policy.store_read_retries
        for attempt in range(1, attempts + 1):
            try:
                return await self._call(label, fn, *args)
            except StoreUnavailable:
                if attempt == attempts:
                    raise
                logger.info(f"Retrying {label} in {delay:.2f}s (attempt {attempt}/{attempts})")
                await asyncio.sleep(delay)
                delay *= 2
        raise StoreUnavailable(f"{label} failed")


class PostgresObligationStore(_ThreadedCalls):
    """ObligationStore backed by RecurringRepository."""

    def __init__(self, policy: NotificationWindowPolicy, repo: Optional[RecurringRepository] = None):
        super().__init__(policy)
        self.repo = repo or RecurringRepository()

    async def list_active(self, owner_id: int) -> list[RecurringObligation]:
        return await self._read("list_active", self.repo.list_active, owner_id)

    async def scan_active(self, owner_id: int) -> ActiveScan:
        return await self._read("scan_active", self.repo.scan_active, owner_id)

    async def get(self, obligation_id: int) -> Optional[RecurringObligation]:
        return await self._read("get", self.repo.get_by_id, obligation_id)

    async def add(self, obligation: RecurringObligation) -> RecurringObligation:
        return await self._call("add", self.repo.add, obligation)

    async def advance_anchor(self, obligation_id: int, expected: date, new_anchor: date) -> bool:
        return await self._call(
            "advance_anchor", self.repo.advance_anchor, obligation_id, expected, new_anchor
        )

    async def insert_realized(self, record: RealizedTransaction) -> bool:
        stored = await self._call("insert_realized", self.repo.insert_realized, record)
        return stored is not None

    async def commit_occurrence(
        self,
        obligation_id: int,
        expected: date,
        new_anchor: date,
        record: RealizedTransaction,
    ) -> Optional[RealizedTransaction]:
        return await self._call(
            "commit_occurrence", self.repo.commit_occurrence,
            obligation_id, expected, new_anchor, record,
        )

    async def set_active(self, obligation_id: int, active: bool) -> bool:
        return await self._call("set_active", self.repo.set_active, obligation_id, active)


class PostgresRequestSource(_ThreadedCalls):
    """PendingRequestSource backed by RequestRepository."""

    def __init__(self, policy: NotificationWindowPolicy, repo: Optional[RequestRepository] = None):
        super().__init__(policy)
        self.repo = repo or RequestRepository()

    async def list_pending(self, owner_id: int) -> list[PendingRequestItem]:
        return await self._read("list_pending", self.repo.list_pending, owner_id)
