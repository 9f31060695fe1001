"""Async store adapter: timeouts, read retries and error translation."""

import time
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal

import psycopg2
import pytest

from models.notification import NotificationWindowPolicy
from models.recurring import Monthly, RealizedTransaction, RecurringObligation
from repositories.obligation_store import PostgresObligationStore, PostgresRequestSource
from repositories.recurring_repo import RecurringRepository
from services.notification_service import NotificationAggregator
from tests.fakes import FakeRequestSource
from utils.errors import StoreUnavailable


class FlakyRepository:
    """Stands in for RecurringRepository; fails the first `failures` calls."""

    def __init__(self, failures: int = 0, delay: float = 0.0):
        self.failures = failures
        self.delay = delay
        self.calls = 0

    def _maybe_fail(self):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.calls <= self.failures:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")

    def list_active(self, owner_id):
        self._maybe_fail()
        return [
            RecurringObligation(
                id=1, owner_id=owner_id, kind="expense", amount=10.0,
                description="Rent", frequency=Monthly(), anchor_due_date=date(2024, 3, 1),
            )
        ]

    def advance_anchor(self, obligation_id, expected, new_anchor):
        self._maybe_fail()
        return True

    def insert_realized(self, record):
        self._maybe_fail()
        return None

    def list_pending(self, owner_id):
        self._maybe_fail()
        return []


def make_policy(**overrides) -> NotificationWindowPolicy:
    values = {"store_retry_backoff_seconds": 0, "store_read_retries": 3}
    values.update(overrides)
    return NotificationWindowPolicy(**values)


@pytest.mark.asyncio
async def test_reads_are_retried():
    repo = FlakyRepository(failures=2)
    store = PostgresObligationStore(make_policy(), repo=repo)

    rows = await store.list_active(1)

    assert [r.id for r in rows] == [1]
    assert repo.calls == 3


@pytest.mark.asyncio
async def test_reads_give_up_after_retries():
    repo = FlakyRepository(failures=5)
    store = PostgresObligationStore(make_policy(), repo=repo)

    with pytest.raises(StoreUnavailable):
        await store.list_active(1)
    assert repo.calls == 3


@pytest.mark.asyncio
async def test_writes_are_not_retried():
    repo = FlakyRepository(failures=1)
    store = PostgresObligationStore(make_policy(), repo=repo)

    with pytest.raises(StoreUnavailable):
        await store.advance_anchor(1, date(2024, 3, 1), date(2024, 4, 1))
    assert repo.calls == 1


@pytest.mark.asyncio
async def test_slow_calls_time_out():
    repo = FlakyRepository(delay=0.2)
    store = PostgresObligationStore(make_policy(store_timeout_seconds=0.02), repo=repo)

    with pytest.raises(StoreUnavailable):
        await store.advance_anchor(1, date(2024, 3, 1), date(2024, 4, 1))


@pytest.mark.asyncio
async def test_duplicate_realized_insert_reports_false():
    store = PostgresObligationStore(make_policy(), repo=FlakyRepository())
    record = RealizedTransaction(
        obligation_id=1, owner_id=1, kind="expense", amount=10.0,
        description="Rent", resolved_date=date(2024, 3, 1), idempotency_key="1:2024-03-01",
    )
    assert await store.insert_realized(record) is False


@pytest.mark.asyncio
async def test_request_source_translates_errors():
    repo = FlakyRepository(failures=10)
    source = PostgresRequestSource(make_policy(store_read_retries=2), repo=repo)

    with pytest.raises(StoreUnavailable):
        await source.list_pending(1)
    assert repo.calls == 2


# ── Row conversion ────────────────────────────────────────

class _Cursor:
    def __init__(self, rows):
        self.rows = rows

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        pass

    def fetchall(self):
        return self.rows


class _Connection:
    def __init__(self, rows):
        self.rows = rows

    def cursor(self):
        return _Cursor(self.rows)


def rows_in_db(monkeypatch, rows):
    """Make RecurringRepository read `rows` instead of querying PostgreSQL."""

    @contextmanager
    def fake_transaction():
        yield _Connection(rows)

    monkeypatch.setattr("repositories.recurring_repo.transaction", fake_transaction)


def db_row(obligation_id, frequency, day, anchor=date(2024, 2, 26)):
    return (
        obligation_id, 1, "expense", f"Item {obligation_id}", Decimal("30.00"), "EUR", None,
        frequency, day, anchor, True, None,
    )


def test_scan_reports_rows_with_broken_schedule(monkeypatch):
    rows_in_db(monkeypatch, [db_row(1, "monthly", None), db_row(2, "custom", None), db_row(3, "hourly", None)])
    repo = RecurringRepository()

    scan = repo.scan_active(1)

    assert [o.id for o in scan.obligations] == [1]
    assert scan.unreadable == [2, 3]
    assert [o.id for o in repo.list_active(1)] == [1]


@pytest.mark.asyncio
async def test_broken_row_degrades_feed_instead_of_failing(monkeypatch):
    rows_in_db(monkeypatch, [db_row(1, "monthly", None), db_row(2, "custom", None)])
    policy = make_policy()
    store = PostgresObligationStore(policy, repo=RecurringRepository())
    aggregator = NotificationAggregator(store, FakeRequestSource(), policy)

    feed = await aggregator.build_feed(1, datetime(2024, 2, 25, 10, 0))

    assert feed.degraded
    assert feed.needs_review == [2]
    assert [i.obligation_id for i in feed.items] == [1]
