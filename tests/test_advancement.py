"""Complete / Skip / Deactivate and the at-most-once guarantee."""

import asyncio
from datetime import date

import pytest

from models.notification import STATUS_OK
from models.recurring import CompletionOverrides, Daily, Monthly, idempotency_key
from utils.errors import (
    ConflictError,
    ObligationInactive,
    ObligationNotFound,
    StoreUnavailable,
    ValidationError,
)


@pytest.mark.asyncio
async def test_complete_with_overrides_records_and_advances(store, coordinator):
    rent = store.seed(amount=450.0, description="Flat", frequency=Monthly(), anchor_due_date=date(2024, 3, 1))

    result = await coordinator.complete(rent.id, CompletionOverrides(amount=500, description="Rent"))

    assert result.status == STATUS_OK
    assert result.new_anchor == date(2024, 4, 1)
    assert store.anchor_of(rent.id) == date(2024, 4, 1)
    [record] = store.realized.values()
    assert record.amount == 500
    assert record.description == "Rent"
    assert record.resolved_date == date(2024, 3, 1)
    assert record.obligation_id == rent.id
    assert record.idempotency_key == idempotency_key(rent.id, date(2024, 3, 1))


@pytest.mark.asyncio
async def test_complete_without_overrides_uses_stored_values(store, coordinator):
    salary = store.seed(kind="income", amount=2500.0, description="Salary", anchor_due_date=date(2024, 1, 31))

    result = await coordinator.complete(salary.id)

    assert result.realized.amount == 2500.0
    assert result.realized.kind == "income"
    assert result.realized.resolved_date == date(2024, 1, 31)
    assert store.anchor_of(salary.id) == date(2024, 2, 29)


@pytest.mark.asyncio
async def test_complete_with_overridden_date(store, coordinator):
    gym = store.seed(anchor_due_date=date(2024, 3, 1))
    overrides = CompletionOverrides(resolved_date=date(2024, 3, 3))

    result = await coordinator.edit_and_complete(gym.id, overrides)

    assert result.realized.resolved_date == date(2024, 3, 3)
    assert result.realized.idempotency_key == idempotency_key(gym.id, date(2024, 3, 1))
    assert store.anchor_of(gym.id) == date(2024, 4, 1)


@pytest.mark.asyncio
async def test_edit_and_complete_requires_overrides(store, coordinator):
    gym = store.seed(anchor_due_date=date(2024, 3, 1))
    with pytest.raises(ValidationError):
        await coordinator.edit_and_complete(gym.id, CompletionOverrides())
    assert store.anchor_of(gym.id) == date(2024, 3, 1)
    assert not store.realized


@pytest.mark.parametrize("amount", [0, -5.0, float("nan"), float("inf"), True])
def test_overrides_reject_bad_amounts(amount):
    with pytest.raises(ValidationError):
        CompletionOverrides(amount=amount)


@pytest.mark.asyncio
async def test_concurrent_double_complete_advances_once(store, coordinator):
    rent = store.seed(anchor_due_date=date(2024, 3, 1))

    results = await asyncio.gather(
        coordinator.complete(rent.id),
        coordinator.complete(rent.id),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(conflicts) == 1
    assert len(store.realized) == 1
    assert store.advances == [(rent.id, date(2024, 3, 1), date(2024, 4, 1))]


@pytest.mark.asyncio
async def test_complete_on_stale_notification_conflicts(store, coordinator):
    rent = store.seed(anchor_due_date=date(2024, 3, 1))
    await coordinator.complete(rent.id, expected_anchor=date(2024, 3, 1))

    with pytest.raises(ConflictError):
        await coordinator.complete(rent.id, expected_anchor=date(2024, 3, 1))

    assert len(store.realized) == 1
    assert store.anchor_of(rent.id) == date(2024, 4, 1)


@pytest.mark.asyncio
async def test_skip_and_complete_race_writes_nothing_for_loser(store, coordinator):
    rent = store.seed(anchor_due_date=date(2024, 3, 1))

    results = await asyncio.gather(
        coordinator.skip(rent.id),
        coordinator.complete(rent.id),
        return_exceptions=True,
    )

    assert sum(isinstance(r, ConflictError) for r in results) == 1
    assert len(store.advances) == 1
    if isinstance(results[1], ConflictError):
        assert not store.realized


@pytest.mark.asyncio
async def test_skip_daily_due_today(store, coordinator):
    coffee = store.seed(frequency=Daily(), anchor_due_date=date(2024, 3, 1))

    result = await coordinator.skip(coffee.id)

    assert result.new_anchor == date(2024, 3, 2)
    assert store.anchor_of(coffee.id) == date(2024, 3, 2)
    assert not store.realized


@pytest.mark.asyncio
async def test_failed_write_changes_nothing(store, coordinator):
    rent = store.seed(anchor_due_date=date(2024, 3, 1))
    store.write_failures = 1

    with pytest.raises(StoreUnavailable):
        await coordinator.complete(rent.id)

    assert store.anchor_of(rent.id) == date(2024, 3, 1)
    assert not store.realized
    result = await coordinator.complete(rent.id)
    assert result.status == STATUS_OK


@pytest.mark.asyncio
async def test_deactivate_keeps_history_and_blocks_advances(store, coordinator):
    rent = store.seed(anchor_due_date=date(2024, 3, 1))
    await coordinator.complete(rent.id)

    result = await coordinator.deactivate(rent.id)

    assert result.status == STATUS_OK
    assert store.obligations[rent.id].active is False
    assert len(store.realized) == 1
    with pytest.raises(ObligationInactive):
        await coordinator.skip(rent.id)
    # Deactivating twice is harmless
    assert (await coordinator.deactivate(rent.id)).status == STATUS_OK


@pytest.mark.asyncio
async def test_unknown_or_foreign_obligation(store, coordinator):
    rent = store.seed(owner_id=1, anchor_due_date=date(2024, 3, 1))
    with pytest.raises(ObligationNotFound):
        await coordinator.complete(999)
    with pytest.raises(ObligationNotFound):
        await coordinator.skip(rent.id, owner_id=2)
    with pytest.raises(ObligationNotFound):
        await coordinator.deactivate(rent.id, owner_id=2)
    assert store.anchor_of(rent.id) == date(2024, 3, 1)


@pytest.mark.asyncio
async def test_listeners_run_after_advance(store, coordinator):
    rent = store.seed(owner_id=7, anchor_due_date=date(2024, 3, 1))
    calls = []

    async def listener(owner_id, obligation_id):
        calls.append((owner_id, obligation_id))

    async def broken(owner_id, obligation_id):
        raise RuntimeError("boom")

    coordinator.on_advanced(broken)
    coordinator.on_advanced(listener)
    await coordinator.skip(rent.id)
    await coordinator.complete(rent.id)

    assert calls == [(7, rent.id), (7, rent.id)]


@pytest.mark.asyncio
async def test_dismiss_today_skips_only_todays_items(store, coordinator):
    today = date(2024, 3, 1)
    due_today = store.seed(anchor_due_date=today)
    daily = store.seed(frequency=Daily(), anchor_due_date=today)
    later = store.seed(anchor_due_date=date(2024, 3, 4))
    store.seed(owner_id=2, anchor_due_date=today)

    result = await coordinator.dismiss_today(1, today)

    assert sorted(result.skipped) == sorted([due_today.id, daily.id])
    assert result.failed == []
    assert store.anchor_of(due_today.id) == date(2024, 4, 1)
    assert store.anchor_of(daily.id) == date(2024, 3, 2)
    assert store.anchor_of(later.id) == date(2024, 3, 4)
    assert not store.realized


@pytest.mark.asyncio
async def test_dismiss_today_reports_partial_failure(coordinator, store):
    today = date(2024, 3, 1)
    first = store.seed(frequency=Daily(), anchor_due_date=today)
    second = store.seed(frequency=Daily(), anchor_due_date=today)
    third = store.seed(frequency=Daily(), anchor_due_date=today)
    original_advance = store.advance_anchor

    async def failing_for_second(obligation_id, expected, new_anchor):
        if obligation_id == second.id:
            raise StoreUnavailable("advance_anchor timed out")
        return await original_advance(obligation_id, expected, new_anchor)

    store.advance_anchor = failing_for_second

    result = await coordinator.dismiss_today(1, today)

    assert result.skipped == [first.id, third.id]
    assert result.failed == [second.id]
    assert not result.complete
    assert store.anchor_of(first.id) == date(2024, 3, 2)
    assert store.anchor_of(second.id) == today
    assert store.anchor_of(third.id) == date(2024, 3, 2)


@pytest.mark.asyncio
async def test_dismiss_today_without_listing_changes_nothing(coordinator, store):
    today = date(2024, 3, 1)
    rent = store.seed(anchor_due_date=today)
    store.read_failures = 1

    with pytest.raises(StoreUnavailable):
        await coordinator.dismiss_today(1, today)
    assert store.anchor_of(rent.id) == today
