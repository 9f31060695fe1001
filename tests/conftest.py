"""Shared fixtures for the recurring engine tests."""

import pytest

from models.notification import NotificationWindowPolicy
from services.advancement import AdvancementCoordinator
from services.notification_service import NotificationAggregator
from tests.fakes import FakeRequestSource, InMemoryObligationStore


@pytest.fixture
def policy() -> NotificationWindowPolicy:
    return NotificationWindowPolicy(store_retry_backoff_seconds=0)


@pytest.fixture
def store() -> InMemoryObligationStore:
    return InMemoryObligationStore()


@pytest.fixture
def requests() -> FakeRequestSource:
    return FakeRequestSource()


@pytest.fixture
def coordinator(store) -> AdvancementCoordinator:
    return AdvancementCoordinator(store)


@pytest.fixture
def aggregator(store, requests, policy) -> NotificationAggregator:
    return NotificationAggregator(store, requests, policy)
