"""
utils/errors.py
---------------
Error taxonomy for the recurring-payments engine.
Services and repositories raise these; raw database exceptions
never travel past the store adapter.
"""

from datetime import date
from typing import Optional


class EngineError(Exception):
    """Base class for every error raised by the recurring engine."""


class ValidationError(EngineError, ValueError):
    """Malformed input, e.g. a custom day outside 1-31 or a bad amount."""


class ConflictError(EngineError):
    """
    Optimistic compare-and-swap on the anchor date failed.

    Another caller already handled this occurrence, so the
    caller can refetch and treat the action as a no-op.
    """

    def __init__(self, obligation_id: int, expected_anchor: date):
        self.obligation_id = obligation_id
        self.expected_anchor = expected_anchor
        super().__init__(
            f"Recurring #{obligation_id} no longer due on {expected_anchor}"
        )


class StoreUnavailable(EngineError):
    """The obligation store timed out or failed at the I/O level."""


class RunawayRecurrence(EngineError):
    """Catch-up exceeded the iteration cap; needs manual review."""

    def __init__(self, anchor: date, iterations: int, obligation_id: Optional[int] = None):
        self.anchor = anchor
        self.iterations = iterations
        self.obligation_id = obligation_id
        super().__init__(
            f"Catch-up from {anchor} did not reach today within {iterations} steps"
        )


class ObligationNotFound(EngineError, LookupError):
    """No recurring payment exists with the requested ID."""


class ObligationInactive(EngineError):
    """The recurring payment was deactivated and can no longer advance."""
