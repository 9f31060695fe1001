"""
repositories/recurring_repo.py
-------------------------------
Data access layer for recurring obligations and the ledger rows
they produce. All SQL touching `recurring_payments` lives here.

Anchor updates are compare-and-swap: the UPDATE only matches while
next_due_date still equals the value the caller read.
"""

from dataclasses import replace
from datetime import date
from typing import Optional

from db.connection import transaction
from models.recurring import (
    ActiveScan,
    RealizedTransaction,
    RecurringObligation,
    frequency_from_db,
    frequency_to_db,
)
from utils.errors import ValidationError
from utils.logger import get_logger

logger = get_logger(__name__)

_COLUMNS = (
    "id, user_id, kind, name, amount, currency, category, "
    "frequency, recurring_day, next_due_date, active, created_at"
)


class RecurringRepository:
    """Repository for recurring_payments plus realized rows in expenses."""

    # ── CREATE ────────────────────────────────────────────

    def add(self, obligation: RecurringObligation) -> RecurringObligation:
        """
        Insert a new recurring obligation.

        Returns:
            The same object with its `id` and `created_at` populated.
        """
        frequency, day = frequency_to_db(obligation.frequency)
        sql = """
            INSERT INTO recurring_payments
                (user_id, kind, name, amount, currency, category,
                 frequency, recurring_day, next_due_date, active)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, created_at;
        """
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (
                    obligation.owner_id, obligation.kind, obligation.description,
                    obligation.amount, obligation.currency, obligation.category,
                    frequency, day, obligation.anchor_due_date, obligation.active,
                ))
                row = cur.fetchone()
        obligation.id = row[0]
        obligation.created_at = row[1]
        logger.info(f"Added recurring '{obligation.description}' #{obligation.id}")
        return obligation

    # ── READ ──────────────────────────────────────────────

    def scan_active(self, owner_id: int) -> ActiveScan:
        """
        Active obligations of one owner, soonest first.

        A row whose schedule does not parse is left out and its id is
        reported in `unreadable`.
        """
        sql = (
            f"SELECT {_COLUMNS} FROM recurring_payments "
            "WHERE user_id = %s AND active = TRUE ORDER BY next_due_date ASC, id ASC;"
        )
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (owner_id,))
                rows = cur.fetchall()

        scan = ActiveScan()
        for row in rows:
            try:
                scan.obligations.append(self._row_to_obligation(row))
            except ValidationError as e:
                logger.error(f"Skipping unreadable recurring #{row[0]}: {e}")
                scan.unreadable.append(row[0])
        return scan

    def list_active(self, owner_id: int) -> list[RecurringObligation]:
        return self.scan_active(owner_id).obligations

    def get_by_id(self, obligation_id: int) -> Optional[RecurringObligation]:
        sql = f"SELECT {_COLUMNS} FROM recurring_payments WHERE id = %s;"
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (obligation_id,))
                row = cur.fetchone()
        return self._row_to_obligation(row) if row else None

    # ── UPDATE ────────────────────────────────────────────

    def advance_anchor(self, obligation_id: int, expected: date, new_anchor: date) -> bool:
        """
        Move next_due_date from `expected` to `new_anchor`.

        Returns:
            False if the stored anchor no longer equals `expected`.
        """
        with transaction() as conn:
            with conn.cursor() as cur:
                updated = self._cas_anchor(cur, obligation_id, expected, new_anchor)
        if updated:
            logger.info(f"Advanced recurring #{obligation_id}: {expected} -> {new_anchor}")
        return updated

    def insert_realized(self, record: RealizedTransaction) -> Optional[RealizedTransaction]:
        """
        Write a completed occurrence to the ledger.

        Returns:
            The stored record, or None if its idempotency key already exists.
        """
        with transaction() as conn:
            with conn.cursor() as cur:
                return self._insert_realized(cur, record)

    def commit_occurrence(
        self,
        obligation_id: int,
        expected: date,
        new_anchor: date,
        record: RealizedTransaction,
    ) -> Optional[RealizedTransaction]:
        """
        Advance the anchor and write the ledger row in one transaction.

        Returns:
            The stored record, or None if the CAS lost (nothing written).
            A duplicate idempotency key returns the record without an id.
        """
        with transaction() as conn:
            with conn.cursor() as cur:
                if not self._cas_anchor(cur, obligation_id, expected, new_anchor):
                    return None
                stored = self._insert_realized(cur, record)
        logger.info(f"Completed recurring #{obligation_id} for {expected}; next {new_anchor}")
        return stored or record

    def set_active(self, obligation_id: int, active: bool) -> bool:
        """Enable or disable an obligation. Rows are never deleted."""
        sql = "UPDATE recurring_payments SET active = %s WHERE id = %s;"
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (active, obligation_id))
                updated = cur.rowcount > 0
        if updated:
            logger.info(f"Recurring #{obligation_id} active={active}")
        return updated

    # ── HELPERS ───────────────────────────────────────────

    @staticmethod
    def _cas_anchor(cur, obligation_id: int, expected: date, new_anchor: date) -> bool:
        cur.execute(
            "UPDATE recurring_payments SET next_due_date = %s "
            "WHERE id = %s AND next_due_date = %s;",
            (new_anchor, obligation_id, expected),
        )
        return cur.rowcount > 0

    @staticmethod
    def _insert_realized(cur, record: RealizedTransaction) -> Optional[RealizedTransaction]:
        cur.execute(
            """
            INSERT INTO expenses
                (user_id, type, amount, currency, category, description,
                 date, recurring_id, idempotency_key)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (idempotency_key) DO NOTHING
            RETURNING id;
            """,
            (
                record.owner_id, record.kind, record.amount, record.currency,
                record.category, record.description, record.resolved_date,
                record.obligation_id, record.idempotency_key,
            ),
        )
        row = cur.fetchone()
        if row is None:
            logger.warning(f"Realized entry {record.idempotency_key} already recorded")
            return None
        return replace(record, id=row[0])

    @staticmethod
    def _row_to_obligation(row: tuple) -> RecurringObligation:
        """Convert a database row tuple to a RecurringObligation."""
        return RecurringObligation(
            id=row[0],
            owner_id=row[1],
            kind=row[2],
            description=row[3],
            amount=float(row[4]),
            currency=row[5],
            category=row[6],
            frequency=frequency_from_db(row[7], row[8]),
            anchor_due_date=row[9],
            active=row[10],
            created_at=row[11],
        )
