"""
db/init_db.py
-------------
Creates the database schema (tables) if they do not already exist.
Run this module directly to initialize a fresh database:
    python -m db.init_db
"""

from db.connection import transaction
from utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
-- Recurring obligations: rows are deactivated, never deleted
CREATE TABLE IF NOT EXISTS recurring_payments (
    id              SERIAL PRIMARY KEY,
    user_id         BIGINT NOT NULL,
    kind            VARCHAR(10) NOT NULL DEFAULT 'expense' CHECK (kind IN ('expense', 'income')),
    name            VARCHAR(100) NOT NULL,
    amount          NUMERIC(12,2) NOT NULL CHECK (amount > 0),
    currency        VARCHAR(5) DEFAULT 'EUR',
    category        VARCHAR(50),
    frequency       VARCHAR(20) NOT NULL CHECK (frequency IN ('daily', 'weekly', 'monthly', 'yearly', 'custom')),
    recurring_day   INT CHECK (recurring_day BETWEEN 1 AND 31),
    next_due_date   DATE NOT NULL,
    active          BOOLEAN DEFAULT TRUE,
    created_at      TIMESTAMPTZ DEFAULT NOW(),
    CHECK (frequency <> 'custom' OR recurring_day IS NOT NULL)
);

-- Ledger: completed occurrences land here next to manual entries
CREATE TABLE IF NOT EXISTS expenses (
    id              SERIAL PRIMARY KEY,
    user_id         BIGINT NOT NULL,
    type            VARCHAR(10) NOT NULL CHECK (type IN ('expense', 'income')),
    amount          NUMERIC(12,2) NOT NULL,
    currency        VARCHAR(5) DEFAULT 'EUR',
    category        VARCHAR(50),
    description     TEXT,
    date            DATE NOT NULL DEFAULT CURRENT_DATE,
    recurring_id    INT REFERENCES recurring_payments(id),
    idempotency_key VARCHAR(64) UNIQUE,
    created_at      TIMESTAMPTZ DEFAULT NOW()
);

-- Peer requests: owned by the social features, read-only here
CREATE TABLE IF NOT EXISTS money_requests (
    id              SERIAL PRIMARY KEY,
    to_user_id      BIGINT NOT NULL,
    from_name       VARCHAR(100) NOT NULL,
    amount          NUMERIC(12,2),
    note            TEXT,
    status          VARCHAR(20) NOT NULL DEFAULT 'pending',
    created_at      TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS friend_requests (
    id              SERIAL PRIMARY KEY,
    user_id         BIGINT NOT NULL,
    from_name       VARCHAR(100) NOT NULL,
    status          VARCHAR(20) NOT NULL DEFAULT 'pending',
    created_at      TIMESTAMPTZ DEFAULT NOW()
);

-- Indexes for faster queries
CREATE INDEX IF NOT EXISTS idx_expenses_user_date ON expenses(user_id, date);
CREATE INDEX IF NOT EXISTS idx_recurring_owner ON recurring_payments(user_id) WHERE active = TRUE;
CREATE INDEX IF NOT EXISTS idx_money_requests_pending ON money_requests(to_user_id) WHERE status = 'pending';
CREATE INDEX IF NOT EXISTS idx_friend_requests_pending ON friend_requests(user_id) WHERE status = 'pending';
"""


def create_tables() -> None:
    """
    Execute the schema SQL to create all tables.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    try:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
        logger.info("Database schema initialized successfully.")
    except Exception as e:
        logger.error(f"Failed to initialize schema: {e}")
        raise


if __name__ == "__main__":
    from db.connection import init_pool
    init_pool()
    create_tables()
    print("✅ Database schema created successfully.")
