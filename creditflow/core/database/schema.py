"""
Database Schema

DDL for the outbox table and the credit entities, per backend.
Applied idempotently at startup with `ensure_schema()`.
"""

import logging
from typing import List

from .adapter import DatabaseAdapter, DatabaseBackend

logger = logging.getLogger(__name__)

POSTGRES_SCHEMA: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS outbox_events (
        id              BIGSERIAL PRIMARY KEY,
        event_id        TEXT NOT NULL,
        event_type      TEXT NOT NULL,
        schema_version  INTEGER NOT NULL DEFAULT 1,
        payload         TEXT NOT NULL,
        destination     TEXT NOT NULL,
        partition_key   TEXT NOT NULL,
        published       BOOLEAN NOT NULL DEFAULT FALSE,
        created_at      TIMESTAMPTZ NOT NULL,
        published_at    TIMESTAMPTZ,
        retry_count     INTEGER NOT NULL DEFAULT 0,
        last_error      TEXT,
        acknowledged_at TIMESTAMPTZ,
        acknowledged_by TEXT,
        CHECK ((published AND published_at IS NOT NULL)
               OR (NOT published AND published_at IS NULL))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_outbox_unpublished ON outbox_events (published, created_at, id)",
    """
    CREATE TABLE IF NOT EXISTS credit_applications (
        application_id   TEXT PRIMARY KEY,
        customer_id      TEXT NOT NULL,
        requested_amount NUMERIC(15, 2) NOT NULL,
        credit_score     INTEGER,
        annual_income    NUMERIC(15, 2),
        status           TEXT NOT NULL,
        decision         TEXT,
        decision_reason  TEXT,
        submitted_at     TIMESTAMPTZ NOT NULL,
        last_updated     TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS risk_assessments (
        assessment_id    TEXT PRIMARY KEY,
        application_id   TEXT NOT NULL UNIQUE REFERENCES credit_applications (application_id),
        risk_level       TEXT NOT NULL,
        risk_score       NUMERIC(5, 2),
        assessment_notes TEXT,
        assessed_at      TIMESTAMPTZ NOT NULL
    )
    """,
]

SQLITE_SCHEMA: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS outbox_events (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id        TEXT NOT NULL,
        event_type      TEXT NOT NULL,
        schema_version  INTEGER NOT NULL DEFAULT 1,
        payload         TEXT NOT NULL,
        destination     TEXT NOT NULL,
        partition_key   TEXT NOT NULL,
        published       INTEGER NOT NULL DEFAULT 0,
        created_at      TEXT NOT NULL,
        published_at    TEXT,
        retry_count     INTEGER NOT NULL DEFAULT 0,
        last_error      TEXT,
        acknowledged_at TEXT,
        acknowledged_by TEXT,
        CHECK ((published = 1 AND published_at IS NOT NULL)
               OR (published = 0 AND published_at IS NULL))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_outbox_unpublished ON outbox_events (published, created_at, id)",
    """
    CREATE TABLE IF NOT EXISTS credit_applications (
        application_id   TEXT PRIMARY KEY,
        customer_id      TEXT NOT NULL,
        requested_amount TEXT NOT NULL,
        credit_score     INTEGER,
        annual_income    TEXT,
        status           TEXT NOT NULL,
        decision         TEXT,
        decision_reason  TEXT,
        submitted_at     TEXT NOT NULL,
        last_updated     TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS risk_assessments (
        assessment_id    TEXT PRIMARY KEY,
        application_id   TEXT NOT NULL UNIQUE REFERENCES credit_applications (application_id),
        risk_level       TEXT NOT NULL,
        risk_score       TEXT,
        assessment_notes TEXT,
        assessed_at      TEXT NOT NULL
    )
    """,
]


async def ensure_schema(db: DatabaseAdapter) -> None:
    """Create tables and indexes if they do not exist."""
    statements = POSTGRES_SCHEMA if db.backend == DatabaseBackend.POSTGRESQL else SQLITE_SCHEMA
    async with db.transaction() as conn:
        for statement in statements:
            await conn.execute(statement)
    logger.info(f"Schema ensured ({db.backend.value}, {len(statements)} statements)")
