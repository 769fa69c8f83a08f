"""
Database abstraction layer supporting SQLite and PostgreSQL.

Usage:
    from creditflow.core.database import get_database

    db = await get_database()

    async with db.transaction() as conn:
        await conn.execute("UPDATE credit_applications SET status = $1 WHERE application_id = $2", status, app_id)
"""

from .adapter import (
    Connection,
    DatabaseAdapter,
    DatabaseBackend,
    DatabaseConfig,
    get_database,
    close_database,
)
from .schema import ensure_schema

__all__ = [
    "Connection",
    "DatabaseAdapter",
    "DatabaseBackend",
    "DatabaseConfig",
    "get_database",
    "close_database",
    "ensure_schema",
]
