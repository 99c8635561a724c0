import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

import aiosqlite

from config import DB_PATH
from sqlite_lock_logger import log_sqlite_lock_event


SQLITE_BUSY_TIMEOUT_MS = 5000
WRITE_RETRY_ATTEMPTS = 3
WRITE_RETRY_BASE_DELAY_SEC = 0.05

CLAIM_STATUSES = ("pending", "approved", "rejected", "revoked")
REVIEW_STATUSES = ("pending", "approved", "rejected")

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def apply_sqlite_pragmas(db: aiosqlite.Connection) -> None:
    """Apply SQLite settings for concurrent access from several API processes."""
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")


@asynccontextmanager
async def open_db(db_path: str | None = None) -> AsyncIterator[aiosqlite.Connection]:
    """Open connection with required PRAGMA settings and dict-like rows."""
    async with aiosqlite.connect(db_path or DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        await apply_sqlite_pragmas(db)
        yield db


def is_sqlite_locked_error(exc: BaseException) -> bool:
    if not isinstance(exc, (sqlite3.OperationalError, aiosqlite.OperationalError)):
        return False
    msg = str(exc).lower()
    return "database is locked" in msg or "database table is locked" in msg


async def with_sqlite_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = WRITE_RETRY_ATTEMPTS,
    base_delay: float = WRITE_RETRY_BASE_DELAY_SEC,
) -> T:
    """Run `fn`, re-running it from scratch when SQLite reports a lock.

    `fn` must own its connection/transaction so a retry never observes a
    half-applied write. Any other error propagates unchanged.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except (sqlite3.OperationalError, aiosqlite.OperationalError) as exc:
            if not is_sqlite_locked_error(exc) or attempt >= retries:
                raise
            delay = base_delay * (2**attempt)
            logger.warning("SQLite locked; retry %s/%s in %.2fs", attempt + 1, retries, delay)
            log_sqlite_lock_event(
                where=f"database.with_sqlite_retry:{getattr(fn, '__name__', '')}",
                exc=exc,
                attempt=attempt + 1,
                retries=retries,
                delay_sec=delay,
            )
            await asyncio.sleep(delay)
            attempt += 1


async def init_db(db_path: str | None = None) -> None:
    """Create moderation tables and indexes (idempotent)."""
    async with open_db(db_path) as db:
        await db.execute(
            """CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT DEFAULT NULL UNIQUE,
                display_name TEXT DEFAULT NULL,
                role TEXT NOT NULL DEFAULT 'user',
                created_at TEXT NOT NULL
            )"""
        )
        await db.execute(
            """CREATE TABLE IF NOT EXISTS businesses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                owner_id INTEGER DEFAULT NULL,
                rating_aggregate REAL DEFAULT NULL,
                rating_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE SET NULL
            )"""
        )
        await db.execute(
            f"""CREATE TABLE IF NOT EXISTS ownership_claims (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                business_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                message TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ({", ".join(repr(s) for s in CLAIM_STATUSES)})),
                admin_message TEXT DEFAULT NULL,
                reviewed_by INTEGER DEFAULT NULL,
                reviewed_at TEXT DEFAULT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (business_id) REFERENCES businesses(id) ON DELETE CASCADE
            )"""
        )
        await db.execute(
            f"""CREATE TABLE IF NOT EXISTS reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                business_id INTEGER NOT NULL,
                user_id INTEGER DEFAULT NULL,
                reviewer_name TEXT DEFAULT NULL,
                reviewer_email TEXT DEFAULT NULL,
                rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                title TEXT DEFAULT NULL,
                comment TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ({", ".join(repr(s) for s in REVIEW_STATUSES)})),
                moderation_notes TEXT DEFAULT NULL,
                moderated_by INTEGER DEFAULT NULL,
                moderated_at TEXT DEFAULT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (business_id) REFERENCES businesses(id) ON DELETE CASCADE
            )"""
        )

        # One pending claim per (business, user); one approved claim per business.
        await db.execute(
            """CREATE UNIQUE INDEX IF NOT EXISTS uq_claims_pending_pair
               ON ownership_claims (business_id, user_id) WHERE status = 'pending'"""
        )
        await db.execute(
            """CREATE UNIQUE INDEX IF NOT EXISTS uq_claims_approved_business
               ON ownership_claims (business_id) WHERE status = 'approved'"""
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_claims_user ON ownership_claims (user_id, created_at)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_claims_status_created ON ownership_claims (status, created_at)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_reviews_business_status ON reviews (business_id, status)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_reviews_status_created ON reviews (status, created_at)"
        )
        await db.commit()
