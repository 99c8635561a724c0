"""Persistence for moderation: businesses, users, ownership claims, reviews."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import fields
from datetime import datetime, timezone
from typing import Any, TypeVar

import aiosqlite

from database import open_db, with_sqlite_retry
from moderation.models import Business, OwnershipClaim, Review, User

MAX_PAGE_SIZE = 200

M = TypeVar("M")

CLAIM_SELECT = """
    SELECT oc.id, oc.business_id, oc.user_id, oc.message, oc.status,
           oc.admin_message, oc.reviewed_by, oc.reviewed_at, oc.created_at,
           b.name AS business_name, u.email AS user_email
      FROM ownership_claims oc
      LEFT JOIN businesses b ON b.id = oc.business_id
      LEFT JOIN users u ON u.id = oc.user_id
"""

REVIEW_SELECT = """
    SELECT r.id, r.business_id, r.user_id, r.reviewer_name, r.reviewer_email,
           r.rating, r.title, r.comment, r.status, r.moderation_notes,
           r.moderated_by, r.moderated_at, r.created_at,
           b.name AS business_name
      FROM reviews r
      LEFT JOIN businesses b ON b.id = r.business_id
"""


class OwnershipTakenError(RuntimeError):
    """Business is owned by someone other than the claimant."""

    def __init__(self, business_id: int, owner_id: int) -> None:
        super().__init__(f"Business {business_id} is owned by user {owner_id}.")
        self.business_id = business_id
        self.owner_id = owner_id


def utc_now_iso() -> str:
    """Current UTC timestamp in ISO-8601."""
    return datetime.now(timezone.utc).isoformat()


def _from_row(model: type[M], row: aiosqlite.Row | None) -> M | None:
    if row is None:
        return None
    data = dict(row)
    return model(**{f.name: data[f.name] for f in fields(model) if f.name in data})


def _page(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(int(limit), MAX_PAGE_SIZE)), max(0, int(offset))


class ModerationRepository:
    """Entity Store used by the claim resolver and review moderator.

    Each transition is a conditional update guarded by the expected current
    status; a zero-row update means another writer got there first. A
    transition and its write-through to `businesses` share one transaction.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with open_db(self.db_path) as db:
            yield db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        async with open_db(self.db_path) as db:
            # IMMEDIATE takes the write lock up front, so lock errors surface
            # before any statement runs and the whole unit can be retried.
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    # --- users / businesses -------------------------------------------------

    async def create_user(
        self,
        *,
        email: str | None = None,
        display_name: str | None = None,
        role: str = "user",
    ) -> User:
        async def _op() -> User:
            async with self._transaction() as db:
                cursor = await db.execute(
                    "INSERT INTO users(email, display_name, role, created_at) VALUES(?, ?, ?, ?)",
                    (email, display_name, role, utc_now_iso()),
                )
                user_id = int(cursor.lastrowid)
                async with db.execute(
                    "SELECT id, email, display_name, role, created_at FROM users WHERE id = ?",
                    (user_id,),
                ) as cur:
                    return _from_row(User, await cur.fetchone())

        return await with_sqlite_retry(_op)

    async def get_user(self, user_id: int) -> User | None:
        async with self._connect() as db:
            async with db.execute(
                "SELECT id, email, display_name, role, created_at FROM users WHERE id = ?",
                (int(user_id),),
            ) as cur:
                return _from_row(User, await cur.fetchone())

    async def create_business(self, name: str, *, owner_id: int | None = None) -> Business:
        async def _op() -> Business:
            now = utc_now_iso()
            async with self._transaction() as db:
                cursor = await db.execute(
                    """INSERT INTO businesses(name, owner_id, rating_aggregate, rating_count, created_at, updated_at)
                       VALUES(?, ?, NULL, 0, ?, ?)""",
                    (name, owner_id, now, now),
                )
                return await self._fetch_business(db, int(cursor.lastrowid))

        return await with_sqlite_retry(_op)

    async def _fetch_business(self, db: aiosqlite.Connection, business_id: int) -> Business | None:
        async with db.execute(
            """SELECT id, name, owner_id, rating_aggregate, rating_count, created_at
                 FROM businesses
                WHERE id = ?""",
            (int(business_id),),
        ) as cur:
            return _from_row(Business, await cur.fetchone())

    async def get_business(self, business_id: int) -> Business | None:
        async with self._connect() as db:
            return await self._fetch_business(db, business_id)

    async def set_business_owner(self, business_id: int, owner_id: int | None) -> Business | None:
        """Direct owner assignment. Returns None when the business is absent."""

        async def _op() -> Business | None:
            async with self._transaction() as db:
                cursor = await db.execute(
                    "UPDATE businesses SET owner_id = ?, updated_at = ? WHERE id = ?",
                    (owner_id, utc_now_iso(), int(business_id)),
                )
                if not cursor.rowcount:
                    return None
                return await self._fetch_business(db, business_id)

        return await with_sqlite_retry(_op)

    # --- ownership claims ---------------------------------------------------

    async def _fetch_claim(self, db: aiosqlite.Connection, claim_id: int) -> OwnershipClaim | None:
        async with db.execute(f"{CLAIM_SELECT} WHERE oc.id = ?", (int(claim_id),)) as cur:
            return _from_row(OwnershipClaim, await cur.fetchone())

    async def get_claim(self, claim_id: int) -> OwnershipClaim | None:
        async with self._connect() as db:
            return await self._fetch_claim(db, claim_id)

    async def insert_claim(self, business_id: int, user_id: int, message: str) -> OwnershipClaim:
        """Insert a pending claim.

        Raises sqlite3.IntegrityError when a pending claim for the same
        (business, user) pair already exists.
        """

        async def _op() -> OwnershipClaim:
            now = utc_now_iso()
            async with self._transaction() as db:
                cursor = await db.execute(
                    """INSERT INTO ownership_claims(
                           business_id, user_id, message, status,
                           admin_message, reviewed_by, reviewed_at, created_at, updated_at
                       ) VALUES(?, ?, ?, 'pending', NULL, NULL, NULL, ?, ?)""",
                    (int(business_id), int(user_id), message, now, now),
                )
                return await self._fetch_claim(db, int(cursor.lastrowid))

        return await with_sqlite_retry(_op)

    async def find_open_claim(self, business_id: int, user_id: int) -> OwnershipClaim | None:
        """Pending or approved claim for the pair, if any."""
        async with self._connect() as db:
            async with db.execute(
                f"""{CLAIM_SELECT}
                    WHERE oc.business_id = ? AND oc.user_id = ?
                      AND oc.status IN ('pending', 'approved')
                    ORDER BY CASE oc.status WHEN 'approved' THEN 0 ELSE 1 END
                    LIMIT 1""",
                (int(business_id), int(user_id)),
            ) as cur:
                return _from_row(OwnershipClaim, await cur.fetchone())

    async def get_approved_claim_for_business(self, business_id: int) -> OwnershipClaim | None:
        async with self._connect() as db:
            async with db.execute(
                f"{CLAIM_SELECT} WHERE oc.business_id = ? AND oc.status = 'approved' LIMIT 1",
                (int(business_id),),
            ) as cur:
                return _from_row(OwnershipClaim, await cur.fetchone())

    async def list_claims(
        self,
        *,
        status: str | None = None,
        business_id: int | None = None,
        user_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OwnershipClaim]:
        safe_limit, safe_offset = _page(limit, offset)
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("oc.status = ?")
            params.append(status)
        if business_id is not None:
            clauses.append("oc.business_id = ?")
            params.append(int(business_id))
        if user_id is not None:
            clauses.append("oc.user_id = ?")
            params.append(int(user_id))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self._connect() as db:
            async with db.execute(
                f"{CLAIM_SELECT} {where} ORDER BY oc.created_at DESC, oc.id DESC LIMIT ? OFFSET ?",
                (*params, safe_limit, safe_offset),
            ) as cur:
                return [_from_row(OwnershipClaim, row) for row in await cur.fetchall()]

    async def count_claims_by_status(self) -> dict[str, int]:
        async with self._connect() as db:
            async with db.execute(
                "SELECT status, COUNT(*) AS cnt FROM ownership_claims GROUP BY status"
            ) as cur:
                return {str(row["status"]): int(row["cnt"]) for row in await cur.fetchall()}

    async def approve_claim(
        self,
        claim_id: int,
        *,
        reviewed_by: int,
        admin_message: str | None,
    ) -> OwnershipClaim | None:
        """pending -> approved, then hand the business to the claimant.

        Returns None if the claim was not pending at write time. Raises
        sqlite3.IntegrityError if the business already has an approved claim,
        and OwnershipTakenError if another user already owns the business
        (e.g. by direct assignment); both roll the transition back.
        """

        async def _op() -> OwnershipClaim | None:
            now = utc_now_iso()
            async with self._transaction() as db:
                cursor = await db.execute(
                    """UPDATE ownership_claims
                          SET status = 'approved', admin_message = ?,
                              reviewed_by = ?, reviewed_at = ?, updated_at = ?
                        WHERE id = ? AND status = 'pending'""",
                    (admin_message, int(reviewed_by), now, now, int(claim_id)),
                )
                if not cursor.rowcount:
                    return None
                claim = await self._fetch_claim(db, claim_id)
                handed_over = await db.execute(
                    """UPDATE businesses
                          SET owner_id = ?, updated_at = ?
                        WHERE id = ? AND (owner_id IS NULL OR owner_id = ?)""",
                    (claim.user_id, now, claim.business_id, claim.user_id),
                )
                if not handed_over.rowcount:
                    business = await self._fetch_business(db, claim.business_id)
                    raise OwnershipTakenError(claim.business_id, business.owner_id)
                return claim

        return await with_sqlite_retry(_op)

    async def reject_claim(
        self,
        claim_id: int,
        *,
        reviewed_by: int,
        admin_message: str | None,
    ) -> OwnershipClaim | None:
        async def _op() -> OwnershipClaim | None:
            now = utc_now_iso()
            async with self._transaction() as db:
                cursor = await db.execute(
                    """UPDATE ownership_claims
                          SET status = 'rejected', admin_message = ?,
                              reviewed_by = ?, reviewed_at = ?, updated_at = ?
                        WHERE id = ? AND status = 'pending'""",
                    (admin_message, int(reviewed_by), now, now, int(claim_id)),
                )
                if not cursor.rowcount:
                    return None
                return await self._fetch_claim(db, claim_id)

        return await with_sqlite_retry(_op)

    async def revoke_claim(
        self,
        claim_id: int,
        *,
        reviewed_by: int,
        admin_message: str | None,
    ) -> tuple[OwnershipClaim, bool] | None:
        """approved -> revoked; release ownership only if the claimant still owns it.

        Returns (claim, owner_cleared), or None if the claim was not approved.
        """

        async def _op() -> tuple[OwnershipClaim, bool] | None:
            now = utc_now_iso()
            async with self._transaction() as db:
                cursor = await db.execute(
                    """UPDATE ownership_claims
                          SET status = 'revoked', admin_message = ?,
                              reviewed_by = ?, reviewed_at = ?, updated_at = ?
                        WHERE id = ? AND status = 'approved'""",
                    (admin_message, int(reviewed_by), now, now, int(claim_id)),
                )
                if not cursor.rowcount:
                    return None
                claim = await self._fetch_claim(db, claim_id)
                released = await db.execute(
                    """UPDATE businesses
                          SET owner_id = NULL, updated_at = ?
                        WHERE id = ? AND owner_id = ?""",
                    (now, claim.business_id, claim.user_id),
                )
                return claim, bool(released.rowcount)

        return await with_sqlite_retry(_op)

    async def delete_claim(self, claim_id: int) -> OwnershipClaim | None:
        """Hard delete. Returns the deleted claim, or None if absent."""

        async def _op() -> OwnershipClaim | None:
            async with self._transaction() as db:
                claim = await self._fetch_claim(db, claim_id)
                if claim is None:
                    return None
                await db.execute("DELETE FROM ownership_claims WHERE id = ?", (int(claim_id),))
                return claim

        return await with_sqlite_retry(_op)

    # --- reviews ------------------------------------------------------------

    async def _fetch_review(self, db: aiosqlite.Connection, review_id: int) -> Review | None:
        async with db.execute(f"{REVIEW_SELECT} WHERE r.id = ?", (int(review_id),)) as cur:
            return _from_row(Review, await cur.fetchone())

    async def get_review(self, review_id: int) -> Review | None:
        async with self._connect() as db:
            return await self._fetch_review(db, review_id)

    async def insert_review(
        self,
        business_id: int,
        *,
        rating: int,
        comment: str,
        title: str | None,
        user_id: int | None,
        reviewer_name: str | None,
        reviewer_email: str | None,
    ) -> Review:
        async def _op() -> Review:
            async with self._transaction() as db:
                cursor = await db.execute(
                    """INSERT INTO reviews(
                           business_id, user_id, reviewer_name, reviewer_email,
                           rating, title, comment, status, created_at
                       ) VALUES(?, ?, ?, ?, ?, ?, ?, 'pending', ?)""",
                    (
                        int(business_id),
                        user_id,
                        reviewer_name,
                        reviewer_email,
                        int(rating),
                        title,
                        comment,
                        utc_now_iso(),
                    ),
                )
                return await self._fetch_review(db, int(cursor.lastrowid))

        return await with_sqlite_retry(_op)

    async def list_reviews(
        self,
        *,
        status: str | None = None,
        business_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Review]:
        safe_limit, safe_offset = _page(limit, offset)
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("r.status = ?")
            params.append(status)
        if business_id is not None:
            clauses.append("r.business_id = ?")
            params.append(int(business_id))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self._connect() as db:
            async with db.execute(
                f"{REVIEW_SELECT} {where} ORDER BY r.created_at DESC, r.id DESC LIMIT ? OFFSET ?",
                (*params, safe_limit, safe_offset),
            ) as cur:
                return [_from_row(Review, row) for row in await cur.fetchall()]

    async def _recompute_rating(self, db: aiosqlite.Connection, business_id: int) -> None:
        # Full recompute over the approved set; never incremental.
        await db.execute(
            """UPDATE businesses
                  SET rating_aggregate = (
                          SELECT AVG(rating) FROM reviews
                           WHERE business_id = ? AND status = 'approved'
                      ),
                      rating_count = (
                          SELECT COUNT(*) FROM reviews
                           WHERE business_id = ? AND status = 'approved'
                      ),
                      updated_at = ?
                WHERE id = ?""",
            (int(business_id), int(business_id), utc_now_iso(), int(business_id)),
        )

    async def approve_review(
        self,
        review_id: int,
        *,
        moderated_by: int,
        notes: str | None,
    ) -> Review | None:
        async def _op() -> Review | None:
            async with self._transaction() as db:
                cursor = await db.execute(
                    """UPDATE reviews
                          SET status = 'approved', moderation_notes = ?,
                              moderated_by = ?, moderated_at = ?
                        WHERE id = ? AND status = 'pending'""",
                    (notes, int(moderated_by), utc_now_iso(), int(review_id)),
                )
                if not cursor.rowcount:
                    return None
                review = await self._fetch_review(db, review_id)
                await self._recompute_rating(db, review.business_id)
                return review

        return await with_sqlite_retry(_op)

    async def reject_review(
        self,
        review_id: int,
        *,
        moderated_by: int,
        notes: str | None,
    ) -> Review | None:
        async def _op() -> Review | None:
            async with self._transaction() as db:
                cursor = await db.execute(
                    """UPDATE reviews
                          SET status = 'rejected', moderation_notes = ?,
                              moderated_by = ?, moderated_at = ?
                        WHERE id = ? AND status = 'pending'""",
                    (notes, int(moderated_by), utc_now_iso(), int(review_id)),
                )
                if not cursor.rowcount:
                    return None
                return await self._fetch_review(db, review_id)

        return await with_sqlite_retry(_op)

    async def delete_review(self, review_id: int) -> Review | None:
        """Hard delete; recomputes the aggregate when an approved review goes away."""

        async def _op() -> Review | None:
            async with self._transaction() as db:
                review = await self._fetch_review(db, review_id)
                if review is None:
                    return None
                await db.execute("DELETE FROM reviews WHERE id = ?", (int(review_id),))
                if review.status == "approved":
                    await self._recompute_rating(db, review.business_id)
                return review

        return await with_sqlite_retry(_op)
