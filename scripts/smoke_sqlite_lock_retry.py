#!/usr/bin/env python3
"""
Smoke test: SQLite lock retry and lock-event log.

Validates:
- "database is locked" errors are retried and logged as JSONL
- other OperationalErrors propagate without retry
- retries are bounded
- env parsing helpers used by config

Run:
  python3 scripts/smoke_sqlite_lock_retry.py
"""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import sqlite3
import sys
import tempfile
from pathlib import Path


def _resolve_repo_root() -> Path:
    candidates: list[Path] = []
    try:
        candidates.append(Path(__file__).resolve().parents[1])
    except Exception:
        pass
    candidates.extend([Path.cwd(), Path("/app"), Path("/workspace")])
    for root in candidates:
        if (root / "pyproject.toml").exists() and (root / "src").exists():
            return root
    raise FileNotFoundError("Cannot locate repo root with pyproject.toml and src/")


REPO_ROOT = _resolve_repo_root()


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


async def _run_checks(log_path: Path) -> None:
    from config import parse_admin_ids, parse_int  # noqa: WPS433
    from database import with_sqlite_retry  # noqa: WPS433
    from sqlite_lock_logger import reset_lock_log_path  # noqa: WPS433

    _assert(parse_admin_ids("'1, 2 x 3'") == [1, 2, 3], "ADMIN_IDS parsing mismatch")
    _assert(parse_admin_ids("") == [], "empty ADMIN_IDS must parse to []")
    _assert(parse_int('"42"', 7) == 42, "quoted int must parse")
    _assert(parse_int("abc", 7) == 7, "invalid int must fall back to default")
    _assert(parse_int(None, 7) == 7, "missing int must fall back to default")

    reset_lock_log_path()

    calls = {"n": 0}

    async def flaky_write() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise sqlite3.OperationalError("database is locked")
        return "written"

    result = await with_sqlite_retry(flaky_write, retries=3, base_delay=0.001)
    _assert(result == "written", f"retry result mismatch: {result}")
    _assert(calls["n"] == 3, f"expected 3 attempts, got {calls['n']}")

    lines = log_path.read_text(encoding="utf-8").splitlines()
    _assert(len(lines) == 2, f"expected 2 lock events, got {lines}")
    event = json.loads(lines[0])
    _assert(event["attempt"] == 1 and event["retries"] == 3, f"lock event mismatch: {event}")
    _assert(event["error"] == "database is locked", f"lock event error mismatch: {event}")
    _assert("flaky_write" in event["where"], f"lock event origin mismatch: {event}")

    calls["n"] = 0

    async def broken_write() -> None:
        calls["n"] += 1
        raise sqlite3.OperationalError("no such table: reviews")

    try:
        await with_sqlite_retry(broken_write, retries=3, base_delay=0.001)
    except sqlite3.OperationalError:
        pass
    else:
        raise AssertionError("non-lock OperationalError must propagate")
    _assert(calls["n"] == 1, f"non-lock errors must not be retried: {calls['n']}")

    calls["n"] = 0

    async def always_locked() -> None:
        calls["n"] += 1
        raise sqlite3.OperationalError("database is locked")

    try:
        await with_sqlite_retry(always_locked, retries=2, base_delay=0.001)
    except sqlite3.OperationalError:
        pass
    else:
        raise AssertionError("exhausted retries must re-raise")
    _assert(calls["n"] == 3, f"expected 1 attempt + 2 retries, got {calls['n']}")

    reset_lock_log_path()


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="moderation-smoke-locks-"))
    previous = os.environ.get("SQLITE_LOCK_LOG_PATH")
    try:
        log_path = tmpdir / "locks.log"
        os.environ["SQLITE_LOCK_LOG_PATH"] = str(log_path)

        sys.path.insert(0, str(REPO_ROOT / "src"))

        asyncio.run(_run_checks(log_path))
        print("OK: SQLite lock retry smoke test passed.")
    finally:
        if previous is None:
            os.environ.pop("SQLITE_LOCK_LOG_PATH", None)
        else:
            os.environ["SQLITE_LOCK_LOG_PATH"] = previous
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
