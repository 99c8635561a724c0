"""SQLite lock contention log.

The moderation API can run as several processes against one SQLite file. WAL and
busy_timeout absorb most contention, but when a write still hits
"database is locked" we append one JSONL line per retry so operators can see it:

  $SQLITE_LOCK_LOG_PATH, or /data/logs/locks.log when DB_PATH lives under /data/

Writing the record must never break the caller's write path.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


_LOCK_LOG_PATH: str | None = None
_LOCK_LOG_PATH_INITIALIZED = False


def _env(name: str) -> str:
    return (os.getenv(name) or "").strip().strip('"').strip("'")


def resolve_lock_log_path() -> str | None:
    """Resolve lock log path once per process."""
    global _LOCK_LOG_PATH_INITIALIZED, _LOCK_LOG_PATH
    if _LOCK_LOG_PATH_INITIALIZED:
        return _LOCK_LOG_PATH
    _LOCK_LOG_PATH_INITIALIZED = True

    explicit = _env("SQLITE_LOCK_LOG_PATH")
    if explicit:
        _LOCK_LOG_PATH = explicit
    elif _env("DB_PATH").startswith("/data/"):
        _LOCK_LOG_PATH = "/data/logs/locks.log"
    else:
        _LOCK_LOG_PATH = None
    return _LOCK_LOG_PATH


def reset_lock_log_path() -> None:
    """Forget the cached path so the next event re-reads the environment."""
    global _LOCK_LOG_PATH_INITIALIZED, _LOCK_LOG_PATH
    _LOCK_LOG_PATH_INITIALIZED = False
    _LOCK_LOG_PATH = None


def build_lock_event(
    *,
    where: str,
    exc: BaseException,
    attempt: int,
    retries: int,
    delay_sec: float | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "where": str(where or ""),
        "attempt": int(attempt),
        "retries": int(retries),
        "error": str(exc),
        "pid": os.getpid(),
    }
    db_path = _env("DB_PATH")
    if db_path:
        payload["db_path"] = db_path
    if delay_sec is not None:
        payload["delay_sec"] = round(float(delay_sec), 4)
    return payload


def log_sqlite_lock_event(
    *,
    where: str,
    exc: BaseException,
    attempt: int,
    retries: int,
    delay_sec: float | None = None,
) -> None:
    """Append a JSONL entry about lock contention.

    attempt: 1-based attempt number for readability (1..retries).
    """
    path = resolve_lock_log_path()
    if not path:
        return

    payload = build_lock_event(
        where=where,
        exc=exc,
        attempt=attempt,
        retries=retries,
        delay_sec=delay_sec,
    )
    try:
        log_path = Path(path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        with log_path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
    except OSError:
        # Lock logging is observability only.
        return
