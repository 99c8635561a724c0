#!/usr/bin/env python3
"""
Smoke test: logging configuration from the environment.

Validates:
- LOG_LEVEL names are case-insensitive and may be quoted
- unknown level names fall back to INFO
- a rotating log file is created under LOG_DIR

Run:
  python3 scripts/smoke_logging_setup.py
"""

from __future__ import annotations

import logging
import os
import shutil
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

ENV_KEYS = ("LOG_LEVEL", "LOG_DIR", "LOG_FILE_NAME")


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def _run_checks(log_dir: Path) -> None:
    from logging_setup import configure_logging  # noqa: WPS433

    os.environ["LOG_DIR"] = str(log_dir)
    os.environ["LOG_FILE_NAME"] = "smoke.log"

    for raw, expected in (
        ("debug", logging.DEBUG),
        ("'WARNING'", logging.WARNING),
        ("  error ", logging.ERROR),
        ("chatty", logging.INFO),
        ("", logging.INFO),
    ):
        os.environ["LOG_LEVEL"] = raw
        configure_logging("moderation-smoke")
        level = logging.getLogger().level
        _assert(level == expected, f"LOG_LEVEL={raw!r}: expected {expected}, got {level}")

    _assert((log_dir / "smoke.log").exists(), "rotating log file was not created")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="moderation-smoke-logging-"))
    saved_env = {key: os.environ.get(key) for key in ENV_KEYS}
    root_logger = logging.getLogger()
    saved_handlers = list(root_logger.handlers)
    saved_level = root_logger.level
    try:
        sys.path.insert(0, str(REPO_ROOT / "src"))

        _run_checks(tmpdir / "logs")
        print("OK: logging setup smoke test passed.")
    finally:
        for handler in root_logger.handlers:
            if handler not in saved_handlers:
                handler.close()
        root_logger.handlers[:] = saved_handlers
        root_logger.setLevel(saved_level)
        for key, value in saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
