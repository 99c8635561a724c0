import os
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env from the working directory (where the service is started)
env_path = Path.cwd() / ".env"
load_dotenv(env_path)


@dataclass
class Config:
    admin_ids: list[int]  # users treated as admins regardless of their role header
    # HTTP API
    api_host: str
    api_port: int
    api_key: str  # shared secret expected from the upstream gateway (optional)
    # Moderation
    batch_max_items: int


def _clean(value: str | None) -> str:
    return (value or "").strip().strip('"').strip("'")


def parse_admin_ids(env_value: str) -> list[int]:
    """Parse admin ids from a comma/space separated string."""
    if not env_value:
        return []
    env_value = _clean(env_value)
    ids = [id.strip() for id in env_value.replace(",", " ").split()]
    return [int(id) for id in ids if id.isdigit()]


def parse_int(value: str | None, default: int) -> int:
    """Parse an int env value, falling back to default on empty/invalid input."""
    cleaned = _clean(value)
    if not cleaned:
        return default
    try:
        return int(cleaned)
    except ValueError:
        return default


CFG = Config(
    admin_ids=parse_admin_ids(os.getenv("ADMIN_IDS", "")),
    api_host=_clean(os.getenv("API_HOST")) or "0.0.0.0",
    api_port=parse_int(os.getenv("API_PORT"), 8080),
    api_key=_clean(os.getenv("MODERATION_API_KEY")),
    batch_max_items=max(1, parse_int(os.getenv("BATCH_MAX_ITEMS"), 50)),
)

# DB path: from env or relative to the working directory
DB_PATH = os.getenv("DB_PATH", str(Path.cwd() / "state.db"))


def is_api_key_required() -> bool:
    """API key check is enforced only when a key is configured."""
    return bool(CFG.api_key)
