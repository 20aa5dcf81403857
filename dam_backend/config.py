"""
Configuration for the DAM bulk metadata backend.

All values are read from the environment once at import time; tests
monkeypatch the module constants directly.
"""
import logging
import os
import secrets
from pathlib import Path

from .utils import env_bool

logger = logging.getLogger(__name__)


def _env_raw(*names: str, default: str | None = None) -> str | None:
    for name in names:
        if not name:
            continue
        try:
            val = os.getenv(name)
        except Exception:
            val = None
        if val is not None and str(val).strip() != "":
            return str(val).strip()
    return default


def _env_int(default: int, *names: str, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_float(default: float, *names: str, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid float for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_bool(default: bool, *names: str) -> bool:
    for name in names:
        if not name:
            continue
        try:
            if name in os.environ:
                return env_bool(name, default)
        except Exception:
            continue
    return default


def _resolve_data_dir() -> Path:
    env_path = _env_raw("DAM_DATA_DIR")
    if env_path:
        try:
            return Path(env_path).expanduser().resolve()
        except (OSError, RuntimeError):
            logger.warning("Failed to resolve DAM_DATA_DIR: %s, using fallback", env_path)
    return (Path.cwd() / "dam_data").resolve()


def _resolve_token_secret() -> tuple[str, bool]:
    configured = _env_raw("DAM_BULK_TOKEN_SECRET")
    if configured:
        return configured, True
    # Per-process secret: tokens do not survive a restart.
    return secrets.token_hex(32), False


DEBUG = _env_bool(False, "DAM_DEBUG")

DATA_DIR_PATH = _resolve_data_dir()
DATA_DIR = str(DATA_DIR_PATH)
INDEX_DB = _env_raw("DAM_INDEX_DB", default=str(DATA_DIR_PATH / "dam.sqlite")) or str(DATA_DIR_PATH / "dam.sqlite")

# Database
DB_TIMEOUT = _env_float(30.0, "DAM_DB_TIMEOUT", min_value=1.0, max_value=600.0)
DB_MAX_CONNECTIONS = _env_int(4, "DAM_DB_MAX_CONNECTIONS", min_value=1, max_value=32)

# Bulk edit protocol
BULK_TOKEN_TTL_SECONDS = _env_int(600, "DAM_BULK_TOKEN_TTL_SECONDS", min_value=30, max_value=86_400)
BULK_TOKEN_SECRET, BULK_TOKEN_SECRET_CONFIGURED = _resolve_token_secret()
BULK_MAX_TARGETS = _env_int(1000, "DAM_BULK_MAX_TARGETS", min_value=1, max_value=50_000)
BULK_MAX_CONCURRENCY = _env_int(8, "DAM_BULK_MAX_CONCURRENCY", min_value=1, max_value=64)
BULK_ASSET_TIMEOUT = _env_float(15.0, "DAM_BULK_ASSET_TIMEOUT", min_value=0.5, max_value=300.0)

# HTTP
HOST = _env_raw("DAM_HOST", default="127.0.0.1") or "127.0.0.1"
PORT = _env_int(8190, "DAM_PORT", min_value=1, max_value=65535)
WRITE_TOKEN = _env_raw("DAM_WRITE_TOKEN", default="") or ""
MAX_JSON_BYTES = _env_int(2 * 1024 * 1024, "DAM_MAX_JSON_SIZE", min_value=1024)


def initialize_directories() -> None:
    """Create the data directory used for the SQLite database."""
    DATA_DIR_PATH.mkdir(parents=True, exist_ok=True)
    try:
        Path(INDEX_DB).parent.mkdir(parents=True, exist_ok=True)
    except Exception as exc:
        logger.warning("Failed to create database directory for %s: %s", INDEX_DB, exc)
