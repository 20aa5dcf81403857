"""
Logging for the DAM backend.

Every logger lives under the `dam.` namespace and writes single lines of
the form `🗂️ DAM [<level emoji>] <module> [<request id>]: <message>`.
"""
import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

SUCCESS_LEVEL = 25
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")

_LEVEL_EMOJI = {
    "DEBUG": "🔍",
    "INFO": "ℹ️",
    "SUCCESS": "✅",
    "WARNING": "⚠️",
    "ERROR": "❌",
    "CRITICAL": "🔥",
}

# Set per API request by the observability middleware.
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class _DamFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        emoji = _LEVEL_EMOJI.get(record.levelname, "🗂️")
        rid = request_id_var.get()
        where = f"{record.name} [{rid}]" if rid else record.name
        return f"🗂️ DAM [{emoji}] {where}: {super().format(record)}"


def _short_name(module: str) -> str:
    if module.startswith("__main__"):
        return "main"
    parts = module.split(".")
    if parts[0] == "dam_backend":
        return ".".join(parts[1:]) or "backend"
    if parts[0] == "dam_shared":
        return ".".join(["shared", *parts[1:]])
    return module


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Logger `dam.<module>` for a module's `__name__`, with the DAM line format."""
    logger = logging.getLogger(f"dam.{_short_name(name)}")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(_DamFormatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    if level is not None:
        logger.setLevel(level)
    return logger


def log_success(logger: logging.Logger, message: str) -> None:
    logger.log(SUCCESS_LEVEL, message)


def log_structured(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """One JSON line with `message`, a UTC timestamp and the given context fields."""
    payload = {
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "context": context,
    }
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
