"""
Logging setup for the access API.

Decision logs carry user ids, share tokens and Stripe identifiers, so
anything structured goes through sanitize_log_data before it is logged.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
REDACTED = "***REDACTED***"

# Substrings of keys whose values are never logged
SECRET_KEY_PARTS = ("password", "secret", "api_key", "authorization", "database_url")
# Keys whose values are logged only as a short prefix
PARTIAL_KEYS = ("share_token", "token", "customer", "payment_intent_id", "stripe_subscription_id")


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """
    Configure the root logger.

    Logs go to stdout. A rotating file is added only when log_file is set,
    so test runs and containers never write to disk.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
            datefmt=DATE_FORMAT,
        ))
        root.addHandler(file_handler)

    # SQL echo and per-request access lines drown out decision logs
    for name in ("uvicorn.access", "sqlalchemy.engine", "stripe"):
        logging.getLogger(name).setLevel(logging.WARNING)


def mask_value(value: Any, keep: int = 4) -> str:
    text = str(value)
    if len(text) <= keep:
        return "*" * len(text)
    return text[:keep] + "*" * 4


def sanitize_log_data(data: Any) -> Any:
    """
    Return a copy of data that is safe to log.

    Walks nested dicts and lists (Stripe event metadata is nested). Secrets
    are replaced outright, share tokens and Stripe ids keep a short prefix
    for correlation, and emails keep only their domain.
    """
    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if any(part in lowered for part in SECRET_KEY_PARTS):
                sanitized[key] = REDACTED
            elif lowered in PARTIAL_KEYS and value is not None:
                sanitized[key] = mask_value(value)
            elif lowered == "email" and isinstance(value, str) and "@" in value:
                sanitized[key] = "***@" + value.split("@", 1)[1]
            else:
                sanitized[key] = sanitize_log_data(value)
        return sanitized
    if isinstance(data, (list, tuple)):
        return [sanitize_log_data(item) for item in data]
    return data
