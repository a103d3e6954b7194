from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Note: Models are imported in hiready.db.models to avoid circular imports
# All models must import Base from this module


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored datetimes are UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime read back from any backend to naive UTC."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
