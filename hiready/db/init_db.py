"""
Create all tables for the configured database.

Run: python -m hiready.db.init_db
"""
import logging

from hiready.db.base import Base
from hiready.db.session import engine
import hiready.db.models  # noqa: F401  registers every model on Base.metadata

logger = logging.getLogger(__name__)


def init_db(bind=None):
    """Create any missing tables. Existing tables are left untouched."""
    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info(f"Database schema ensured: {len(Base.metadata.tables)} tables")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
