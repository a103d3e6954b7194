"""
Script to give a user an active Pro subscription (unlimited sessions).
Run: python -m scripts.grant_pro_access user@example.com ["Full Name"]
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hiready.db.session import SessionLocal
from hiready.db.models.user import User
from hiready.core.errors import HireadyError
from hiready.core.security import create_access_token
from hiready.services.entitlement_service import EntitlementResolver
from hiready.services.storage import SqlAlchemyEntitlementStore
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def grant_pro_access(email: str, full_name: str = None) -> bool:
    """Create the user if needed and activate a Pro subscription."""
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.lower()).first()

        if not user:
            logger.info(f"Creating new user: {email}")
            user = User(email=email.lower(), full_name=full_name or "Pro User")
            db.add(user)
            db.commit()
            db.refresh(user)
            logger.info(f"Created user with ID: {user.id}")
        else:
            logger.info(f"Found existing user: {email} (ID: {user.id})")

        resolver = EntitlementResolver(SqlAlchemyEntitlementStore(db))
        if resolver.store.get_active_subscription(user.id, "pro"):
            logger.info(f"User {email} already has an active Pro subscription")
            return True

        resolver.activate_subscription(user.id, "pro")
        logger.info(f"Successfully granted Pro access to {email}")
        return True
    except HireadyError as e:
        db.rollback()
        logger.error(f"Error granting access: {e}", exc_info=True)
        return False
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m scripts.grant_pro_access <email> [full name]")
        sys.exit(2)

    email = sys.argv[1]
    full_name = sys.argv[2] if len(sys.argv) > 2 else None

    logger.info(f"Setting up user: {email}")
    if grant_pro_access(email, full_name):
        print(f"\n[SUCCESS] User {email} now has Pro access")
        print(f"   Bearer token: {create_access_token({'sub': email.lower()})}")
    else:
        print(f"\n[ERROR] Failed to grant access to {email}")
        sys.exit(1)
