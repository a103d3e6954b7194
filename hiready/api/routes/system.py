import logging
from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from hiready.db.session import SessionLocal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system", tags=["System"])


@router.get("/health")
def system_health():
    db_ok = True
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
        db_ok = False
    finally:
        db.close()

    return {
        "status": "ok",
        "database": "connected" if db_ok else "error",
        "api_version": "1.0.0",
        "service": "Hiready Access API"
    }
