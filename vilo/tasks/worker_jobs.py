import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError

from vilo.db.session import SessionLocal
from vilo.services.email_service import process_pending_emails

logger = logging.getLogger(__name__)


def process_email_queue(limit: int = 50, db: Session | None = None) -> dict:
    """Retry queued/failed refund emails. Run periodically via Celery beat."""
    own = db is None
    db = db or SessionLocal()
    try:
        try:
            result = process_pending_emails(db, limit=limit)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        if result["processed"]:
            logger.info("Email queue: %s", result)
        return result
    finally:
        if own:
            db.close()
