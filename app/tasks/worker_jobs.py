import logging

from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.services.messaging import get_messaging_gateway
from app.services.outbox_service import process_pending_messages
from app.services.payout_service import process_provider_payouts as run_payouts

logger = logging.getLogger(__name__)


def process_message_queue(limit: int = 50, session_factory=SessionLocal) -> dict:
    """Deliver queued outbound messages (retry until OUTBOX_MAX_ATTEMPTS). Run periodically via Celery beat."""
    db: Session = session_factory()
    try:
        try:
            return process_pending_messages(db, get_messaging_gateway(), limit=limit)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()


def process_provider_payouts(limit: int = 50, session_factory=SessionLocal) -> dict:
    db: Session = session_factory()
    try:
        try:
            result = run_payouts(db, limit=limit)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        if result["processed"]:
            logger.info("Provider payouts run", extra={"reason": f"completed={result['completed']} failed={result['failed']}"})
        return result
    finally:
        db.close()
