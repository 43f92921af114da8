import json
import logging
import uuid

from sqlalchemy.orm import Session
from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def log_audit(db: Session, actor: str, action: str, entity_type: str, entity_id: str, details: dict | None = None) -> None:
    """Stage an audit row in the caller's transaction; it commits (or rolls back) with the business write."""
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor_user_id=actor or "system",
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))
    logger.debug("audit %s %s/%s by %s", action, entity_type, entity_id, actor)
