import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.outbound_message import OutboundMessage
from app.services.email_service import EmailDeliveryError, send_email
from app.services.messaging import MessagingGateway

logger = logging.getLogger(__name__)

CHANNEL_WHATSAPP = "whatsapp"
CHANNEL_EMAIL = "email"


def queue_message(
    db: Session,
    channel: str,
    recipient: str,
    body: str = "",
    subject: str = "",
    interactive: dict | None = None,
    related_booking_id: str = "",
    idempotency_key: str | None = None,
) -> OutboundMessage | None:
    """Stage an outbound message in the caller's transaction.

    Nothing is sent here: the row only becomes visible to the worker once the
    business write that produced it commits. A repeated idempotency key returns
    the existing row.
    """
    if not recipient:
        logger.info("Outbound message skipped, no recipient", extra={"booking_id": related_booking_id, "reason": channel})
        return None
    if idempotency_key:
        existing = db.query(OutboundMessage).filter(OutboundMessage.idempotency_key == idempotency_key).first()
        if existing:
            return existing
    msg = OutboundMessage(
        id=str(uuid.uuid4()),
        channel=channel,
        recipient=recipient,
        subject=subject,
        body=body,
        payload_json=json.dumps(interactive, ensure_ascii=False) if interactive else None,
        status="queued",
        attempts=0,
        idempotency_key=idempotency_key,
        related_booking_id=related_booking_id or "",
    )
    db.add(msg)
    return msg


def queue_email(db: Session, to_email: str, subject: str, body: str, related_booking_id: str = "", idempotency_key: str | None = None):
    return queue_message(db, CHANNEL_EMAIL, to_email, body=body, subject=subject, related_booking_id=related_booking_id, idempotency_key=idempotency_key)


def _deliver(msg: OutboundMessage, gateway: MessagingGateway, email_sender: Callable[[str, str, str], None]) -> str | None:
    """Returns None on success, else the error text."""
    if msg.channel == CHANNEL_EMAIL:
        try:
            email_sender(msg.recipient, msg.subject, msg.body or "")
        except EmailDeliveryError as e:
            return str(e)
        return None
    if msg.channel == CHANNEL_WHATSAPP:
        if msg.payload_json:
            result = gateway.send_interactive(msg.recipient, json.loads(msg.payload_json))
        else:
            result = gateway.send_text(msg.recipient, msg.body or "")
        return None if result.success else (result.error or "send failed")
    return f"unknown channel {msg.channel}"


def process_pending_messages(
    db: Session,
    gateway: MessagingGateway,
    limit: int = 50,
    email_sender: Callable[[str, str, str], None] = send_email,
) -> dict:
    """Deliver up to `limit` queued messages (at-least-once). Returns counts."""
    pending = (
        db.query(OutboundMessage)
        .filter(OutboundMessage.status == "queued")
        .order_by(OutboundMessage.created_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    sent, failed, retry = 0, 0, 0
    for msg in pending:
        msg.attempts = (msg.attempts or 0) + 1
        error = _deliver(msg, gateway, email_sender)
        if error is None:
            msg.status = "sent"
            msg.sent_at = datetime.now(timezone.utc)
            msg.last_error = None
            sent += 1
            continue
        msg.last_error = error[:2000]
        if msg.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
            msg.status = "failed"
            failed += 1
            logger.error(
                "Outbound message gave up",
                extra={"booking_id": msg.related_booking_id, "reason": f"{msg.channel} after {msg.attempts} attempts: {error}"},
            )
        else:
            retry += 1
            logger.warning("Outbound message will retry", extra={"booking_id": msg.related_booking_id, "reason": error})
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed, "retry": retry}
