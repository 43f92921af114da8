import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models.booking import Booking, BookingStatus
from app.models.provider import Provider, ProviderVenue
from app.services.audit_service import log_audit
from app.services.conflict_service import ConflictInterval, booking_duration, find_conflict
from app.services.outbox_service import CHANNEL_WHATSAPP, queue_email, queue_message

logger = logging.getLogger(__name__)

ASSIGNED_STATUSES = (BookingStatus.ASSIGNED.value, BookingStatus.CONFIRMED.value)


@dataclass
class ClaimResult:
    success: bool
    reason: str | None = None
    booking_id: str | None = None
    conflict: ConflictInterval | None = None


def _lock_provider(db: Session, provider_id: str) -> Provider | None:
    # Serializes one provider's concurrent claims so the conflict re-check below sees their writes
    return db.execute(
        select(Provider).where(Provider.id == provider_id).with_for_update()
    ).scalar_one_or_none()


def accept_booking(
    db: Session,
    booking_id: str,
    provider_id: str,
    provider_name: str = "",
    total_price_cents: int | None = None,
) -> ClaimResult:
    """First claim wins: exactly one provider can move a pending booking to assigned."""
    booking = db.get(Booking, booking_id)
    if not booking:
        return ClaimResult(success=False, reason="not_found", booking_id=booking_id)
    if booking.status != BookingStatus.PENDING.value or booking.provider_id:
        logger.info("Claim lost before write", extra={"booking_id": booking_id, "provider_id": provider_id, "reason": booking.status})
        return ClaimResult(success=False, reason="already_taken", booking_id=booking_id)

    provider = _lock_provider(db, provider_id)
    if not provider:
        db.rollback()
        return ClaimResult(success=False, reason="provider_not_found", booking_id=booking_id)

    read_date, read_time = booking.booking_date, booking.booking_time
    conflict = find_conflict(db, provider_id, read_date, read_time, booking_duration(db, booking), exclude_booking_id=booking_id)
    if conflict:
        db.rollback()
        return ClaimResult(success=False, reason="conflict", booking_id=booking_id, conflict=conflict)

    values = {
        "provider_id": provider_id,
        "provider_name": provider_name or provider.full_name,
        "assigned_at": datetime.now(timezone.utc),
        "status": BookingStatus.ASSIGNED.value,
    }
    if total_price_cents is not None:
        values["total_price_cents"] = int(total_price_cents)

    # Compare-and-swap: the slot must still be open and unmoved since it was read
    result = db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.PENDING.value,
            Booking.provider_id.is_(None),
            Booking.booking_date == read_date,
            Booking.booking_time == read_time,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.info("Claim lost", extra={"booking_id": booking_id, "provider_id": provider_id, "reason": "already_taken"})
        return ClaimResult(success=False, reason="already_taken", booking_id=booking_id)

    _queue_claim_notifications(db, booking, provider_id, values["provider_name"], values["assigned_at"])
    log_audit(db, provider_id, "booking.claimed", "booking", booking_id, {
        "booking_number": booking.booking_number,
        "provider_name": values["provider_name"],
        "total_price_cents": total_price_cents,
    })
    db.commit()
    logger.info("Booking claimed", extra={"booking_id": booking_id, "provider_id": provider_id})
    return ClaimResult(success=True, booking_id=booking_id)


def _queue_claim_notifications(db: Session, booking: Booking, provider_id: str, provider_name: str, assigned_at: datetime) -> None:
    # keyed per claim: a re-claim after unassign is a new notification
    claim_key = f"claimed:{booking.id}:{provider_id}:{assigned_at.isoformat()}"
    when = f"{booking.booking_date} at {booking.booking_time}"
    text = f"Your booking #{booking.booking_number} on {when} has been accepted by {provider_name}."
    if booking.client_phone:
        queue_message(
            db, CHANNEL_WHATSAPP, booking.client_phone, body=text,
            related_booking_id=booking.id, idempotency_key=f"{claim_key}:client",
        )
    else:
        queue_email(
            db, booking.client_email, f"Booking #{booking.booking_number} accepted", text,
            related_booking_id=booking.id, idempotency_key=f"{claim_key}:client",
        )

    others = db.execute(
        select(Provider)
        .join(ProviderVenue, ProviderVenue.provider_id == Provider.id)
        .where(ProviderVenue.venue_id == booking.venue_id, Provider.id != provider_id, Provider.status == "active")
    ).scalars().all()
    for p in others:
        queue_email(
            db, p.email, f"Booking #{booking.booking_number} is no longer available",
            f"Booking #{booking.booking_number} on {when} has been taken by another provider.",
            related_booking_id=booking.id, idempotency_key=f"{claim_key}:taken:{p.id}",
        )


def unassign_booking(db: Session, booking_id: str, provider_id: str) -> ClaimResult:
    """Only the current assignee may hand a booking back to the open pool."""
    result = db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.provider_id == provider_id,
            Booking.status.in_(ASSIGNED_STATUSES),
        )
        .values(provider_id=None, provider_name=None, assigned_at=None, status=BookingStatus.PENDING.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        reason = "not_found" if db.get(Booking, booking_id) is None else "not_assignee"
        logger.info("Unassign refused", extra={"booking_id": booking_id, "provider_id": provider_id, "reason": reason})
        return ClaimResult(success=False, reason=reason, booking_id=booking_id)

    log_audit(db, provider_id, "booking.unassigned", "booking", booking_id)
    db.commit()
    logger.info("Booking unassigned", extra={"booking_id": booking_id, "provider_id": provider_id})
    return ClaimResult(success=True, booking_id=booking_id)
