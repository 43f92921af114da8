"""Alternative-slot negotiation over WhatsApp.

A proposal offers a client up to two replacement slots for a booking nobody
could take at its original time. The proposal status only moves along
``TRANSITIONS``; each move is a conditional UPDATE on the status that was read,
so a reply racing another reply (or arriving after the proposal ended) is a
no-op. Outbound sends happen after the state write has committed and never
roll it back.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.alternative_proposal import ACTIVE_PROPOSAL_STATUSES, AlternativeProposal, ProposalStatus
from app.models.booking import Booking, BookingStatus
from app.models.provider import Provider
from app.services import whatsapp_messages as wa
from app.services.audit_service import log_audit
from app.services.conflict_service import ConflictInterval, booking_duration, find_conflict
from app.services.messaging import MessagingGateway, SendResult
from app.services.outbox_service import queue_email
from app.services.time_window import normalize_time
from app.services.whatsapp_client import normalize_phone

logger = logging.getLogger(__name__)

OFFER_SENT = "offer_sent"
ACCEPT = wa.ACCEPT
REJECT = wa.REJECT
SLOT_UNAVAILABLE = "slot_unavailable"

S = ProposalStatus
TRANSITIONS: dict[tuple[str, str], str] = {
    (S.PENDING.value, OFFER_SENT): S.SLOT1_OFFERED.value,
    (S.SLOT1_OFFERED.value, ACCEPT): S.SLOT1_ACCEPTED.value,
    (S.SLOT1_OFFERED.value, REJECT): S.SLOT1_REJECTED.value,
    (S.SLOT1_REJECTED.value, OFFER_SENT): S.SLOT2_OFFERED.value,
    (S.SLOT2_OFFERED.value, ACCEPT): S.SLOT2_ACCEPTED.value,
    (S.SLOT2_OFFERED.value, REJECT): S.ALL_REJECTED.value,
    (S.SLOT1_OFFERED.value, SLOT_UNAVAILABLE): S.ALL_REJECTED.value,
    (S.SLOT2_OFFERED.value, SLOT_UNAVAILABLE): S.ALL_REJECTED.value,
}


class InvalidTransition(Exception):
    def __init__(self, status: str, event: str):
        super().__init__(f"no transition from {status!r} on {event!r}")
        self.status = status
        self.event = event


def next_status(status: str, event: str) -> str:
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTransition(status, event) from None


@dataclass
class ProposalResult:
    success: bool
    proposal_id: str | None = None
    error: str | None = None
    warning: str | None = None
    conflict: ConflictInterval | None = None


@dataclass
class ReplyOutcome:
    action: str  # accepted, slot2_offered, slot2_send_failed, all_rejected, ignored, stale, conflict
    proposal_id: str | None = None
    status: str | None = None


def _cas_proposal(db: Session, proposal_id: str, from_status: str, event: str, **values) -> str | None:
    """Apply one table transition if the proposal is still in `from_status`. Returns the new status."""
    target = next_status(from_status, event)
    result = db.execute(
        update(AlternativeProposal)
        .where(AlternativeProposal.id == proposal_id, AlternativeProposal.status == from_status)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    return target if result.rowcount == 1 else None


def _record_send_error(db: Session, proposal_id: str, expected_status: str, error: str | None) -> None:
    db.execute(
        update(AlternativeProposal)
        .where(AlternativeProposal.id == proposal_id, AlternativeProposal.status == expected_status)
        .values(last_error=(error or "send failed")[:2000])
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _offer_body(proposal: AlternativeProposal, booking: Booking, number: int) -> dict:
    slot_date, slot_time = proposal.slot(number)
    if number == 1:
        return wa.offer1_message(booking.client_first_name, proposal.original_date, proposal.original_time, slot_date, slot_time)
    return wa.offer2_message(slot_date, slot_time)


def _send_offer(db: Session, messaging: MessagingGateway, proposal_id: str, number: int) -> SendResult | None:
    """Send offer 1 (from pending) or offer 2 (from slot1_rejected) and record the outcome.

    Returns None without sending when the proposal has already left the status the
    offer starts from.
    """
    proposal = db.get(AlternativeProposal, proposal_id)
    db.refresh(proposal)
    from_status = S.PENDING.value if number == 1 else S.SLOT1_REJECTED.value
    if proposal.status != from_status:
        logger.info("Offer already past", extra={"proposal_id": proposal_id, "reason": f"offer {number} from {proposal.status}"})
        return None
    booking = db.get(Booking, proposal.booking_id)

    result = messaging.send_interactive(proposal.client_phone, _offer_body(proposal, booking, number))
    if not result.success:
        logger.warning("Offer not delivered", extra={"proposal_id": proposal_id, "booking_id": proposal.booking_id, "reason": result.error})
        _record_send_error(db, proposal_id, from_status, result.error)
        return result

    moved = _cas_proposal(db, proposal_id, from_status, OFFER_SENT, message_id=result.message_id, last_error=None)
    if moved is None:
        # a concurrent retry already recorded this offer
        db.rollback()
        logger.info("Offer recorded concurrently", extra={"proposal_id": proposal_id, "reason": f"offer {number}"})
        return result
    db.commit()
    logger.info("Offer sent", extra={"proposal_id": proposal_id, "booking_id": proposal.booking_id, "reason": moved})
    return result


def _parse_slot(slot: tuple[str, str]) -> tuple[str, str]:
    slot_date, slot_time = slot
    return date.fromisoformat(slot_date).isoformat(), normalize_time(slot_time)


def propose_alternative(
    db: Session,
    messaging: MessagingGateway,
    booking_id: str,
    provider_id: str,
    slot1: tuple[str, str],
    slot2: tuple[str, str],
) -> ProposalResult:
    booking = db.get(Booking, booking_id)
    if not booking:
        return ProposalResult(success=False, error="not_found")
    if booking.status != BookingStatus.PENDING.value:
        return ProposalResult(success=False, error="conflict")
    phone = normalize_phone(booking.client_phone)
    if not phone:
        return ProposalResult(success=False, error="missing_phone")
    if db.get(Provider, provider_id) is None:
        return ProposalResult(success=False, error="provider_not_found")
    try:
        slots = [_parse_slot(slot1), _parse_slot(slot2)]
    except (TypeError, ValueError):
        return ProposalResult(success=False, error="invalid_slot")

    duration = booking_duration(db, booking)
    for slot_date, slot_time in slots:
        conflict = find_conflict(db, provider_id, slot_date, slot_time, duration, exclude_booking_id=booking_id)
        if conflict:
            return ProposalResult(success=False, error="slot_unavailable", conflict=conflict)

    moved = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING.value)
        .values(status=BookingStatus.ALTERNATIVE_PROPOSED.value)
        .execution_options(synchronize_session=False)
    )
    if moved.rowcount != 1:
        db.rollback()
        return ProposalResult(success=False, error="conflict")

    proposal_id = str(uuid.uuid4())
    db.add(AlternativeProposal(
        id=proposal_id,
        booking_id=booking_id,
        provider_id=provider_id,
        original_date=booking.booking_date,
        original_time=booking.booking_time,
        slot1_date=slots[0][0],
        slot1_time=slots[0][1],
        slot2_date=slots[1][0],
        slot2_time=slots[1][1],
        status=S.PENDING.value,
        client_phone=phone,
    ))
    log_audit(db, provider_id, "proposal.created", "proposal", proposal_id, {"booking_id": booking_id, "slots": slots})
    try:
        db.commit()
    except IntegrityError:
        # another proposal for this booking is still open
        db.rollback()
        return ProposalResult(success=False, error="conflict")

    logger.info("Alternative proposal created", extra={"proposal_id": proposal_id, "booking_id": booking_id, "provider_id": provider_id})
    sent = _send_offer(db, messaging, proposal_id, 1)
    if sent is not None and not sent.success:
        return ProposalResult(success=False, proposal_id=proposal_id, warning=f"offer not delivered: {sent.error}")
    return ProposalResult(success=True, proposal_id=proposal_id)


def retry_offer(db: Session, messaging: MessagingGateway, proposal_id: str) -> ProposalResult:
    proposal = db.get(AlternativeProposal, proposal_id)
    if not proposal:
        return ProposalResult(success=False, error="not_found")
    if proposal.status == S.PENDING.value:
        number = 1
    elif proposal.status == S.SLOT1_REJECTED.value:
        number = 2
    else:
        return ProposalResult(success=False, proposal_id=proposal_id, error="invalid_state")

    sent = _send_offer(db, messaging, proposal_id, number)
    if sent is None:
        return ProposalResult(success=False, proposal_id=proposal_id, error="invalid_state")
    if not sent.success:
        return ProposalResult(success=False, proposal_id=proposal_id, warning=f"offer not delivered: {sent.error}")
    return ProposalResult(success=True, proposal_id=proposal_id)


def _latest_open_proposal(db: Session, phone: str) -> AlternativeProposal | None:
    return db.execute(
        select(AlternativeProposal)
        .where(AlternativeProposal.client_phone == phone, AlternativeProposal.status.in_(ACTIVE_PROPOSAL_STATUSES))
        .order_by(AlternativeProposal.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def on_client_reply(db: Session, messaging: MessagingGateway, phone: str, reply: str) -> ReplyOutcome:
    decision = wa.classify_reply(reply)
    if decision is None:
        logger.info("Unrecognised WhatsApp reply ignored", extra={"reason": (reply or "")[:60]})
        return ReplyOutcome(action="ignored")

    proposal = _latest_open_proposal(db, normalize_phone(phone))
    if not proposal:
        logger.info("Reply without open proposal", extra={"reason": decision})
        return ReplyOutcome(action="stale")

    status = proposal.status
    try:
        next_status(status, decision)
    except InvalidTransition as e:
        logger.info("Stale proposal reply", extra={"proposal_id": proposal.id, "reason": str(e)})
        return ReplyOutcome(action="stale", proposal_id=proposal.id, status=status)

    if decision == ACCEPT:
        return _accept(db, messaging, proposal, status)
    if status == S.SLOT1_OFFERED.value:
        return _reject_first(db, messaging, proposal)
    return _reject_all(db, messaging, proposal)


def _accept(db: Session, messaging: MessagingGateway, proposal: AlternativeProposal, status: str) -> ReplyOutcome:
    proposal_id, booking_id, provider_id, phone = proposal.id, proposal.booking_id, proposal.provider_id, proposal.client_phone
    slot_date, slot_time = proposal.slot(1 if status == S.SLOT1_OFFERED.value else 2)

    provider = db.execute(select(Provider).where(Provider.id == provider_id).with_for_update()).scalar_one_or_none()
    booking = db.get(Booking, booking_id)
    if not provider or not booking:
        db.rollback()
        logger.warning("Accepted proposal lost its booking or provider", extra={"proposal_id": proposal_id, "booking_id": booking_id})
        return ReplyOutcome(action="stale", proposal_id=proposal_id, status=status)

    conflict = find_conflict(db, provider_id, slot_date, slot_time, booking_duration(db, booking), exclude_booking_id=booking_id)
    if conflict:
        db.rollback()
        logger.warning(
            "Accepted slot no longer free",
            extra={"proposal_id": proposal_id, "booking_id": booking_id, "reason": f"{slot_date} {slot_time} vs #{conflict.booking_number}"},
        )
        closed = _close_negotiation(
            db, messaging, proposal_id, booking_id, provider_id, phone, status, SLOT_UNAVAILABLE, "slot_unavailable",
            subject="accepted slot no longer free",
            body=f"the client accepted {slot_date} at {slot_time} but it has since been taken. The booking is back in the open pool.",
            client_message=wa.slot_unavailable_message(slot_date, slot_time),
        )
        if closed is None:
            return ReplyOutcome(action="stale", proposal_id=proposal_id, status=status)
        return ReplyOutcome(action="conflict", proposal_id=proposal_id, status=closed)

    now = datetime.now(timezone.utc)
    target = _cas_proposal(db, proposal_id, status, ACCEPT, responded_at=now)
    if target is None:
        db.rollback()
        return ReplyOutcome(action="stale", proposal_id=proposal_id, status=status)

    moved = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.ALTERNATIVE_PROPOSED.value)
        .values(
            booking_date=slot_date,
            booking_time=slot_time,
            provider_id=provider_id,
            provider_name=provider.full_name,
            assigned_at=now,
            status=BookingStatus.CONFIRMED.value,
        )
        .execution_options(synchronize_session=False)
    )
    if moved.rowcount != 1:
        db.rollback()
        logger.warning("Booking left negotiation before acceptance", extra={"proposal_id": proposal_id, "booking_id": booking_id})
        return ReplyOutcome(action="stale", proposal_id=proposal_id, status=status)

    queue_email(
        db, provider.email, f"Booking #{booking.booking_number} confirmed",
        f"{booking.client_name or 'The client'} accepted {slot_date} at {slot_time} for booking #{booking.booking_number}.",
        related_booking_id=booking_id, idempotency_key=f"proposal:{proposal_id}:accepted",
    )
    log_audit(db, "whatsapp", "proposal.accepted", "proposal", proposal_id, {"booking_id": booking_id, "slot": [slot_date, slot_time], "status": target})
    db.commit()
    logger.info("Alternative slot accepted", extra={"proposal_id": proposal_id, "booking_id": booking_id, "reason": target})

    sent = messaging.send_interactive(phone, wa.accepted_message(slot_date, slot_time))
    if not sent.success:
        logger.warning("Confirmation not delivered", extra={"proposal_id": proposal_id, "reason": sent.error})
    return ReplyOutcome(action="accepted", proposal_id=proposal_id, status=target)


def _reject_first(db: Session, messaging: MessagingGateway, proposal: AlternativeProposal) -> ReplyOutcome:
    proposal_id = proposal.id
    target = _cas_proposal(db, proposal_id, S.SLOT1_OFFERED.value, REJECT, responded_at=datetime.now(timezone.utc))
    if target is None:
        db.rollback()
        return ReplyOutcome(action="stale", proposal_id=proposal_id, status=S.SLOT1_OFFERED.value)
    log_audit(db, "whatsapp", "proposal.slot1_rejected", "proposal", proposal_id, {"booking_id": proposal.booking_id})
    db.commit()

    sent = _send_offer(db, messaging, proposal_id, 2)
    if sent is not None and not sent.success:
        return ReplyOutcome(action="slot2_send_failed", proposal_id=proposal_id, status=S.SLOT1_REJECTED.value)
    return ReplyOutcome(action="slot2_offered", proposal_id=proposal_id, status=S.SLOT2_OFFERED.value)


def _reject_all(db: Session, messaging: MessagingGateway, proposal: AlternativeProposal) -> ReplyOutcome:
    proposal_id = proposal.id
    closed = _close_negotiation(
        db, messaging, proposal_id, proposal.booking_id, proposal.provider_id, proposal.client_phone,
        S.SLOT2_OFFERED.value, REJECT, "all_rejected",
        subject="both slots declined",
        body="the client declined both proposed slots. Please get in touch to find another time.",
        client_message=wa.all_rejected_message(),
    )
    if closed is None:
        return ReplyOutcome(action="stale", proposal_id=proposal_id, status=S.SLOT2_OFFERED.value)
    return ReplyOutcome(action="all_rejected", proposal_id=proposal_id, status=closed)


def _close_negotiation(
    db: Session,
    messaging: MessagingGateway,
    proposal_id: str,
    booking_id: str,
    provider_id: str,
    phone: str,
    from_status: str,
    event: str,
    action: str,
    subject: str,
    body: str,
    client_message: dict,
) -> str | None:
    """End the negotiation and put the booking back into the open pool at its original time.

    Returns the terminal status, or None when another reply closed it first.
    """
    target = _cas_proposal(db, proposal_id, from_status, event, responded_at=datetime.now(timezone.utc))
    if target is None:
        db.rollback()
        return None

    db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.ALTERNATIVE_PROPOSED.value)
        .values(status=BookingStatus.PENDING.value)
        .execution_options(synchronize_session=False)
    )
    booking = db.get(Booking, booking_id)
    provider = db.get(Provider, provider_id)
    if provider and booking:
        queue_email(
            db, provider.email, f"Booking #{booking.booking_number}: {subject}",
            f"Booking #{booking.booking_number}: {body}",
            related_booking_id=booking_id, idempotency_key=f"proposal:{proposal_id}:{action}",
        )
    log_audit(db, "whatsapp", f"proposal.{action}", "proposal", proposal_id, {"booking_id": booking_id, "status": target})
    db.commit()
    logger.info("Alternative negotiation closed", extra={"proposal_id": proposal_id, "booking_id": booking_id, "reason": action})

    sent = messaging.send_interactive(phone, client_message)
    if not sent.success:
        logger.warning("Acknowledgement not delivered", extra={"proposal_id": proposal_id, "reason": sent.error})
    return target
