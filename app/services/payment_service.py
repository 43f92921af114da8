"""Payment capture reconciliation.

Every captured payment is reconciled at most once: the ``payment_events``
row with the capture's idempotency key is inserted before anything else and
its unique index turns a repeated delivery into a no-op. Every capture is
split into platform, venue and provider ledger shares that add up to the
captured amount exactly. Card-first captures also create the booking;
payment-link captures mark an existing booking paid.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.booking import Booking, BookingStatus, BookingTreatment, PaymentStatus
from app.models.ledger import LedgerEntry, PaymentEvent
from app.models.provider import Provider, ProviderVenue
from app.models.treatment import Treatment
from app.models.venue import Venue
from app.services.audit_service import log_audit
from app.services.outbox_service import CHANNEL_WHATSAPP, queue_email, queue_message
from app.services.time_window import normalize_time
from app.services.whatsapp_messages import payment_confirmed_text

logger = logging.getLogger(__name__)

FIRST_BOOKING_NUMBER = 1001
CARD_FIRST_KEYS = ("venue_id", "booking_date", "booking_time")


class LedgerInvariantError(Exception):
    pass


@dataclass(frozen=True)
class CommissionSplit:
    platform_cents: int
    venue_cents: int
    provider_cents: int

    @property
    def total_cents(self) -> int:
        return self.platform_cents + self.venue_cents + self.provider_cents


@dataclass
class PaymentCapture:
    event_id: str
    amount_cents: int
    currency: str = "EUR"
    metadata: dict = field(default_factory=dict)
    reference: str = ""
    event_type: str = ""


@dataclass
class ReconcileResult:
    status: str  # processed, duplicate, ignored
    booking_id: str | None = None
    ledger_entry_ids: list[str] = field(default_factory=list)
    reason: str | None = None


def _share(amount_cents: int, pct) -> int:
    return int((Decimal(amount_cents) * Decimal(str(pct)) / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_commission_split(amount_cents: int, venue_pct, provider_pct) -> CommissionSplit:
    """Venue and provider shares rounded half-up to the cent; the platform keeps the remainder."""
    if amount_cents < 0:
        raise ValueError("amount must be >= 0")
    venue_pct = Decimal(str(venue_pct or 0))
    provider_pct = Decimal(str(provider_pct or 0))
    if venue_pct < 0 or provider_pct < 0 or venue_pct + provider_pct > 100:
        raise ValueError(f"invalid commission percentages: venue={venue_pct} provider={provider_pct}")

    venue_cents = _share(amount_cents, venue_pct)
    provider_cents = _share(amount_cents, provider_pct)
    platform_cents = amount_cents - venue_cents - provider_cents
    if platform_cents < 0:
        raise LedgerInvariantError(f"negative platform share for {amount_cents}: venue={venue_cents} provider={provider_cents}")
    return CommissionSplit(platform_cents=platform_cents, venue_cents=venue_cents, provider_cents=provider_cents)


def assert_ledger_balanced(entries: list[LedgerEntry], amount_cents: int) -> None:
    total = sum(int(e.amount_cents) for e in entries)
    if total != amount_cents:
        raise LedgerInvariantError(f"ledger shares sum to {total}, captured {amount_cents}")


def next_booking_number(db: Session) -> int:
    # The unique index on booking_number rejects a concurrent duplicate
    current = db.execute(select(func.max(Booking.booking_number))).scalar()
    return max(int(current or 0) + 1, FIRST_BOOKING_NUMBER)


def _claim_event(db: Session, key: str, capture: PaymentCapture, booking_id: str | None) -> bool:
    """Insert the idempotency row first; False means this capture was already reconciled."""
    if db.execute(select(PaymentEvent.id).where(PaymentEvent.idempotency_key == key)).first():
        return False
    db.add(PaymentEvent(
        id=str(uuid.uuid4()),
        idempotency_key=key,
        event_id=capture.event_id,
        event_type=capture.event_type,
        booking_id=booking_id,
        amount_cents=capture.amount_cents,
        currency=capture.currency,
    ))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return False
    return True


def on_payment_captured(db: Session, capture: PaymentCapture) -> ReconcileResult:
    meta = capture.metadata or {}
    if meta.get("booking_id"):
        return _reconcile_payment_link(db, capture, str(meta["booking_id"]))
    if all(meta.get(k) for k in CARD_FIRST_KEYS):
        return _reconcile_card_first(db, capture)
    logger.info("Capture without booking metadata ignored", extra={"event_id": capture.event_id})
    return ReconcileResult(status="ignored", reason="missing_metadata")


def _reconcile_payment_link(db: Session, capture: PaymentCapture, booking_id: str) -> ReconcileResult:
    booking = db.get(Booking, booking_id)
    if not booking:
        logger.info("Capture for unknown booking ignored", extra={"event_id": capture.event_id, "booking_id": booking_id})
        return ReconcileResult(status="ignored", booking_id=booking_id, reason="unknown_booking")

    key = f"booking:{booking_id}"
    if not _claim_event(db, key, capture, booking_id):
        logger.info("Duplicate payment capture", extra={"event_id": capture.event_id, "booking_id": booking_id})
        return ReconcileResult(status="duplicate", booking_id=booking_id)

    booking.payment_status = PaymentStatus.PAID.value
    booking.payment_method = "card"
    booking.payment_reference = capture.reference or capture.event_id

    split, entries = _split_into_ledger(db, capture, booking, db.get(Venue, booking.venue_id), key)

    # Confirm only on the channel the link went out on
    if "whatsapp" in booking.link_channels and booking.client_phone:
        queue_message(
            db, CHANNEL_WHATSAPP, booking.client_phone,
            body=payment_confirmed_text(booking.booking_number, capture.amount_cents, capture.currency),
            related_booking_id=booking_id, idempotency_key=f"payment:{booking_id}:whatsapp",
        )
    log_audit(db, "stripe", "payment.link_paid", "booking", booking_id, {
        "event_id": capture.event_id,
        "amount_cents": capture.amount_cents,
        "reference": booking.payment_reference,
        "split": {"platform": split.platform_cents, "venue": split.venue_cents, "provider": split.provider_cents},
    })
    db.commit()
    logger.info("Payment link reconciled", extra={"event_id": capture.event_id, "booking_id": booking_id})
    return ReconcileResult(status="processed", booking_id=booking_id, ledger_entry_ids=[e.id for e in entries])


def _commission_pcts(venue: Venue | None) -> tuple:
    venue_pct = venue.venue_commission_pct if venue and venue.venue_commission_pct is not None else settings.DEFAULT_VENUE_COMMISSION_PCT
    provider_pct = venue.provider_commission_pct if venue and venue.provider_commission_pct is not None else settings.DEFAULT_PROVIDER_COMMISSION_PCT
    return venue_pct, provider_pct


def _split_into_ledger(
    db: Session, capture: PaymentCapture, booking: Booking, venue: Venue | None, key: str
) -> tuple[CommissionSplit, list[LedgerEntry]]:
    """Stage the three ledger shares; on an unbalanced split nothing of this capture is kept."""
    try:
        split = compute_commission_split(capture.amount_cents, *_commission_pcts(venue))
        entries = _ledger_entries(capture, booking, split, key)
        assert_ledger_balanced(entries, capture.amount_cents)
    except LedgerInvariantError:
        db.rollback()
        logger.error("Ledger invariant violated, capture not reconciled", extra={"event_id": capture.event_id, "booking_id": booking.id})
        raise
    db.add_all(entries)
    return split, entries


def _treatment_ids(raw) -> list[str]:
    if isinstance(raw, (list, tuple)):
        return [str(t) for t in raw if t]
    return [t.strip() for t in str(raw or "").split(",") if t.strip()]


def _reconcile_card_first(db: Session, capture: PaymentCapture) -> ReconcileResult:
    meta = capture.metadata
    venue = db.get(Venue, meta["venue_id"])
    if not venue:
        logger.info("Capture for unknown venue ignored", extra={"event_id": capture.event_id, "reason": meta["venue_id"]})
        return ReconcileResult(status="ignored", reason="unknown_venue")
    try:
        booking_time = normalize_time(meta["booking_time"])
    except ValueError:
        logger.info("Capture with bad booking time ignored", extra={"event_id": capture.event_id, "reason": meta["booking_time"]})
        return ReconcileResult(status="ignored", reason="invalid_metadata")

    booking_id = str(uuid.uuid4())
    if not _claim_event(db, capture.event_id, capture, booking_id):
        logger.info("Duplicate payment capture", extra={"event_id": capture.event_id})
        return ReconcileResult(status="duplicate")

    booking = Booking(
        id=booking_id,
        booking_number=next_booking_number(db),
        venue_id=venue.id,
        client_first_name=meta.get("client_first_name") or "",
        client_last_name=meta.get("client_last_name") or "",
        client_email=meta.get("client_email") or "",
        client_phone=meta.get("client_phone") or "",
        room_number=meta.get("room_number") or "",
        booking_date=meta["booking_date"],
        booking_time=booking_time,
        status=BookingStatus.PENDING.value,
        total_price_cents=capture.amount_cents,
        currency=capture.currency,
        payment_status=PaymentStatus.PAID.value,
        payment_method="card",
        payment_reference=capture.reference or capture.event_id,
    )
    db.add(booking)

    wanted = _treatment_ids(meta.get("treatment_ids"))
    if wanted:
        treatments = db.execute(
            select(Treatment).where(Treatment.id.in_(wanted), Treatment.venue_id == venue.id)
        ).scalars().all()
        for t in treatments:
            db.add(BookingTreatment(id=str(uuid.uuid4()), booking_id=booking_id, treatment_id=t.id))

    split, entries = _split_into_ledger(db, capture, booking, venue, capture.event_id)

    _queue_new_booking_notifications(db, booking)
    log_audit(db, "stripe", "payment.card_first", "booking", booking_id, {
        "event_id": capture.event_id,
        "amount_cents": capture.amount_cents,
        "split": {"platform": split.platform_cents, "venue": split.venue_cents, "provider": split.provider_cents},
    })
    db.commit()
    logger.info("Card-first capture reconciled", extra={"event_id": capture.event_id, "booking_id": booking_id})
    return ReconcileResult(status="processed", booking_id=booking_id, ledger_entry_ids=[e.id for e in entries])


def _ledger_entries(capture: PaymentCapture, booking: Booking, split: CommissionSplit, key: str) -> list[LedgerEntry]:
    # provider payee is known only once the booking has been claimed
    rows = (
        ("platform", None, split.platform_cents, "paid", "Platform commission"),
        ("venue", booking.venue_id, split.venue_cents, "pending", "Venue commission"),
        ("provider", booking.provider_id, split.provider_cents, "pending", "Provider share"),
    )
    return [
        LedgerEntry(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            venue_id=booking.venue_id,
            payee_type=payee_type,
            payee_id=payee_id,
            amount_cents=amount,
            currency=capture.currency,
            status=status,
            description=f"{label} for booking #{booking.booking_number}",
            idempotency_key=f"{key}:{payee_type}",
        )
        for payee_type, payee_id, amount, status, label in rows
    ]


def _queue_new_booking_notifications(db: Session, booking: Booking) -> None:
    when = f"{booking.booking_date} at {booking.booking_time}"
    queue_email(
        db, settings.ADMIN_NOTIFY_EMAIL, f"New paid booking #{booking.booking_number}",
        f"Booking #{booking.booking_number} for {booking.client_name or 'a guest'} (room {booking.room_number or '-'}) on {when} was paid by card.",
        related_booking_id=booking.id, idempotency_key=f"new-booking:{booking.id}:admin",
    )
    pool = db.execute(
        select(Provider)
        .join(ProviderVenue, ProviderVenue.provider_id == Provider.id)
        .where(ProviderVenue.venue_id == booking.venue_id, Provider.status == "active")
    ).scalars().all()
    for p in pool:
        queue_email(
            db, p.email, f"New booking request #{booking.booking_number}",
            f"A new booking on {when} is open. First to accept gets it.",
            related_booking_id=booking.id, idempotency_key=f"new-booking:{booking.id}:provider:{p.id}",
        )
