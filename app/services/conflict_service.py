import logging
from dataclasses import dataclass

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from app.models.booking import Booking, BookingTreatment, BookingStatus
from app.models.treatment import Treatment
from app.services.time_window import TimeWindow, DEFAULT_DURATION_MINUTES, format_minutes

logger = logging.getLogger(__name__)

# Statuses that no longer hold a provider's time
NON_BLOCKING_STATUSES = (BookingStatus.CANCELLED.value,)


@dataclass(frozen=True)
class ConflictInterval:
    booking_id: str
    booking_number: int
    start: str
    end: str

    def as_dict(self) -> dict:
        return {
            "bookingId": self.booking_id,
            "bookingNumber": self.booking_number,
            "start": self.start,
            "end": self.end,
        }


def treatment_minutes(db: Session, booking_ids: list[str]) -> dict[str, int]:
    """Sum of attached treatment durations per booking (unknown durations count as 0)."""
    if not booking_ids:
        return {}
    rows = db.execute(
        select(BookingTreatment.booking_id, func.coalesce(func.sum(Treatment.duration_minutes), 0))
        .join(Treatment, Treatment.id == BookingTreatment.treatment_id)
        .where(BookingTreatment.booking_id.in_(booking_ids))
        .group_by(BookingTreatment.booking_id)
    ).all()
    return {booking_id: int(total or 0) for booking_id, total in rows}


def resolve_duration(override: int | None, treatments_total: int) -> int:
    # One fallback per booking: override, then treatment sum, then the flat default
    if override and override > 0:
        return int(override)
    if treatments_total > 0:
        return treatments_total
    return DEFAULT_DURATION_MINUTES


def booking_duration(db: Session, booking: Booking) -> int:
    totals = treatment_minutes(db, [booking.id])
    return resolve_duration(booking.duration_minutes, totals.get(booking.id, 0))


def find_conflict(
    db: Session,
    provider_id: str,
    booking_date: str,
    start: str,
    duration_minutes: int,
    exclude_booking_id: str | None = None,
) -> ConflictInterval | None:
    """Return the first of the provider's bookings on that date overlapping the candidate window."""
    candidate = TimeWindow.from_start(start, duration_minutes)

    q = select(Booking).where(
        Booking.provider_id == provider_id,
        Booking.booking_date == booking_date,
        Booking.status.notin_(NON_BLOCKING_STATUSES),
    )
    if exclude_booking_id:
        q = q.where(Booking.id != exclude_booking_id)
    existing = db.execute(q.order_by(Booking.booking_time.asc())).scalars().all()
    if not existing:
        return None

    totals = treatment_minutes(db, [b.id for b in existing])
    for b in existing:
        window = TimeWindow.from_start(b.booking_time, resolve_duration(b.duration_minutes, totals.get(b.id, 0)))
        if window.overlaps(candidate):
            logger.info(
                "Provider slot conflict",
                extra={"provider_id": provider_id, "booking_id": b.id, "reason": f"{booking_date} {candidate.label} vs {window.label}"},
            )
            return ConflictInterval(
                booking_id=b.id,
                booking_number=b.booking_number,
                start=format_minutes(window.start),
                end=format_minutes(window.end),
            )
    return None


def has_conflict(
    db: Session,
    provider_id: str,
    booking_date: str,
    start: str,
    duration_minutes: int,
    exclude_booking_id: str | None = None,
) -> bool:
    return find_conflict(db, provider_id, booking_date, start, duration_minutes, exclude_booking_id) is not None
