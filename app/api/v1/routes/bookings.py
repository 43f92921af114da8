import stripe
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import ensure_acting_provider, require_roles
from app.db.session import get_db
from app.models.booking import Booking, BookingStatus
from app.models.provider import ProviderVenue
from app.models.user import User
from app.schemas.booking import (
    AcceptBookingRequest,
    ClaimOut,
    ConflictCheckOut,
    ConflictCheckRequest,
    OpenBookingOut,
    PaymentLinkOut,
    PaymentLinkRequest,
    UnassignBookingRequest,
)
from app.services.checkout_service import CheckoutError, create_payment_link
from app.services.claim_service import accept_booking, unassign_booking
from app.services.conflict_service import find_conflict, treatment_minutes, resolve_duration

router = APIRouter(tags=["bookings"])

_CLAIM_STATUS = {
    "not_found": 404,
    "provider_not_found": 404,
    "already_taken": 409,
    "conflict": 409,
    "not_assignee": 403,
}


def _claim_response(result) -> JSONResponse | ClaimOut:
    out = ClaimOut(
        success=result.success,
        error=result.reason,
        conflictingBooking=result.conflict.as_dict() if result.conflict else None,
    )
    if result.success:
        return out
    return JSONResponse(status_code=_CLAIM_STATUS.get(result.reason, 400), content=out.model_dump())


@router.get("/bookings/open", response_model=list[OpenBookingOut])
def list_open_bookings(
    venueId: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "concierge", "provider")),
):
    q = select(Booking).where(Booking.status == BookingStatus.PENDING.value, Booking.provider_id.is_(None))
    if venueId:
        q = q.where(Booking.venue_id == venueId)
    if user.role == "provider":
        q = q.where(Booking.venue_id.in_(select(ProviderVenue.venue_id).where(ProviderVenue.provider_id == user.provider_id)))
    rows = db.execute(q.order_by(Booking.booking_date.asc(), Booking.booking_time.asc())).scalars().all()
    totals = treatment_minutes(db, [b.id for b in rows])
    return [
        OpenBookingOut(
            id=b.id,
            bookingNumber=b.booking_number,
            venueId=b.venue_id,
            date=b.booking_date,
            time=b.booking_time,
            durationMinutes=resolve_duration(b.duration_minutes, totals.get(b.id, 0)),
            status=b.status,
            roomNumber=b.room_number or "",
            totalPriceCents=b.total_price_cents,
            currency=b.currency,
        )
        for b in rows
    ]


@router.post("/bookings/conflicts/check", response_model=ConflictCheckOut)
def check_conflict(
    body: ConflictCheckRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "concierge", "provider")),
):
    """Advisory pre-check for the booking forms; the claim re-checks atomically."""
    duration = body.durationMinutes
    if duration is None and body.excludeBookingId:
        b = db.get(Booking, body.excludeBookingId)
        if b:
            duration = resolve_duration(b.duration_minutes, treatment_minutes(db, [b.id]).get(b.id, 0))
    try:
        conflict = find_conflict(db, body.providerId, body.date, body.time, duration or resolve_duration(None, 0), body.excludeBookingId)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ConflictCheckOut(conflict=conflict is not None, conflictingBooking=conflict.as_dict() if conflict else None)


@router.post("/bookings/{booking_id}/accept", response_model=ClaimOut)
def accept(
    booking_id: str,
    body: AcceptBookingRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "provider")),
):
    ensure_acting_provider(user, body.providerId)
    result = accept_booking(db, booking_id, body.providerId, body.providerName, body.totalPriceCents)
    return _claim_response(result)


@router.post("/bookings/{booking_id}/unassign", response_model=ClaimOut)
def unassign(
    booking_id: str,
    body: UnassignBookingRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "provider")),
):
    ensure_acting_provider(user, body.providerId)
    return _claim_response(unassign_booking(db, booking_id, body.providerId))


@router.post("/bookings/{booking_id}/payment-link", response_model=PaymentLinkOut)
def send_payment_link(
    booking_id: str,
    body: PaymentLinkRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "concierge")),
):
    try:
        return create_payment_link(db, booking_id, body.channels)
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except stripe.StripeError as e:
        raise HTTPException(status_code=502, detail=f"Stripe error: {e.user_message or e}")
