import logging

import stripe
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.booking import Booking, PaymentStatus
from app.models.treatment import Treatment
from app.models.venue import Venue
from app.services.audit_service import log_audit
from app.services.outbox_service import CHANNEL_EMAIL, CHANNEL_WHATSAPP, queue_email, queue_message
from app.services.payment_service import PaymentCapture
from app.services.time_window import normalize_time

logger = logging.getLogger(__name__)

LINK_CHANNELS = (CHANNEL_EMAIL, CHANNEL_WHATSAPP)
CAPTURE_EVENT_TYPES = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


class CheckoutError(ValueError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def _urls(booking_ref: str = "") -> dict:
    base = (settings.CLIENT_BASE_URL or "http://localhost:8080").rstrip("/")
    suffix = f"?booking={booking_ref}" if booking_ref else ""
    return {
        "success_url": f"{base}/payment/success{suffix}",
        "cancel_url": f"{base}/payment/cancel{suffix}",
    }


def _create_session(amount_cents: int, currency: str, name: str, metadata: dict, customer_email: str = "", booking_ref: str = ""):
    params = dict(
        mode="payment",
        line_items=[{
            "price_data": {
                "currency": currency.lower(),
                "unit_amount": int(amount_cents),
                "product_data": {"name": name},
            },
            "quantity": 1,
        }],
        metadata=metadata,
        payment_intent_data={"metadata": metadata},
        api_key=settings.STRIPE_SECRET_KEY,
        **_urls(booking_ref),
    )
    if customer_email:
        params["customer_email"] = customer_email
    return stripe.checkout.Session.create(**params)


def create_payment_link(db: Session, booking_id: str, channels: list[str]) -> dict:
    """Checkout session for an existing booking, sent to the client on the chosen channels."""
    booking = db.get(Booking, booking_id)
    if not booking:
        raise CheckoutError("Booking not found", status_code=404)
    if booking.payment_status == PaymentStatus.PAID.value:
        raise CheckoutError("Booking already paid", status_code=409)
    if not booking.total_price_cents or booking.total_price_cents <= 0:
        raise CheckoutError("Booking has no price yet")
    chosen = sorted({c for c in channels if c in LINK_CHANNELS})
    if not chosen:
        raise CheckoutError(f"channels must include one of {', '.join(LINK_CHANNELS)}")

    session = _create_session(
        booking.total_price_cents, booking.currency, f"Booking #{booking.booking_number}",
        {"booking_id": booking.id}, booking.client_email, str(booking.booking_number),
    )
    url = session.url
    booking.payment_link_channels = ",".join(chosen)
    booking.payment_reference = session.id

    text = f"Your payment link for booking #{booking.booking_number} ({booking.total_price_cents / 100:.2f} {booking.currency}): {url}"
    if CHANNEL_WHATSAPP in chosen:
        queue_message(db, CHANNEL_WHATSAPP, booking.client_phone, body=text, related_booking_id=booking.id)
    if CHANNEL_EMAIL in chosen:
        queue_email(db, booking.client_email, f"Payment link for booking #{booking.booking_number}", text, related_booking_id=booking.id)
    log_audit(db, "admin", "payment.link_sent", "booking", booking.id, {"session_id": session.id, "channels": chosen})
    db.commit()
    logger.info("Payment link created", extra={"booking_id": booking.id, "reason": ",".join(chosen)})
    return {"url": url, "sessionId": session.id, "channels": chosen}


def create_card_checkout(
    db: Session,
    venue_id: str,
    treatment_ids: list[str],
    booking_date: str,
    booking_time: str,
    client: dict,
) -> dict:
    """Card-first checkout: nothing is stored until the capture webhook creates the booking."""
    venue = db.get(Venue, venue_id)
    if not venue:
        raise CheckoutError("Venue not found", status_code=404)
    try:
        booking_time = normalize_time(booking_time)
    except ValueError:
        raise CheckoutError("Invalid booking time")
    treatments = db.execute(
        select(Treatment).where(Treatment.id.in_(treatment_ids), Treatment.venue_id == venue.id)
    ).scalars().all()
    if not treatments:
        raise CheckoutError("No valid treatments selected")
    amount = sum(int(t.price_cents or 0) for t in treatments)
    if amount <= 0:
        raise CheckoutError("Selected treatments have no price")

    metadata = {
        "venue_id": venue.id,
        "client_first_name": client.get("first_name") or "",
        "client_last_name": client.get("last_name") or "",
        "client_email": client.get("email") or "",
        "client_phone": client.get("phone") or "",
        "room_number": client.get("room_number") or "",
        "booking_date": booking_date,
        "booking_time": booking_time,
        "treatment_ids": ",".join(t.id for t in treatments),
    }
    name = f"{venue.name}: " + ", ".join(t.name for t in treatments)
    session = _create_session(amount, venue.currency, name[:200], metadata, metadata["client_email"])
    logger.info("Card checkout session created", extra={"reason": f"venue={venue.id} amount={amount}"})
    return {"url": session.url, "sessionId": session.id, "amountCents": amount, "currency": venue.currency}


def capture_from_stripe_event(event: dict) -> PaymentCapture | None:
    """Map a verified Stripe event to a capture; None for events that are not a completed card payment."""
    if event.get("type") not in CAPTURE_EVENT_TYPES:
        return None
    session = ((event.get("data") or {}).get("object")) or {}
    if session.get("payment_status") != "paid":
        return None
    return PaymentCapture(
        event_id=str(event.get("id") or ""),
        event_type=str(event.get("type") or ""),
        amount_cents=int(session.get("amount_total") or 0),
        currency=str(session.get("currency") or "eur").upper(),
        metadata=dict(session.get("metadata") or {}),
        reference=str(session.get("payment_intent") or session.get("id") or ""),
    )
