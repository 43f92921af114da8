import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.schemas.payments import CardCheckoutRequest, CheckoutOut
from app.services.checkout_service import CheckoutError, capture_from_stripe_event, create_card_checkout
from app.services.payment_service import LedgerInvariantError, on_payment_captured

router = APIRouter(tags=["payments"])
logger = logging.getLogger(__name__)


@router.post("/public/checkout", response_model=CheckoutOut)
def card_checkout(body: CardCheckoutRequest, db: Session = Depends(get_db)):
    try:
        return create_card_checkout(
            db,
            venue_id=body.venueId,
            treatment_ids=body.treatmentIds,
            booking_date=body.date,
            booking_time=body.time,
            client={
                "first_name": body.client.firstName,
                "last_name": body.client.lastName,
                "email": body.client.email,
                "phone": body.client.phone,
                "room_number": body.client.roomNumber,
            },
        )
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except stripe.StripeError as e:
        raise HTTPException(status_code=502, detail=f"Stripe error: {e.user_message or e}")


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Verify the Stripe signature, then reconcile the capture at most once."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("No Stripe webhook secret configured")
        raise HTTPException(status_code=500, detail="Webhook configuration error")
    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing signature")
    try:
        stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except stripe.SignatureVerificationError:
        logger.warning("Stripe webhook signature verification failed")
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    event = json.loads(payload)
    capture = capture_from_stripe_event(event)
    if capture is None:
        logger.info("Stripe event ignored", extra={"event_id": event.get("id"), "reason": event.get("type")})
        return {"received": True, "status": "ignored"}

    try:
        result = on_payment_captured(db, capture)
    except LedgerInvariantError as e:
        # Nothing was committed; a non-2xx makes Stripe redeliver once the cause is fixed
        return JSONResponse(status_code=500, content={"received": False, "error": str(e)})
    return {"received": True, "status": result.status, "bookingId": result.booking_id}
