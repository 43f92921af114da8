import logging
import uuid
from datetime import datetime, timezone

import stripe
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.booking import Booking
from app.models.ledger import LedgerEntry, ProviderPayout
from app.models.provider import Provider
from app.services.audit_service import log_audit

logger = logging.getLogger(__name__)

PAYABLE_BOOKING_STATUSES = ("assigned", "confirmed", "completed")


def create_pending_payouts(db: Session, limit: int = 100) -> int:
    """One payout row per provider ledger share whose booking now has a Connect-enabled provider."""
    rows = db.execute(
        select(LedgerEntry, Booking, Provider)
        .join(Booking, Booking.id == LedgerEntry.booking_id)
        .join(Provider, Provider.id == Booking.provider_id)
        .outerjoin(ProviderPayout, ProviderPayout.ledger_entry_id == LedgerEntry.id)
        .where(
            LedgerEntry.payee_type == "provider",
            LedgerEntry.amount_cents > 0,
            ProviderPayout.id.is_(None),
            Booking.status.in_(PAYABLE_BOOKING_STATUSES),
            Provider.stripe_account_id.isnot(None),
        )
        .order_by(LedgerEntry.created_at.asc())
        .limit(limit)
    ).all()
    created = 0
    for entry, booking, provider in rows:
        db.add(ProviderPayout(
            id=str(uuid.uuid4()),
            ledger_entry_id=entry.id,
            booking_id=booking.id,
            provider_id=provider.id,
            amount_cents=entry.amount_cents,
            currency=entry.currency,
            status="pending",
            attempts=0,
        ))
        created += 1
    if created:
        try:
            db.commit()
        except IntegrityError:
            # another worker created them first
            db.rollback()
            return 0
    return created


def _transfer(payout: ProviderPayout, destination: str):
    return stripe.Transfer.create(
        amount=payout.amount_cents,
        currency=payout.currency.lower(),
        destination=destination,
        transfer_group=f"booking:{payout.booking_id}",
        metadata={"booking_id": payout.booking_id, "ledger_entry_id": payout.ledger_entry_id},
        idempotency_key=f"payout:{payout.ledger_entry_id}",
        api_key=settings.STRIPE_SECRET_KEY,
    )


def process_provider_payouts(db: Session, limit: int = 50) -> dict:
    """Create due payouts, then attempt transfers. Failures are recorded per payout; the ledger is untouched."""
    created = create_pending_payouts(db, limit=limit)
    due = (
        db.query(ProviderPayout)
        .filter(ProviderPayout.status.in_(["pending", "failed"]), ProviderPayout.attempts < settings.PAYOUT_MAX_ATTEMPTS)
        .order_by(ProviderPayout.created_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    completed, failed = 0, 0
    for payout in due:
        provider = db.get(Provider, payout.provider_id)
        payout.attempts = (payout.attempts or 0) + 1
        if not provider or not provider.stripe_account_id:
            payout.status = "failed"
            payout.error_message = "provider has no Stripe account"
            failed += 1
            continue
        try:
            transfer = _transfer(payout, provider.stripe_account_id)
        except stripe.StripeError as e:
            payout.status = "failed"
            payout.error_message = str(e)[:500]
            failed += 1
            logger.warning(
                "Provider payout failed",
                extra={"booking_id": payout.booking_id, "provider_id": payout.provider_id, "reason": str(e)},
            )
            continue
        payout.status = "completed"
        payout.stripe_transfer_id = transfer.id
        payout.error_message = None
        payout.completed_at = datetime.now(timezone.utc)
        log_audit(db, "system", "payout.completed", "payout", payout.id, {
            "booking_id": payout.booking_id, "amount_cents": payout.amount_cents, "transfer_id": payout.stripe_transfer_id,
        })
        completed += 1
    if due:
        db.commit()
    return {"created": created, "processed": len(due), "completed": completed, "failed": failed}
