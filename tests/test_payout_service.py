from types import SimpleNamespace

import pytest
import stripe

from app.models.ledger import ProviderPayout
from app.models.outbound_message import OutboundMessage
from app.services import payout_service
from app.services.claim_service import accept_booking
from app.services.payment_service import PaymentCapture, on_payment_captured
from app.services.payout_service import create_pending_payouts, process_provider_payouts
from app.tasks.worker_jobs import process_message_queue


@pytest.fixture
def transfers(monkeypatch):
    calls = []

    def fake_transfer(payout, destination):
        calls.append((payout.ledger_entry_id, payout.amount_cents, destination))
        return SimpleNamespace(id=f"tr_{len(calls)}")

    monkeypatch.setattr(payout_service, "_transfer", fake_transfer)
    return calls


def _paid_booking(db, venue, event_id="evt_pay"):
    capture = PaymentCapture(
        event_id=event_id,
        amount_cents=10000,
        metadata={"venue_id": venue.id, "booking_date": "2026-11-02", "booking_time": "10:00"},
    )
    return on_payment_captured(db, capture).booking_id


def test_unclaimed_booking_has_nothing_to_pay(db, venue, transfers):
    _paid_booking(db, venue)
    assert create_pending_payouts(db) == 0
    assert process_provider_payouts(db)["processed"] == 0
    assert transfers == []


def test_claimed_booking_pays_provider_share_once(db, venue, make_provider, transfers):
    provider = make_provider("Alice", stripe_account_id="acct_alice")
    booking_id = _paid_booking(db, venue)
    assert accept_booking(db, booking_id, provider.id, "Alice").success

    result = process_provider_payouts(db)

    assert result == {"created": 1, "processed": 1, "completed": 1, "failed": 0}
    payout = db.query(ProviderPayout).one()
    assert payout.status == "completed"
    assert payout.amount_cents == 7000
    assert payout.stripe_transfer_id == "tr_1"
    assert payout.provider_id == provider.id
    assert transfers == [(payout.ledger_entry_id, 7000, "acct_alice")]

    again = process_provider_payouts(db)
    assert again == {"created": 0, "processed": 0, "completed": 0, "failed": 0}
    assert len(transfers) == 1


def test_provider_without_connect_account_is_skipped(db, venue, make_provider, transfers):
    provider = make_provider("Bruno")
    booking_id = _paid_booking(db, venue)
    accept_booking(db, booking_id, provider.id, "Bruno")

    assert process_provider_payouts(db)["created"] == 0
    assert transfers == []


def test_stripe_failure_is_recorded_and_retried(db, venue, make_provider, monkeypatch):
    provider = make_provider("Alice", stripe_account_id="acct_alice")
    booking_id = _paid_booking(db, venue)
    accept_booking(db, booking_id, provider.id, "Alice")

    def boom(payout, destination):
        raise stripe.StripeError("account restricted")

    monkeypatch.setattr(payout_service, "_transfer", boom)
    failed = process_provider_payouts(db)
    assert failed["failed"] == 1
    payout = db.query(ProviderPayout).one()
    assert payout.status == "failed"
    assert "account restricted" in payout.error_message

    monkeypatch.setattr(payout_service, "_transfer", lambda payout, destination: SimpleNamespace(id="tr_retry"))
    retried = process_provider_payouts(db)
    assert retried["completed"] == 1
    db.refresh(payout)
    assert payout.status == "completed"
    assert payout.attempts == 2


def test_message_queue_job_uses_mock_gateway_outside_production(db, session_factory, make_provider, make_booking):
    provider = make_provider("Alice")
    booking = make_booking()
    accept_booking(db, booking.id, provider.id, "Alice")

    result = process_message_queue(session_factory=session_factory)

    assert result["sent"] >= 1
    db.expire_all()
    statuses = {m.channel: m.status for m in db.query(OutboundMessage).filter(OutboundMessage.channel == "whatsapp")}
    assert statuses == {"whatsapp": "sent"}


def test_payment_link_share_is_paid_out(db, make_provider, make_booking, transfers):
    provider = make_provider("Alice", stripe_account_id="acct_alice")
    booking = make_booking(status="assigned", provider_id=provider.id, total_price_cents=9000)
    on_payment_captured(db, PaymentCapture(event_id="evt_link", amount_cents=9000, metadata={"booking_id": booking.id}))

    result = process_provider_payouts(db)

    assert result["completed"] == 1
    assert transfers[0][1:] == (6300, "acct_alice")
