import pytest

from app.models.booking import Booking, BookingTreatment
from app.models.ledger import LedgerEntry, PaymentEvent
from app.models.outbound_message import OutboundMessage
from app.services import payment_service
from app.services.payment_service import (
    CommissionSplit,
    LedgerInvariantError,
    PaymentCapture,
    compute_commission_split,
    on_payment_captured,
)


@pytest.mark.parametrize(
    "amount, venue_pct, provider_pct, expected",
    [
        (10000, 10, 70, (2000, 1000, 7000)),
        (999, 10, 70, (200, 100, 699)),
        (5, 10, 0, (4, 1, 0)),
        (0, 10, 70, (0, 0, 0)),
        (12345, "12.5", "62.5", (3086, 1543, 7716)),
    ],
)
def test_commission_split_sums_to_amount(amount, venue_pct, provider_pct, expected):
    split = compute_commission_split(amount, venue_pct, provider_pct)
    assert (split.platform_cents, split.venue_cents, split.provider_cents) == expected
    assert split.total_cents == amount


@pytest.mark.parametrize("venue_pct, provider_pct", [(-1, 50), (50, 51), (10, -5)])
def test_commission_split_rejects_bad_percentages(venue_pct, provider_pct):
    with pytest.raises(ValueError):
        compute_commission_split(1000, venue_pct, provider_pct)


def _card_first(venue, treatments=(), event_id="evt_123", amount=10000, **extra):
    meta = {
        "venue_id": venue.id,
        "booking_date": "2026-11-02",
        "booking_time": "14:00",
        "treatment_ids": ",".join(t.id for t in treatments),
        "client_first_name": "Claire",
        "client_last_name": "Guest",
        "client_email": "claire@example.com",
        "client_phone": "+33611111111",
        "room_number": "204",
    }
    meta.update(extra)
    return PaymentCapture(event_id=event_id, amount_cents=amount, currency="EUR", metadata=meta,
                          reference="cs_test_1", event_type="checkout.session.completed")


def test_card_first_capture_creates_booking_and_balanced_ledger(db, venue, make_treatment, make_provider):
    make_provider("Alice")
    massage = make_treatment("Massage", price_cents=8000)
    facial = make_treatment("Facial", price_cents=2000)

    result = on_payment_captured(db, _card_first(venue, [massage, facial]))

    assert result.status == "processed"
    booking = db.get(Booking, result.booking_id)
    assert booking.booking_number == 1001
    assert booking.status == "pending"
    assert booking.payment_status == "paid"
    assert booking.payment_reference == "cs_test_1"
    assert booking.total_price_cents == 10000
    linked = {bt.treatment_id for bt in db.query(BookingTreatment).filter(BookingTreatment.booking_id == booking.id)}
    assert linked == {massage.id, facial.id}

    entries = {e.payee_type: e for e in db.query(LedgerEntry).filter(LedgerEntry.booking_id == booking.id)}
    assert sum(e.amount_cents for e in entries.values()) == 10000
    assert entries["platform"].amount_cents == 2000
    assert entries["platform"].status == "paid"
    assert entries["venue"].amount_cents == 1000
    assert entries["venue"].payee_id == venue.id
    assert entries["provider"].amount_cents == 7000
    assert entries["provider"].payee_id is None
    assert sorted(result.ledger_entry_ids) == sorted(e.id for e in entries.values())

    recipients = {m.recipient for m in db.query(OutboundMessage).filter(OutboundMessage.related_booking_id == booking.id)}
    assert recipients == {"admin@oom.local", "alice@example.com"}


def test_duplicate_capture_is_a_noop(db, venue):
    first = on_payment_captured(db, _card_first(venue))
    second = on_payment_captured(db, _card_first(venue))

    assert first.status == "processed"
    assert second.status == "duplicate"
    assert db.query(Booking).count() == 1
    assert db.query(LedgerEntry).count() == 3
    assert db.query(PaymentEvent).count() == 1


def test_booking_numbers_increase(db, venue):
    a = on_payment_captured(db, _card_first(venue, event_id="evt_a"))
    b = on_payment_captured(db, _card_first(venue, event_id="evt_b"))
    assert db.get(Booking, a.booking_id).booking_number == 1001
    assert db.get(Booking, b.booking_id).booking_number == 1002


def test_ledger_invariant_violation_rolls_back(db, venue, monkeypatch):
    monkeypatch.setattr(payment_service, "compute_commission_split", lambda *a: CommissionSplit(1, 1, 1))

    with pytest.raises(LedgerInvariantError):
        on_payment_captured(db, _card_first(venue))

    assert db.query(Booking).count() == 0
    assert db.query(LedgerEntry).count() == 0
    assert db.query(PaymentEvent).count() == 0

    # a corrected redelivery is still processed
    monkeypatch.undo()
    assert on_payment_captured(db, _card_first(venue)).status == "processed"


def test_payment_link_capture_confirms_on_whatsapp(db, make_booking):
    booking = make_booking(total_price_cents=9000, payment_link_channels="email,whatsapp")
    capture = PaymentCapture(event_id="evt_link", amount_cents=9000, metadata={"booking_id": booking.id}, reference="cs_link")

    result = on_payment_captured(db, capture)

    assert result.status == "processed"
    db.refresh(booking)
    assert booking.payment_status == "paid"
    assert booking.payment_reference == "cs_link"
    msgs = db.query(OutboundMessage).filter(OutboundMessage.related_booking_id == booking.id).all()
    assert [(m.channel, m.recipient) for m in msgs] == [("whatsapp", "+33 6 12 34 56 78")]
    assert "90.00 EUR" in msgs[0].body
    assert db.query(LedgerEntry).count() == 3

    again = PaymentCapture(event_id="evt_link_retry", amount_cents=9000, metadata={"booking_id": booking.id})
    assert on_payment_captured(db, again).status == "duplicate"
    assert db.query(OutboundMessage).count() == 1
    assert db.query(LedgerEntry).count() == 3


def test_payment_link_capture_splits_into_balanced_ledger(db, make_provider, make_booking):
    provider = make_provider("Alice")
    booking = make_booking(status="assigned", provider_id=provider.id, total_price_cents=9000, payment_link_channels="email")

    result = on_payment_captured(db, PaymentCapture(event_id="evt_link", amount_cents=9000, metadata={"booking_id": booking.id}))

    entries = {e.payee_type: e for e in db.query(LedgerEntry).filter(LedgerEntry.booking_id == booking.id)}
    assert sum(e.amount_cents for e in entries.values()) == 9000
    assert (entries["platform"].amount_cents, entries["venue"].amount_cents, entries["provider"].amount_cents) == (1800, 900, 6300)
    assert entries["provider"].payee_id == provider.id
    assert entries["provider"].idempotency_key == f"booking:{booking.id}:provider"
    assert sorted(result.ledger_entry_ids) == sorted(e.id for e in entries.values())


def test_payment_link_sent_by_email_only_gets_no_whatsapp(db, make_booking):
    booking = make_booking(total_price_cents=9000, payment_link_channels="email")
    on_payment_captured(db, PaymentCapture(event_id="evt_mail", amount_cents=9000, metadata={"booking_id": booking.id}))
    assert db.query(OutboundMessage).count() == 0
    db.refresh(booking)
    assert booking.payment_status == "paid"


@pytest.mark.parametrize(
    "metadata, reason",
    [
        ({}, "missing_metadata"),
        ({"booking_id": "nope"}, "unknown_booking"),
        ({"venue_id": "nope", "booking_date": "2026-11-02", "booking_time": "10:00"}, "unknown_venue"),
    ],
)
def test_unmatched_captures_are_ignored(db, metadata, reason):
    result = on_payment_captured(db, PaymentCapture(event_id="evt_x", amount_cents=100, metadata=metadata))
    assert result.status == "ignored"
    assert result.reason == reason
    assert db.query(PaymentEvent).count() == 0


def test_bad_booking_time_is_ignored(db, venue):
    result = on_payment_captured(db, _card_first(venue, booking_time="25:99"))
    assert result.status == "ignored"
    assert db.query(Booking).count() == 0


def test_signed_amounts():
    platform = LedgerEntry(payee_type="platform", amount_cents=2000)
    provider = LedgerEntry(payee_type="provider", amount_cents=7000)
    assert platform.signed_amount_cents == 2000
    assert provider.signed_amount_cents == -7000
