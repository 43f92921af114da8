from app.core.config import settings
from app.models.outbound_message import OutboundMessage
from app.services.email_service import EmailDeliveryError
from app.services.outbox_service import (
    CHANNEL_WHATSAPP,
    process_pending_messages,
    queue_email,
    queue_message,
)
from app.services.whatsapp_messages import offer2_message


class RecordingMailer:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def __call__(self, to, subject, body):
        if self.fail:
            raise EmailDeliveryError("smtp down")
        self.sent.append((to, subject, body))


def test_queue_only_stages_rows(db, gateway):
    queue_message(db, CHANNEL_WHATSAPP, "33611111111", body="hi")
    assert db.query(OutboundMessage).count() == 0  # not committed yet
    db.commit()
    msg = db.query(OutboundMessage).one()
    assert msg.status == "queued"
    assert msg.attempts == 0
    assert gateway.sent == []


def test_queue_without_recipient_is_skipped(db):
    assert queue_email(db, "", "Subject", "Body") is None
    db.commit()
    assert db.query(OutboundMessage).count() == 0


def test_repeated_idempotency_key_returns_existing_row(db):
    first = queue_email(db, "a@example.com", "S", "B", idempotency_key="k1")
    db.commit()
    second = queue_email(db, "a@example.com", "S", "B", idempotency_key="k1")
    assert second.id == first.id
    db.commit()
    assert db.query(OutboundMessage).count() == 1


def test_worker_delivers_text_interactive_and_email(db, gateway):
    mailer = RecordingMailer()
    queue_message(db, CHANNEL_WHATSAPP, "33611111111", body="Payment received")
    queue_message(db, CHANNEL_WHATSAPP, "33622222222", interactive=offer2_message("2026-11-04", "09:30"))
    queue_email(db, "guest@example.com", "Booking confirmed", "See you soon")
    db.commit()

    counts = process_pending_messages(db, gateway, email_sender=mailer)

    assert counts == {"processed": 3, "sent": 3, "failed": 0, "retry": 0}
    by_kind = {s["kind"]: s for s in gateway.sent}
    assert sorted(by_kind) == ["interactive", "text"]
    assert by_kind["interactive"]["content"]["body"]["text"].startswith("No problem!")
    assert by_kind["text"]["content"] == "Payment received"
    assert mailer.sent == [("guest@example.com", "Booking confirmed", "See you soon")]
    assert all(m.status == "sent" and m.sent_at for m in db.query(OutboundMessage))

    assert process_pending_messages(db, gateway, email_sender=mailer)["processed"] == 0


def test_failed_delivery_retries_then_gives_up(db, gateway, monkeypatch):
    monkeypatch.setattr(settings, "OUTBOX_MAX_ATTEMPTS", 2)
    mailer = RecordingMailer(fail=True)
    queue_email(db, "guest@example.com", "S", "B")
    db.commit()

    first = process_pending_messages(db, gateway, email_sender=mailer)
    assert first == {"processed": 1, "sent": 0, "failed": 0, "retry": 1}
    msg = db.query(OutboundMessage).one()
    assert msg.status == "queued"
    assert msg.last_error == "smtp down"

    second = process_pending_messages(db, gateway, email_sender=mailer)
    assert second["failed"] == 1
    db.refresh(msg)
    assert msg.status == "failed"
    assert msg.attempts == 2

    assert process_pending_messages(db, gateway, email_sender=mailer)["processed"] == 0


def test_whatsapp_failure_records_gateway_error(db, gateway):
    gateway.fail = True
    queue_message(db, CHANNEL_WHATSAPP, "33611111111", body="hi")
    db.commit()

    counts = process_pending_messages(db, gateway)

    assert counts["retry"] == 1
    msg = db.query(OutboundMessage).one()
    assert msg.last_error == "timeout"
    assert msg.attempts == 1
