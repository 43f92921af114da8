import os

# Settings are read at import time; configure before any app module loads
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["WHATSAPP_VERIFY_TOKEN"] = "verify-me"
os.environ["WHATSAPP_APP_SECRET"] = ""
os.environ["WHATSAPP_PHONE_NUMBER_ID"] = ""
os.environ["WHATSAPP_ACCESS_TOKEN"] = ""

import itertools
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.session import Base
from app.models.alternative_proposal import AlternativeProposal  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.booking import Booking, BookingTreatment
from app.models.ledger import LedgerEntry, PaymentEvent, ProviderPayout  # noqa: F401
from app.models.outbound_message import OutboundMessage  # noqa: F401
from app.models.provider import Provider, ProviderVenue
from app.models.treatment import Treatment
from app.models.user import User
from app.models.venue import Venue
from app.services.messaging import MessagingGateway, SendResult


class FakeGateway(MessagingGateway):
    """Records every send; `fail` makes the next sends report a delivery failure."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []
        self._ids = itertools.count(1)

    def _result(self, to: str, kind: str, content) -> SendResult:
        self.sent.append({"to": to, "kind": kind, "content": content})
        if self.fail:
            return SendResult(success=False, error="timeout")
        return SendResult(success=True, message_id=f"wamid.{next(self._ids)}")

    def send_interactive(self, to: str, interactive: dict) -> SendResult:
        return self._result(to, "interactive", interactive)

    def send_text(self, to: str, body: str) -> SendResult:
        return self._result(to, "text", body)

    def bodies(self) -> list[str]:
        out = []
        for s in self.sent:
            c = s["content"]
            out.append(c["body"]["text"] if isinstance(c, dict) else c)
        return out


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


_numbers = itertools.count(1001)


@pytest.fixture
def venue(db):
    v = Venue(id=str(uuid.uuid4()), name="Hotel Test", currency="EUR", venue_commission_pct=10, provider_commission_pct=70)
    db.add(v)
    db.commit()
    return v


@pytest.fixture
def make_provider(db, venue):
    def _make(first="Alice", email=None, stripe_account_id=None, link=True) -> Provider:
        p = Provider(
            id=str(uuid.uuid4()),
            first_name=first,
            last_name="Test",
            email=email or f"{first.lower()}@example.com",
            phone="+33600000000",
            stripe_account_id=stripe_account_id,
        )
        db.add(p)
        if link:
            db.add(ProviderVenue(id=str(uuid.uuid4()), provider_id=p.id, venue_id=venue.id))
        db.commit()
        return p
    return _make


@pytest.fixture
def make_treatment(db, venue):
    def _make(name="Massage", price_cents=10000, duration_minutes=60) -> Treatment:
        t = Treatment(id=str(uuid.uuid4()), venue_id=venue.id, name=name, price_cents=price_cents, duration_minutes=duration_minutes)
        db.add(t)
        db.commit()
        return t
    return _make


@pytest.fixture
def make_booking(db, venue):
    def _make(
        booking_date="2026-11-02",
        booking_time="10:00",
        status="pending",
        provider_id=None,
        treatments=(),
        duration_minutes=None,
        client_phone="+33 6 12 34 56 78",
        client_email="guest@example.com",
        total_price_cents=None,
        payment_link_channels="",
    ) -> Booking:
        b = Booking(
            id=str(uuid.uuid4()),
            booking_number=next(_numbers),
            venue_id=venue.id,
            client_first_name="Claire",
            client_last_name="Guest",
            client_email=client_email,
            client_phone=client_phone,
            room_number="204",
            booking_date=booking_date,
            booking_time=booking_time,
            duration_minutes=duration_minutes,
            provider_id=provider_id,
            status=status,
            total_price_cents=total_price_cents,
            payment_link_channels=payment_link_channels,
        )
        db.add(b)
        for t in treatments:
            db.add(BookingTreatment(id=str(uuid.uuid4()), booking_id=b.id, treatment_id=t.id))
        db.commit()
        return b
    return _make


@pytest.fixture
def make_user(db):
    def _make(role="admin", provider_id=None) -> User:
        u = User(
            id=str(uuid.uuid4()),
            email=f"{role}-{uuid.uuid4().hex[:6]}@example.com",
            full_name=role.title(),
            role=role,
            provider_id=provider_id,
            is_active=True,
        )
        db.add(u)
        db.commit()
        return u
    return _make


@pytest.fixture
def client(session_factory, gateway):
    from fastapi.testclient import TestClient

    from app.api.deps import get_messaging
    from app.db.session import get_db
    from app.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_messaging] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(make_user):
    from app.core.security import create_access_token

    def _headers(role="admin", provider_id=None) -> dict:
        user = make_user(role=role, provider_id=provider_id)
        return {"Authorization": f"Bearer {create_access_token(user.id, role=user.role)}"}
    return _headers
