from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base


class LedgerEntry(Base):
    """Append-only share of a captured payment owed to one payee."""

    __tablename__ = "ledger_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    venue_id: Mapped[str] = mapped_column(String(36), index=True)
    payee_type: Mapped[str] = mapped_column(String(20))  # platform, venue, provider
    payee_id: Mapped[str] = mapped_column(String(36), nullable=True)  # provider may be unknown until claimed
    amount_cents: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, paid, failed
    description: Mapped[str] = mapped_column(String(300), default="")
    idempotency_key: Mapped[str] = mapped_column(String(200), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def signed_amount_cents(self) -> int:
        # positive = owed to the platform, negative = the platform owes the counterparty
        if self.payee_type == "platform":
            return self.amount_cents
        return -self.amount_cents


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    idempotency_key: Mapped[str] = mapped_column(String(200), unique=True, index=True)
    event_id: Mapped[str] = mapped_column(String(120), index=True)
    event_type: Mapped[str] = mapped_column(String(60), default="")
    booking_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    amount_cents: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class ProviderPayout(Base):
    __tablename__ = "provider_payouts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ledger_entry_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    provider_id: Mapped[str] = mapped_column(String(36), index=True)
    amount_cents: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, completed, failed
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    stripe_transfer_id: Mapped[str] = mapped_column(String(80), nullable=True)
    error_message: Mapped[str] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
