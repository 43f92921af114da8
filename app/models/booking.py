from enum import Enum

from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base


class BookingStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    CONFIRMED = "confirmed"
    ALTERNATIVE_PROPOSED = "alternative_proposed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    QUOTE_PENDING = "quote_pending"
    WAITING_APPROVAL = "waiting_approval"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CHARGED_TO_ROOM = "charged_to_room"
    FAILED = "failed"


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_number: Mapped[int] = mapped_column(Integer, unique=True, index=True)

    venue_id: Mapped[str] = mapped_column(String(36), index=True)

    client_first_name: Mapped[str] = mapped_column(String(100), default="")
    client_last_name: Mapped[str] = mapped_column(String(100), default="")
    client_email: Mapped[str] = mapped_column(String(320), default="")
    client_phone: Mapped[str] = mapped_column(String(40), default="")
    room_number: Mapped[str] = mapped_column(String(20), default="")

    booking_date: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD
    booking_time: Mapped[str] = mapped_column(String(5))               # HH:MM
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=True)  # admin override for on-request services

    provider_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    provider_name: Mapped[str] = mapped_column(String(200), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(String(30), default=BookingStatus.PENDING.value, index=True)

    total_price_cents: Mapped[int] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=True)  # card|room
    payment_reference: Mapped[str] = mapped_column(String(255), nullable=True)  # Stripe session / payment intent id
    payment_link_channels: Mapped[str] = mapped_column(String(60), default="")  # e.g. "email,whatsapp"

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def client_name(self) -> str:
        return f"{self.client_first_name or ''} {self.client_last_name or ''}".strip()

    @property
    def link_channels(self) -> set[str]:
        return {c.strip() for c in (self.payment_link_channels or "").split(",") if c.strip()}


class BookingTreatment(Base):
    __tablename__ = "booking_treatments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    treatment_id: Mapped[str] = mapped_column(String(36), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
