from enum import Enum

from sqlalchemy import String, DateTime, Text, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base


class ProposalStatus(str, Enum):
    PENDING = "pending"
    SLOT1_OFFERED = "slot1_offered"
    SLOT1_REJECTED = "slot1_rejected"
    SLOT2_OFFERED = "slot2_offered"
    SLOT1_ACCEPTED = "slot1_accepted"
    SLOT2_ACCEPTED = "slot2_accepted"
    ALL_REJECTED = "all_rejected"


ACTIVE_PROPOSAL_STATUSES = (
    ProposalStatus.PENDING.value,
    ProposalStatus.SLOT1_OFFERED.value,
    ProposalStatus.SLOT1_REJECTED.value,
    ProposalStatus.SLOT2_OFFERED.value,
)
TERMINAL_PROPOSAL_STATUSES = (
    ProposalStatus.SLOT1_ACCEPTED.value,
    ProposalStatus.SLOT2_ACCEPTED.value,
    ProposalStatus.ALL_REJECTED.value,
)

_ACTIVE_SQL = "status IN ('pending', 'slot1_offered', 'slot1_rejected', 'slot2_offered')"


class AlternativeProposal(Base):
    __tablename__ = "alternative_proposals"
    __table_args__ = (
        # one negotiation in flight per booking
        Index(
            "uq_alternative_proposals_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=text(_ACTIVE_SQL),
            sqlite_where=text(_ACTIVE_SQL),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    provider_id: Mapped[str] = mapped_column(String(36), index=True)

    original_date: Mapped[str] = mapped_column(String(10))
    original_time: Mapped[str] = mapped_column(String(5))
    slot1_date: Mapped[str] = mapped_column(String(10))
    slot1_time: Mapped[str] = mapped_column(String(5))
    slot2_date: Mapped[str] = mapped_column(String(10))
    slot2_time: Mapped[str] = mapped_column(String(5))

    status: Mapped[str] = mapped_column(String(30), default=ProposalStatus.PENDING.value, index=True)
    client_phone: Mapped[str] = mapped_column(String(40), index=True)  # digits only, as WhatsApp reports wa_id
    message_id: Mapped[str] = mapped_column(String(128), nullable=True)  # last outbound WhatsApp message id
    last_error: Mapped[str] = mapped_column(Text, nullable=True)

    responded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def slot(self, number: int) -> tuple[str, str]:
        if number == 1:
            return self.slot1_date, self.slot1_time
        return self.slot2_date, self.slot2_time
