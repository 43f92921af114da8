from pydantic import BaseModel
from typing import Optional

from app.schemas.booking import ConflictingBooking


class SlotIn(BaseModel):
    date: str  # YYYY-MM-DD
    time: str  # HH:MM


class ProposeAlternativeRequest(BaseModel):
    providerId: str
    slot1: SlotIn
    slot2: SlotIn


class ProposalOut(BaseModel):
    proposalId: Optional[str] = None
    success: bool
    error: Optional[str] = None
    warning: Optional[str] = None
    conflictingBooking: Optional[ConflictingBooking] = None
