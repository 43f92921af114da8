from pydantic import BaseModel, Field
from typing import List, Optional


class AcceptBookingRequest(BaseModel):
    providerId: str
    providerName: str = ""
    totalPriceCents: Optional[int] = Field(default=None, ge=0)


class UnassignBookingRequest(BaseModel):
    providerId: str


class ConflictingBooking(BaseModel):
    bookingId: str
    bookingNumber: int
    start: str
    end: str


class ClaimOut(BaseModel):
    success: bool
    error: Optional[str] = None
    conflictingBooking: Optional[ConflictingBooking] = None


class ConflictCheckRequest(BaseModel):
    providerId: str
    date: str  # YYYY-MM-DD
    time: str  # HH:MM
    durationMinutes: Optional[int] = Field(default=None, gt=0)
    excludeBookingId: Optional[str] = None


class ConflictCheckOut(BaseModel):
    conflict: bool
    conflictingBooking: Optional[ConflictingBooking] = None


class OpenBookingOut(BaseModel):
    id: str
    bookingNumber: int
    venueId: str
    date: str
    time: str
    durationMinutes: int
    status: str
    roomNumber: str = ""
    totalPriceCents: Optional[int] = None
    currency: str = "EUR"


class PaymentLinkRequest(BaseModel):
    channels: List[str] = ["email"]


class PaymentLinkOut(BaseModel):
    url: str
    sessionId: str
    channels: List[str]
