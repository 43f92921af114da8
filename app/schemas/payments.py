from pydantic import BaseModel, Field
from typing import List


class ClientIn(BaseModel):
    firstName: str = Field(default="")
    lastName: str = Field(default="")
    email: str = Field(default="")  # plain str to allow .local and other dev domains
    phone: str = Field(default="")
    roomNumber: str = Field(default="")


class CardCheckoutRequest(BaseModel):
    venueId: str
    treatmentIds: List[str] = Field(min_length=1)
    date: str  # YYYY-MM-DD
    time: str  # HH:MM
    client: ClientIn


class CheckoutOut(BaseModel):
    url: str
    sessionId: str
    amountCents: int
    currency: str
