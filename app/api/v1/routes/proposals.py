from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import ensure_acting_provider, get_messaging, require_roles
from app.db.session import get_db
from app.models.user import User
from app.schemas.proposal import ProposalOut, ProposeAlternativeRequest
from app.services.messaging import MessagingGateway
from app.services.negotiation_service import ProposalResult, propose_alternative, retry_offer

router = APIRouter(tags=["alternatives"])

_ERROR_STATUS = {
    "not_found": 404,
    "provider_not_found": 404,
    "conflict": 409,
    "slot_unavailable": 409,
    "invalid_state": 409,
    "missing_phone": 400,
    "invalid_slot": 400,
}


def _proposal_response(result: ProposalResult):
    out = ProposalOut(
        proposalId=result.proposal_id,
        success=result.success,
        error=result.error,
        warning=result.warning,
        conflictingBooking=result.conflict.as_dict() if result.conflict else None,
    )
    # A created proposal whose offer failed is still a 200: the caller retries the send, not the request
    if result.error:
        return JSONResponse(status_code=_ERROR_STATUS.get(result.error, 400), content=out.model_dump())
    return out


@router.post("/bookings/{booking_id}/alternatives", response_model=ProposalOut)
def propose(
    booking_id: str,
    body: ProposeAlternativeRequest,
    db: Session = Depends(get_db),
    messaging: MessagingGateway = Depends(get_messaging),
    user: User = Depends(require_roles("admin", "provider")),
):
    ensure_acting_provider(user, body.providerId)
    result = propose_alternative(
        db, messaging, booking_id, body.providerId,
        (body.slot1.date, body.slot1.time),
        (body.slot2.date, body.slot2.time),
    )
    return _proposal_response(result)


@router.post("/alternatives/{proposal_id}/retry", response_model=ProposalOut)
def retry(
    proposal_id: str,
    db: Session = Depends(get_db),
    messaging: MessagingGateway = Depends(get_messaging),
    user: User = Depends(require_roles("admin")),
):
    return _proposal_response(retry_offer(db, messaging, proposal_id))
