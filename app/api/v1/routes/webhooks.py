import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.api.deps import get_messaging
from app.core.config import settings
from app.db.session import get_db
from app.services.messaging import MessagingGateway
from app.services.negotiation_service import on_client_reply
from app.services.whatsapp_client import verify_signature
from app.services.whatsapp_messages import InboundReply, extract_replies

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.get("/webhooks/whatsapp")
def verify_whatsapp_webhook(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
):
    if hub_mode == "subscribe" and settings.WHATSAPP_VERIFY_TOKEN and hub_verify_token == settings.WHATSAPP_VERIFY_TOKEN:
        return PlainTextResponse(hub_challenge or "")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhooks/whatsapp")
async def whatsapp_webhook(
    request: Request,
    db: Session = Depends(get_db),
    messaging: MessagingGateway = Depends(get_messaging),
):
    body = await request.body()
    if settings.WHATSAPP_APP_SECRET:
        if not verify_signature(body, request.headers.get("X-Hub-Signature-256"), settings.WHATSAPP_APP_SECRET):
            raise HTTPException(status_code=401, detail="Invalid signature")

    # Anything unparseable is acknowledged so Meta does not redeliver it
    try:
        payload = json.loads(body.decode("utf-8")) if body else {}
    except (UnicodeDecodeError, ValueError):
        logger.info("Unparseable WhatsApp webhook ignored")
        return {"ok": True, "processed": 0}
    if not isinstance(payload, dict):
        return {"ok": True, "processed": 0}

    replies = extract_replies(payload)
    # session and gateway calls block, so they stay off the event loop
    outcomes = await asyncio.to_thread(_handle_replies, db, messaging, replies)
    return {"ok": True, "processed": len(replies), "outcomes": outcomes}


def _handle_replies(db: Session, messaging: MessagingGateway, replies: list[InboundReply]) -> list[str]:
    outcomes = []
    for reply in replies:
        outcome = on_client_reply(db, messaging, reply.phone, reply.value)
        logger.info(
            "WhatsApp reply handled",
            extra={"message_id": reply.message_id, "proposal_id": outcome.proposal_id, "reason": outcome.action},
        )
        outcomes.append(outcome.action)
    return outcomes
