"""Interactive WhatsApp bodies for the alternative-slot exchange, and inbound reply parsing."""
from dataclasses import dataclass

ACCEPT_SLOT = "accept_slot"
REJECT_SLOT = "reject_slot"

# Button titles as Meta echoes them back when no payload id is attached
ACCEPT_TEXTS = frozenset({"oui, j'accepte", "oui j'accepte", "oui", "yes, i accept", "yes i accept", "yes", "accept"})
REJECT_TEXTS = frozenset({
    "non, autre proposition", "non autre proposition", "autre proposition", "non merci", "non",
    "no, another time", "no another time", "another time", "no thanks", "no",
})

ACCEPT = "accept"
REJECT = "reject"


@dataclass(frozen=True)
class InboundReply:
    phone: str
    value: str            # button id, button title or free text
    message_id: str = ""
    kind: str = "text"    # button, list, template_button, text


def _normalize(value: str) -> str:
    return " ".join((value or "").replace("’", "'").lower().split())


def is_accept_reply(value: str) -> bool:
    v = _normalize(value)
    return v == ACCEPT_SLOT or v in ACCEPT_TEXTS


def is_reject_reply(value: str) -> bool:
    v = _normalize(value)
    return v == REJECT_SLOT or v in REJECT_TEXTS


def classify_reply(value: str) -> str | None:
    if is_accept_reply(value):
        return ACCEPT
    if is_reject_reply(value):
        return REJECT
    return None


def _buttons(*pairs: tuple[str, str]) -> list[dict]:
    return [{"type": "reply", "reply": {"id": bid, "title": title}} for bid, title in pairs]


def offer1_message(client_name: str, original_date: str, original_time: str, slot_date: str, slot_time: str) -> dict:
    greeting = f"Hello {client_name}!" if client_name else "Hello!"
    return {
        "type": "button",
        "body": {
            "text": (
                f"{greeting}\n\nYour practitioner is not available on {original_date} at {original_time}.\n\n"
                f"They can offer {slot_date} at {slot_time} instead. Does this slot work for you?"
            ),
        },
        "action": {"buttons": _buttons((ACCEPT_SLOT, "Yes, I accept"), (REJECT_SLOT, "Another time"))},
    }


def offer2_message(slot_date: str, slot_time: str) -> dict:
    return {
        "type": "button",
        "body": {"text": f"No problem! How about {slot_date} at {slot_time}?"},
        "action": {"buttons": _buttons((ACCEPT_SLOT, "Yes, I accept"), (REJECT_SLOT, "No thanks"))},
    }


def accepted_message(slot_date: str, slot_time: str) -> dict:
    return {
        "type": "button",
        "body": {"text": f"Perfect! Your booking is confirmed for {slot_date} at {slot_time}.\n\nSee you soon!"},
        "action": {"buttons": _buttons(("ok", "OK"))},
    }


def all_rejected_message() -> dict:
    return {
        "type": "button",
        "body": {"text": "We have let your practitioner know. They will get back to you shortly to find a slot that suits you."},
        "action": {"buttons": _buttons(("ok", "OK"))},
    }


def slot_unavailable_message(slot_date: str, slot_time: str) -> dict:
    return {
        "type": "button",
        "body": {
            "text": (
                f"Sorry, {slot_date} at {slot_time} has just been taken.\n\n"
                "We have let your practitioner know. They will get back to you shortly with another time."
            ),
        },
        "action": {"buttons": _buttons(("ok", "OK"))},
    }


def payment_confirmed_text(booking_number: int, amount_cents: int, currency: str) -> str:
    return f"Payment received for booking #{booking_number}: {amount_cents / 100:.2f} {currency}. Thank you!"


def extract_replies(payload: dict) -> list[InboundReply]:
    """Pull the replies we understand out of a Cloud API webhook; statuses and media are skipped."""
    replies: list[InboundReply] = []
    if not isinstance(payload, dict):
        return replies
    for entry in _dicts(payload.get("entry")):
        for change in _dicts(entry.get("changes")):
            value = change.get("value")
            if not isinstance(value, dict):
                continue
            for msg in _dicts(value.get("messages")):
                reply = _reply_from_message(msg)
                if reply:
                    replies.append(reply)
    return replies


def _dicts(items) -> list[dict]:
    # malformed elements are skipped, never raised on
    if not isinstance(items, list):
        return []
    return [i for i in items if isinstance(i, dict)]


def _reply_from_message(msg: dict) -> InboundReply | None:
    phone = str(msg.get("from") or "")
    if not phone:
        return None
    mid = str(msg.get("id") or "")
    mtype = msg.get("type")

    if mtype == "interactive":
        interactive = msg.get("interactive") or {}
        if interactive.get("type") == "button_reply":
            r = interactive.get("button_reply") or {}
            return InboundReply(phone=phone, value=r.get("id") or r.get("title") or "", message_id=mid, kind="button")
        if interactive.get("type") == "list_reply":
            r = interactive.get("list_reply") or {}
            return InboundReply(phone=phone, value=r.get("id") or r.get("title") or "", message_id=mid, kind="list")
        return None
    if mtype == "button":
        b = msg.get("button") or {}
        return InboundReply(phone=phone, value=b.get("payload") or b.get("text") or "", message_id=mid, kind="template_button")
    if mtype == "text":
        return InboundReply(phone=phone, value=(msg.get("text") or {}).get("body") or "", message_id=mid, kind="text")
    return None
