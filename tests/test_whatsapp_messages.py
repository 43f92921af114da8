import hashlib
import hmac

import pytest

from app.services.whatsapp_client import normalize_phone, verify_signature
from app.services.whatsapp_messages import (
    ACCEPT,
    REJECT,
    classify_reply,
    extract_replies,
    is_accept_reply,
    is_reject_reply,
    offer1_message,
)


@pytest.mark.parametrize("value", ["accept_slot", "ACCEPT_SLOT", "Oui, j'accepte", "oui j’accepte", " Oui ", "Yes, I accept"])
def test_accept_vocabulary(value):
    assert is_accept_reply(value)
    assert classify_reply(value) == ACCEPT


@pytest.mark.parametrize("value", ["reject_slot", "Autre proposition", "Non, autre proposition", "Non merci", "NON", "Another time"])
def test_reject_vocabulary(value):
    assert is_reject_reply(value)
    assert classify_reply(value) == REJECT


@pytest.mark.parametrize("value", ["", "ok", "bonjour", "non je ne sais pas", "oui mais plus tard", "ouistiti"])
def test_anything_else_is_unrecognised(value):
    assert classify_reply(value) is None


def test_offer_buttons_carry_reply_ids():
    body = offer1_message("Claire", "2026-11-02", "10:00", "2026-11-03", "14:00")
    ids = [b["reply"]["id"] for b in body["action"]["buttons"]]
    assert ids == ["accept_slot", "reject_slot"]
    assert body["type"] == "button"


def _webhook(*messages):
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": {"messages": list(messages)}}]}],
    }


def test_extract_replies_understands_buttons_lists_templates_and_text():
    payload = _webhook(
        {"from": "33611111111", "id": "m1", "type": "interactive",
         "interactive": {"type": "button_reply", "button_reply": {"id": "accept_slot", "title": "Yes, I accept"}}},
        {"from": "33622222222", "id": "m2", "type": "interactive",
         "interactive": {"type": "list_reply", "list_reply": {"id": "reject_slot", "title": "No"}}},
        {"from": "33633333333", "id": "m3", "type": "button", "button": {"payload": "", "text": "Oui"}},
        {"from": "33644444444", "id": "m4", "type": "text", "text": {"body": "non merci"}},
        {"from": "33655555555", "id": "m5", "type": "image", "image": {"id": "media"}},
    )
    replies = extract_replies(payload)
    assert [(r.phone, r.value, r.kind) for r in replies] == [
        ("33611111111", "accept_slot", "button"),
        ("33622222222", "reject_slot", "list"),
        ("33633333333", "Oui", "template_button"),
        ("33644444444", "non merci", "text"),
    ]


def test_extract_replies_skips_status_callbacks():
    payload = {"entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.1", "status": "delivered"}]}}]}]}
    assert extract_replies(payload) == []
    assert extract_replies({}) == []


def test_normalize_phone_keeps_digits():
    assert normalize_phone("+33 (6) 12-34-56-78") == "33612345678"
    assert normalize_phone(None) == ""


def test_verify_signature():
    body = b'{"entry": []}'
    sig = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()
    assert verify_signature(body, sig, "app-secret")
    assert not verify_signature(body, sig, "other-secret")
    assert not verify_signature(body, None, "app-secret")
    assert not verify_signature(body, "sha1=abc", "app-secret")
