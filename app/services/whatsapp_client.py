import hmac
import re
from dataclasses import dataclass
import requests

@dataclass
class WhatsAppConfig:
    phone_number_id: str    # WhatsApp Business phone number id (not the phone number)
    access_token: str       # system user / permanent token
    graph_version: str = "v18.0"
    timeout: float = 10.0

class WhatsAppError(RuntimeError):
    pass

def normalize_phone(phone: str) -> str:
    """Digits only; Meta reports senders as wa_id without '+' or spaces."""
    return re.sub(r"\D", "", phone or "")

def verify_signature(body: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Check Meta's X-Hub-Signature-256 (sha256=<hex hmac of the raw body>)."""
    if not signature_header or not app_secret:
        return False
    try:
        algo, signature = signature_header.split("=", 1)
    except ValueError:
        return False
    if algo.lower() != "sha256":
        return False
    expected = hmac.new(app_secret.encode("utf-8"), body, "sha256").hexdigest()
    return hmac.compare_digest(expected, signature)

class WhatsAppClient:
    def __init__(self, cfg: WhatsAppConfig):
        self.cfg = cfg

    @property
    def url(self) -> str:
        return f"https://graph.facebook.com/{self.cfg.graph_version}/{self.cfg.phone_number_id}/messages"

    def request(self, payload: dict) -> dict:
        headers = {
            "Authorization": f"Bearer {self.cfg.access_token}",
            "Content-Type": "application/json",
        }
        try:
            r = requests.post(self.url, json=payload, headers=headers, timeout=self.cfg.timeout)
        except requests.RequestException as e:
            # includes timeouts: the send is reported failed, never retried here
            raise WhatsAppError(f"WhatsApp request failed: {e}") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            err = (data.get("error") or {}) if isinstance(data, dict) else {}
            raise WhatsAppError(f"WhatsApp {r.status_code}: {err.get('message') or data}")
        return data

    def _message_id(self, data: dict) -> str:
        messages = data.get("messages") or []
        return str((messages[0] or {}).get("id") or "") if messages else ""

    def send_interactive(self, *, to: str, interactive: dict) -> str:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": normalize_phone(to),
            "type": "interactive",
            "interactive": interactive,
        }
        return self._message_id(self.request(payload))

    def send_text(self, *, to: str, body: str) -> str:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": normalize_phone(to),
            "type": "text",
            "text": {"body": body},
        }
        return self._message_id(self.request(payload))
