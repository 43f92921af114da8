import logging
import smtplib
from email.message import EmailMessage

import requests

from app.core.config import settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    pass


def send_email(to_email: str, subject: str, body: str) -> None:
    """Send via SendGrid if configured, otherwise SMTP (MailHog recommended for local)."""
    if not to_email:
        raise EmailDeliveryError("missing recipient")

    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
            if settings.SMTP_USERNAME:
                smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailDeliveryError(f"SMTP send failed: {e}") from e


def _send_via_sendgrid(to_email: str, subject: str, body: str) -> None:
    from_email = settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    try:
        r = requests.post(
            "https://api.sendgrid.com/v3/mail/send",
            json=payload,
            headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
            timeout=20,
        )
    except requests.RequestException as e:
        raise EmailDeliveryError(f"SendGrid request failed: {e}") from e
    if r.status_code >= 400:
        raise EmailDeliveryError(f"SendGrid error {r.status_code}: {r.text}")
    logger.debug("SendGrid accepted mail to %s", to_email)
