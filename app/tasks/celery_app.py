from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from app.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "oom_booking",
    broker=_redis_url,
    backend=_redis_url,
    include=["app.tasks.jobs"],
)

celery.conf.timezone = "Europe/Paris"

celery.conf.beat_schedule = {
    "process-message-queue-every-30-seconds": {
        "task": "app.tasks.jobs.process_message_queue",
        "schedule": 30.0,
        "kwargs": {"limit": 50},
    },
    "process-provider-payouts-every-15-minutes": {
        "task": "app.tasks.jobs.process_provider_payouts",
        "schedule": 900.0,
        "kwargs": {"limit": 50},
    },
}
