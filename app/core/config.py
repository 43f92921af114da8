from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "OOM Booking API"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS (e.g. https://app.oomworld.com,https://admin.oomworld.com). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "bookings@oom.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    ADMIN_NOTIFY_EMAIL: str = "admin@oom.local"
    CLIENT_BASE_URL: str = ""  # e.g. https://book.oomworld.com - checkout success/cancel pages

    # WhatsApp Cloud API (Meta)
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_ACCESS_TOKEN: str = ""
    WHATSAPP_VERIFY_TOKEN: str = ""
    WHATSAPP_APP_SECRET: str = ""  # If set, POST /webhooks/whatsapp must carry a valid X-Hub-Signature-256
    WHATSAPP_GRAPH_VERSION: str = "v18.0"
    WHATSAPP_TIMEOUT_SECONDS: float = 10.0

    # Stripe (card capture, payment links, Connect payouts)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_TIMEOUT_SECONDS: int = 20

    # Commission defaults when a venue has none configured (percent of the captured amount)
    DEFAULT_VENUE_COMMISSION_PCT: int = 10
    DEFAULT_PROVIDER_COMMISSION_PCT: int = 70

    OUTBOX_MAX_ATTEMPTS: int = 5
    PAYOUT_MAX_ATTEMPTS: int = 3


settings = Settings()
