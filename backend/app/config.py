"""
Application settings (Pydantic Settings).
"""
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env next to backend/ (parent of app/)
_env_path = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    database_url: str = "sqlite:///./tablebook.db"
    app_url: str = "http://localhost:3000"
    currency: str = "usd"

    # Allocation windows
    materialize_horizon_days: int = 30
    hold_abandon_minutes: int = 15  # PENDING payment older than this is released
    checkout_hold_minutes: int = 10
    waitlist_claim_hours: int = 2
    modification_cutoff_hours: int = 48
    reminder_lead_hours: int = 24

    # Stripe: STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET in .env
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Bearer token for /cron/* triggers
    cron_secret: str = ""

    # SMTP (Gmail app password or any relay)
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    notify_from: str = ""

    class Config:
        env_file = _env_path
        extra = "ignore"

    @field_validator(
        "stripe_secret_key",
        "stripe_webhook_secret",
        "cron_secret",
        "smtp_user",
        "smtp_password",
        mode="after",
    )
    @classmethod
    def strip_secrets(cls, v: str) -> str:
        return (v or "").strip()


settings = Settings()
