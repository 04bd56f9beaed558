from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: app/core/config.py -> app/core -> app -> project
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days
    database_url: str = "sqlite:///./academy.db"
    # Comma separated origins; "*" allows all
    cors_origins: str = "*"
    rate_limit_per_minute: int = 60
    rate_limit_register_per_minute: int = 5
    # Operator endpoints (/api/admin/*) require this in X-Admin-Secret
    admin_secret: str = ""
    environment: str = "development"
    default_currency: str = "SAR"
    # Checkout redirects and e-mail links point here
    frontend_url: str = "http://127.0.0.1:3000"
    # Public base URL of this API; download links in e-mails are built from it
    api_base_url: str = "http://127.0.0.1:8000"
    # Course materials live under this directory (blob_path is relative to it)
    storage_dir: str = "./data/materials"
    # Payment gateways: comma separated, first match of payment_default_gateway wins
    payment_gateways: str = "HyperPay,ClickPay"
    payment_default_gateway: str = "HyperPay"
    hyperpay_webhook_secret: str = ""
    clickpay_webhook_secret: str = ""
    hyperpay_checkout_url: str = "https://eu-test.oppwa.com/v1/paymentWidgets"
    clickpay_checkout_url: str = "https://secure.clickpay.com.sa/payment/page"
    # SMTP
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "noreply@academy.local"
    smtp_from_name: str = "Academy"
    smtp_use_tls: bool = True
    # Fulfillment queue worker
    fulfillment_worker_enabled: bool = True
    fulfillment_poll_seconds: int = 30
    fulfillment_max_attempts: int = 5
    fulfillment_retry_base_seconds: int = 30
    fulfillment_retry_max_seconds: int = 3600
    # live session reminders: sessions starting lead +/- window minutes from now
    reminder_worker_enabled: bool = True
    reminder_poll_seconds: int = 600
    reminder_lead_minutes: int = 60
    reminder_window_minutes: int = 10

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("default_currency", mode="before")
    @classmethod
    def upper_currency(cls, v: str | None) -> str:
        return (v or "SAR").strip().upper()[:3]

    @field_validator("hyperpay_webhook_secret", "clickpay_webhook_secret", "admin_secret", mode="before")
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        """Copy/paste whitespace in .env should not break signature checks."""
        return (v or "").strip()


settings = Settings()


def get_payment_gateways() -> list[str]:
    """Configured gateway names in declaration order (HyperPay, ClickPay, ...)."""
    return [g.strip() for g in (settings.payment_gateways or "").split(",") if g.strip()]


def get_default_gateway() -> str:
    gateways = get_payment_gateways()
    wanted = (settings.payment_default_gateway or "").strip()
    for g in gateways:
        if g.lower() == wanted.lower():
            return g
    return gateways[0] if gateways else wanted
