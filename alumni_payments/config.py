import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Force-load .env from the project root
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


@dataclass(frozen=True)
class Settings:
    database_url: str
    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    jwt_secret: Optional[str]
    app_url: str
    payment_currency: str
    log_level: str


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./alumni_payments.db"),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
        jwt_secret=os.getenv("JWT_SECRET") or None,
        app_url=os.getenv("APP_URL", "http://localhost:3000").rstrip("/"),
        payment_currency=os.getenv("PAYMENT_CURRENCY", "jpy").lower(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return load_settings()
