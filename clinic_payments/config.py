import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

DEFAULT_RAZORPAY_BASE_URL = "https://api.razorpay.com/v1"


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once at startup."""

    database_url: str
    jwt_secret: str = ""
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_base_url: str = DEFAULT_RAZORPAY_BASE_URL
    gateway_timeout_seconds: float = 10.0
    currency: str = "INR"
    pro_tier_price: Decimal = Decimal("999")
    pro_tier_days: int = 30
    log_level: str = "INFO"
    database_echo: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL is not set. Check your .env file.")

        return cls(
            database_url=database_url,
            jwt_secret=os.getenv("JWT_SECRET", ""),
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID", ""),
            razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET", ""),
            razorpay_base_url=os.getenv("RAZORPAY_BASE_URL", DEFAULT_RAZORPAY_BASE_URL),
            gateway_timeout_seconds=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10")),
            currency=os.getenv("PAYMENT_CURRENCY", "INR"),
            pro_tier_price=Decimal(os.getenv("PRO_TIER_PRICE", "999")),
            pro_tier_days=int(os.getenv("PRO_TIER_DAYS", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            database_echo=os.getenv("DATABASE_ECHO", "").lower() in ("1", "true", "yes"),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
