"""
Storefront service configuration.
"""
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def find_env_file() -> str:
    """Find .env file - check local dir, then project root."""
    local_env = Path(".env")
    root_env = Path("../.env")

    if local_env.exists():
        return str(local_env)
    elif root_env.exists():
        return str(root_env)
    return ".env"  # default


class Settings(BaseSettings):
    """Service settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 3001
    debug: bool = False

    # Logging
    log_level: str = "info"
    log_path: str = ""  # e.g. /app/logs/storefront.log

    # Version
    version: str = "1.0.0"

    # Database
    database_url: str = "sqlite:///./storefront.db"
    seed_on_startup: bool = True

    # Payment gateway: "razorpay" talks to the real API, "sandbox" mints ids locally
    payment_gateway: str = "razorpay"
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_api_url: str = "https://api.razorpay.com/v1"
    razorpay_timeout: float = 15.0

    # Pricing
    currency: str = "INR"
    free_shipping_threshold: Decimal = Decimal("2500")
    flat_shipping_fee: Decimal = Decimal("99")

    # Orders
    order_number_prefix: str = "ORD-"
    enforce_status_transitions: bool = False

    # Shopper sessions (cart, wishlist, recently viewed)
    session_store_dir: str = "state/sessions"

    @property
    def is_razorpay_configured(self) -> bool:
        """Check if Razorpay credentials are present"""
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @property
    def payment_signing_secret(self) -> str:
        """Shared secret the provider signs payment callbacks with."""
        return self.razorpay_key_secret

    def get_config_summary(self) -> dict:
        """Get a summary of configuration (without sensitive data)"""
        return {
            "version": self.version,
            "payment_gateway": self.payment_gateway,
            "razorpay_configured": self.is_razorpay_configured,
            "currency": self.currency,
            "free_shipping_threshold": str(self.free_shipping_threshold),
            "flat_shipping_fee": str(self.flat_shipping_fee),
            "enforce_status_transitions": self.enforce_status_transitions,
            "debug": self.debug,
            "log_level": self.log_level,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
