"""
Application configuration — read from the environment once at startup.
"""

import os
import secrets
from dataclasses import dataclass, field
from typing import Optional


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "cattle_feed"

    gateway_key_id: Optional[str] = None
    gateway_key_secret: Optional[str] = None
    gateway_base_url: str = "https://api.razorpay.com/v1"
    gateway_timeout: float = 10.0
    currency: str = "INR"
    mock_gateway_secret: str = "mock_secret"

    session_secret: str = field(default_factory=lambda: secrets.token_hex(32))
    session_ttl_hours: int = 24
    session_prune_interval: int = 86400

    admin_username: Optional[str] = None
    admin_password: Optional[str] = None
    admin_email: str = "admin@example.com"
    admin_phone: str = ""

    seed_products: bool = True
    port: int = 5000
    environment: str = "development"
    log_dir: str = "logs"
    log_level: str = "INFO"

    @property
    def production(self) -> bool:
        return self.environment == "production"

    @property
    def gateway_configured(self) -> bool:
        return bool(self.gateway_key_id and self.gateway_key_secret)


def load_settings() -> Settings:
    """Build settings from environment variables."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "cattle_feed"),
        gateway_key_id=os.getenv("RAZORPAY_KEY_ID") or None,
        gateway_key_secret=os.getenv("RAZORPAY_KEY_SECRET") or None,
        gateway_base_url=os.getenv("GATEWAY_BASE_URL", "https://api.razorpay.com/v1"),
        gateway_timeout=float(os.getenv("GATEWAY_TIMEOUT", "10")),
        currency=os.getenv("GATEWAY_CURRENCY", "INR"),
        mock_gateway_secret=os.getenv("MOCK_GATEWAY_SECRET", "mock_secret"),
        session_secret=os.getenv("SESSION_SECRET") or secrets.token_hex(32),
        session_ttl_hours=int(os.getenv("SESSION_TTL_HOURS", "24")),
        session_prune_interval=int(os.getenv("SESSION_PRUNE_INTERVAL", "86400")),
        admin_username=os.getenv("ADMIN_USERNAME") or None,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
        admin_email=os.getenv("ADMIN_EMAIL", "admin@example.com"),
        admin_phone=os.getenv("ADMIN_PHONE", ""),
        seed_products=_flag("SEED_PRODUCTS", "1"),
        port=int(os.getenv("PORT", "5000")),
        environment=os.getenv("APP_ENV", "development"),
        log_dir=os.getenv("LOG_DIR", "logs"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
