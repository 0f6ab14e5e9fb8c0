# ==================================================================================
# core/config.py: Seatflow Configuration (Stripe + JWT + Pydantic v2 settings)
# ==================================================================================
import logging
import sys
from typing import List

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite:///./seatflow.db"

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # ------------------------
    # FRONTEND & SERVER CONFIG
    # ------------------------
    FRONTEND_URL: str = "http://localhost:5173"
    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    PORT: int = 5000
    PORT_RETRY_LIMIT: int = 10

    # ------------------------
    # STRIPE / BILLING CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_CURRENCY: str = "inr"

    # ------------------------
    # SUBSCRIPTION WINDOWS
    # ------------------------
    TRIAL_DAYS: int = 14
    SUBSCRIPTION_DAYS: int = 365
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 0  # 0 disables the background sweep

    @property
    def STRIPE_SUCCESS_URL(self) -> str:
        """Where the billing provider sends the browser after a paid checkout."""
        return f"{self.FRONTEND_URL}/payment/success"

    @property
    def STRIPE_CANCEL_URL(self) -> str:
        return f"{self.FRONTEND_URL}/cart?canceled=true"

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production'

    @property
    def IS_DEVELOPMENT(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
    logger.info("Environment: %s", settings.ENVIRONMENT)
except ValidationError as e:
    logger.critical("Environment configuration error, missing or invalid settings:\n%s", e)
    sys.exit(1)
