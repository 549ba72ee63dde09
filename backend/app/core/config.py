"""Application configuration"""

from typing import Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Player Subscriptions API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Security
    # WHY: Tokens are issued by the accounts service; we only verify them
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 10080  # 7 days

    # Database
    DATABASE_URL: str

    # Paystack
    # WHY: The secret key authenticates API calls AND signs webhook bodies.
    # Optional so the API still boots without billing configured; the webhook
    # endpoint reports the missing secret as a 500 configuration fault.
    PAYSTACK_SECRET_KEY: Optional[str] = None
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_TIMEOUT_SECONDS: float = 30.0

    # Paystack plan codes (PLN_xxx) for each paid tier
    PAYSTACK_MONTHLY_PLAN_CODE: Optional[str] = None
    PAYSTACK_YEARLY_PLAN_CODE: Optional[str] = None

    # Subscription lifecycle
    # WHY: Grace window absorbs renewal webhook latency before the sweep
    # downgrades a lapsed subscriber
    SUBSCRIPTION_GRACE_DAYS: int = 2
    SUBSCRIPTION_SWEEP_ENABLED: bool = True
    SUBSCRIPTION_SWEEP_HOUR: int = 0  # UTC
    SUBSCRIPTION_SWEEP_MINUTE: int = 0
    SUBSCRIPTION_EXPIRING_DAYS: int = 7

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    @property
    def paystack_enabled(self) -> bool:
        """Check if Paystack API calls can be made."""
        return bool(self.PAYSTACK_SECRET_KEY)

    @property
    def paystack_plan_tiers(self) -> Dict[str, str]:
        """
        Map Paystack plan codes to local plan tiers.

        WHY: Webhooks only carry the provider's plan code; the tier
        (monthly/yearly) decides the billing period we grant.
        """
        tiers = {}
        if self.PAYSTACK_MONTHLY_PLAN_CODE:
            tiers[self.PAYSTACK_MONTHLY_PLAN_CODE] = "monthly"
        if self.PAYSTACK_YEARLY_PLAN_CODE:
            tiers[self.PAYSTACK_YEARLY_PLAN_CODE] = "yearly"
        return tiers

    def paystack_plan_code_for(self, tier: str) -> Optional[str]:
        """Reverse lookup: local tier to configured Paystack plan code."""
        return {
            "monthly": self.PAYSTACK_MONTHLY_PLAN_CODE,
            "yearly": self.PAYSTACK_YEARLY_PLAN_CODE,
        }.get(tier)

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
