"""Stripe settings configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import SecretStr


class StripeSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    STRIPE_WEBHOOK_SECRET: str = "whsec_test_webhook_secret"
    STRIPE_SECRET_KEY: SecretStr = SecretStr("sk_test_stripe_secret_key")

    STRIPE_PRICE_STARTUP_MONTHLY: str = "price_startup_monthly"
    STRIPE_PRICE_STARTUP_YEARLY: str = "price_startup_yearly"
    STRIPE_PRICE_PRO_MONTHLY: str = "price_pro_monthly"
    STRIPE_PRICE_PRO_YEARLY: str = "price_pro_yearly"
    STRIPE_PRICE_ENTERPRISE_MONTHLY: str = "price_enterprise_monthly"
    STRIPE_PRICE_ENTERPRISE_YEARLY: str = "price_enterprise_yearly"

    STRIPE_PORTAL_CONFIGURATION_ID: str | None = None
