"""Email settings configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class EmailSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    RESEND_API_KEY: str = ""
    EMAIL_FROM_DOMAIN: str = "mail.launchpad.dev"
    EMAIL_FROM_NAME: str = "Launchpad"
    EMAIL_REPLY_TO: str = "support@launchpad.dev"
