"""Subscription lifecycle emails sent through Resend."""

from dataclasses import dataclass, field
from typing import Any

import resend

from src.emails import TemplateType, normalize_locale, render_email
from src.utils.logger import get_logger
from src.utils.settings.app import AppSettings
from src.utils.settings.email import EmailSettings

logger = get_logger(__name__)


@dataclass
class BillingNotification:
    to_email: str
    template_name: TemplateType
    locale: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


class BillingNotifier:
    """Best-effort sender: failures are logged and never reach the caller."""

    def __init__(
        self,
        email_settings: EmailSettings | None = None,
        app_settings: AppSettings | None = None,
    ):
        self.email_settings = email_settings or EmailSettings()
        self.dashboard_url = f"{(app_settings or AppSettings()).FRONTEND_URL}/dashboard"

    @property
    def enabled(self) -> bool:
        return bool(self.email_settings.RESEND_API_KEY)

    def send(self, notification: BillingNotification) -> None:
        if not self.enabled:
            logger.debug(
                f"RESEND_API_KEY not configured, skipping {notification.template_name} email"
            )
            return

        try:
            resend.api_key = self.email_settings.RESEND_API_KEY

            email_data = render_email(
                template_name=notification.template_name,
                context={"dashboard_url": self.dashboard_url, **notification.context},
                locale=normalize_locale(notification.locale),
            )

            from_address = (
                f"{self.email_settings.EMAIL_FROM_NAME} "
                f"<billing@{self.email_settings.EMAIL_FROM_DOMAIN}>"
            )

            response = resend.Emails.send(
                {
                    "from": from_address,
                    "to": notification.to_email,
                    "subject": email_data["subject"],
                    "html": email_data["html"],
                    "reply_to": self.email_settings.EMAIL_REPLY_TO,
                    "tags": [{"name": "category", "value": "billing"}],
                }
            )

            logger.info(
                f"Sent {notification.template_name} email to {notification.to_email}",
                email_id=response["id"],
            )

        except Exception as e:
            logger.warning(
                f"Failed to send {notification.template_name} email to {notification.to_email}: {e}",
                error=str(e),
            )
