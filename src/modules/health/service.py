import asyncio
from dataclasses import dataclass
from typing import Literal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.utils.logger import get_logger
from src.utils.settings.stripe import StripeSettings
from src.utils.time_helpers import utc_now

logger = get_logger(__name__)


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    service: str
    status: Literal["healthy", "unhealthy", "degraded"]
    connected: bool
    details: dict
    error: str | None = None


@dataclass
class OverallHealthStatus:
    """Overall health status with individual service results."""

    status: Literal["healthy", "degraded", "unhealthy"]
    services: dict[str, HealthCheckResult]
    timestamp: str


class HealthService:
    def __init__(self, db: AsyncSession, stripe_settings: StripeSettings | None = None):
        self.db = db
        self.stripe_settings = stripe_settings or StripeSettings()

    async def check_database_health(self) -> HealthCheckResult:
        try:
            result = await self.db.execute(text("SELECT 1"))
            return HealthCheckResult(
                service="database",
                status="healthy",
                connected=True,
                details={"test_query_result": result.scalar()},
            )
        except Exception as e:
            logger.error(f"Database health check error: {e}")
            return HealthCheckResult(
                service="database",
                status="unhealthy",
                connected=False,
                details={},
                error=str(e),
            )

    async def check_stripe_configuration(self) -> HealthCheckResult:
        """Stripe is not called; only the credentials webhooks need are checked."""
        has_secret_key = bool(self.stripe_settings.STRIPE_SECRET_KEY.get_secret_value())
        has_webhook_secret = bool(self.stripe_settings.STRIPE_WEBHOOK_SECRET)

        return HealthCheckResult(
            service="stripe",
            status="healthy" if has_secret_key and has_webhook_secret else "degraded",
            connected=has_secret_key,
            details={
                "secret_key_configured": has_secret_key,
                "webhook_secret_configured": has_webhook_secret,
            },
        )

    async def run_all_checks(self) -> OverallHealthStatus:
        results = await asyncio.gather(
            self.check_database_health(),
            self.check_stripe_configuration(),
        )

        overall_status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
        for result in results:
            if result.status == "unhealthy":
                overall_status = "unhealthy"
            elif result.status == "degraded" and overall_status == "healthy":
                overall_status = "degraded"

        return OverallHealthStatus(
            status=overall_status,
            services={result.service: result for result in results},
            timestamp=utc_now().isoformat(),
        )
