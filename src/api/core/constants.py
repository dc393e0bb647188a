API_VERSION_HEADER = "X-Launchpad-Version"
REQUEST_ID_HEADER = "X-Request-ID"

# JWT Configuration
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"

# Stripe webhooks
STRIPE_SIGNATURE_HEADER = "stripe-signature"
MAX_WEBHOOK_PAYLOAD_BYTES = 1024 * 1024

# Ledger listing defaults
DEFAULT_LEDGER_PAGE_SIZE = 50
MAX_LEDGER_PAGE_SIZE = 200

# Authentication endpoints configuration
SKIP_AUTH_PATHS = {
    "/openapi.json",
    "/docs",
    "/redoc",
    "/health",
    "/health/liveness",
    "/stripe/webhook",
    "/v1/billing/plans",
}
