from fastapi import APIRouter

from src.api.billing.router import router as billing_router
from src.api.debug.router import router as debug_router
from src.api.health.router import router as health_router
from src.api.stripe.router import router as stripe_router

# V1 API router
v1_router = APIRouter(prefix="/v1")

# Include domain routers
v1_router.include_router(billing_router)
v1_router.include_router(debug_router)

# Main API router
api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(stripe_router)
api_router.include_router(v1_router)
