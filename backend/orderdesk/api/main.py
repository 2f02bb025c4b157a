from fastapi import APIRouter

from orderdesk.api.routes import admin_orders, analytics, archive, orders
from orderdesk.core.config import settings

api_router = APIRouter()

# Health check endpoint
@api_router.get("/health-check/", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "orderdesk", "environment": settings.ENVIRONMENT}

# Include all API routes
api_router.include_router(orders.router)
api_router.include_router(admin_orders.router)
api_router.include_router(archive.router)
api_router.include_router(analytics.router)
