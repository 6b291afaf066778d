"""API v1 routes."""

from fastapi import APIRouter

from patrulha.api.v1 import health, property_import

router = APIRouter()

# Health checks (no auth required)
router.include_router(health.router, tags=["health"])

# Protected routes
router.include_router(property_import.router, prefix="/import", tags=["import"])
