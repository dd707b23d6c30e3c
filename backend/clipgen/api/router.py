"""
API router aggregator.
Includes all route modules.
"""
from fastapi import APIRouter
from clipgen.api import health, generate, credits, uploads, enhance, dev
from clipgen.config import settings

api_router = APIRouter()

# Include route modules
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(generate.router, prefix="/generate", tags=["generate"])
api_router.include_router(credits.router, prefix="/credits", tags=["credits"])
api_router.include_router(uploads.router, prefix="/uploads", tags=["uploads"])
api_router.include_router(enhance.router, prefix="/enhance-prompt", tags=["enhance"])

# Internal cost and registry views stay out of production
if settings.environment != "production":
    api_router.include_router(dev.router, prefix="/dev", tags=["dev"])
