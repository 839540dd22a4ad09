from fastapi import APIRouter

from petitions.api.routes import health, signatures

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(signatures.router, prefix="/signatures", tags=["signatures"])
