"""FastAPI router aggregation."""

from fastapi import APIRouter

from api.conversations import router as conversations_router
from api.providers import router as providers_router
from api.queries import router as queries_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(queries_router, prefix="/queries", tags=["queries"])
api_router.include_router(conversations_router, prefix="/conversations", tags=["conversations"])
api_router.include_router(providers_router, prefix="/providers", tags=["providers"])
