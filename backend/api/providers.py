"""Provider catalogue and health endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from providers import PROVIDER_REGISTRY
from services.provider_health import health_service

router = APIRouter()


@router.get("/")
def list_providers():
    return {name: cls().describe() for name, cls in PROVIDER_REGISTRY.items()}


@router.get("/health/")
def providers_health(refresh: bool = False):
    """Health of every provider; cached unless ``?refresh=true``."""
    if refresh:
        return health_service.check_all()
    return health_service.check_all_cached()
