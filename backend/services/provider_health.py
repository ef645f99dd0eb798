"""Provider health checks with a short in-process cache."""

from __future__ import annotations

import logging
import threading
import time

from providers import get_provider, provider_names
from providers.base import health

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


class ProviderHealthService:
    def __init__(self, ttl_seconds: int | None = None, clock=time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, dict]] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> int:
        if self._ttl is not None:
            return self._ttl
        from config import settings
        return settings.PROVIDER_HEALTH_CACHE_SECONDS

    def check(self, provider: str) -> dict:
        """Run the adapter's health check now. Never raises."""
        try:
            result = get_provider(provider).healthcheck()
        except KeyError:
            result = health(UNHEALTHY, f"Unknown provider: {provider}")
        except Exception as exc:
            logger.warning("Health check for %s raised", provider, exc_info=True)
            result = health(UNHEALTHY, f"Health check failed: {exc}")
        result["provider"] = provider
        result["checked_at"] = time.time()
        with self._lock:
            self._cache[provider] = (self._clock(), result)
        return result

    def check_cached(self, provider: str) -> dict:
        with self._lock:
            entry = self._cache.get(provider)
        if entry and self._clock() - entry[0] < self.ttl:
            return entry[1]
        return self.check(provider)

    def check_all(self) -> dict[str, dict]:
        return {name: self.check(name) for name in provider_names()}

    def check_all_cached(self) -> dict[str, dict]:
        return {name: self.check_cached(name) for name in provider_names()}

    def is_healthy(self, provider: str) -> bool:
        return self.check_cached(provider)["status"] == HEALTHY

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


health_service = ProviderHealthService()
