"""Provider registry: provider name -> adapter class."""

from __future__ import annotations

from providers.base import BaseProvider

PROVIDER_REGISTRY: dict[str, type[BaseProvider]] = {}


def register(name: str):
    """Decorator to register a provider adapter class."""

    def decorator(cls):
        cls.name = name
        PROVIDER_REGISTRY[name] = cls
        return cls

    return decorator


def get_provider(name: str) -> BaseProvider:
    """Instantiate the adapter registered under *name*."""
    if name not in PROVIDER_REGISTRY:
        raise KeyError(
            f"Unknown provider: '{name}'. "
            f"Registered providers: {sorted(PROVIDER_REGISTRY.keys())}"
        )
    return PROVIDER_REGISTRY[name]()


def provider_names() -> list[str]:
    return list(PROVIDER_REGISTRY.keys())


# Import all adapter modules to trigger @register decorators
from providers import (  # noqa: E402, F401
    claude,
    lmstudio,
    local_command,
    ollama,
)
