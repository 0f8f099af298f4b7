"""Provider Registry: map provider name to instance. The client looks providers up by name."""

from __future__ import annotations

import logging

from llmaxx.providers.base import BaseProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Fixed set of providers, configured at startup."""

    def __init__(self) -> None:
        self._providers: dict[str, BaseProvider] = {}

    def register(self, provider: BaseProvider, name: str | None = None) -> None:
        key = name or provider.name
        self._providers[key] = provider
        logger.debug("registered provider: %s", key)

    def get(self, name: str) -> BaseProvider | None:
        return self._providers.get(name)

    def names(self) -> list[str]:
        return list(self._providers.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)
