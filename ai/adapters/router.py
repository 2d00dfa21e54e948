"""Provider router: registry plus primary/fallback selection.

The router keeps the Provider instances registered at startup and walks them
in ``[primary, *fallback_order]`` order, returning the first one whose
liveness probe succeeds.  Unavailability is re-checked on every call; nothing
is removed from the registry at runtime.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from ai.types import AIProvider
from core.errors import NoProviderAvailableError
from core.logging import logger

from .providers import BaseProvider

__all__ = ["ProviderRouter"]


class ProviderRouter:
    def __init__(
        self,
        providers: Mapping[AIProvider, BaseProvider],
        primary: AIProvider,
        fallback_order: Optional[Iterable[AIProvider]] = None,
    ) -> None:
        self._providers: Dict[AIProvider, BaseProvider] = dict(providers)
        self._primary = AIProvider(primary)
        self._fallback_order: List[AIProvider] = [AIProvider(p) for p in (fallback_order or [])]

    @property
    def providers(self) -> Dict[AIProvider, BaseProvider]:
        return dict(self._providers)

    def get(self, name: AIProvider) -> Optional[BaseProvider]:
        return self._providers.get(AIProvider(name))

    def provider_order(self) -> List[AIProvider]:
        return [self._primary] + [p for p in self._fallback_order if p != self._primary]

    async def get_available_provider(self) -> BaseProvider:
        """First registered provider, in order, whose probe succeeds."""
        for name in self.provider_order():
            provider = self._providers.get(name)
            if provider is None:
                continue
            if await provider.is_available():
                logger.debug(f"Using provider '{name.value}'")
                return provider
            logger.debug(f"Provider '{name.value}' unavailable, trying next")

        raise NoProviderAvailableError()

    async def any_available(self) -> bool:
        try:
            await self.get_available_provider()
        except NoProviderAvailableError:
            return False
        return True
