"""Registry mapping provider ids to adapter factories.

Holds no per-request state. Constructed by the composition root and
injected wherever provider lookup is needed.
"""

import logging
from typing import Dict, List, Optional

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.interfaces.llm_adapter import AdapterFactory, ProviderAdapter
from promptforge.domain.models.ai import ProviderInfo

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Provider id -> AdapterFactory map."""

    def __init__(self) -> None:
        self._factories: Dict[str, AdapterFactory] = {}

    def register(self, provider_id: str, factory: AdapterFactory) -> None:
        """Registers a factory. Re-registering an id replaces the previous factory."""
        if provider_id in self._factories:
            logger.info(f"Provider '{provider_id}' already registered, replacing factory.")
        self._factories[provider_id] = factory
        logger.debug(f"Registered adapter factory for provider '{provider_id}'")

    def unregister(self, provider_id: str) -> bool:
        return self._factories.pop(provider_id, None) is not None

    def get_factory(self, provider_id: str) -> Optional[AdapterFactory]:
        return self._factories.get(provider_id)

    def create_adapter(self, provider_id: str) -> ProviderAdapter:
        factory = self._factories.get(provider_id)
        if factory is None:
            raise AdapterError(f"Provider {provider_id} not found", ErrorCode.PROVIDER_NOT_FOUND)
        return factory.create_adapter()

    def get_all_providers(self) -> List[ProviderInfo]:
        return [factory.get_provider_info() for factory in self._factories.values()]

    def get_provider_ids(self) -> List[str]:
        return list(self._factories)

    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self._factories
