"""Interface for LLM provider adapters.

Defines the contract every provider implementation satisfies so the
orchestrating service can treat OpenAI, Groq, Ollama and friends uniformly.
"""

import abc
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel

from ..errors import AdapterError, ErrorCode
from ..models.ai import (
    Capability, ImageGenerationOptions, ImageResult, ModelInfo, ModelPricing,
    ProviderInfo, TextGenerationOptions, TextResult,
)


class ProviderAdapter(abc.ABC):
    """Abstract Base Class for provider adapters.

    Catalog lookups are pure and never raise for unknown model ids.
    Generation methods raise AdapterError only.
    """

    provider_id: str
    provider_name: str
    description: str
    requires_api_key: bool = True

    @abc.abstractmethod
    def get_supported_models(self) -> List[ModelInfo]:
        """Returns the model catalog of this provider."""
        pass

    @abc.abstractmethod
    def supports_capability(self, model_id: str, capability: Capability) -> bool:
        pass

    @abc.abstractmethod
    def get_context_length(self, model_id: str) -> Optional[int]:
        pass

    @abc.abstractmethod
    def get_pricing(self, model_id: str) -> Optional[ModelPricing]:
        pass

    @abc.abstractmethod
    async def validate_api_key(self, api_key: str) -> bool:
        """Checks a credential with the cheapest possible request.

        Returns:
            True if the key was accepted. Never raises.
        """
        pass

    @abc.abstractmethod
    async def generate_text(
        self, prompt: str, options: TextGenerationOptions, api_key: str
    ) -> TextResult:
        """Generates text for a prompt.

        Args:
            prompt: The user prompt.
            options: Model id and sampling parameters. `options.stream`
                selects a chunk stream instead of an aggregate response.
            api_key: Credential for the provider.

        Returns:
            A TextResponse, or an async iterator of StreamChunk when streaming.

        Raises:
            AdapterError: MISSING_API_KEY or UNSUPPORTED_OPERATION before any
                network call, or a translated vendor failure.
        """
        pass

    async def generate_image(
        self, prompt: str, options: ImageGenerationOptions, api_key: str
    ) -> ImageResult:
        """Generates images. Adapters without image support keep this default."""
        raise AdapterError(
            f"{self.provider_name} does not support image generation",
            ErrorCode.UNSUPPORTED_OPERATION, 400,
        )

    def get_config_schema(self) -> Optional[Type[BaseModel]]:
        """Pydantic model describing the provider's saved configuration, if any."""
        return None

    def get_default_config(self) -> Dict[str, Any]:
        schema = self.get_config_schema()
        return schema().model_dump() if schema is not None else {}

    async def refresh_models(self) -> List[ModelInfo]:
        """Refreshes a live catalog. Static catalogs just return themselves."""
        return self.get_supported_models()


class AdapterFactory(abc.ABC):
    """Creates adapter instances for one provider id."""

    @abc.abstractmethod
    def create_adapter(self) -> ProviderAdapter:
        pass

    @abc.abstractmethod
    def get_provider_info(self) -> ProviderInfo:
        pass
