"""Adapter for a local Ollama server via its OpenAI-compatible endpoint.

No API key is needed. The model catalog starts from a list of common models
and is replaced by what the server reports once discovery succeeds.
"""

import logging
import time
from typing import Any, Callable, List, Optional

from openai import AsyncOpenAI

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.interfaces.llm_adapter import AdapterFactory
from promptforge.domain.models.ai import (
    ModelCapabilities, ModelInfo, ModelPricing, ProviderInfo, TextGenerationOptions, TextResult,
)
from promptforge.infrastructure.adapters.openai_adapter import OpenAICompatibleAdapter
from promptforge.infrastructure.config import settings

logger = logging.getLogger(__name__)

MODEL_REFRESH_INTERVAL_S = 300.0
PLACEHOLDER_KEY = "ollama"  # the SDK insists on a key; Ollama ignores it


def _local_model(model_id: str, name: str, context: Optional[int] = None, description: Optional[str] = None) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        description=description or f"Local Ollama model {model_id}",
        capabilities=ModelCapabilities(text_generation=True, image_generation=False, streaming=True, context_length=context),
        pricing=ModelPricing(input_cost_per_1k=0.0, output_cost_per_1k=0.0),
    )


DEFAULT_OLLAMA_MODELS = [
    _local_model("llama3.3:latest", "Llama 3.3", 131072, "Meta Llama 3.3 70B"),
    _local_model("llama3.2:latest", "Llama 3.2", 131072, "Meta Llama 3.2 3B"),
    _local_model("codellama:latest", "Code Llama", 16384, "Code-specialized Llama"),
    _local_model("gemma2:latest", "Gemma 2", 8192, "Google Gemma 2 9B"),
    _local_model("qwen2.5:latest", "Qwen 2.5", 32768, "Alibaba Qwen 2.5 7B"),
]


class OllamaAdapter(OpenAICompatibleAdapter):
    provider_id = "ollama"
    provider_name = "Ollama"
    description = "Local models served by Ollama"
    requires_api_key = False

    def __init__(
        self,
        base_url: Optional[str] = None,
        refresh_interval: float = MODEL_REFRESH_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = 120.0,
    ):
        super().__init__(DEFAULT_OLLAMA_MODELS, timeout=timeout)
        self.base_url = base_url or settings.get_ollama_base_url()
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._last_refresh: Optional[float] = None

    def _create_client(self, api_key: str) -> Any:
        return AsyncOpenAI(
            api_key=api_key or PLACEHOLDER_KEY,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def _stream_kwargs(self):
        return {}

    @property
    def is_stale(self) -> bool:
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh >= self.refresh_interval

    async def refresh_models(self) -> List[ModelInfo]:
        """Asks the server which models are installed and rebuilds the catalog.

        Known ids keep their default metadata. On failure the current catalog
        is kept and the error is logged.
        """
        client = self._create_client(PLACEHOLDER_KEY)
        try:
            page = await client.models.list()
            discovered = [m.id for m in page.data]
        except Exception as e:
            logger.warning(f"Ollama model discovery at {self.base_url} failed: {type(e).__name__}: {e}")
            return self.catalog.all()
        finally:
            await client.close()

        self._last_refresh = self._clock()
        if not discovered:
            logger.info("Ollama reported no installed models, keeping default catalog.")
            return self.catalog.all()

        defaults = {m.id: m for m in DEFAULT_OLLAMA_MODELS}
        self.catalog.replace([defaults.get(model_id) or _local_model(model_id, model_id) for model_id in discovered])
        logger.info(f"Discovered {len(discovered)} Ollama models.")
        return self.catalog.all()

    async def validate_api_key(self, api_key: str) -> bool:
        # No credential exists; this only checks the server is reachable
        return await super().validate_api_key(api_key or PLACEHOLDER_KEY)

    async def generate_text(self, prompt: str, options: TextGenerationOptions, api_key: str) -> TextResult:
        if self.is_stale:
            await self.refresh_models()
        if self.catalog.find(options.model) is None:
            raise AdapterError(
                f"Model {options.model} is not installed in Ollama. Run 'ollama pull {options.model}'.",
                ErrorCode.MODEL_NOT_FOUND, 404,
            )
        self.validate_text_generation_capability(options.model)
        return await self._chat(self._create_client(api_key), prompt, options)


class OllamaAdapterFactory(AdapterFactory):

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url

    def create_adapter(self) -> OllamaAdapter:
        return OllamaAdapter(base_url=self.base_url)

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(id=OllamaAdapter.provider_id, name=OllamaAdapter.provider_name, description=OllamaAdapter.description)
