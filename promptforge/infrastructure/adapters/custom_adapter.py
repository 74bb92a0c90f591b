"""Adapter for user-defined OpenAI-compatible endpoints.

Each entry of the 'custom_models' configuration list becomes one model of
the 'custom' provider, addressed as 'custom:<name>'. Entries carry their own
base URL, upstream model name and (optional) API key.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from openai import AsyncOpenAI

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.interfaces.llm_adapter import AdapterFactory
from promptforge.domain.models.ai import (
    ModelCapabilities, ModelInfo, ProviderInfo, TextGenerationOptions, TextResult,
)
from promptforge.infrastructure.adapters.openai_adapter import OpenAICompatibleAdapter
from promptforge.infrastructure.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustomModelConfig:
    name: str
    base_url: str
    model: str
    api_key: Optional[str] = None
    context_length: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomModelConfig":
        missing = [k for k in ("name", "base_url") if not data.get(k)]
        if missing:
            raise ValueError(f"Custom model entry is missing {', '.join(missing)}: {data}")
        return cls(
            name=str(data["name"]),
            base_url=str(data["base_url"]),
            model=str(data.get("model") or data["name"]),
            api_key=data.get("api_key"),
            context_length=data.get("context_length"),
        )


class CustomModelAdapter(OpenAICompatibleAdapter):
    provider_id = "custom"
    provider_name = "Custom Models"
    description = "User-defined OpenAI-compatible endpoints"
    requires_api_key = False

    def __init__(self, configs: Iterable[CustomModelConfig], timeout: float = 60.0):
        self.configs: Dict[str, CustomModelConfig] = {c.name: c for c in configs}
        super().__init__([self._to_model_info(c) for c in self.configs.values()], timeout=timeout)

    @staticmethod
    def _to_model_info(config: CustomModelConfig) -> ModelInfo:
        return ModelInfo(
            id=config.name,
            name=config.name,
            description=f"{config.model} at {config.base_url}",
            capabilities=ModelCapabilities(
                text_generation=True, image_generation=False, streaming=True,
                context_length=config.context_length,
            ),
        )

    def _client_for(self, config: CustomModelConfig, api_key: str) -> Any:
        # A key saved with the model wins over the one passed by the caller
        return AsyncOpenAI(
            api_key=config.api_key or api_key or "not-needed",
            base_url=config.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def _stream_kwargs(self):
        return {}

    async def validate_api_key(self, api_key: str) -> bool:
        """True when every configured endpoint answers a model listing."""
        if not self.configs:
            return False
        for config in self.configs.values():
            client = self._client_for(config, api_key)
            try:
                await client.models.list()
            except Exception as e:
                logger.debug(f"Custom endpoint '{config.name}' check failed: {type(e).__name__}: {e}")
                return False
            finally:
                await client.close()
        return True

    async def generate_text(self, prompt: str, options: TextGenerationOptions, api_key: str) -> TextResult:
        config = self.configs.get(options.model)
        if config is None:
            raise AdapterError(f"Custom model {options.model} is not configured", ErrorCode.MODEL_NOT_FOUND, 404)
        return await self._chat(self._client_for(config, api_key), prompt, options, model_name=config.model)


def load_custom_model_configs(entries: Optional[List[Dict[str, Any]]] = None) -> List[CustomModelConfig]:
    """Parses configuration entries, skipping (and logging) invalid ones."""
    configs = []
    for entry in settings.get_custom_models() if entries is None else entries:
        try:
            configs.append(CustomModelConfig.from_dict(entry))
        except ValueError as e:
            logger.warning(str(e))
    return configs


class CustomModelAdapterFactory(AdapterFactory):

    def __init__(self, configs: Optional[List[CustomModelConfig]] = None):
        self.configs = configs

    def create_adapter(self) -> CustomModelAdapter:
        configs = self.configs if self.configs is not None else load_custom_model_configs()
        return CustomModelAdapter(configs)

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            id=CustomModelAdapter.provider_id,
            name=CustomModelAdapter.provider_name,
            description=CustomModelAdapter.description,
        )
