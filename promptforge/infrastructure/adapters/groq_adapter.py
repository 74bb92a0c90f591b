"""Groq adapter built on the official async Groq SDK."""

import logging
from typing import Any, Dict, Optional

import groq
from groq import AsyncGroq

from promptforge.domain.interfaces.llm_adapter import AdapterFactory
from promptforge.domain.models.ai import ModelCapabilities, ModelInfo, ModelPricing, ProviderInfo
from promptforge.domain.models.common import TokenUsage
from promptforge.infrastructure.adapters.openai_adapter import OpenAICompatibleAdapter

logger = logging.getLogger(__name__)


def _groq_model(model_id: str, name: str, context: int, inp: float, out: float, description: str) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        description=description,
        capabilities=ModelCapabilities(text_generation=True, image_generation=False, streaming=True, context_length=context),
        pricing=ModelPricing(input_cost_per_1k=inp, output_cost_per_1k=out),
    )


GROQ_MODELS = [
    _groq_model("llama-3.3-70b-versatile", "Llama 3.3 70B Versatile", 131072, 0.00059, 0.00079, "Meta Llama 3.3 70B"),
    _groq_model("llama-3.1-8b-instant", "Llama 3.1 8B Instant", 131072, 0.00005, 0.00008, "Meta Llama 3.1 8B, low latency"),
    _groq_model("llama3-70b-8192", "Llama 3 70B", 8192, 0.00059, 0.00079, "Meta Llama 3 70B"),
    _groq_model("llama3-8b-8192", "Llama 3 8B", 8192, 0.00005, 0.00008, "Meta Llama 3 8B"),
    _groq_model("mixtral-8x7b-32768", "Mixtral 8x7B", 32768, 0.00024, 0.00024, "Mistral mixture-of-experts model"),
    _groq_model("gemma2-9b-it", "Gemma 2 9B", 8192, 0.0002, 0.0002, "Google Gemma 2 instruction tuned"),
]


class GroqAdapter(OpenAICompatibleAdapter):
    provider_id = "groq"
    provider_name = "Groq"
    description = "Groq LPU inference for open models"

    sdk = groq

    def __init__(self, timeout: float = 60.0):
        super().__init__(GROQ_MODELS, timeout=timeout)

    def _create_client(self, api_key: str) -> Any:
        return AsyncGroq(api_key=api_key, timeout=self.timeout, max_retries=0)

    def _stream_kwargs(self) -> Dict[str, Any]:
        return {}

    def _chunk_usage(self, chunk: Any) -> Optional[TokenUsage]:
        # Groq reports streaming usage on the x_groq extension of the final chunk
        x_groq = getattr(chunk, "x_groq", None)
        usage = getattr(x_groq, "usage", None) or getattr(chunk, "usage", None)
        return self._usage_of(usage)


class GroqAdapterFactory(AdapterFactory):

    def create_adapter(self) -> GroqAdapter:
        return GroqAdapter()

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(id=GroqAdapter.provider_id, name=GroqAdapter.provider_name, description=GroqAdapter.description)
