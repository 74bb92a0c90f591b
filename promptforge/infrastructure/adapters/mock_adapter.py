"""Mock provider for development, demos and tests.

Simulates a real provider: it has a catalog, validates keys, streams its
answer in fixed-size chunks and can be told to fail at a given rate.
Responses are deterministic for a given prompt and model.
"""

import asyncio
import logging
import random
import time
import zlib
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.interfaces.llm_adapter import AdapterFactory
from promptforge.domain.models.ai import (
    ImageGenerationOptions, ImageResponse, ModelCapabilities, ModelInfo, ModelPricing,
    ProviderInfo, TextGenerationOptions, TextResponse, TextResult,
)
from promptforge.domain.models.common import TokenUsage
from promptforge.infrastructure.adapters.base import AbstractAdapter
from promptforge.infrastructure.streaming.stream_handler import create_text_stream

logger = logging.getLogger(__name__)

INVALID_KEY = "invalid"

MOCK_MODELS = [
    ModelInfo(
        id="mock-text-basic",
        name="Mock Text Basic",
        description="Basic text generation model for testing",
        capabilities=ModelCapabilities(text_generation=True, image_generation=False, streaming=True, context_length=4096),
        pricing=ModelPricing(input_cost_per_1k=0.001, output_cost_per_1k=0.002),
    ),
    ModelInfo(
        id="mock-text-advanced",
        name="Mock Text Advanced",
        description="Advanced text generation model for testing",
        capabilities=ModelCapabilities(text_generation=True, image_generation=False, streaming=True, context_length=8192),
        pricing=ModelPricing(input_cost_per_1k=0.003, output_cost_per_1k=0.006),
    ),
    ModelInfo(
        id="mock-image-basic",
        name="Mock Image Basic",
        description="Basic image generation model for testing",
        capabilities=ModelCapabilities(text_generation=False, image_generation=True, streaming=False),
        pricing=ModelPricing(input_cost_per_1k=0.02, output_cost_per_1k=0.02),
    ),
    ModelInfo(
        id="mock-multimodal",
        name="Mock Multimodal",
        description="Multimodal model supporting both text and image generation",
        capabilities=ModelCapabilities(text_generation=True, image_generation=True, streaming=True, context_length=16384),
        pricing=ModelPricing(input_cost_per_1k=0.01, output_cost_per_1k=0.03),
    ),
]

RESPONSE_TEMPLATES = [
    'Mock response for: "{prompt}". This is generated by the mock adapter.',
    'Mock AI response: I understand you asked about "{prompt}". Here\'s a simulated answer.',
    'Simulated answer from {model}: you asked "{prompt}", and this text stands in for a real completion.',
]


@dataclass
class MockBehavior:
    """Tunable behaviour of the mock provider. Delays are in seconds."""
    simulate_delay: bool = True
    min_delay: float = 0.1
    max_delay: float = 0.5
    stream_chunk_size: int = 10
    chunk_delay: float = 0.05
    error_rate: float = 0.0  # 0-1, probability of a simulated server error
    custom_responses: Dict[str, str] = field(default_factory=dict)


class MockAdapter(AbstractAdapter):
    provider_id = "mock"
    provider_name = "Mock Provider"
    description = "Mock adapter for testing and development purposes"

    def __init__(self, behavior: Optional[MockBehavior] = None, rng: Optional[random.Random] = None):
        super().__init__(MOCK_MODELS)
        self.behavior = behavior or MockBehavior()
        self._rng = rng or random.Random()

    def configure(self, **changes) -> None:
        """Updates behaviour fields, e.g. configure(error_rate=0.5)."""
        for name, value in changes.items():
            if not hasattr(self.behavior, name):
                raise ValueError(f"Unknown mock setting: {name}")
            setattr(self.behavior, name, value)

    async def validate_api_key(self, api_key: str) -> bool:
        await self._simulate_delay()
        # Any non-empty key is accepted except the sentinel 'invalid'
        return bool(api_key) and api_key != INVALID_KEY

    async def generate_text(self, prompt: str, options: TextGenerationOptions, api_key: str) -> TextResult:
        self.validate_api_key_present(api_key)
        if api_key == INVALID_KEY:
            raise AdapterError("Invalid API key", ErrorCode.INVALID_API_KEY, 401)
        self.validate_text_generation_capability(options.model)
        self._maybe_fail()

        content = self._build_response(prompt, options)
        if options.stream:
            return create_text_stream(
                self._chunks(content),
                model=options.model,
                error_handler=self.handle_error,
                metadata=lambda: {"finish_reason": "stop"},
            )

        await self._simulate_delay()
        return TextResponse(
            content=content,
            model=options.model,
            usage=TokenUsage(
                prompt_tokens=len(prompt) // 4,
                completion_tokens=len(content) // 4,
                total_tokens=(len(prompt) + len(content)) // 4,
            ),
            finish_reason="stop",
        )

    async def generate_image(self, prompt: str, options: ImageGenerationOptions, api_key: str) -> List[ImageResponse]:
        self.validate_api_key_present(api_key)
        if api_key == INVALID_KEY:
            raise AdapterError("Invalid API key", ErrorCode.INVALID_API_KEY, 401)
        self.validate_image_generation_capability(options.model)
        self._maybe_fail()
        await self._simulate_delay()

        stamp = int(time.time() * 1000)
        return [
            ImageResponse(
                url=f"https://picsum.photos/512/512?random={stamp}-{i}",
                model=options.model,
                revised_prompt=f"{prompt} (mock generated image {i + 1})",
                size=options.size or "512x512",
                quality=options.quality or "standard",
                style=options.style or "vivid",
            )
            for i in range(max(1, options.num_images))
        ]

    # --- internals ---

    def _build_response(self, prompt: str, options: TextGenerationOptions) -> str:
        if prompt in self.behavior.custom_responses:
            return self.behavior.custom_responses[prompt]

        template = RESPONSE_TEMPLATES[zlib.crc32(prompt.encode("utf-8")) % len(RESPONSE_TEMPLATES)]
        response = template.format(prompt=prompt, model=options.model)
        if options.temperature is not None and options.temperature > 0.7:
            response += " A higher temperature makes this simulated answer a little longer and more creative."
        if options.max_tokens:
            max_length = options.max_tokens * 4  # rough chars-per-token estimate
            if len(response) > max_length:
                response = response[:max(0, max_length - 3)] + "..."
        return response

    async def _chunks(self, content: str) -> AsyncIterator[str]:
        size = max(1, self.behavior.stream_chunk_size)
        for index in range(0, len(content), size):
            yield content[index:index + size]
            if self.behavior.chunk_delay > 0:
                await asyncio.sleep(self.behavior.chunk_delay)

    def _maybe_fail(self) -> None:
        if self.behavior.error_rate > 0 and self._rng.random() < self.behavior.error_rate:
            raise AdapterError("Simulated API error", ErrorCode.SERVICE_UNAVAILABLE, 500)

    async def _simulate_delay(self) -> None:
        if not self.behavior.simulate_delay:
            return
        await asyncio.sleep(self._rng.uniform(self.behavior.min_delay, self.behavior.max_delay))


class MockAdapterFactory(AdapterFactory):

    def __init__(self, behavior: Optional[MockBehavior] = None):
        self.behavior = behavior

    def create_adapter(self) -> MockAdapter:
        # Each adapter gets its own copy so configure() on one does not leak
        behavior = MockBehavior(**vars(self.behavior)) if self.behavior else None
        return MockAdapter(behavior=behavior)

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(id=MockAdapter.provider_id, name=MockAdapter.provider_name, description=MockAdapter.description)
