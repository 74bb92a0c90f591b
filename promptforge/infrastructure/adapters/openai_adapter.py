"""OpenAI adapter and the shared base for OpenAI-compatible chat APIs.

Hides the specifics of the openai SDK and translates requests/responses
between the domain models and the chat-completions format. Groq, Ollama and
custom endpoints reuse OpenAICompatibleAdapter with a different client.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Type

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.interfaces.llm_adapter import AdapterFactory
from promptforge.domain.models.ai import (
    ImageGenerationOptions, ImageResponse, ModelCapabilities, ModelInfo, ModelPricing,
    ProviderInfo, TextGenerationOptions, TextResponse, TextResult,
)
from promptforge.domain.models.common import TokenUsage
from promptforge.infrastructure.adapters.base import (
    AbstractAdapter, MessageBuilder, build_sampling_params, translate_sdk_error,
)
from promptforge.infrastructure.streaming.stream_handler import create_text_stream

logger = logging.getLogger(__name__)


def _text_model(model_id: str, name: str, context: int, inp: float, out: float, description: str) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        description=description,
        capabilities=ModelCapabilities(text_generation=True, image_generation=False, streaming=True, context_length=context),
        pricing=ModelPricing(input_cost_per_1k=inp, output_cost_per_1k=out),
    )


def _image_model(model_id: str, name: str, cost: float, description: str) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        description=description,
        capabilities=ModelCapabilities(text_generation=False, image_generation=True, streaming=False),
        pricing=ModelPricing(input_cost_per_1k=cost, output_cost_per_1k=cost),
    )


OPENAI_MODELS = [
    _text_model("gpt-4.1", "GPT-4.1", 1047576, 0.002, 0.008, "Flagship model for complex tasks"),
    _text_model("gpt-4.1-mini", "GPT-4.1 Mini", 1047576, 0.0004, 0.0016, "Balanced for intelligence, speed, and cost"),
    _text_model("gpt-4.1-nano", "GPT-4.1 Nano", 1047576, 0.0001, 0.0004, "Fastest, most cost-effective GPT-4.1 model"),
    _text_model("o3", "o3", 200000, 0.01, 0.04, "Most powerful reasoning model"),
    _text_model("o4-mini", "o4-mini", 200000, 0.0011, 0.0044, "Faster, more affordable reasoning model"),
    _text_model("gpt-4o", "GPT-4o", 128000, 0.0025, 0.01, "Fast, intelligent, flexible GPT model"),
    _text_model("gpt-4o-mini", "GPT-4o Mini", 128000, 0.00015, 0.0006, "Fast, affordable small model for focused tasks"),
    _text_model("gpt-4-turbo", "GPT-4 Turbo", 128000, 0.01, 0.03, "An older high-intelligence GPT model"),
    _image_model("gpt-image-1", "GPT Image 1", 0.04, "State-of-the-art image generation model"),
    _image_model("dall-e-3", "DALL-E 3", 0.04, "Previous generation image generation model"),
    _image_model("dall-e-2", "DALL-E 2", 0.02, "First image generation model"),
]


class TextGenerationConfig(BaseModel):
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, gt=0)
    top_p: float = Field(1.0, ge=0.0, le=1.0)
    frequency_penalty: float = Field(0.0, ge=-2.0, le=2.0)
    presence_penalty: float = Field(0.0, ge=-2.0, le=2.0)
    system_prompt: Optional[str] = None


class ImageGenerationConfig(BaseModel):
    size: str = "1024x1024"
    quality: str = "standard"
    style: str = "vivid"


class AdvancedConfig(BaseModel):
    timeout: float = Field(60.0, gt=0)
    max_retries: int = Field(0, ge=0)


class OpenAIProviderConfig(BaseModel):
    """Saved configuration for OpenAI-compatible providers."""
    text_generation: TextGenerationConfig = Field(default_factory=TextGenerationConfig)
    image_generation: ImageGenerationConfig = Field(default_factory=ImageGenerationConfig)
    advanced: AdvancedConfig = Field(default_factory=AdvancedConfig)


class OpenAICompatibleAdapter(AbstractAdapter):
    """Chat-completions adapter parameterized by the SDK client it creates.

    Subclasses override `_create_client` and, where their SDK ships its own
    exception hierarchy, the `sdk` module used by handle_error.
    """

    sdk = openai

    def __init__(self, models: List[ModelInfo], timeout: float = 60.0):
        super().__init__(models)
        self.timeout = timeout

    def _create_client(self, api_key: str) -> Any:
        return AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)

    def _stream_kwargs(self) -> Dict[str, Any]:
        return {"stream_options": {"include_usage": True}}

    def handle_error(self, error: BaseException) -> AdapterError:
        """Maps the SDK exception classes first, then falls back to the generic table."""
        return translate_sdk_error(error, self.sdk, self.provider_name)

    def get_config_schema(self) -> Optional[Type[BaseModel]]:
        return OpenAIProviderConfig

    async def validate_api_key(self, api_key: str) -> bool:
        if self.requires_api_key and not api_key:
            return False
        client = self._create_client(api_key)
        try:
            await client.models.list()
            return True
        except Exception as e:
            logger.debug(f"{self.provider_name} key validation failed: {type(e).__name__}: {e}")
            return False
        finally:
            await client.close()

    def _build_messages(self, prompt: str, options: TextGenerationOptions) -> List[Dict[str, str]]:
        return (
            MessageBuilder()
            .add_system_prompt(options.system_prompt)
            .add_context(options.context)
            .add_user_message(prompt)
            .build()
        )

    async def generate_text(self, prompt: str, options: TextGenerationOptions, api_key: str) -> TextResult:
        self.validate_api_key_present(api_key)
        self.validate_text_generation_capability(options.model)
        return await self._chat(self._create_client(api_key), prompt, options)

    async def _chat(self, client: Any, prompt: str, options: TextGenerationOptions, model_name: Optional[str] = None) -> TextResult:
        """Runs one chat completion against `client`, which this method closes."""
        request: Dict[str, Any] = {
            "model": model_name or options.model,
            "messages": self._build_messages(prompt, options),
            **build_sampling_params(options),
        }
        logger.debug(f"Sending {len(request['messages'])} messages to {self.provider_name} model: {request['model']}")

        if options.stream:
            try:
                raw = await client.chat.completions.create(stream=True, **self._stream_kwargs(), **request)
            except Exception as e:
                await client.close()
                raise self.handle_error(e) from e
            state: Dict[str, Any] = {}
            return create_text_stream(
                self._iter_deltas(raw, state),
                model=options.model,
                error_handler=self.handle_error,
                metadata=lambda: dict(state),
                on_close=client.close,
            )

        try:
            completion = await client.chat.completions.create(**request)
            return self._parse_completion(completion, options.model)
        except AdapterError:
            raise
        except Exception as e:
            logger.warning(f"{self.provider_name} chat completion failed: {type(e).__name__}: {e}")
            raise self.handle_error(e) from e
        finally:
            await client.close()

    async def _iter_deltas(self, raw: Any, state: Dict[str, Any]) -> AsyncIterator[str]:
        try:
            async for chunk in raw:
                usage = self._chunk_usage(chunk)
                if usage is not None:
                    state["usage"] = usage
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason:
                    state["finish_reason"] = choice.finish_reason
                if choice.delta and choice.delta.content:
                    yield choice.delta.content
        finally:
            close = getattr(raw, "close", None)
            if close is not None:
                await close()

    def _chunk_usage(self, chunk: Any) -> Optional[TokenUsage]:
        return self._usage_of(getattr(chunk, "usage", None))

    @staticmethod
    def _usage_of(usage: Any) -> Optional[TokenUsage]:
        if usage is None:
            return None
        return TokenUsage(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )

    def _parse_completion(self, completion: Any, model: str) -> TextResponse:
        try:
            choice = completion.choices[0]
            return TextResponse(
                content=choice.message.content or "",
                model=getattr(completion, "model", None) or model,
                usage=self._usage_of(getattr(completion, "usage", None)),
                finish_reason=choice.finish_reason,
            )
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse {self.provider_name} response structure: {e}")
            raise AdapterError(
                f"Invalid response format from {self.provider_name}: {e}", ErrorCode.PARSE_ERROR, None, e,
            ) from e


class OpenAIAdapter(OpenAICompatibleAdapter):
    provider_id = "openai"
    provider_name = "OpenAI"
    description = "OpenAI GPT and image generation models"

    def __init__(self, timeout: float = 60.0):
        super().__init__(OPENAI_MODELS, timeout=timeout)

    async def generate_image(self, prompt: str, options: ImageGenerationOptions, api_key: str) -> List[ImageResponse]:
        self.validate_api_key_present(api_key)
        self.validate_image_generation_capability(options.model)

        request: Dict[str, Any] = {"model": options.model, "prompt": prompt, "n": max(1, options.num_images)}
        if options.size:
            request["size"] = options.size
        if options.quality:
            request["quality"] = options.quality
        if options.style and options.model == "dall-e-3":
            request["style"] = options.style
        request.update(dict(options.extra))

        client = self._create_client(api_key)
        try:
            result = await client.images.generate(**request)
        except Exception as e:
            logger.warning(f"OpenAI image generation failed: {type(e).__name__}: {e}")
            raise self.handle_error(e) from e
        finally:
            await client.close()

        images = []
        for item in result.data or []:
            url = item.url or (f"data:image/png;base64,{item.b64_json}" if item.b64_json else None)
            if url is None:
                continue
            images.append(ImageResponse(
                url=url,
                model=options.model,
                revised_prompt=getattr(item, "revised_prompt", None),
                size=options.size,
                quality=options.quality,
                style=options.style,
            ))
        if not images:
            raise AdapterError("OpenAI returned no images", ErrorCode.PARSE_ERROR)
        return images


class OpenAIAdapterFactory(AdapterFactory):

    def create_adapter(self) -> OpenAIAdapter:
        return OpenAIAdapter()

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(id=OpenAIAdapter.provider_id, name=OpenAIAdapter.provider_name, description=OpenAIAdapter.description)
