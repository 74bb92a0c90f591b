"""Google Gemini adapter built on the google-genai SDK.

Uses the SDK's async surface (`client.aio`) for generation, streaming and
key validation. Gemini reports failures as google.genai.errors.APIError
carrying the HTTP status; transport failures surface as httpx exceptions.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Type

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, Field

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.interfaces.llm_adapter import AdapterFactory
from promptforge.domain.models.ai import (
    ModelCapabilities, ModelInfo, ModelPricing, ProviderInfo, TextGenerationOptions, TextResponse, TextResult,
)
from promptforge.domain.models.common import TokenUsage
from promptforge.infrastructure.adapters.base import (
    AbstractAdapter, error_for_status, system_with_context, translate_error,
)
from promptforge.infrastructure.streaming.stream_handler import create_text_stream

logger = logging.getLogger(__name__)

# Vendor parameters accepted from options.extra; anything else is dropped
PASSTHROUGH_CONFIG_FIELDS = ("top_k", "presence_penalty", "frequency_penalty", "seed", "candidate_count")


def _gemini_model(model_id: str, name: str, context: int, inp: float, out: float, description: str,
                  text_generation: bool = True) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        description=description,
        capabilities=ModelCapabilities(
            text_generation=text_generation, image_generation=False, streaming=text_generation,
            context_length=context,
        ),
        pricing=ModelPricing(input_cost_per_1k=inp, output_cost_per_1k=out),
    )


GEMINI_MODELS = [
    _gemini_model("gemini-2.5-pro", "Gemini 2.5 Pro", 1048576, 0.00125, 0.01, "Most powerful thinking model"),
    _gemini_model("gemini-2.5-flash", "Gemini 2.5 Flash", 1048576, 0.0003, 0.0025, "Best price-performance with adaptive thinking"),
    _gemini_model("gemini-2.5-flash-lite", "Gemini 2.5 Flash-Lite", 1048576, 0.0001, 0.0004, "Fastest, most cost-efficient 2.5 model"),
    _gemini_model("gemini-2.0-flash", "Gemini 2.0 Flash", 1048576, 0.0001, 0.0004, "Multimodal model built for agentic experiences"),
    _gemini_model("gemini-2.0-flash-lite", "Gemini 2.0 Flash-Lite", 1048576, 0.000075, 0.0003, "Low latency model for high-frequency tasks"),
    _gemini_model("gemini-1.5-pro", "Gemini 1.5 Pro", 2097152, 0.00125, 0.005, "Mid-size model with a 2M token context"),
    _gemini_model("gemini-1.5-flash", "Gemini 1.5 Flash", 1048576, 0.000075, 0.0003, "Fast and versatile multimodal model"),
    _gemini_model("text-embedding-004", "Text Embedding 004", 2048, 0.0, 0.0, "Text embedding model", text_generation=False),
]


class GeminiTextGenerationConfig(BaseModel):
    temperature: float = Field(1.0, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, gt=0)
    top_p: Optional[float] = Field(None, ge=0.0, le=1.0)
    top_k: Optional[int] = Field(None, gt=0)
    stop: List[str] = Field(default_factory=list, max_length=5)
    system_prompt: Optional[str] = None


class GeminiAdvancedConfig(BaseModel):
    timeout: float = Field(60.0, gt=0)


class GeminiProviderConfig(BaseModel):
    """Saved configuration for Google Gemini."""
    text_generation: GeminiTextGenerationConfig = Field(default_factory=GeminiTextGenerationConfig)
    advanced: GeminiAdvancedConfig = Field(default_factory=GeminiAdvancedConfig)


class GeminiAdapter(AbstractAdapter):
    provider_id = "google"
    provider_name = "Google Gemini"
    description = "Google's Gemini models for text generation and multimodal tasks"

    def __init__(self, timeout: float = 60.0):
        super().__init__(GEMINI_MODELS)
        self.timeout = timeout

    def _create_client(self, api_key: str) -> Any:
        return genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=int(self.timeout * 1000)))

    def handle_error(self, error: BaseException) -> AdapterError:
        if isinstance(error, AdapterError):
            return error
        if isinstance(error, genai_errors.APIError) and isinstance(error.code, int):
            message = error.message or str(error)
            # Gemini rejects bad keys with 400 INVALID_ARGUMENT
            if error.code == 400 and "api key" in message.lower():
                return AdapterError("Invalid API key provided", ErrorCode.INVALID_API_KEY, 400, error)
            return error_for_status(error.code, message, self.provider_name, error)
        if isinstance(error, httpx.TimeoutException):
            return AdapterError(
                f"Request timeout: {self.provider_name} API did not respond in time",
                ErrorCode.TIMEOUT_ERROR, None, error,
            )
        if isinstance(error, httpx.TransportError):
            return AdapterError(
                f"Network error: Unable to connect to {self.provider_name} API",
                ErrorCode.NETWORK_ERROR, None, error,
            )
        return translate_error(error, self.provider_name)

    def get_config_schema(self) -> Optional[Type[BaseModel]]:
        return GeminiProviderConfig

    async def validate_api_key(self, api_key: str) -> bool:
        if not api_key:
            return False
        client = self._create_client(api_key)
        try:
            await client.aio.models.list(config={"page_size": 1})
            return True
        except Exception as e:
            logger.debug(f"Gemini key validation failed: {type(e).__name__}: {e}")
            return False
        finally:
            await client.aio.aclose()

    def _build_config(self, options: TextGenerationOptions) -> types.GenerateContentConfig:
        extra = dict(options.extra)
        params: Dict[str, Any] = {
            "system_instruction": system_with_context(options.system_prompt, options.context),
            "temperature": options.temperature,
            "max_output_tokens": options.max_tokens,
            "top_p": options.top_p,
        }
        stop = extra.pop("stop", None)
        if stop:
            params["stop_sequences"] = list(stop)
        for name in PASSTHROUGH_CONFIG_FIELDS:
            if extra.get(name) is not None:
                params[name] = extra.pop(name)
        if extra:
            logger.debug(f"Ignoring unsupported Gemini parameters: {', '.join(extra)}")
        return types.GenerateContentConfig(**{k: v for k, v in params.items() if v is not None})

    async def generate_text(self, prompt: str, options: TextGenerationOptions, api_key: str) -> TextResult:
        self.validate_api_key_present(api_key)
        self.validate_text_generation_capability(options.model)

        config = self._build_config(options)
        client = self._create_client(api_key)
        logger.debug(f"Sending prompt to Gemini model: {options.model}")

        if options.stream:
            try:
                raw = await client.aio.models.generate_content_stream(model=options.model, contents=prompt, config=config)
            except Exception as e:
                await client.aio.aclose()
                raise self.handle_error(e) from e
            state: Dict[str, Any] = {}
            return create_text_stream(
                self._iter_deltas(raw, state),
                model=options.model,
                error_handler=self.handle_error,
                metadata=lambda: dict(state),
                on_close=client.aio.aclose,
            )

        try:
            response = await client.aio.models.generate_content(model=options.model, contents=prompt, config=config)
        except Exception as e:
            logger.warning(f"Gemini generate_content failed: {type(e).__name__}: {e}")
            raise self.handle_error(e) from e
        finally:
            await client.aio.aclose()
        return TextResponse(
            content=response.text or "",
            model=getattr(response, "model_version", None) or options.model,
            usage=self._usage_of(response),
            finish_reason=self._finish_reason_of(response),
        )

    async def _iter_deltas(self, raw: Any, state: Dict[str, Any]) -> AsyncIterator[str]:
        try:
            async for chunk in raw:
                usage = self._usage_of(chunk)
                if usage is not None:
                    state["usage"] = usage
                reason = self._finish_reason_of(chunk)
                if reason:
                    state["finish_reason"] = reason
                if chunk.text:
                    yield chunk.text
        finally:
            aclose = getattr(raw, "aclose", None)
            if aclose is not None:
                await aclose()

    @staticmethod
    def _usage_of(response: Any) -> Optional[TokenUsage]:
        metadata = getattr(response, "usage_metadata", None)
        if metadata is None or metadata.prompt_token_count is None:
            return None
        prompt_tokens = metadata.prompt_token_count
        completion_tokens = metadata.candidates_token_count or 0
        return TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=metadata.total_token_count or prompt_tokens + completion_tokens,
        )

    @staticmethod
    def _finish_reason_of(response: Any) -> Optional[str]:
        candidates = getattr(response, "candidates", None)
        if not candidates or candidates[0].finish_reason is None:
            return None
        reason = candidates[0].finish_reason
        return str(getattr(reason, "value", reason)).lower()


class GeminiAdapterFactory(AdapterFactory):

    def create_adapter(self) -> GeminiAdapter:
        return GeminiAdapter()

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(id=GeminiAdapter.provider_id, name=GeminiAdapter.provider_name, description=GeminiAdapter.description)
