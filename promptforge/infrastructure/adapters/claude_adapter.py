"""Anthropic Claude adapter built on the official async anthropic SDK."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Type

import anthropic
from anthropic import AsyncAnthropic
from pydantic import BaseModel, Field

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.interfaces.llm_adapter import AdapterFactory
from promptforge.domain.models.ai import (
    ModelCapabilities, ModelInfo, ModelPricing, ProviderInfo, TextGenerationOptions, TextResponse, TextResult,
)
from promptforge.domain.models.common import TokenUsage
from promptforge.infrastructure.adapters.base import AbstractAdapter, system_with_context, translate_sdk_error
from promptforge.infrastructure.streaming.stream_handler import create_text_stream

logger = logging.getLogger(__name__)

# The Messages API requires max_tokens on every request
DEFAULT_MAX_TOKENS = 2048


def _claude_model(model_id: str, name: str, inp: float, out: float, description: str) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        description=description,
        capabilities=ModelCapabilities(text_generation=True, image_generation=False, streaming=True, context_length=200000),
        pricing=ModelPricing(input_cost_per_1k=inp, output_cost_per_1k=out),
    )


CLAUDE_MODELS = [
    _claude_model("claude-opus-4-1-20250805", "Claude Opus 4.1", 0.015, 0.075, "Most capable model for complex, long-running tasks"),
    _claude_model("claude-sonnet-4-5-20250929", "Claude Sonnet 4.5", 0.003, 0.015, "Strongest model for coding and agents"),
    _claude_model("claude-opus-4-20250514", "Claude Opus 4", 0.015, 0.075, "Powerful model with sustained performance on complex tasks"),
    _claude_model("claude-sonnet-4-20250514", "Claude Sonnet 4", 0.003, 0.015, "High-performance model with strong reasoning"),
    _claude_model("claude-3-7-sonnet-20250219", "Claude Sonnet 3.7", 0.003, 0.015, "Model with extended thinking"),
    _claude_model("claude-3-5-haiku-20241022", "Claude Haiku 3.5", 0.0008, 0.004, "Fastest model for everyday tasks"),
    _claude_model("claude-3-haiku-20240307", "Claude Haiku 3", 0.00025, 0.00125, "Compact legacy model for light tasks"),
]


class ClaudeTextGenerationConfig(BaseModel):
    temperature: float = Field(0.7, ge=0.0, le=1.0)
    max_tokens: int = Field(DEFAULT_MAX_TOKENS, ge=1, le=64000)
    top_p: Optional[float] = Field(None, ge=0.0, le=1.0)
    top_k: Optional[int] = Field(None, ge=1, le=500)
    stop: List[str] = Field(default_factory=list, max_length=4)
    system_prompt: Optional[str] = None


class ClaudeAdvancedConfig(BaseModel):
    timeout: float = Field(60.0, gt=0)
    max_retries: int = Field(0, ge=0, le=5)


class ClaudeProviderConfig(BaseModel):
    """Saved configuration for Anthropic Claude."""
    text_generation: ClaudeTextGenerationConfig = Field(default_factory=ClaudeTextGenerationConfig)
    advanced: ClaudeAdvancedConfig = Field(default_factory=ClaudeAdvancedConfig)


class ClaudeAdapter(AbstractAdapter):
    provider_id = "anthropic"
    provider_name = "Anthropic Claude"
    description = "Anthropic's Claude models for text generation and reasoning"

    def __init__(self, timeout: float = 60.0):
        super().__init__(CLAUDE_MODELS)
        self.timeout = timeout

    def _create_client(self, api_key: str) -> Any:
        return AsyncAnthropic(api_key=api_key, timeout=self.timeout, max_retries=0)

    def handle_error(self, error: BaseException) -> AdapterError:
        return translate_sdk_error(error, anthropic, self.provider_name)

    def get_config_schema(self) -> Optional[Type[BaseModel]]:
        return ClaudeProviderConfig

    async def validate_api_key(self, api_key: str) -> bool:
        if not api_key:
            return False
        client = self._create_client(api_key)
        try:
            await client.models.list(limit=1)
            return True
        except Exception as e:
            logger.debug(f"Anthropic key validation failed: {type(e).__name__}: {e}")
            return False
        finally:
            await client.close()

    def _build_request(self, prompt: str, options: TextGenerationOptions) -> Dict[str, Any]:
        extra = dict(options.extra)
        request: Dict[str, Any] = {
            "model": options.model,
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }
        system = system_with_context(options.system_prompt, options.context)
        if system:
            request["system"] = system
        if options.temperature is not None:
            request["temperature"] = options.temperature
        if options.top_p is not None:
            request["top_p"] = options.top_p
        stop = extra.pop("stop", None)
        if stop:
            request["stop_sequences"] = list(stop)
        request.update(extra)
        return request

    async def generate_text(self, prompt: str, options: TextGenerationOptions, api_key: str) -> TextResult:
        self.validate_api_key_present(api_key)
        self.validate_text_generation_capability(options.model)

        request = self._build_request(prompt, options)
        client = self._create_client(api_key)
        logger.debug(f"Sending prompt to Anthropic model: {options.model}")

        if options.stream:
            try:
                raw = await client.messages.create(stream=True, **request)
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
            message = await client.messages.create(**request)
        except Exception as e:
            logger.warning(f"Anthropic message request failed: {type(e).__name__}: {e}")
            raise self.handle_error(e) from e
        finally:
            await client.close()
        return self._parse_message(message, options.model)

    async def _iter_deltas(self, raw: Any, state: Dict[str, Any]) -> AsyncIterator[str]:
        input_tokens = 0
        try:
            async for event in raw:
                if event.type == "message_start":
                    input_tokens = event.message.usage.input_tokens or 0
                elif event.type == "content_block_delta" and event.delta.type == "text_delta":
                    if event.delta.text:
                        yield event.delta.text
                elif event.type == "message_delta":
                    state["finish_reason"] = event.delta.stop_reason
                    output_tokens = event.usage.output_tokens or 0
                    state["usage"] = TokenUsage(
                        prompt_tokens=input_tokens,
                        completion_tokens=output_tokens,
                        total_tokens=input_tokens + output_tokens,
                    )
        finally:
            await raw.close()

    def _parse_message(self, message: Any, model: str) -> TextResponse:
        try:
            content = "".join(block.text for block in message.content if block.type == "text")
            usage = message.usage
        except (AttributeError, TypeError) as e:
            raise AdapterError(
                f"Invalid response format from {self.provider_name}: {e}", ErrorCode.PARSE_ERROR, None, e,
            ) from e
        return TextResponse(
            content=content,
            model=getattr(message, "model", None) or model,
            usage=TokenUsage(
                prompt_tokens=usage.input_tokens,
                completion_tokens=usage.output_tokens,
                total_tokens=usage.input_tokens + usage.output_tokens,
            ) if usage is not None else None,
            finish_reason=message.stop_reason,
        )


class ClaudeAdapterFactory(AdapterFactory):

    def create_adapter(self) -> ClaudeAdapter:
        return ClaudeAdapter()

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(id=ClaudeAdapter.provider_id, name=ClaudeAdapter.provider_name, description=ClaudeAdapter.description)
