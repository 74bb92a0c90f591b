"""Shared building blocks for provider adapters.

Includes the model catalog used for capability lookups, a chat message
builder, the generic error translation table and the AbstractAdapter base
class that concrete adapters extend.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.interfaces.llm_adapter import ProviderAdapter
from promptforge.domain.models.ai import Capability, ModelInfo, ModelPricing, TextGenerationOptions

logger = logging.getLogger(__name__)

SERVER_ERROR_STATUSES = (500, 502, 503, 504)


class ModelCatalog:
    """Immutable-by-convention list of models with lookup helpers."""

    def __init__(self, models: Sequence[ModelInfo]):
        self._models: List[ModelInfo] = list(models)

    def all(self) -> List[ModelInfo]:
        return list(self._models)

    def replace(self, models: Sequence[ModelInfo]) -> None:
        self._models = list(models)

    def find(self, model_id: str) -> Optional[ModelInfo]:
        return next((m for m in self._models if m.id == model_id), None)

    def supports(self, model_id: str, capability: Capability) -> bool:
        model = self.find(model_id)
        if model is None:
            return False
        try:
            return model.capabilities.supports(capability)
        except ValueError:
            return False

    def context_length(self, model_id: str) -> Optional[int]:
        model = self.find(model_id)
        return model.capabilities.context_length if model else None

    def pricing(self, model_id: str) -> Optional[ModelPricing]:
        model = self.find(model_id)
        return model.pricing if model else None


class MessageBuilder:
    """Builds the chat message list sent to chat-completion style APIs."""

    def __init__(self) -> None:
        self._messages: List[Dict[str, str]] = []

    def add_system_prompt(self, prompt: Optional[str]) -> "MessageBuilder":
        if prompt:
            self._messages.append({"role": "system", "content": prompt})
        return self

    def add_context(self, context: Optional[str]) -> "MessageBuilder":
        # Prior conversation is replayed as an assistant turn
        if context:
            self._messages.append({"role": "assistant", "content": context})
        return self

    def add_user_message(self, content: str) -> "MessageBuilder":
        self._messages.append({"role": "user", "content": content})
        return self

    def build(self) -> List[Dict[str, str]]:
        return list(self._messages)


def system_with_context(system_prompt: Optional[str], context: Optional[str]) -> Optional[str]:
    """Joins the system prompt and the prior answer into one instruction.

    Used by APIs whose conversation has to open with a user turn, so the
    prior answer cannot be replayed as an assistant message.
    """
    parts = []
    if system_prompt:
        parts.append(system_prompt)
    if context:
        parts.append(f"Your previous answer in this conversation:\n{context}")
    return "\n\n".join(parts) or None


def error_for_status(
    status: int, message: str, provider_name: str, original: Optional[BaseException] = None
) -> AdapterError:
    """Maps an HTTP status to the AdapterError taxonomy."""
    if status == 400:
        return AdapterError(f"Invalid request: {message}", ErrorCode.INVALID_REQUEST, status, original)
    if status == 401:
        return AdapterError("Invalid API key provided", ErrorCode.INVALID_API_KEY, status, original)
    if status == 403:
        return AdapterError("Permission denied or quota exceeded", ErrorCode.PERMISSION_DENIED, status, original)
    if status == 404:
        return AdapterError(f"Model not found: {message}", ErrorCode.MODEL_NOT_FOUND, status, original)
    if status == 429:
        return AdapterError("Rate limit exceeded. Please try again later", ErrorCode.RATE_LIMIT_EXCEEDED, status, original)
    if status in SERVER_ERROR_STATUSES:
        return AdapterError(f"{provider_name} service temporarily unavailable", ErrorCode.SERVICE_UNAVAILABLE, status, original)
    return AdapterError(message or "Unknown error occurred", ErrorCode.UNKNOWN_ERROR, status, original)


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def translate_error(error: BaseException, provider_name: str) -> AdapterError:
    """Generic translation of any exception into an AdapterError."""
    if isinstance(error, AdapterError):
        return error

    status = _status_of(error)
    if status is not None:
        return error_for_status(status, str(error), provider_name, error)

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return AdapterError(
            f"Request timeout: {provider_name} API did not respond in time",
            ErrorCode.TIMEOUT_ERROR, None, error,
        )
    if isinstance(error, (ConnectionError, OSError)):
        return AdapterError(
            f"Network error: Unable to connect to {provider_name} API",
            ErrorCode.NETWORK_ERROR, None, error,
        )
    if isinstance(error, (json.JSONDecodeError, KeyError, IndexError, AttributeError)):
        return AdapterError(
            f"Invalid response format from {provider_name}: {error}",
            ErrorCode.PARSE_ERROR, None, error,
        )
    return AdapterError(str(error) or "An unexpected error occurred", ErrorCode.UNKNOWN_ERROR, None, error)


def translate_sdk_error(error: BaseException, sdk: Any, provider_name: str) -> AdapterError:
    """Maps the exception classes shared by the openai, groq and anthropic SDKs.

    `sdk` is the SDK module. Anything it does not recognize falls back to
    translate_error.
    """
    if isinstance(error, AdapterError):
        return error
    if isinstance(error, sdk.APITimeoutError):
        return AdapterError(
            f"Request timeout: {provider_name} API did not respond in time",
            ErrorCode.TIMEOUT_ERROR, None, error,
        )
    if isinstance(error, sdk.APIConnectionError):
        return AdapterError(
            f"Network error: Unable to connect to {provider_name} API",
            ErrorCode.NETWORK_ERROR, None, error,
        )
    if isinstance(error, sdk.APIStatusError):
        return error_for_status(error.status_code, getattr(error, "message", str(error)), provider_name, error)
    if isinstance(error, sdk.APIResponseValidationError):
        return AdapterError(f"Invalid response format from {provider_name}", ErrorCode.PARSE_ERROR, None, error)
    return translate_error(error, provider_name)


class AbstractAdapter(ProviderAdapter):
    """Catalog-backed base class providing the pure lookups and validation helpers."""

    provider_id: str = ""
    provider_name: str = ""
    description: str = ""

    def __init__(self, models: Sequence[ModelInfo]):
        self.catalog = ModelCatalog(models)

    def get_supported_models(self) -> List[ModelInfo]:
        return self.catalog.all()

    def supports_capability(self, model_id: str, capability: Capability) -> bool:
        return self.catalog.supports(model_id, capability)

    def get_context_length(self, model_id: str) -> Optional[int]:
        return self.catalog.context_length(model_id)

    def get_pricing(self, model_id: str) -> Optional[ModelPricing]:
        return self.catalog.pricing(model_id)

    # --- protected helpers ---

    def handle_error(self, error: BaseException) -> AdapterError:
        return translate_error(error, self.provider_name)

    def validate_api_key_present(self, api_key: Optional[str]) -> None:
        if self.requires_api_key and not api_key:
            raise AdapterError("API key is required", ErrorCode.MISSING_API_KEY, 401)

    def validate_text_generation_capability(self, model_id: str) -> None:
        if not self.supports_capability(model_id, Capability.TEXT_GENERATION):
            raise AdapterError(
                f"Model {model_id} does not support text generation",
                ErrorCode.UNSUPPORTED_OPERATION, 400,
            )

    def validate_image_generation_capability(self, model_id: str) -> None:
        if not self.supports_capability(model_id, Capability.IMAGE_GENERATION):
            raise AdapterError(
                f"Model {model_id} does not support image generation",
                ErrorCode.UNSUPPORTED_OPERATION, 400,
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_id={self.provider_id!r}, models={len(self.catalog.all())})"


def build_sampling_params(options: TextGenerationOptions) -> Dict[str, Any]:
    """Maps TextGenerationOptions to chat-completion keyword arguments."""
    params: Dict[str, Any] = {}
    if options.temperature is not None:
        params["temperature"] = options.temperature
    if options.max_tokens is not None:
        params["max_tokens"] = options.max_tokens
    if options.top_p is not None:
        params["top_p"] = options.top_p
    params.update(dict(options.extra))
    return params
