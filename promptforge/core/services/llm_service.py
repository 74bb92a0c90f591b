"""Orchestrating service for all provider calls.

Resolves adapters from the registry (optionally caching instances), merges
saved per-provider configuration into request options, runs calls through
the retry service and reports every outcome as an ExecutionResult.
Capability queries and health checks never raise.
"""

import asyncio
import copy
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.interfaces.credentials import CredentialProvider
from promptforge.domain.interfaces.history_store import SettingsStore
from promptforge.domain.interfaces.llm_adapter import AdapterFactory, ProviderAdapter
from promptforge.domain.models.ai import (
    Capability, ExecutionResult, HealthStatus, ImageGenerationOptions, ImageResult, ModelInfo,
    ModelPricing, ProviderModel, ProviderStatus, TextGenerationOptions, TextResult,
)
from promptforge.domain.models.common import provider_setting_key
from promptforge.infrastructure.adapters.mock_adapter import MockAdapterFactory
from promptforge.infrastructure.adapters.registry import AdapterRegistry
from promptforge.infrastructure.resilience.api_retry import ApiRetryService

logger = logging.getLogger(__name__)

GenerationOptions = Union[TextGenerationOptions, ImageGenerationOptions]

# Option fields that saved configuration may fill, per modality
_MERGEABLE_FIELDS = {
    TextGenerationOptions: ("temperature", "max_tokens", "top_p", "system_prompt"),
    ImageGenerationOptions: ("size", "quality", "style"),
}
_SECTION_BY_OPTIONS = {
    TextGenerationOptions: "text_generation",
    ImageGenerationOptions: "image_generation",
}


@dataclass(frozen=True)
class LLMServiceConfig:
    default_provider: Optional[str] = None
    enable_logging: bool = True
    cache_adapters: bool = True
    retry_attempts: int = 2
    retry_delay: float = 1.0  # seconds


@dataclass
class ProviderRegistration:
    factory: AdapterFactory
    enabled: bool = True
    instance: Optional[ProviderAdapter] = None
    last_error: Optional[str] = None


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively overlays `override` on `base` without mutating either."""
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class LLMService:
    """Single entry point for provider calls, capability queries and health checks."""

    def __init__(
        self,
        registry: AdapterRegistry,
        credentials: CredentialProvider,
        settings_store: Optional[SettingsStore] = None,
        config: Optional[LLMServiceConfig] = None,
        retry_service: Optional[ApiRetryService] = None,
        register_defaults: bool = True,
    ):
        self.registry = registry
        self.credentials = credentials
        self.settings_store = settings_store
        self.config = config or LLMServiceConfig()
        self.retry_service = retry_service or ApiRetryService(
            max_retries=self.config.retry_attempts, retry_delay=self.config.retry_delay,
        )
        self._providers: Dict[str, ProviderRegistration] = {}

        if register_defaults and not registry.has_provider("mock"):
            self.register_provider("mock", MockAdapterFactory())

        self._log(f"LLMService initialized with providers: {', '.join(registry.get_provider_ids()) or 'none'}")

    def _log(self, message: str) -> None:
        if self.config.enable_logging:
            logger.info(message)

    # --- Provider registration ---

    def _registration(self, provider_id: str) -> Optional[ProviderRegistration]:
        """Service-side state for a provider, kept in step with the registry.

        The registry owns the factories. State is created the first time an id
        is seen, and a cached adapter is dropped once its factory is replaced.
        """
        factory = self.registry.get_factory(provider_id)
        if factory is None:
            self._providers.pop(provider_id, None)
            return None
        registration = self._providers.get(provider_id)
        if registration is None:
            registration = self._providers[provider_id] = ProviderRegistration(factory=factory)
        elif registration.factory is not factory:
            logger.debug(f"Factory for '{provider_id}' was replaced, dropping cached adapter")
            registration.factory = factory
            registration.instance = None
            registration.last_error = None
        return registration

    def register_provider(self, provider_id: str, factory: AdapterFactory, enabled: bool = True) -> None:
        self.registry.register(provider_id, factory)
        self._registration(provider_id).enabled = enabled
        self._log(f"Registered provider '{provider_id}' (enabled={enabled})")

    def unregister_provider(self, provider_id: str) -> bool:
        removed = self.registry.unregister(provider_id)
        self._providers.pop(provider_id, None)
        if removed:
            self._log(f"Unregistered provider '{provider_id}'")
        return removed

    def set_provider_enabled(self, provider_id: str, enabled: bool) -> None:
        registration = self._registration(provider_id)
        if registration is None:
            raise AdapterError(f"Provider {provider_id} not found", ErrorCode.PROVIDER_NOT_FOUND)
        registration.enabled = enabled
        if not enabled:
            registration.instance = None
        self._log(f"Provider '{provider_id}' {'enabled' if enabled else 'disabled'}")

    def get_adapter(self, provider_id: str) -> ProviderAdapter:
        """Resolves an adapter, creating (and caching) it on first use.

        Raises:
            AdapterError: PROVIDER_NOT_FOUND, PROVIDER_DISABLED or ADAPTER_CREATION_ERROR.
        """
        registration = self._registration(provider_id)
        if registration is None:
            raise AdapterError(f"Provider {provider_id} not found", ErrorCode.PROVIDER_NOT_FOUND)
        if not registration.enabled:
            raise AdapterError(f"Provider {provider_id} is disabled", ErrorCode.PROVIDER_DISABLED)
        if self.config.cache_adapters and registration.instance is not None:
            return registration.instance

        try:
            adapter = registration.factory.create_adapter()
        except Exception as e:
            registration.last_error = str(e)
            logger.error(f"Failed to create adapter for '{provider_id}': {e}", exc_info=True)
            raise AdapterError(
                f"Failed to create adapter for {provider_id}: {e}", ErrorCode.ADAPTER_CREATION_ERROR, None, e,
            ) from e

        registration.last_error = None
        if self.config.cache_adapters:
            registration.instance = adapter
        return adapter

    def _registrations(self) -> List[Tuple[str, ProviderRegistration]]:
        # Walks the registry so factories registered there directly are included
        pairs = []
        for provider_id in self.registry.get_provider_ids():
            registration = self._registration(provider_id)
            if registration is not None:
                pairs.append((provider_id, registration))
        return pairs

    def get_providers(self) -> List[ProviderStatus]:
        statuses = []
        for provider_id, registration in self._registrations():
            info = registration.factory.get_provider_info()
            statuses.append(ProviderStatus(
                id=provider_id,
                name=info.name,
                description=info.description,
                enabled=registration.enabled,
                has_instance=registration.instance is not None,
                last_error=registration.last_error,
            ))
        return statuses

    def _enabled_provider_ids(self) -> List[str]:
        return [pid for pid, reg in self._registrations() if reg.enabled]

    def get_all_models(self) -> List[ProviderModel]:
        """Catalog of every enabled provider. Providers that fail to load are skipped."""
        models: List[ProviderModel] = []
        for provider_id in self._enabled_provider_ids():
            try:
                adapter = self.get_adapter(provider_id)
            except AdapterError as e:
                logger.warning(f"Skipping models of '{provider_id}': {e}")
                continue
            models.extend(
                ProviderModel(provider_id=provider_id, provider_name=adapter.provider_name, model=model)
                for model in adapter.get_supported_models()
            )
        return models

    async def refresh_all_models(self) -> List[ProviderModel]:
        """Refreshes live catalogs (e.g. Ollama) concurrently, then returns all models."""
        adapters = []
        for provider_id in self._enabled_provider_ids():
            try:
                adapters.append(self.get_adapter(provider_id))
            except AdapterError as e:
                logger.warning(f"Skipping refresh of '{provider_id}': {e}")
        results = await asyncio.gather(*(a.refresh_models() for a in adapters), return_exceptions=True)
        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                logger.warning(f"Model refresh for '{adapter.provider_id}' failed: {result}")
        return self.get_all_models()

    # --- Configuration merge ---

    async def merge_saved_config(self, provider_id: str, adapter: ProviderAdapter, options: GenerationOptions) -> GenerationOptions:
        """Fills options the caller left unset from the provider's saved configuration.

        Precedence: caller values, then saved config, then adapter defaults.
        Without a schema or saved config the options pass through unchanged.
        """
        schema = adapter.get_config_schema()
        if schema is None or self.settings_store is None:
            return options
        saved = await self.settings_store.get_setting(provider_setting_key(provider_id))
        if not saved:
            return options

        try:
            merged = schema.model_validate(deep_merge(adapter.get_default_config(), saved)).model_dump()
        except ValidationError as e:
            logger.warning(f"Ignoring invalid saved config for '{provider_id}': {e}")
            return options

        options_type = type(options)
        section_name = _SECTION_BY_OPTIONS[options_type]
        section = merged.get(section_name) if section_name in schema.model_fields else merged
        if not isinstance(section, Mapping):
            return options

        fields = _MERGEABLE_FIELDS[options_type]
        changes: Dict[str, Any] = {
            name: section[name]
            for name in fields
            if getattr(options, name) is None and section.get(name) is not None
        }
        section_extra = {
            k: v for k, v in section.items()
            if k not in fields and v is not None and not isinstance(v, Mapping) and k not in _SECTION_BY_OPTIONS.values()
        }
        if section_extra:
            changes["extra"] = {**section_extra, **dict(options.extra)}
        return dataclasses.replace(options, **changes) if changes else options

    async def save_provider_config(self, provider_id: str, config: Mapping[str, Any]) -> Dict[str, Any]:
        """Validates and stores a provider configuration.

        Raises:
            pydantic.ValidationError: If the config does not fit the provider schema.
        """
        if self.settings_store is None:
            raise RuntimeError("No settings store configured")
        adapter = self.get_adapter(provider_id)
        schema = adapter.get_config_schema()
        stored = dict(config)
        if schema is not None:
            schema.model_validate(deep_merge(adapter.get_default_config(), stored))
        await self.settings_store.set_setting(provider_setting_key(provider_id), stored)
        self._log(f"Saved configuration for provider '{provider_id}'")
        return stored

    async def get_provider_config(self, provider_id: str) -> Dict[str, Any]:
        """Adapter defaults overlaid with the saved configuration."""
        adapter = self.get_adapter(provider_id)
        saved: Dict[str, Any] = {}
        if self.settings_store is not None:
            saved = await self.settings_store.get_setting(provider_setting_key(provider_id)) or {}
        return deep_merge(adapter.get_default_config(), saved)

    # --- Generation ---

    def _failure(self, provider_id: str, model_id: str, start: float, error: BaseException) -> ExecutionResult:
        if not isinstance(error, AdapterError):
            error = AdapterError(f"Unexpected error: {error}", ErrorCode.UNEXPECTED_ERROR, None, error)
        registration = self._providers.get(provider_id)
        if registration is not None:
            registration.last_error = error.message
        return ExecutionResult(
            success=False,
            provider_id=provider_id,
            model_id=model_id,
            duration_ms=(time.perf_counter() - start) * 1000,
            error=error,
        )

    async def generate_text(
        self, provider_id: str, prompt: str, options: TextGenerationOptions, api_key: str,
    ) -> ExecutionResult[TextResult]:
        """Generates text with retries. Never raises; failures are in the result."""
        start = time.perf_counter()
        try:
            adapter = self.get_adapter(provider_id)
            merged = await self.merge_saved_config(provider_id, adapter, options)
            self._log(f"Generating text with {provider_id}:{options.model} (stream={merged.stream})")
            data = await self.retry_service.execute_with_retry(
                adapter.generate_text, prompt, merged, api_key,
                provider_name=provider_id, endpoint_name="generate_text",
            )
        except Exception as e:
            logger.warning(f"Text generation with {provider_id}:{options.model} failed: {e}")
            return self._failure(provider_id, options.model, start, e)
        return ExecutionResult(
            success=True,
            provider_id=provider_id,
            model_id=options.model,
            duration_ms=(time.perf_counter() - start) * 1000,
            data=data,
        )

    async def generate_text_with_stored_key(
        self, provider_id: str, prompt: str, options: TextGenerationOptions,
    ) -> ExecutionResult[TextResult]:
        """Like generate_text, with the credential looked up via the credential provider."""
        start = time.perf_counter()
        try:
            adapter = self.get_adapter(provider_id)
        except AdapterError as e:
            return self._failure(provider_id, options.model, start, e)

        credential = await self.credentials.safe_get_api_key(provider_id)
        if not credential.success and adapter.requires_api_key:
            message = credential.user_message or credential.error or f"No API key for {provider_id}"
            return self._failure(
                provider_id, options.model, start,
                AdapterError(message, ErrorCode.MISSING_API_KEY, 401),
            )
        return await self.generate_text(provider_id, prompt, options, credential.api_key or "")

    async def generate_image(
        self, provider_id: str, prompt: str, options: ImageGenerationOptions, api_key: str,
    ) -> ExecutionResult[ImageResult]:
        start = time.perf_counter()
        try:
            adapter = self.get_adapter(provider_id)
            merged = await self.merge_saved_config(provider_id, adapter, options)
            data = await self.retry_service.execute_with_retry(
                adapter.generate_image, prompt, merged, api_key,
                provider_name=provider_id, endpoint_name="generate_image",
            )
        except Exception as e:
            logger.warning(f"Image generation with {provider_id}:{options.model} failed: {e}")
            return self._failure(provider_id, options.model, start, e)
        return ExecutionResult(
            success=True,
            provider_id=provider_id,
            model_id=options.model,
            duration_ms=(time.perf_counter() - start) * 1000,
            data=data,
        )

    async def validate_api_key(self, provider_id: str, api_key: str) -> bool:
        try:
            return await self.get_adapter(provider_id).validate_api_key(api_key)
        except Exception as e:
            logger.warning(f"API key validation for '{provider_id}' failed: {e}")
            return False

    # --- Capability queries (never raise) ---

    def supports_capability(self, provider_id: str, model_id: str, capability: Capability) -> bool:
        try:
            return self.get_adapter(provider_id).supports_capability(model_id, capability)
        except Exception as e:
            logger.debug(f"Capability query for {provider_id}:{model_id} failed: {e}")
            return False

    def get_context_length(self, provider_id: str, model_id: str) -> Optional[int]:
        try:
            return self.get_adapter(provider_id).get_context_length(model_id)
        except Exception as e:
            logger.debug(f"Context length query for {provider_id}:{model_id} failed: {e}")
            return None

    def get_pricing(self, provider_id: str, model_id: str) -> Optional[ModelPricing]:
        try:
            return self.get_adapter(provider_id).get_pricing(model_id)
        except Exception as e:
            logger.debug(f"Pricing query for {provider_id}:{model_id} failed: {e}")
            return None

    def find_model(self, provider_id: str, model_id: str) -> Optional[ModelInfo]:
        try:
            models = self.get_adapter(provider_id).get_supported_models()
        except Exception:
            return None
        return next((m for m in models if m.id == model_id), None)

    # --- Health ---

    async def check_provider_health(self, provider_id: str) -> HealthStatus:
        start = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        try:
            adapter = self.get_adapter(provider_id)
            credential = await self.credentials.safe_get_api_key(provider_id)
            if not credential.success and adapter.requires_api_key:
                return HealthStatus(
                    healthy=False,
                    message=credential.user_message or "No API key configured",
                    latency_ms=elapsed(),
                )
            valid = await adapter.validate_api_key(credential.api_key or "")
        except Exception as e:
            logger.warning(f"Health check for '{provider_id}' failed: {e}")
            return HealthStatus(healthy=False, message=str(e), latency_ms=elapsed())

        if valid:
            return HealthStatus(healthy=True, message="Provider is reachable and the API key is valid", latency_ms=elapsed())
        return HealthStatus(healthy=False, message="API key validation failed", latency_ms=elapsed())

    async def check_all_providers_health(self) -> Dict[str, HealthStatus]:
        """Checks every enabled provider concurrently; one failure never aborts the others."""
        provider_ids = self._enabled_provider_ids()
        results = await asyncio.gather(
            *(self.check_provider_health(pid) for pid in provider_ids), return_exceptions=True,
        )
        report: Dict[str, HealthStatus] = {}
        for provider_id, result in zip(provider_ids, results):
            if isinstance(result, BaseException):
                report[provider_id] = HealthStatus(healthy=False, message=str(result), latency_ms=0.0)
            else:
                report[provider_id] = result
        return report

    # --- Service configuration ---

    def clear_cache(self) -> None:
        for registration in self._providers.values():
            registration.instance = None
        self._log("Cleared cached adapter instances")

    def update_config(self, **changes: Any) -> LLMServiceConfig:
        self.config = dataclasses.replace(self.config, **changes)
        self.retry_service.max_retries = max(0, self.config.retry_attempts)
        self.retry_service.retry_delay = self.config.retry_delay
        if not self.config.cache_adapters:
            self.clear_cache()
        return self.config

    def get_config(self) -> LLMServiceConfig:
        return self.config
