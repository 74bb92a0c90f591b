import asyncio
from typing import Dict, List, Optional

import pytest
from typer.testing import CliRunner

from promptforge.core.services.llm_service import LLMService, LLMServiceConfig
from promptforge.domain.interfaces.llm_adapter import AdapterFactory
from promptforge.domain.models.ai import (
    ModelCapabilities, ModelInfo, ModelPricing, ProviderInfo, StreamChunk, TextResponse,
)
from promptforge.infrastructure.adapters.base import AbstractAdapter
from promptforge.infrastructure.adapters.mock_adapter import MockAdapter, MockBehavior
from promptforge.infrastructure.adapters.registry import AdapterRegistry
from promptforge.infrastructure.config import settings
from promptforge.infrastructure.credentials.env_credentials import EnvCredentialProvider
from promptforge.infrastructure.persistence.sqlite_store import SQLiteHistoryStore
from promptforge.infrastructure.resilience.api_retry import ApiRetryService

GOOD_KEY = "good-key"


class ScriptedAdapter(AbstractAdapter):
    """Fake adapter replaying a script of results.

    Script items are consumed one per call: an exception is raised, a string
    becomes the response text. When the script is empty the prompt is echoed.
    """

    def __init__(self, provider_id: str = "fake", script=None, chunks: Optional[List[str]] = None,
                 stall: Optional[asyncio.Event] = None, requires_api_key: bool = True):
        self.provider_id = provider_id
        self.provider_name = f"Fake {provider_id}"
        self.description = "Scripted test adapter"
        self.requires_api_key = requires_api_key
        super().__init__([
            ModelInfo(
                id="fake-model",
                name="Fake Model",
                capabilities=ModelCapabilities(text_generation=True, image_generation=False, streaming=True,
                                               context_length=1000),
                pricing=ModelPricing(input_cost_per_1k=0.5, output_cost_per_1k=1.0),
            ),
        ])
        self.script = list(script or [])
        self.chunks = chunks
        self.stall = stall
        self.calls = 0
        self.received_options = []
        self.received_keys = []

    async def validate_api_key(self, api_key: str) -> bool:
        return api_key == GOOD_KEY

    async def generate_text(self, prompt, options, api_key):
        self.calls += 1
        self.received_options.append(options)
        self.received_keys.append(api_key)
        item = self.script.pop(0) if self.script else f"echo: {prompt}"
        if isinstance(item, BaseException):
            raise item
        if options.stream:
            return self._stream(item, options.model)
        return TextResponse(content=item, model=options.model, finish_reason="stop")

    async def _stream(self, text: str, model: str):
        pieces = self.chunks if self.chunks is not None else [text]
        for index, piece in enumerate(pieces):
            yield StreamChunk(content=piece)
            if self.stall is not None and index == 0:
                await self.stall.wait()
        yield StreamChunk(content="", is_complete=True, metadata={"model": model})


class StaticFactory(AdapterFactory):
    """Always returns the same adapter instance."""

    def __init__(self, adapter):
        self.adapter = adapter
        self.created = 0

    def create_adapter(self):
        self.created += 1
        return self.adapter

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(id=self.adapter.provider_id, name=self.adapter.provider_name,
                            description=self.adapter.description)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps tests independent of the developer's environment and config files."""
    for name in ("OPENAI_API_KEY", "GROQ_API_KEY", "ANTHROPIC_API_KEY", "GOOGLE_API_KEY", "OLLAMA_API_KEY", "FAKE_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    yield
    settings.clear_test_config()


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def store():
    history_store = SQLiteHistoryStore(":memory:")
    yield history_store
    history_store.close()


@pytest.fixture
def fast_mock_adapter():
    return MockAdapter(MockBehavior(simulate_delay=False, chunk_delay=0))


@pytest.fixture
def make_adapter():
    """Factory fixture building ScriptedAdapter instances."""
    return ScriptedAdapter


@pytest.fixture
def make_llm_service():
    """Builds an LLMService over the given adapters with instant retries."""

    def build(adapters: Dict[str, AbstractAdapter], retry_attempts: int = 0, settings_store=None,
              keys: Optional[Dict[str, str]] = None, register_defaults: bool = False) -> LLMService:
        registry = AdapterRegistry()
        for provider_id, adapter in adapters.items():
            registry.register(provider_id, StaticFactory(adapter))
        credentials = EnvCredentialProvider(
            overrides=keys if keys is not None else {pid: GOOD_KEY for pid in adapters},
        )
        return LLMService(
            registry=registry,
            credentials=credentials,
            settings_store=settings_store,
            config=LLMServiceConfig(retry_attempts=retry_attempts, retry_delay=0.0),
            retry_service=ApiRetryService(max_retries=retry_attempts, retry_delay=0.0),
            register_defaults=register_defaults,
        )

    return build
