from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.models.ai import TextGenerationOptions
from promptforge.infrastructure.adapters.ollama_adapter import DEFAULT_OLLAMA_MODELS, OllamaAdapter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def completion(content="local answer"):
    return SimpleNamespace(
        model="llama3.2:latest",
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason="stop")],
        usage=None,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    fake = MagicMock()
    fake.models.list = AsyncMock(return_value=SimpleNamespace(data=[
        SimpleNamespace(id="llama3.2:latest"), SimpleNamespace(id="phi3:mini"),
    ]))
    fake.chat.completions.create = AsyncMock(return_value=completion())
    fake.close = AsyncMock()
    return fake


@pytest.fixture
def adapter(mocker, client, clock):
    instance = OllamaAdapter(base_url="http://ollama.test/v1", refresh_interval=60, clock=clock)
    mocker.patch.object(instance, "_create_client", return_value=client)
    return instance


def test_starts_with_default_catalog_and_no_key():
    adapter = OllamaAdapter(base_url="http://ollama.test/v1")
    assert adapter.requires_api_key is False
    assert [m.id for m in adapter.get_supported_models()] == [m.id for m in DEFAULT_OLLAMA_MODELS]
    assert adapter.is_stale
    assert adapter.get_pricing("llama3.2:latest").input_cost_per_1k == 0.0


@pytest.mark.asyncio
async def test_refresh_replaces_catalog_keeping_known_metadata(adapter):
    models = await adapter.refresh_models()

    assert [m.id for m in models] == ["llama3.2:latest", "phi3:mini"]
    assert adapter.get_context_length("llama3.2:latest") == 131072
    assert adapter.get_context_length("phi3:mini") is None
    assert not adapter.is_stale


@pytest.mark.asyncio
async def test_refresh_failure_keeps_catalog(adapter, client):
    client.models.list.side_effect = ConnectionError("connection refused")
    models = await adapter.refresh_models()

    assert len(models) == len(DEFAULT_OLLAMA_MODELS)
    assert adapter.is_stale


@pytest.mark.asyncio
async def test_generate_text_refreshes_only_when_stale(adapter, client, clock):
    options = TextGenerationOptions(model="llama3.2:latest")

    result = await adapter.generate_text("Hi", options, "")
    await adapter.generate_text("Hi again", options, "")
    assert result.content == "local answer"
    assert client.models.list.await_count == 1

    clock.now += 61
    await adapter.generate_text("Later", options, "")
    assert client.models.list.await_count == 2


@pytest.mark.asyncio
async def test_missing_model_is_reported_without_calling_chat(adapter, client):
    with pytest.raises(AdapterError) as exc_info:
        await adapter.generate_text("Hi", TextGenerationOptions(model="mistral:latest"), "")
    assert exc_info.value.code is ErrorCode.MODEL_NOT_FOUND
    assert "ollama pull mistral:latest" in exc_info.value.message
    client.chat.completions.create.assert_not_called()


@pytest.mark.asyncio
async def test_validate_api_key_only_checks_reachability(adapter, client):
    assert await adapter.validate_api_key("") is True
    client.models.list.side_effect = ConnectionError("down")
    assert await adapter.validate_api_key("") is False
