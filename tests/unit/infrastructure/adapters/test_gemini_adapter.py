from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from google.genai import errors as genai_errors

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.models.ai import Capability, TextGenerationOptions, TextResponse
from promptforge.infrastructure.adapters.gemini_adapter import GeminiAdapter, GeminiAdapterFactory

MODEL = "gemini-2.0-flash"


def api_error(cls, status: int, message: str):
    return cls(status, {"error": {"code": status, "message": message, "status": "ERROR"}})


def reply(text, finish_reason=None, usage=True):
    return SimpleNamespace(
        text=text,
        model_version=MODEL,
        usage_metadata=SimpleNamespace(prompt_token_count=3, candidates_token_count=2, total_token_count=5)
        if usage else None,
        candidates=[SimpleNamespace(finish_reason=finish_reason)],
    )


async def replies(*items, fail_with=None):
    for item in items:
        yield item
    if fail_with is not None:
        raise fail_with


@pytest.fixture
def client():
    fake = MagicMock()
    fake.aio.models.generate_content = AsyncMock(return_value=reply("Hello from Gemini", "STOP"))
    fake.aio.models.generate_content_stream = AsyncMock()
    fake.aio.models.list = AsyncMock()
    fake.aio.aclose = AsyncMock()
    return fake


@pytest.fixture
def adapter(mocker, client):
    instance = GeminiAdapter()
    mocker.patch.object(instance, "_create_client", return_value=client)
    return instance


def test_catalog_and_factory():
    adapter = GeminiAdapter()
    assert adapter.supports_capability(MODEL, Capability.TEXT_GENERATION)
    assert not adapter.supports_capability("text-embedding-004", Capability.TEXT_GENERATION)
    assert adapter.get_context_length("gemini-1.5-pro") == 2097152
    assert GeminiAdapterFactory().get_provider_info().id == "google"


@pytest.mark.asyncio
async def test_generate_text_builds_config_and_parses_reply(adapter, client):
    options = TextGenerationOptions(
        model=MODEL, temperature=0.4, max_tokens=128, system_prompt="be brief", extra={"stop": ["END"], "top_k": 8},
    )
    result = await adapter.generate_text("Hi", options, "g-key")

    assert isinstance(result, TextResponse)
    assert result.content == "Hello from Gemini"
    assert result.finish_reason == "stop"
    assert result.usage == {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}
    kwargs = client.aio.models.generate_content.call_args.kwargs
    assert kwargs["model"] == MODEL
    assert kwargs["contents"] == "Hi"
    config = kwargs["config"]
    assert config.temperature == 0.4
    assert config.max_output_tokens == 128
    assert config.stop_sequences == ["END"]
    assert config.top_k == 8
    assert "be brief" in str(config.system_instruction)
    client.aio.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_unsupported_extras_are_dropped(adapter, client):
    await adapter.generate_text("Hi", TextGenerationOptions(model=MODEL, extra={"logit_bias": {"1": 2}}), "g-key")
    assert client.aio.models.generate_content.await_count == 1


@pytest.mark.asyncio
async def test_embedding_model_cannot_generate_text(adapter, client):
    with pytest.raises(AdapterError) as exc_info:
        await adapter.generate_text("Hi", TextGenerationOptions(model="text-embedding-004"), "g-key")
    assert exc_info.value.code is ErrorCode.UNSUPPORTED_OPERATION
    client.aio.models.generate_content.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("error, code, retryable", [
    (api_error(genai_errors.ClientError, 400, "API key not valid. Please pass a valid API key."),
     ErrorCode.INVALID_API_KEY, False),
    (api_error(genai_errors.ClientError, 400, "Invalid JSON payload"), ErrorCode.INVALID_REQUEST, False),
    (api_error(genai_errors.ClientError, 403, "Permission denied"), ErrorCode.PERMISSION_DENIED, False),
    (api_error(genai_errors.ClientError, 429, "Resource exhausted"), ErrorCode.RATE_LIMIT_EXCEEDED, False),
    (api_error(genai_errors.ServerError, 503, "Overloaded"), ErrorCode.SERVICE_UNAVAILABLE, True),
    (httpx.ConnectError("connection refused"), ErrorCode.NETWORK_ERROR, True),
    (httpx.ReadTimeout("too slow"), ErrorCode.TIMEOUT_ERROR, True),
])
async def test_sdk_errors_are_translated(adapter, client, error, code, retryable):
    client.aio.models.generate_content.side_effect = error
    with pytest.raises(AdapterError) as exc_info:
        await adapter.generate_text("Hi", TextGenerationOptions(model=MODEL), "g-key")
    assert exc_info.value.code is code
    assert exc_info.value.is_retryable is retryable
    assert exc_info.value.original_error is error


@pytest.mark.asyncio
async def test_streaming_yields_text_then_completion(adapter, client):
    client.aio.models.generate_content_stream.return_value = replies(
        reply("Hel", usage=False), reply("lo", "STOP"),
    )

    stream = await adapter.generate_text("Hi", TextGenerationOptions(model=MODEL, stream=True), "g-key")
    chunks = [chunk async for chunk in stream]

    assert [c.content for c in chunks] == ["Hel", "lo", ""]
    final = chunks[-1]
    assert final.is_complete
    assert final.metadata["finish_reason"] == "stop"
    assert final.metadata["usage"]["total_tokens"] == 5
    client.aio.aclose.assert_awaited()


@pytest.mark.asyncio
async def test_stream_failure_raises_translated_error(adapter, client):
    client.aio.models.generate_content_stream.return_value = replies(
        reply("partial", usage=False), fail_with=api_error(genai_errors.ServerError, 500, "internal"),
    )
    stream = await adapter.generate_text("Hi", TextGenerationOptions(model=MODEL, stream=True), "g-key")

    received = []
    with pytest.raises(AdapterError) as exc_info:
        async for chunk in stream:
            received.append(chunk)
    assert exc_info.value.code is ErrorCode.SERVICE_UNAVAILABLE
    assert [c.content for c in received] == ["partial"]


@pytest.mark.asyncio
async def test_validate_api_key(adapter, client):
    assert await adapter.validate_api_key("g-key") is True
    client.aio.models.list.side_effect = api_error(genai_errors.ClientError, 400, "API key not valid")
    assert await adapter.validate_api_key("bad") is False
    assert await adapter.validate_api_key("") is False
