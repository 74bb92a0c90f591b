import pytest

from promptforge.core.services.llm_service import LLMService, deep_merge
from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.models.ai import Capability, ImageGenerationOptions, TextGenerationOptions
from promptforge.domain.models.common import provider_setting_key
from promptforge.infrastructure.adapters.mock_adapter import MockAdapter, MockBehavior
from promptforge.infrastructure.adapters.openai_adapter import OpenAIAdapter
from promptforge.infrastructure.adapters.registry import AdapterRegistry
from promptforge.infrastructure.credentials.env_credentials import EnvCredentialProvider
from conftest import GOOD_KEY, StaticFactory


class BrokenFactory(StaticFactory):
    def create_adapter(self):
        raise RuntimeError("SDK not importable")


def server_error():
    return AdapterError("upstream down", ErrorCode.SERVICE_UNAVAILABLE, 503)


def test_deep_merge_does_not_mutate_inputs():
    base = {"text_generation": {"temperature": 0.7, "top_p": 1.0}, "advanced": {"timeout": 60}}
    override = {"text_generation": {"temperature": 0.2}}

    merged = deep_merge(base, override)

    assert merged == {"text_generation": {"temperature": 0.2, "top_p": 1.0}, "advanced": {"timeout": 60}}
    assert base["text_generation"]["temperature"] == 0.7


def test_mock_provider_is_registered_by_default():
    service = LLMService(AdapterRegistry(), EnvCredentialProvider())
    assert [p.id for p in service.get_providers()] == ["mock"]
    assert isinstance(service.get_adapter("mock"), MockAdapter)


def test_adapter_instances_are_cached(make_llm_service, make_adapter):
    factory = StaticFactory(make_adapter())
    service = make_llm_service({})
    service.register_provider("fake", factory)

    service.get_adapter("fake")
    service.get_adapter("fake")
    assert factory.created == 1

    service.clear_cache()
    service.get_adapter("fake")
    assert factory.created == 2

    service.update_config(cache_adapters=False)
    service.get_adapter("fake")
    service.get_adapter("fake")
    assert factory.created == 4


def test_get_adapter_errors(make_llm_service, make_adapter):
    service = make_llm_service({"fake": make_adapter()})
    service.register_provider("broken", BrokenFactory(make_adapter("broken")))

    with pytest.raises(AdapterError) as not_found:
        service.get_adapter("nope")
    assert not_found.value.code is ErrorCode.PROVIDER_NOT_FOUND

    service.set_provider_enabled("fake", False)
    with pytest.raises(AdapterError) as disabled:
        service.get_adapter("fake")
    assert disabled.value.code is ErrorCode.PROVIDER_DISABLED

    with pytest.raises(AdapterError) as creation:
        service.get_adapter("broken")
    assert creation.value.code is ErrorCode.ADAPTER_CREATION_ERROR
    broken = next(p for p in service.get_providers() if p.id == "broken")
    assert "SDK not importable" in broken.last_error


def test_unregister_provider(make_llm_service, make_adapter):
    service = make_llm_service({"fake": make_adapter()})
    assert service.unregister_provider("fake") is True
    assert service.unregister_provider("fake") is False
    assert not service.registry.has_provider("fake")


@pytest.mark.asyncio
async def test_factories_registered_on_the_registry_later_are_used(make_llm_service, make_adapter):
    service = make_llm_service({})
    service.registry.register("late", StaticFactory(make_adapter("late", script=["from the registry"])))

    result = await service.generate_text("late", "Hi", TextGenerationOptions(model="fake-model"), GOOD_KEY)

    assert result.success
    assert result.data.content == "from the registry"
    assert [p.id for p in service.get_providers()] == ["late"]
    assert [m.provider_id for m in service.get_all_models()] == ["late"]


def test_replacing_a_factory_on_the_registry_drops_the_cached_adapter(make_llm_service, make_adapter):
    first = make_adapter()
    service = make_llm_service({"fake": first})
    assert service.get_adapter("fake") is first

    second = make_adapter()
    service.registry.register("fake", StaticFactory(second))

    assert service.get_adapter("fake") is second
    service.registry.unregister("fake")
    with pytest.raises(AdapterError) as exc_info:
        service.get_adapter("fake")
    assert exc_info.value.code is ErrorCode.PROVIDER_NOT_FOUND
    assert service.get_providers() == []


def test_get_all_models_skips_disabled_and_broken(make_llm_service, make_adapter):
    service = make_llm_service({"fake": make_adapter(), "other": make_adapter("other")})
    service.register_provider("broken", BrokenFactory(make_adapter("broken")))
    service.set_provider_enabled("other", False)

    models = service.get_all_models()

    assert [(m.provider_id, m.model.id) for m in models] == [("fake", "fake-model")]


@pytest.mark.asyncio
async def test_refresh_all_models_survives_failures(make_llm_service, make_adapter, mocker):
    adapter = make_adapter()
    mocker.patch.object(adapter, "refresh_models", side_effect=ConnectionError("offline"))
    service = make_llm_service({"fake": adapter})

    models = await service.refresh_all_models()
    assert [m.model.id for m in models] == ["fake-model"]


@pytest.mark.asyncio
async def test_generate_text_success(make_llm_service, make_adapter):
    adapter = make_adapter(script=["hello"])
    service = make_llm_service({"fake": adapter})

    result = await service.generate_text("fake", "Hi", TextGenerationOptions(model="fake-model"), GOOD_KEY)

    assert result.success
    assert result.data.content == "hello"
    assert result.provider_id == "fake"
    assert result.model_id == "fake-model"
    assert result.duration_ms >= 0


@pytest.mark.asyncio
async def test_transient_failures_are_retried(make_llm_service, make_adapter):
    adapter = make_adapter(script=[server_error(), server_error(), "third time lucky"])
    service = make_llm_service({"fake": adapter}, retry_attempts=2)

    result = await service.generate_text("fake", "Hi", TextGenerationOptions(model="fake-model"), GOOD_KEY)

    assert result.success
    assert adapter.calls == 3


@pytest.mark.asyncio
async def test_exhausted_retries_report_last_error(make_llm_service, make_adapter):
    adapter = make_adapter(script=[server_error() for _ in range(5)])
    service = make_llm_service({"fake": adapter}, retry_attempts=2)

    result = await service.generate_text("fake", "Hi", TextGenerationOptions(model="fake-model"), GOOD_KEY)

    assert not result.success
    assert adapter.calls == 3
    assert result.error.code is ErrorCode.SERVICE_UNAVAILABLE
    status = next(p for p in service.get_providers() if p.id == "fake")
    assert status.last_error == "upstream down"


@pytest.mark.asyncio
async def test_client_errors_fail_after_one_attempt(make_llm_service, make_adapter):
    adapter = make_adapter(script=[AdapterError("Invalid API key provided", ErrorCode.INVALID_API_KEY, 401)])
    service = make_llm_service({"fake": adapter}, retry_attempts=3)

    result = await service.generate_text("fake", "Hi", TextGenerationOptions(model="fake-model"), "bad")

    assert not result.success
    assert adapter.calls == 1
    assert result.error.code is ErrorCode.INVALID_API_KEY


@pytest.mark.asyncio
async def test_unexpected_exceptions_become_adapter_errors(make_llm_service, make_adapter):
    service = make_llm_service({"fake": make_adapter(script=[ValueError("weird")])})
    result = await service.generate_text("fake", "Hi", TextGenerationOptions(model="fake-model"), GOOD_KEY)

    assert not result.success
    assert result.error.code is ErrorCode.UNEXPECTED_ERROR
    assert isinstance(result.error.original_error, ValueError)


@pytest.mark.asyncio
async def test_unknown_provider_is_a_failed_result(make_llm_service):
    service = make_llm_service({})
    result = await service.generate_text("ghost", "Hi", TextGenerationOptions(model="m"), "k")
    assert not result.success
    assert result.error.code is ErrorCode.PROVIDER_NOT_FOUND


@pytest.mark.asyncio
async def test_stored_key_is_passed_to_adapter(make_llm_service, make_adapter):
    adapter = make_adapter()
    service = make_llm_service({"fake": adapter}, keys={"fake": "stored-key"})

    result = await service.generate_text_with_stored_key("fake", "Hi", TextGenerationOptions(model="fake-model"))

    assert result.success
    assert adapter.received_keys == ["stored-key"]


@pytest.mark.asyncio
async def test_missing_stored_key_fails_without_calling_adapter(make_llm_service, make_adapter):
    adapter = make_adapter()
    service = make_llm_service({"fake": adapter}, keys={})

    result = await service.generate_text_with_stored_key("fake", "Hi", TextGenerationOptions(model="fake-model"))

    assert not result.success
    assert result.error.code is ErrorCode.MISSING_API_KEY
    assert "FAKE_API_KEY" in result.error.message
    assert adapter.calls == 0


@pytest.mark.asyncio
async def test_keyless_adapter_gets_empty_key(make_llm_service, make_adapter):
    adapter = make_adapter(requires_api_key=False)
    service = make_llm_service({"fake": adapter}, keys={})

    result = await service.generate_text_with_stored_key("fake", "Hi", TextGenerationOptions(model="fake-model"))

    assert result.success
    assert adapter.received_keys == [""]


@pytest.mark.asyncio
async def test_saved_config_fills_only_unset_options(make_llm_service, store):
    adapter = OpenAIAdapter()
    service = make_llm_service({"openai": adapter}, settings_store=store)
    await store.set_setting(provider_setting_key("openai"), {
        "text_generation": {"temperature": 0.1, "max_tokens": 256, "system_prompt": "Be terse."},
    })

    merged = await service.merge_saved_config("openai", adapter, TextGenerationOptions(model="gpt-4o", temperature=0.9))

    assert merged.temperature == 0.9
    assert merged.max_tokens == 256
    assert merged.system_prompt == "Be terse."
    assert merged.top_p == 1.0
    assert merged.extra == {"frequency_penalty": 0.0, "presence_penalty": 0.0}


@pytest.mark.asyncio
async def test_saved_image_config_is_merged(make_llm_service, store):
    adapter = OpenAIAdapter()
    service = make_llm_service({"openai": adapter}, settings_store=store)
    await store.set_setting(provider_setting_key("openai"), {"image_generation": {"quality": "hd"}})

    merged = await service.merge_saved_config("openai", adapter, ImageGenerationOptions(model="dall-e-3"))

    assert merged.quality == "hd"
    assert merged.size == "1024x1024"


@pytest.mark.asyncio
async def test_options_pass_through_without_saved_config(make_llm_service, make_adapter, store):
    adapter = make_adapter()
    service = make_llm_service({"fake": adapter}, settings_store=store)
    options = TextGenerationOptions(model="fake-model")

    assert await service.merge_saved_config("fake", adapter, options) is options


@pytest.mark.asyncio
async def test_invalid_saved_config_is_ignored(make_llm_service, store):
    adapter = OpenAIAdapter()
    service = make_llm_service({"openai": adapter}, settings_store=store)
    await store.set_setting(provider_setting_key("openai"), {"text_generation": {"temperature": 9}})
    options = TextGenerationOptions(model="gpt-4o")

    assert await service.merge_saved_config("openai", adapter, options) is options


@pytest.mark.asyncio
async def test_save_and_read_provider_config(make_llm_service, store):
    service = make_llm_service({"openai": OpenAIAdapter()}, settings_store=store)

    await service.save_provider_config("openai", {"text_generation": {"temperature": 0.3}})
    config = await service.get_provider_config("openai")

    assert config["text_generation"]["temperature"] == 0.3
    assert config["image_generation"]["style"] == "vivid"


@pytest.mark.asyncio
async def test_save_provider_config_validates(make_llm_service, store):
    from pydantic import ValidationError

    service = make_llm_service({"openai": OpenAIAdapter()}, settings_store=store)
    with pytest.raises(ValidationError):
        await service.save_provider_config("openai", {"text_generation": {"temperature": "hot"}})
    assert await store.get_setting(provider_setting_key("openai")) is None


@pytest.mark.asyncio
async def test_generate_image_through_mock(make_llm_service):
    service = make_llm_service({"mock": MockAdapter(MockBehavior(simulate_delay=False))})
    result = await service.generate_image(
        "mock", "a lighthouse", ImageGenerationOptions(model="mock-image-basic", num_images=2), "mock-api-key",
    )
    assert result.success
    assert len(result.data) == 2


@pytest.mark.asyncio
async def test_image_request_for_text_provider_is_unsupported(make_llm_service, make_adapter):
    service = make_llm_service({"fake": make_adapter()}, retry_attempts=2)
    result = await service.generate_image("fake", "a cat", ImageGenerationOptions(model="fake-model"), GOOD_KEY)
    assert not result.success
    assert result.error.code is ErrorCode.UNSUPPORTED_OPERATION


def test_capability_queries_never_raise(make_llm_service, make_adapter):
    service = make_llm_service({"fake": make_adapter()})

    assert service.supports_capability("fake", "fake-model", Capability.TEXT_GENERATION)
    assert not service.supports_capability("fake", "fake-model", Capability.IMAGE_GENERATION)
    assert not service.supports_capability("ghost", "fake-model", Capability.TEXT_GENERATION)
    assert service.get_context_length("fake", "fake-model") == 1000
    assert service.get_context_length("ghost", "x") is None
    assert service.get_pricing("fake", "fake-model").output_cost_per_1k == 1.0
    assert service.get_pricing("fake", "nope") is None
    assert service.find_model("fake", "fake-model").name == "Fake Model"
    assert service.find_model("ghost", "fake-model") is None


@pytest.mark.asyncio
async def test_validate_api_key(make_llm_service, make_adapter):
    service = make_llm_service({"fake": make_adapter()})
    assert await service.validate_api_key("fake", GOOD_KEY) is True
    assert await service.validate_api_key("fake", "nope") is False
    assert await service.validate_api_key("ghost", GOOD_KEY) is False


@pytest.mark.asyncio
async def test_health_checks(make_llm_service, make_adapter):
    service = make_llm_service(
        {"good": make_adapter("good"), "badkey": make_adapter("badkey"), "nokey": make_adapter("nokey")},
        keys={"good": GOOD_KEY, "badkey": "wrong"},
    )

    report = await service.check_all_providers_health()

    assert report["good"].healthy
    assert not report["badkey"].healthy
    assert report["badkey"].message == "API key validation failed"
    assert not report["nokey"].healthy
    assert "NOKEY_API_KEY" in report["nokey"].message


@pytest.mark.asyncio
async def test_health_of_unknown_provider(make_llm_service):
    status = await make_llm_service({}).check_provider_health("ghost")
    assert not status.healthy
    assert "not found" in status.message


def test_update_config_propagates_to_retry_service(make_llm_service):
    service = make_llm_service({})
    config = service.update_config(retry_attempts=5, retry_delay=0.5)

    assert service.get_config() is config
    assert service.retry_service.max_retries == 5
    assert service.retry_service.retry_delay == 0.5
