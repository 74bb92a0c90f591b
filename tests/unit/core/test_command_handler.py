import pytest
from unittest.mock import MagicMock

from promptforge.core.command_handler import CommandHandler, parse_config_pairs
from promptforge.core.services.prompt_service import PromptExecutionService
from promptforge.domain.interfaces.user_interface import UserInterface
from promptforge.domain.models.prompt import ResponseStatus, SubmissionOutcome
from promptforge.infrastructure.adapters.openai_adapter import OpenAIAdapter
from promptforge.infrastructure.config import settings
from promptforge.infrastructure.persistence.prompt_persistence import PromptPersistenceService


@pytest.fixture
def mock_ui():
    return MagicMock(spec=UserInterface)


@pytest.fixture
def llm_service(make_llm_service, fast_mock_adapter, store):
    return make_llm_service(
        {"mock": fast_mock_adapter, "openai": OpenAIAdapter()},
        keys={"mock": "mock-api-key"},
        settings_store=store,
    )


@pytest.fixture
def prompt_service(llm_service, store):
    return PromptExecutionService(llm_service, PromptPersistenceService(store), debounce_seconds=0.01)


@pytest.fixture
def command_handler(llm_service, prompt_service, mock_ui):
    """Fixture to create CommandHandler over real services and a mocked UI."""
    return CommandHandler(llm_service=llm_service, prompt_service=prompt_service, ui=mock_ui)


def test_parse_config_pairs():
    config = parse_config_pairs([
        "text_generation.temperature=0.2",
        "text_generation.system_prompt=Answer in French",
        "advanced.timeout=30",
        "enabled=true",
    ])
    assert config == {
        "text_generation": {"temperature": 0.2, "system_prompt": "Answer in French"},
        "advanced": {"timeout": 30},
        "enabled": True,
    }


@pytest.mark.parametrize("pairs", [["no-equals-sign"], ["=value"], ["a=1", "a.b=2"]])
def test_parse_config_pairs_rejects_malformed_input(pairs):
    with pytest.raises(ValueError):
        parse_config_pairs(pairs)


@pytest.mark.asyncio
async def test_handle_ask_displays_entry_and_summary(command_handler, mock_ui):
    await command_handler.handle_ask("What is DNS?", ["mock:mock-text-basic", "mock:mock-text-advanced"])

    mock_ui.display_error.assert_not_called()
    entry = mock_ui.display_entry.call_args.args[0]
    assert entry.prompt == "What is DNS?"
    assert [r.status for r in entry.responses] == [ResponseStatus.SUCCESS, ResponseStatus.SUCCESS]
    summary = mock_ui.display_summary.call_args.args[0]
    assert summary.outcome is SubmissionOutcome.ALL_SUCCEEDED


@pytest.mark.asyncio
async def test_handle_ask_reports_partial_failure(command_handler, mock_ui):
    await command_handler.handle_ask("Hi", ["mock:mock-text-basic", "openai:gpt-4o"], stream=False)

    summary = mock_ui.display_summary.call_args.args[0]
    assert summary.outcome is SubmissionOutcome.PARTIAL
    failed = mock_ui.display_entry.call_args.args[0].responses[1]
    assert failed.error_code == "MISSING_API_KEY"


@pytest.mark.asyncio
async def test_handle_ask_uses_default_models(command_handler, mock_ui):
    settings.set_config_for_testing({"defaults.models": "mock:mock-text-basic"})
    await command_handler.handle_ask("Hi")

    entry = mock_ui.display_entry.call_args.args[0]
    assert [r.model_key for r in entry.responses] == ["mock:mock-text-basic"]


@pytest.mark.asyncio
async def test_handle_ask_rejects_bad_model_key(command_handler, mock_ui):
    await command_handler.handle_ask("Hi", ["gpt-4o"])

    mock_ui.display_error.assert_called_once()
    assert "<provider>:<model>" in mock_ui.display_error.call_args.args[0]
    mock_ui.display_summary.assert_not_called()


@pytest.mark.asyncio
async def test_handle_ask_continue_unknown_entry(command_handler, mock_ui):
    await command_handler.handle_ask("Hi", ["mock:mock-text-basic"], continue_entry="999")

    assert "Prompt entry not found: 999" in mock_ui.display_error.call_args.args[0]


@pytest.mark.asyncio
async def test_handle_ask_continues_a_stored_entry(command_handler, prompt_service, mock_ui):
    await command_handler.handle_ask("First", ["mock:mock-text-basic"], stream=False)
    first_id = str(prompt_service.prompt_id_map[mock_ui.display_entry.call_args.args[0].id])
    mock_ui.display_info.assert_called_with(f"Saved as entry {first_id}. Continue it with --continue {first_id}.")
    prompt_service.clear_history()

    await command_handler.handle_ask("Second", ["mock:mock-text-basic"], stream=False, continue_entry=first_id)

    entry = mock_ui.display_entry.call_args.args[0]
    assert entry.id == first_id
    assert len(entry.responses) == 2


@pytest.mark.asyncio
async def test_handle_history_show_and_delete(command_handler, mock_ui):
    await command_handler.handle_ask("Remember me", ["mock:mock-text-basic"], stream=False)

    await command_handler.handle_history(limit=10)
    (entry,) = mock_ui.display_history.call_args.args[0]
    assert entry.prompt == "Remember me"

    mock_ui.display_entry.reset_mock()
    await command_handler.handle_show(entry.id)
    assert mock_ui.display_entry.call_args.args[0].id == entry.id

    await command_handler.handle_delete(entry.id)
    mock_ui.display_info.assert_called_with(f"Deleted prompt entry {entry.id}.")
    await command_handler.handle_history()
    assert mock_ui.display_history.call_args.args[0] == []


@pytest.mark.asyncio
async def test_handle_show_and_delete_unknown(command_handler, mock_ui):
    await command_handler.handle_show("42")
    mock_ui.display_error.assert_called_with("Prompt entry not found: 42")

    await command_handler.handle_delete("42")
    mock_ui.display_error.assert_called_with("Prompt entry not found: 42")


@pytest.mark.asyncio
async def test_handle_history_filters_by_provider(command_handler, mock_ui):
    await command_handler.handle_ask("Hi", ["mock:mock-text-basic"], stream=False)

    await command_handler.handle_history(provider="openai")
    assert mock_ui.display_history.call_args.args[0] == []


@pytest.mark.asyncio
async def test_handle_list_models(command_handler, mock_ui):
    await command_handler.handle_list_models(provider="mock")

    models = mock_ui.display_models.call_args.args[0]
    assert models
    assert {m.provider_id for m in models} == {"mock"}


@pytest.mark.asyncio
async def test_handle_list_providers(command_handler, mock_ui):
    await command_handler.handle_list_providers()
    assert [p.id for p in mock_ui.display_providers.call_args.args[0]] == ["mock", "openai"]


@pytest.mark.asyncio
async def test_handle_health_single_provider(command_handler, mock_ui):
    await command_handler.handle_health("mock")

    statuses = mock_ui.display_health.call_args.args[0]
    assert list(statuses) == ["mock"]
    assert statuses["mock"].healthy


@pytest.mark.asyncio
async def test_handle_configure_provider_merges_and_shows(command_handler, llm_service, mock_ui):
    await command_handler.handle_configure_provider("openai", ["text_generation.temperature=0.2"])
    await command_handler.handle_configure_provider("openai", ["text_generation.top_p=0.5"], show=True)

    config = await llm_service.get_provider_config("openai")
    assert config["text_generation"]["temperature"] == 0.2
    assert config["text_generation"]["top_p"] == 0.5
    assert "temperature: 0.2" in mock_ui.display_output.call_args.args[0]


@pytest.mark.asyncio
async def test_handle_configure_provider_rejects_invalid_values(command_handler, mock_ui):
    await command_handler.handle_configure_provider("openai", ["text_generation.temperature=hot"])

    assert "Invalid configuration for openai" in mock_ui.display_error.call_args.args[0]


@pytest.mark.asyncio
async def test_handle_configure_unknown_provider(command_handler, mock_ui):
    await command_handler.handle_configure_provider("ghost", ["a=1"])
    assert "ghost" in mock_ui.display_error.call_args.args[0]


@pytest.mark.asyncio
async def test_handle_cleanup_and_stats(command_handler, mock_ui):
    await command_handler.handle_ask("Hi", ["mock:mock-text-basic"], stream=False)

    await command_handler.handle_stats()
    stats = mock_ui.display_stats.call_args.args[0]
    assert stats.total_prompts == 1
    assert stats.responses_by_provider == {"mock": 1}

    await command_handler.handle_cleanup(30)
    mock_ui.display_info.assert_called_with("Removed 0 prompt(s) older than 30 days.")

    await command_handler.handle_cleanup(-1)
    assert "Cleanup failed" in mock_ui.display_error.call_args.args[0]
