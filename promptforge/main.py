"""Main entry point for the promptforge application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sys
from typing import Annotated, Any, Coroutine, Dict, List, Optional

import typer

from promptforge import __version__
from promptforge.core.command_handler import CommandHandler
from promptforge.core.services.llm_service import LLMService, LLMServiceConfig
from promptforge.core.services.prompt_service import PromptExecutionService
from promptforge.infrastructure.adapters.claude_adapter import ClaudeAdapterFactory
from promptforge.infrastructure.adapters.custom_adapter import CustomModelAdapterFactory
from promptforge.infrastructure.adapters.gemini_adapter import GeminiAdapterFactory
from promptforge.infrastructure.adapters.groq_adapter import GroqAdapterFactory
from promptforge.infrastructure.adapters.ollama_adapter import OllamaAdapterFactory
from promptforge.infrastructure.adapters.openai_adapter import OpenAIAdapterFactory
from promptforge.infrastructure.adapters.registry import AdapterRegistry
from promptforge.infrastructure.cli.display import ConsoleDisplay
from promptforge.infrastructure.config import settings
from promptforge.infrastructure.credentials.env_credentials import EnvCredentialProvider
from promptforge.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, resolve_log_level, setup_logging
from promptforge.infrastructure.persistence.prompt_persistence import PromptPersistenceService
from promptforge.infrastructure.persistence.sqlite_store import SQLiteHistoryStore
from promptforge.infrastructure.resilience.api_retry import ApiRetryService

logger = logging.getLogger(__name__)

# --- Dependency Injection Container (Manual) ---

def create_dependencies(db_path: Optional[str] = None) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.
    """
    dependencies: Dict[str, Any] = {}

    # 1. Configuration and logging
    settings.load_configuration()
    setup_logging(
        log_level=resolve_log_level(settings.get_config('logging.level', 'WARNING')),
        log_format=settings.get_config('logging.format', DEFAULT_LOG_FORMAT),
        log_file=settings.get_config('logging.file'),
    )
    logger.info("Initializing application dependencies...")

    # 2. Infrastructure
    dependencies['ui'] = ConsoleDisplay()
    dependencies['store'] = SQLiteHistoryStore(db_path or settings.get_db_path())
    dependencies['credentials'] = EnvCredentialProvider()
    dependencies['registry'] = AdapterRegistry()
    dependencies['retry_service'] = ApiRetryService(
        max_retries=settings.get_retry_attempts(),
        retry_delay=settings.get_retry_delay(),
    )

    # 3. Orchestrating service and providers (mock is registered by the service itself)
    llm_service = LLMService(
        registry=dependencies['registry'],
        credentials=dependencies['credentials'],
        settings_store=dependencies['store'],
        config=LLMServiceConfig(
            cache_adapters=settings.get_cache_adapters(),
            retry_attempts=settings.get_retry_attempts(),
            retry_delay=settings.get_retry_delay(),
        ),
        retry_service=dependencies['retry_service'],
    )
    llm_service.register_provider("openai", OpenAIAdapterFactory())
    llm_service.register_provider("anthropic", ClaudeAdapterFactory())
    llm_service.register_provider("google", GeminiAdapterFactory())
    llm_service.register_provider("groq", GroqAdapterFactory())
    llm_service.register_provider("ollama", OllamaAdapterFactory(base_url=settings.get_ollama_base_url()))
    if settings.get_custom_models():
        llm_service.register_provider("custom", CustomModelAdapterFactory())
    dependencies['llm_service'] = llm_service

    # 4. Execution layer
    dependencies['persistence'] = PromptPersistenceService(dependencies['store'])
    dependencies['prompt_service'] = PromptExecutionService(
        llm_service=llm_service,
        persistence=dependencies['persistence'],
        debounce_seconds=settings.get_debounce_seconds(),
    )

    # 5. Command handler
    dependencies['command_handler'] = CommandHandler(
        llm_service=llm_service,
        prompt_service=dependencies['prompt_service'],
        ui=dependencies['ui'],
    )
    logger.info("All dependencies initialized successfully.")
    return dependencies


_dependencies: Optional[Dict[str, Any]] = None


def get_dependencies() -> Dict[str, Any]:
    """Builds the dependency graph on first use."""
    global _dependencies
    if _dependencies is None:
        try:
            _dependencies = create_dependencies()
        except Exception as e:
            logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
            print(f"FATAL ERROR during initialization: {e}", file=sys.stderr)
            raise typer.Exit(code=1)
    return _dependencies


def get_handler() -> CommandHandler:
    return get_dependencies()['command_handler']


# --- Typer App Definition ---
app = typer.Typer(
    name="promptforge",
    help="promptforge: send one prompt to many LLM providers and keep the history.",
    add_completion=False,
)


# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, None]) -> None:
    """Runs an async handler from a sync Typer command."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        get_dependencies()['ui'].display_warning("Interrupted.")
        raise typer.Exit(code=130)
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        get_dependencies()['ui'].display_error(f"Command execution failed: {e}")
        raise typer.Exit(code=1)


# --- CLI Commands ---

ProviderOption = Annotated[
    Optional[str],
    typer.Option("--provider", "-p", help="Limit to one provider id (e.g. 'openai', 'ollama')."),
]


@app.command()
def ask(
    prompt: Annotated[str, typer.Argument(help="The prompt to send.")],
    model: Annotated[
        Optional[List[str]],
        typer.Option("--model", "-m", help="Model as '<provider>:<model>'. Repeat for several models."),
    ] = None,
    no_stream: Annotated[bool, typer.Option("--no-stream", help="Wait for complete responses.")] = False,
    continue_entry: Annotated[
        Optional[str], typer.Option("--continue", "-c", help="Continue the conversation of a history entry."),
    ] = None,
):
    """Send a prompt to one or more models concurrently."""
    run_async(get_handler().handle_ask(prompt, model or None, stream=not no_stream, continue_entry=continue_entry))


@app.command()
def history(
    limit: Annotated[Optional[int], typer.Option("--limit", "-n", help="Number of entries to show.")] = None,
    provider: ProviderOption = None,
):
    """List recent prompts."""
    run_async(get_handler().handle_history(limit=limit, provider=provider))


@app.command()
def show(entry_id: Annotated[str, typer.Argument(help="Entry id from 'history'.")]):
    """Show a prompt entry with all of its responses."""
    run_async(get_handler().handle_show(entry_id))


@app.command()
def delete(entry_id: Annotated[str, typer.Argument(help="Entry id from 'history'.")]):
    """Delete a prompt entry and its responses."""
    run_async(get_handler().handle_delete(entry_id))


@app.command()
def models(
    provider: ProviderOption = None,
    refresh: Annotated[bool, typer.Option("--refresh", help="Query live catalogs (e.g. Ollama) first.")] = False,
):
    """List available models."""
    run_async(get_handler().handle_list_models(provider, refresh=refresh))


@app.command()
def providers():
    """List registered providers."""
    run_async(get_handler().handle_list_providers())


@app.command()
def health(provider: ProviderOption = None):
    """Check provider reachability and API keys."""
    run_async(get_handler().handle_health(provider))


@app.command()
def configure(
    provider: Annotated[str, typer.Argument(help="Provider id.")],
    settings_pairs: Annotated[
        Optional[List[str]],
        typer.Argument(help="Settings as key=value, e.g. text_generation.temperature=0.2", show_default=False),
    ] = None,
    show_config: Annotated[bool, typer.Option("--show", help="Print the resulting configuration.")] = False,
):
    """Save or show the configuration of a provider."""
    run_async(get_handler().handle_configure_provider(provider, settings_pairs or [], show=show_config))


@app.command()
def cleanup(days: Annotated[int, typer.Option("--days", help="Remove prompts older than this.")] = 30):
    """Remove old prompts from history."""
    run_async(get_handler().handle_cleanup(days))


@app.command()
def stats():
    """Show history statistics."""
    run_async(get_handler().handle_stats())


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"promptforge {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit."),
    ] = None,
):
    """promptforge: multi-provider prompt runner."""


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
