"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the
work to the LLMService and the PromptExecutionService, reporting results
and failures through the injected UserInterface.
"""

import logging
from typing import List, Optional, Sequence

import yaml

from promptforge.core.services.llm_service import LLMService, deep_merge
from promptforge.core.services.prompt_service import PromptExecutionService
from promptforge.domain.errors import AdapterError, EntryNotFoundError, PersistenceError
from promptforge.domain.interfaces.user_interface import UserInterface
from promptforge.domain.models.common import parse_model_key
from promptforge.domain.models.prompt import HistoryQuery
from promptforge.infrastructure.config import settings

logger = logging.getLogger(__name__)


def parse_config_pairs(pairs: Sequence[str]) -> dict:
    """Turns ['text_generation.temperature=0.2', ...] into a nested dict.

    Values are parsed as YAML scalars, so numbers and booleans keep their type.
    """
    config: dict = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Expected key=value, got '{pair}'")
        node = config
        parts = key.strip().split(".")
        for part in parts[:-1]:
            node = node.setdefault(part, {})
            if not isinstance(node, dict):
                raise ValueError(f"'{part}' is both a value and a section")
        node[parts[-1]] = yaml.safe_load(raw) if raw.strip() else None
    return config


class CommandHandler:
    """Handles incoming commands and delegates to the application services."""

    def __init__(self, llm_service: LLMService, prompt_service: PromptExecutionService, ui: UserInterface):
        self.llm_service = llm_service
        self.prompt_service = prompt_service
        self.ui = ui

    async def handle_ask(
        self,
        prompt: str,
        model_keys: Optional[List[str]] = None,
        stream: bool = True,
        continue_entry: Optional[str] = None,
    ) -> None:
        """Sends a prompt to one or more '<provider>:<model>' keys and shows the results."""
        keys = model_keys or settings.get_default_models()
        logger.info(f"Handling 'ask' command for models: {', '.join(keys)}")
        try:
            pairs = [parse_model_key(key) for key in keys]
        except ValueError as e:
            self.ui.display_error(str(e))
            return

        try:
            if continue_entry is not None:
                # The entry to continue must be in memory
                await self.prompt_service.load_history_from_db(HistoryQuery(limit=None))
            summary = await self.prompt_service.submit_prompt(
                prompt,
                providers=[provider for provider, _ in pairs],
                models=[model for _, model in pairs],
                streaming=stream,
                continuation_of=continue_entry,
            )
        except EntryNotFoundError as e:
            self.ui.display_error(f"{e}. Use 'history' to list entry ids.")
            return
        except Exception as e:
            logger.error(f"Ask command failed: {e}", exc_info=True)
            self.ui.display_error(f"Ask failed: {e}")
            return
        finally:
            await self.prompt_service.close()

        entry = self.prompt_service.get_entry_by_id(summary.entry_id)
        if entry is not None:
            self.ui.display_entry(entry)
        self.ui.display_summary(summary)
        durable_id = self.prompt_service.prompt_id_map.get(summary.entry_id)
        if durable_id is not None:
            self.ui.display_info(f"Saved as entry {durable_id}. Continue it with --continue {durable_id}.")

    async def handle_history(self, limit: Optional[int] = None, provider: Optional[str] = None) -> None:
        query = HistoryQuery(
            limit=limit or settings.get_history_page_size(),
            providers=(provider,) if provider else None,
        )
        try:
            entries = await self.prompt_service.load_history_from_db(query)
        except PersistenceError as e:
            logger.error(f"Failed to load history: {e}")
            self.ui.display_error(f"Could not load history: {e}")
            return
        self.ui.display_history(entries)

    async def handle_show(self, entry_id: str) -> None:
        try:
            await self.prompt_service.load_history_from_db(HistoryQuery(limit=None))
        except PersistenceError as e:
            self.ui.display_error(f"Could not load history: {e}")
            return
        entry = self.prompt_service.get_entry_by_id(entry_id)
        if entry is None:
            self.ui.display_error(f"Prompt entry not found: {entry_id}")
            return
        self.ui.display_entry(entry)

    async def handle_delete(self, entry_id: str) -> None:
        logger.info(f"Handling 'delete' command for entry {entry_id}")
        try:
            await self.prompt_service.load_history_from_db(HistoryQuery(limit=None))
            await self.prompt_service.delete_entry(entry_id)
        except EntryNotFoundError as e:
            self.ui.display_error(str(e))
            return
        except PersistenceError as e:
            logger.error(f"Failed to delete entry {entry_id}: {e}")
            self.ui.display_error(f"Could not delete entry {entry_id}: {e}")
            return
        self.ui.display_info(f"Deleted prompt entry {entry_id}.")

    async def handle_list_models(self, provider: Optional[str] = None, refresh: bool = False) -> None:
        logger.info(f"Handling 'models' command for provider: {provider or 'all'}")
        try:
            models = await self.llm_service.refresh_all_models() if refresh else self.llm_service.get_all_models()
        except Exception as e:
            logger.error(f"Failed to list models: {e}", exc_info=True)
            self.ui.display_error(f"Failed to list models: {e}")
            return
        if provider:
            models = [m for m in models if m.provider_id == provider]
        self.ui.display_models(models)

    async def handle_list_providers(self) -> None:
        self.ui.display_providers(self.llm_service.get_providers())

    async def handle_health(self, provider: Optional[str] = None) -> None:
        logger.info(f"Handling 'health' command for provider: {provider or 'all'}")
        if provider:
            statuses = {provider: await self.llm_service.check_provider_health(provider)}
        else:
            statuses = await self.llm_service.check_all_providers_health()
        self.ui.display_health(statuses)

    async def handle_configure_provider(self, provider: str, pairs: Sequence[str], show: bool = False) -> None:
        """Saves 'key=value' settings for a provider, or shows the current ones."""
        try:
            if pairs:
                config = parse_config_pairs(pairs)
                current = await self.llm_service.get_provider_config(provider)
                await self.llm_service.save_provider_config(provider, deep_merge(current, config))
                self.ui.display_info(f"Saved configuration for {provider}.")
            if show or not pairs:
                config = await self.llm_service.get_provider_config(provider)
                self.ui.display_output(
                    f"```yaml\n{yaml.safe_dump(config, sort_keys=False) if config else '{}'}\n```",
                    title=f"{provider} configuration",
                )
        except (AdapterError, ValueError) as e:
            logger.warning(f"Configure command for {provider} failed: {e}")
            self.ui.display_error(f"Invalid configuration for {provider}: {e}")
        except Exception as e:
            logger.error(f"Configure command for {provider} failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to configure {provider}: {e}")

    async def handle_cleanup(self, days: int) -> None:
        try:
            removed = await self.prompt_service.persistence.cleanup_old_data(days)
        except Exception as e:
            logger.error(f"Cleanup failed: {e}", exc_info=True)
            self.ui.display_error(f"Cleanup failed: {e}")
            return
        self.ui.display_info(f"Removed {removed} prompt(s) older than {days} days.")

    async def handle_stats(self) -> None:
        try:
            stats = await self.prompt_service.persistence.get_stats()
        except Exception as e:
            logger.error(f"Failed to read stats: {e}", exc_info=True)
            self.ui.display_error(f"Failed to read statistics: {e}")
            return
        self.ui.display_stats(stats)
