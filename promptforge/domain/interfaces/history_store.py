"""Interfaces for the durable history store and the settings store.

The store is treated as an opaque indexed record store: it assigns durable
ids, supports filtered queries and deletes an entry together with its
responses in a single transaction.
"""

import abc
from typing import Any, List, Mapping, Optional

from ..models.common import DurableId
from ..models.prompt import HistoryQuery, HistoryStats, PromptRecord, ResponseRecord


class HistoryStore(abc.ABC):
    """Abstract Base Class for prompt/response record storage."""

    @abc.abstractmethod
    async def create_prompt(self, record: PromptRecord) -> DurableId:
        pass

    @abc.abstractmethod
    async def update_prompt_status(self, prompt_id: DurableId, status: str) -> None:
        pass

    @abc.abstractmethod
    async def get_prompt(self, prompt_id: DurableId) -> Optional[PromptRecord]:
        pass

    @abc.abstractmethod
    async def get_prompts(self, query: HistoryQuery) -> List[PromptRecord]:
        pass

    @abc.abstractmethod
    async def delete_prompt(self, prompt_id: DurableId) -> None:
        """Deletes a prompt and all of its responses atomically."""
        pass

    @abc.abstractmethod
    async def create_response(self, record: ResponseRecord) -> DurableId:
        pass

    @abc.abstractmethod
    async def update_response(self, response_id: DurableId, updates: Mapping[str, Any]) -> None:
        """Updates selected response fields (content, status, error, ...)."""
        pass

    @abc.abstractmethod
    async def get_responses_for_prompt(self, prompt_id: DurableId) -> List[ResponseRecord]:
        pass

    @abc.abstractmethod
    async def clear_old_data(self, days: int) -> int:
        """Removes prompts older than `days` days. Returns the number removed."""
        pass

    @abc.abstractmethod
    async def get_stats(self) -> HistoryStats:
        pass


class SettingsStore(abc.ABC):
    """Key/value store for user settings such as saved provider configuration."""

    @abc.abstractmethod
    async def get_setting(self, key: str, default: Any = None) -> Any:
        pass

    @abc.abstractmethod
    async def set_setting(self, key: str, value: Any) -> None:
        pass

    @abc.abstractmethod
    async def delete_setting(self, key: str) -> None:
        pass
