"""Maps in-memory prompt entities to durable records and back.

Writes made during a submission are best effort: failures are logged and
reported through the return value so the user-visible flow can continue.
Reads, deletes and maintenance raise PersistenceError.
"""

import logging
from datetime import datetime
from typing import List, Optional

from promptforge.domain.errors import PersistenceError
from promptforge.domain.interfaces.history_store import HistoryStore
from promptforge.domain.models.common import DurableId, EntryId, ResponseId
from promptforge.domain.models.prompt import (
    EntryStatus, HistoryQuery, HistoryStats, PromptEntry, PromptRecord, PromptResponse,
    ResponseRecord, ResponseStatus,
)

logger = logging.getLogger(__name__)


class PromptPersistenceService:

    def __init__(self, store: HistoryStore, enabled: bool = True):
        self.store = store
        self.enabled = enabled

    def set_enabled(self, enabled: bool) -> None:
        """Turns durable writes on or off (e.g. for private sessions)."""
        self.enabled = enabled
        logger.info(f"Prompt persistence {'enabled' if enabled else 'disabled'}")

    # --- writes (best effort) ---

    async def save_prompt(self, entry: PromptEntry) -> Optional[DurableId]:
        if not self.enabled:
            return None
        record = PromptRecord(
            prompt=entry.prompt,
            providers=list(entry.providers),
            models=list(entry.models),
            status=entry.status.value,
            created_at=entry.timestamp,
        )
        try:
            durable_id = await self.store.create_prompt(record)
            logger.debug(f"Saved prompt entry {entry.id} as #{durable_id}")
            return durable_id
        except Exception as e:
            logger.error(f"Failed to save prompt entry {entry.id}: {e}")
            return None

    async def update_prompt_status(self, prompt_id: DurableId, status: EntryStatus) -> bool:
        if not self.enabled:
            return False
        try:
            await self.store.update_prompt_status(prompt_id, status.value)
            return True
        except Exception as e:
            logger.error(f"Failed to update status of prompt #{prompt_id}: {e}")
            return False

    async def save_response(self, prompt_id: DurableId, response: PromptResponse) -> Optional[DurableId]:
        if not self.enabled:
            return None
        record = ResponseRecord(
            prompt_id=prompt_id,
            provider_id=response.provider_id,
            model_id=response.model_id,
            content=response.content,
            status=response.status.value,
            created_at=response.timestamp,
            duration_ms=response.duration_ms,
            error=response.error,
            error_code=response.error_code,
            prompt=response.prompt,
        )
        try:
            return await self.store.create_response(record)
        except Exception as e:
            logger.error(f"Failed to save response {response.id}: {e}")
            return None

    async def update_response(self, response_id: DurableId, response: PromptResponse) -> bool:
        """Writes the current content and status of a response."""
        if not self.enabled:
            return False
        try:
            await self.store.update_response(response_id, {
                "content": response.content,
                "status": response.status.value,
                "duration_ms": response.duration_ms,
                "error": response.error,
                "error_code": response.error_code,
            })
            return True
        except Exception as e:
            logger.error(f"Failed to update response #{response_id}: {e}")
            return False

    # --- reads / deletes ---

    async def load_prompt_history(self, query: Optional[HistoryQuery] = None) -> List[PromptEntry]:
        """Loads entries with their responses. Entity ids are the durable ids as strings."""
        try:
            records = await self.store.get_prompts(query or HistoryQuery())
            entries = []
            for record in records:
                responses = await self.store.get_responses_for_prompt(record.id)
                entries.append(self._to_entry(record, responses))
            return entries
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to load prompt history: {e}") from e

    async def delete_prompt(self, prompt_id: DurableId) -> None:
        try:
            await self.store.delete_prompt(prompt_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to delete prompt #{prompt_id}: {e}") from e

    async def cleanup_old_data(self, days: int = 30) -> int:
        if days < 0:
            raise ValueError("days must not be negative")
        return await self.store.clear_old_data(days)

    async def get_stats(self) -> HistoryStats:
        return await self.store.get_stats()

    # --- conversions ---

    @staticmethod
    def _to_entry(record: PromptRecord, responses: List[ResponseRecord]) -> PromptEntry:
        entry_id = EntryId(str(record.id))
        return PromptEntry(
            id=entry_id,
            prompt=record.prompt,
            providers=list(record.providers),
            models=list(record.models),
            timestamp=record.created_at or datetime.now(),
            status=_entry_status(record.status),
            responses=[
                PromptResponse(
                    id=ResponseId(str(r.id)),
                    entry_id=entry_id,
                    provider_id=r.provider_id,
                    model_id=r.model_id,
                    content=r.content or "",
                    status=_response_status(r.status),
                    timestamp=r.created_at,
                    duration_ms=r.duration_ms,
                    error=r.error,
                    error_code=r.error_code,
                    prompt=r.prompt,
                )
                for r in responses
            ],
        )


def _entry_status(value: str) -> EntryStatus:
    try:
        return EntryStatus(value)
    except ValueError:
        logger.warning(f"Unknown prompt status '{value}' in history, treating as error")
        return EntryStatus.ERROR


def _response_status(value: str) -> ResponseStatus:
    try:
        return ResponseStatus(value)
    except ValueError:
        logger.warning(f"Unknown response status '{value}' in history, treating as error")
        return ResponseStatus.ERROR
