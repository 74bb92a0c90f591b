"""Core service executing prompts against several models at once.

Owns the in-memory prompt history shown to the user and keeps it in sync
with the durable history store:

- each (provider, model) leg runs as an independent task, joined with
  all-settled semantics;
- streamed content is appended in memory and written durably through a
  per-response debounced flusher, with an immediate flush on every terminal
  transition;
- volatile entity ids are mapped to durable ids in two maps that are rebuilt
  wholesale whenever history is reloaded.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from promptforge.core.services.llm_service import LLMService
from promptforge.domain.errors import AdapterError, EntryNotFoundError, ErrorCode, categorize_error
from promptforge.domain.models.ai import TextGenerationOptions, TextStream, is_stream
from promptforge.domain.models.common import DurableId, EntryId, ResponseId
from promptforge.domain.models.prompt import (
    EntryStatus, HistoryQuery, PromptEntry, PromptResponse, ResponseStatus, SubmissionOutcome,
    SubmissionSummary,
)
from promptforge.infrastructure.persistence.debounce import DebouncedFlusher
from promptforge.infrastructure.persistence.prompt_persistence import PromptPersistenceService

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("content", "status", "error", "error_code", "duration_ms")


def _new_id() -> str:
    return uuid.uuid4().hex


class PromptExecutionService:
    """Single mutation surface for prompt entries and their responses."""

    def __init__(
        self,
        llm_service: LLMService,
        persistence: PromptPersistenceService,
        debounce_seconds: float = 0.5,
    ):
        self.llm_service = llm_service
        self.persistence = persistence
        self.entries: List[PromptEntry] = []  # newest first
        self.prompt_id_map: Dict[EntryId, DurableId] = {}
        self.response_id_map: Dict[ResponseId, DurableId] = {}
        self.is_loading = False
        self._active_submissions = 0
        self._flusher = DebouncedFlusher(debounce_seconds, self.flush_response_to_database)
        logger.info(f"PromptExecutionService initialized (debounce={debounce_seconds}s)")

    @property
    def is_submitting(self) -> bool:
        """True while any submission still has legs running."""
        return self._active_submissions > 0

    # --- Lookups ---

    def get_entry_by_id(self, entry_id: str) -> Optional[PromptEntry]:
        return next((e for e in self.entries if e.id == entry_id), None)

    def find_response(self, response_id: str) -> Optional[PromptResponse]:
        for entry in self.entries:
            response = entry.find_response(response_id)
            if response is not None:
                return response
        return None

    # --- Submission ---

    async def submit_prompt(
        self,
        prompt: str,
        providers: Sequence[str],
        models: Sequence[str],
        streaming: bool = True,
        continuation_of: Optional[str] = None,
        user_message: Optional[str] = None,
    ) -> SubmissionSummary:
        """Sends one prompt to every (provider, model) pair concurrently.

        Args:
            prompt: Text sent to the models.
            providers: Provider id of each leg.
            models: Model id of each leg, parallel to `providers`.
            streaming: Request streamed responses.
            continuation_of: Id of an existing entry to continue.
            user_message: Text shown for this turn in history, if it differs
                from `prompt`.

        Returns:
            A summary of the settled legs. Leg failures never raise.

        Raises:
            ValueError: If providers and models differ in length or are empty.
            EntryNotFoundError: If `continuation_of` names an unknown entry.
        """
        if len(providers) != len(models):
            raise ValueError("providers and models must have the same length")
        if not providers:
            raise ValueError("At least one model is required")

        if continuation_of is not None:
            entry = self.get_entry_by_id(continuation_of)
            if entry is None:
                raise EntryNotFoundError(continuation_of)
            entry.status = EntryStatus.PENDING
            for provider_id, model_id in zip(providers, models):
                if provider_id not in entry.providers:
                    entry.providers.append(provider_id)
                if model_id not in entry.models:
                    entry.models.append(model_id)
            durable_id = self.prompt_id_map.get(entry.id)
            if durable_id is not None:
                await self.persistence.update_prompt_status(durable_id, EntryStatus.PENDING)
        else:
            entry = PromptEntry(id=EntryId(_new_id()), prompt=prompt, providers=list(providers), models=list(models))
            self.entries.insert(0, entry)
            durable_id = await self.persistence.save_prompt(entry)
            if durable_id is not None:
                self.prompt_id_map[entry.id] = durable_id
            else:
                logger.warning(f"Prompt entry {entry.id} was not saved to history; continuing in memory")

        shown_prompt = user_message or (prompt if continuation_of is not None else None)
        legs = [
            self._create_response(entry, provider_id, model_id, streaming, shown_prompt)
            for provider_id, model_id in zip(providers, models)
        ]

        self._active_submissions += 1
        try:
            results = await asyncio.gather(
                *(self._run_leg(entry, response, prompt, streaming, context) for response, context in legs),
                return_exceptions=True,
            )
        finally:
            self._active_submissions -= 1

        for (response, _), result in zip(legs, results):
            if isinstance(result, BaseException):
                logger.error(f"Leg {response.model_key} raised unexpectedly: {result!r}")

        entry.status = EntryStatus.COMPLETED
        durable_id = self.prompt_id_map.get(entry.id)
        if durable_id is not None:
            await self.persistence.update_prompt_status(durable_id, EntryStatus.COMPLETED)

        summary = self._summarize(entry.id, [response for response, _ in legs])
        logger.info(f"Prompt {entry.id} settled: {summary.message}")
        return summary

    def _create_response(
        self, entry: PromptEntry, provider_id: str, model_id: str, streaming: bool, shown_prompt: Optional[str],
    ) -> Tuple[PromptResponse, Optional[str]]:
        # Context is the last successful answer of the same model in this entry
        context = next(
            (r.content for r in reversed(entry.responses)
             if r.provider_id == provider_id and r.model_id == model_id and r.status is ResponseStatus.SUCCESS),
            None,
        )
        response = PromptResponse(
            id=ResponseId(_new_id()),
            entry_id=entry.id,
            provider_id=provider_id,
            model_id=model_id,
            status=ResponseStatus.STREAMING if streaming else ResponseStatus.PENDING,
            prompt=shown_prompt,
            cancel_event=asyncio.Event(),
        )
        entry.responses.append(response)
        return response, context

    async def _run_leg(
        self, entry: PromptEntry, response: PromptResponse, prompt: str, streaming: bool, context: Optional[str],
    ) -> None:
        start = time.perf_counter()
        entry_durable_id = self.prompt_id_map.get(entry.id)
        if entry_durable_id is not None:
            response_durable_id = await self.persistence.save_response(entry_durable_id, response)
            if response_durable_id is not None:
                self.response_id_map[response.id] = response_durable_id

        try:
            options = TextGenerationOptions(model=response.model_id, stream=streaming, context=context)
            result = await self.llm_service.generate_text_with_stored_key(response.provider_id, prompt, options)

            if not result.success:
                error = result.error
                await self.update_response(
                    response.id,
                    status=ResponseStatus.ERROR,
                    error=error.message if error else "Unknown error",
                    error_code=error.code.value if error else ErrorCode.UNKNOWN_ERROR.value,
                    duration_ms=_elapsed_ms(start),
                )
            elif is_stream(result.data):
                await self.handle_stream_response(response.id, result.data, start)
            else:
                await self.update_response(
                    response.id,
                    content=result.data.content,
                    status=ResponseStatus.SUCCESS,
                    duration_ms=_elapsed_ms(start),
                )
        except Exception as e:
            logger.error(f"Leg {response.model_key} failed unexpectedly: {e}", exc_info=True)
            await self.update_response(
                response.id,
                status=ResponseStatus.ERROR,
                error=str(e),
                error_code=ErrorCode.UNEXPECTED_ERROR.value,
                duration_ms=_elapsed_ms(start),
            )
        finally:
            response.cancel_event = None

    @staticmethod
    def _summarize(entry_id: EntryId, responses: List[PromptResponse]) -> SubmissionSummary:
        success = sum(1 for r in responses if r.status is ResponseStatus.SUCCESS)
        errors = [r for r in responses if r.status is ResponseStatus.ERROR]
        cancelled = sum(1 for r in responses if r.status is ResponseStatus.CANCELLED)

        categories = []
        for response in errors:
            category = categorize_error(response.error_code)
            if category not in categories:
                categories.append(category)

        if success == len(responses):
            outcome = SubmissionOutcome.ALL_SUCCEEDED
        elif success > 0:
            outcome = SubmissionOutcome.PARTIAL
        else:
            outcome = SubmissionOutcome.ALL_FAILED
        return SubmissionSummary(
            entry_id=entry_id,
            outcome=outcome,
            success_count=success,
            error_count=len(errors),
            cancelled_count=cancelled,
            failure_categories=tuple(categories),
        )

    # --- Response mutation ---

    async def update_response(self, response_id: str, **changes: Any) -> bool:
        """Applies field changes to a live response.

        Terminal responses are frozen: later changes are ignored, so a late
        chunk or result can never overwrite a cancelled or finished leg.
        Terminal transitions are flushed immediately, others are debounced.
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update response fields: {sorted(unknown)}")
        response = self.find_response(response_id)
        if response is None:
            logger.debug(f"Ignoring update for unknown response {response_id}")
            return False
        if response.status.is_terminal:
            logger.debug(f"Ignoring update for {response.status.value} response {response_id}")
            return False

        for name, value in changes.items():
            setattr(response, name, value)

        if response.status.is_terminal:
            await self._flusher.flush_now(response_id)
        else:
            self._flusher.schedule(response_id)
        return True

    def append_stream_content(self, response_id: str, content: str) -> bool:
        """Appends streamed text and re-arms the debounce timer."""
        response = self.find_response(response_id)
        if response is None or response.status.is_terminal:
            return False
        response.content += content
        self._flusher.schedule(response_id)
        return True

    async def handle_stream_response(self, response_id: str, stream: TextStream, start: Optional[float] = None) -> None:
        """Drives a chunk stream into a response until completion, failure or cancellation."""
        start = start if start is not None else time.perf_counter()
        response = self.find_response(response_id)
        if response is None:
            logger.warning(f"Stream for unknown response {response_id} discarded")
            await stream.aclose()
            return

        completed = False
        try:
            async for chunk in stream:
                if self._is_cancelled(response):
                    logger.debug(f"Response {response_id} cancelled, stopping stream")
                    break
                if chunk.is_complete:
                    completed = True
                    break
                self.append_stream_content(response_id, chunk.content)

            if self._is_cancelled(response):
                return
            if completed:
                await self.update_response(response_id, status=ResponseStatus.SUCCESS, duration_ms=_elapsed_ms(start))
            else:
                await self.update_response(
                    response_id,
                    status=ResponseStatus.ERROR,
                    error="Stream ended without a completion signal",
                    error_code=ErrorCode.PARSE_ERROR.value,
                    duration_ms=_elapsed_ms(start),
                )
        except AdapterError as e:
            logger.warning(f"Stream for {response.model_key} failed: {e}")
            await self.update_response(
                response_id, status=ResponseStatus.ERROR, error=e.message, error_code=e.code.value,
                duration_ms=_elapsed_ms(start),
            )
        except Exception as e:
            logger.error(f"Stream for {response.model_key} failed unexpectedly: {e}", exc_info=True)
            await self.update_response(
                response_id, status=ResponseStatus.ERROR, error=str(e),
                error_code=ErrorCode.UNEXPECTED_ERROR.value, duration_ms=_elapsed_ms(start),
            )
        finally:
            await stream.aclose()
            if self._flusher.has_pending(response_id):
                await self._flusher.flush_now(response_id)

    @staticmethod
    def _is_cancelled(response: PromptResponse) -> bool:
        if response.status is ResponseStatus.CANCELLED:
            return True
        return response.cancel_event is not None and response.cancel_event.is_set()

    async def cancel_response(self, response_id: str) -> bool:
        """Cancels an in-flight response, keeping the partial content.

        Returns:
            True if the response was live and is now cancelled.
        """
        response = self.find_response(response_id)
        if response is None or response.status.is_terminal:
            return False
        if response.cancel_event is not None:
            response.cancel_event.set()
        duration = (time.time() - response.timestamp.timestamp()) * 1000
        updated = await self.update_response(response_id, status=ResponseStatus.CANCELLED, duration_ms=duration)
        if updated:
            logger.info(f"Cancelled response {response_id} ({response.model_key})")
        return updated

    async def flush_response_to_database(self, response_id: str) -> None:
        """Writes the current in-memory state of a response to the history store."""
        durable_id = self.response_id_map.get(ResponseId(response_id))
        response = self.find_response(response_id)
        if durable_id is None or response is None:
            return
        await self.persistence.update_response(durable_id, response)

    # --- Entry lifecycle ---

    async def delete_entry(self, entry_id: str) -> None:
        """Deletes an entry durably first, then from memory.

        Raises:
            EntryNotFoundError: If the entry is not loaded.
            PersistenceError: If the durable delete fails; memory is left untouched.
        """
        entry = self.get_entry_by_id(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)

        durable_id = self.prompt_id_map.get(entry.id)
        if durable_id is not None:
            await self.persistence.delete_prompt(durable_id)

        for response in entry.responses:
            if response.cancel_event is not None:
                response.cancel_event.set()
            self._flusher.cancel(response.id)
            self.response_id_map.pop(response.id, None)
        self.prompt_id_map.pop(entry.id, None)
        self.entries.remove(entry)
        logger.info(f"Deleted prompt entry {entry_id}")

    async def load_history_from_db(self, query: Optional[HistoryQuery] = None) -> List[PromptEntry]:
        """Replaces in-memory history with the durable one and rebuilds both id maps.

        Pending debounced writes are flushed first so the reload sees them and
        no buffered content is lost when the entries are swapped.

        Raises:
            PersistenceError: If the store cannot be read; memory is left untouched.
        """
        await self._flusher.flush_all()
        self.is_loading = True
        try:
            entries = await self.persistence.load_prompt_history(query)
        finally:
            self.is_loading = False

        # Writes scheduled during the read still target the entries being replaced
        await self._flusher.flush_all()
        self.entries = entries
        self.prompt_id_map = {}
        self.response_id_map = {}
        for entry in entries:
            if entry.id.isdigit():
                self.prompt_id_map[entry.id] = DurableId(int(entry.id))
            for response in entry.responses:
                if response.id.isdigit():
                    self.response_id_map[response.id] = DurableId(int(response.id))
        logger.info(f"Loaded {len(entries)} prompt entries from history")
        return entries

    async def refresh_from_db(self, limit: Optional[int] = None) -> List[PromptEntry]:
        """Reloads the newest `limit` entries, or all of them."""
        return await self.load_history_from_db(HistoryQuery(limit=limit) if limit else None)

    def clear_history(self) -> None:
        """Forgets in-memory history. Durable records are kept."""
        self._flusher.cancel_all()
        self.entries = []
        self.prompt_id_map = {}
        self.response_id_map = {}

    async def close(self) -> None:
        await self._flusher.flush_all()


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
