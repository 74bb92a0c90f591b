"""Domain models for prompt history.

A PromptEntry is one user submission fanned out to several models; each leg
produces one PromptResponse. Records are the durable counterparts kept by the
history store.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..errors import FailureCategory
from .common import DurableId, EntryId, ResponseId


class EntryStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class ResponseStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ResponseStatus.SUCCESS, ResponseStatus.ERROR, ResponseStatus.CANCELLED)


@dataclass
class PromptResponse:
    """One (provider, model) leg of a prompt entry."""
    id: ResponseId
    entry_id: EntryId
    provider_id: str
    model_id: str
    content: str = ""
    status: ResponseStatus = ResponseStatus.PENDING
    timestamp: datetime = field(default_factory=datetime.now)
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    prompt: Optional[str] = None  # user-facing prompt text for continued conversations
    # Only present while the leg is in flight
    cancel_event: Optional[asyncio.Event] = field(default=None, repr=False, compare=False)

    @property
    def model_key(self) -> str:
        return f"{self.provider_id}:{self.model_id}"


@dataclass
class PromptEntry:
    id: EntryId
    prompt: str
    providers: List[str]
    models: List[str]
    timestamp: datetime = field(default_factory=datetime.now)
    status: EntryStatus = EntryStatus.PENDING
    responses: List[PromptResponse] = field(default_factory=list)

    def find_response(self, response_id: str) -> Optional[PromptResponse]:
        return next((r for r in self.responses if r.id == response_id), None)


class SubmissionOutcome(str, Enum):
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL = "partial"
    ALL_FAILED = "all_failed"


@dataclass(frozen=True)
class SubmissionSummary:
    """Aggregate result of one submit_prompt call."""
    entry_id: EntryId
    outcome: SubmissionOutcome
    success_count: int
    error_count: int
    cancelled_count: int = 0
    failure_categories: Tuple[FailureCategory, ...] = ()

    @property
    def message(self) -> str:
        categories = ", ".join(c.value.replace("_", " ") for c in self.failure_categories)
        if self.outcome is SubmissionOutcome.ALL_SUCCEEDED:
            return f"All responses completed ({self.success_count} succeeded)."
        if self.outcome is SubmissionOutcome.PARTIAL:
            return f"{self.success_count} succeeded, {self.error_count} failed ({categories})."
        if self.error_count == 0 and self.cancelled_count:
            return f"No responses completed ({self.cancelled_count} cancelled)."
        return f"All requests failed ({categories or 'check API keys and network'})."


# --- Durable records ---

@dataclass
class PromptRecord:
    prompt: str
    providers: List[str]
    models: List[str]
    status: str
    created_at: datetime
    id: Optional[DurableId] = None


@dataclass
class ResponseRecord:
    prompt_id: DurableId
    provider_id: str
    model_id: str
    content: str
    status: str
    created_at: datetime
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    prompt: Optional[str] = None
    id: Optional[DurableId] = None


@dataclass(frozen=True)
class HistoryQuery:
    """Filters for reading prompt records, newest first by default."""
    limit: Optional[int] = 50
    offset: int = 0
    status: Optional[str] = None
    providers: Optional[Tuple[str, ...]] = None
    models: Optional[Tuple[str, ...]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    sort_order: str = "desc"


@dataclass(frozen=True)
class HistoryStats:
    total_prompts: int
    total_responses: int
    successful_responses: int
    failed_responses: int
    responses_by_provider: Dict[str, int] = field(default_factory=dict)
