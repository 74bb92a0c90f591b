"""Service for executing provider calls with automatic retries.

Retries transient failures (server errors, network problems, timeouts) with
a fixed delay between attempts. Client errors (HTTP 4xx) fail immediately.
The caller receives the error of the last attempt, unchanged.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine, Optional

from promptforge.domain.errors import AdapterError
from promptforge.domain.events.api_events import (
    ApiCallFailed, ApiCallInitiated, ApiCallSucceeded, DomainEvent, RetryScheduled,
)

logger = logging.getLogger(__name__)

EventListener = Callable[[DomainEvent], None]


def is_retryable(error: BaseException) -> bool:
    """AdapterErrors carry their own rule; anything else is treated as transient."""
    if isinstance(error, AdapterError):
        return error.is_retryable
    return True


class ApiRetryService:
    """Handles API call execution with bounded retries."""

    def __init__(
        self,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        event_listener: Optional[EventListener] = None,
    ):
        """Initializes the ApiRetryService.

        Args:
            max_retries: Retries after the first attempt (total calls = max_retries + 1).
            retry_delay: Fixed delay in seconds between attempts.
            event_listener: Optional callback receiving domain events.
        """
        self.max_retries = max(0, max_retries)
        self.retry_delay = retry_delay
        self.event_listener = event_listener
        logger.debug(f"ApiRetryService initialized: max_retries={max_retries}, retry_delay={retry_delay}s")

    def dispatch_event(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self.event_listener is not None:
            self.event_listener(event)

    async def execute_with_retry(
        self,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        provider_name: str = "unknown",
        endpoint_name: Optional[str] = None,
        **kwargs: Any
    ) -> Any:
        """Executes an async function, retrying transient failures.

        Args:
            func: The async function (API call) to execute.
            *args: Positional arguments for the function.
            provider_name: Name of the provider being called (for logging/events).
            endpoint_name: Name of the specific operation called.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            Exception: The first non-retryable error, or the error of the
                final attempt once retries are exhausted.
        """
        endpoint = endpoint_name or getattr(func, "__name__", "call")
        total_attempts = self.max_retries + 1

        for attempt in range(1, total_attempts + 1):
            self.dispatch_event(ApiCallInitiated(provider=provider_name, endpoint=endpoint, attempt_number=attempt))
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                if not is_retryable(e):
                    logger.warning(f"Non-retryable error calling {provider_name}.{endpoint} on attempt {attempt}: {e}")
                    self.dispatch_event(ApiCallFailed(
                        provider=provider_name, endpoint=endpoint,
                        error_type=type(e).__name__, error_message=str(e), attempts=attempt,
                    ))
                    raise
                if attempt == total_attempts:
                    logger.error(f"Max retries ({self.max_retries}) reached for {provider_name}.{endpoint}. Last error: {e}")
                    self.dispatch_event(ApiCallFailed(
                        provider=provider_name, endpoint=endpoint,
                        error_type=type(e).__name__, error_message=str(e), attempts=attempt,
                    ))
                    raise
                logger.warning(
                    f"Retryable error calling {provider_name}.{endpoint} on attempt {attempt}/{total_attempts}: "
                    f"{type(e).__name__}: {e}. Waiting {self.retry_delay:.2f}s..."
                )
                self.dispatch_event(RetryScheduled(
                    provider=provider_name, endpoint=endpoint,
                    attempt_number=attempt, delay_seconds=self.retry_delay,
                ))
                await asyncio.sleep(self.retry_delay)
                continue

            latency_ms = (time.perf_counter() - start_time) * 1000
            self.dispatch_event(ApiCallSucceeded(
                provider=provider_name, endpoint=endpoint, latency_ms=latency_ms,
                response_summary=getattr(result, 'usage', None),
            ))
            return result

        # Unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without a result")
