"""Interface for interacting with the user (output only).

Defines the contract for displaying results, errors, warnings and the
tables produced by the CLI commands, allowing different UI implementations.
"""

import abc
from typing import Any, Dict, Sequence

from promptforge.domain.models.ai import HealthStatus, ProviderModel, ProviderStatus
from promptforge.domain.models.prompt import HistoryStats, PromptEntry, SubmissionSummary


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays standard output to the user.

        Args:
            output: The text to display (rendered as Markdown where supported).
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_entry(self, entry: PromptEntry) -> None:
        """Displays one prompt entry with all of its responses."""
        pass

    @abc.abstractmethod
    def display_history(self, entries: Sequence[PromptEntry]) -> None:
        pass

    @abc.abstractmethod
    def display_summary(self, summary: SubmissionSummary) -> None:
        pass

    @abc.abstractmethod
    def display_models(self, models: Sequence[ProviderModel]) -> None:
        pass

    @abc.abstractmethod
    def display_providers(self, providers: Sequence[ProviderStatus]) -> None:
        pass

    @abc.abstractmethod
    def display_health(self, statuses: Dict[str, HealthStatus]) -> None:
        pass

    def display_stats(self, stats: HistoryStats) -> None:
        """Displays history statistics. Optional for simple UIs."""
        pass
