import logging
from typing import Any, Dict, Optional, Sequence

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from promptforge.domain.interfaces.user_interface import UserInterface
from promptforge.domain.models.ai import HealthStatus, ProviderModel, ProviderStatus
from promptforge.domain.models.prompt import (
    HistoryStats, PromptEntry, PromptResponse, ResponseStatus, SubmissionOutcome, SubmissionSummary,
)

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    ResponseStatus.PENDING: "dim",
    ResponseStatus.STREAMING: "cyan",
    ResponseStatus.SUCCESS: "green",
    ResponseStatus.ERROR: "red",
    ResponseStatus.CANCELLED: "yellow",
}

OUTCOME_STYLES = {
    SubmissionOutcome.ALL_SUCCEEDED: ("green", "Success"),
    SubmissionOutcome.PARTIAL: ("yellow", "Partial success"),
    SubmissionOutcome.ALL_FAILED: ("red", "Failed"),
}


def _preview(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[:width - 3] + "..."


def _format_price(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return "free" if value == 0 else f"${value:.5f}".rstrip("0").rstrip(".")


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays Markdown output in a panel.

        Args:
            output: The text to display.
            **kwargs: `title` for the panel header, `style` for the border.
        """
        title = kwargs.get("title", "Output")
        style = kwargs.get("style", "blue")
        try:
            panel = Panel(Markdown(str(output)), title=f"[bold]{title}[/bold]", title_align="left",
                          border_style=style, box=ROUNDED, padding=(0, 1))
            self.console.print(panel)
        except Exception as e:
            # Fallback if Rich formatting fails
            logger.error(f"Error displaying formatted message: {e}")
            self.console.print(f"\n{title}:\n{output}\n")

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    # --- History ---

    def _response_panel(self, response: PromptResponse) -> Panel:
        style = STATUS_STYLES.get(response.status, "white")
        header = f"[bold]{response.model_key}[/bold] [{style}]{response.status.value}[/{style}]"
        if response.duration_ms is not None:
            header += f" [dim]{response.duration_ms / 1000:.2f}s[/dim]"

        if response.status is ResponseStatus.ERROR:
            body = Text(response.error or "Unknown error", style="red")
            if response.content:
                body = Markdown(f"{response.content}\n\n---\n**Error:** {response.error}")
        elif response.content:
            body = Markdown(response.content)
        else:
            body = Text("(no content)", style="dim")

        subtitle = f"[dim]> {_preview(response.prompt)}[/dim]" if response.prompt else None
        return Panel(body, title=header, title_align="left", subtitle=subtitle,
                     border_style=style, box=ROUNDED, padding=(0, 1))

    def display_entry(self, entry: PromptEntry) -> None:
        self.console.print(
            f"[bold]Prompt[/bold] [dim]#{entry.id} | {entry.timestamp:%Y-%m-%d %H:%M:%S} | {entry.status.value}[/dim]"
        )
        self.console.print(Text(entry.prompt))
        for response in entry.responses:
            self.console.print(self._response_panel(response))

    def display_history(self, entries: Sequence[PromptEntry]) -> None:
        if not entries:
            self.display_info("No prompts in history yet.")
            return
        table = Table(title="Prompt History", box=ROUNDED, show_lines=False)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Date", style="dim", no_wrap=True)
        table.add_column("Prompt")
        table.add_column("Models")
        table.add_column("Results", justify="right")
        for entry in entries:
            ok = sum(1 for r in entry.responses if r.status is ResponseStatus.SUCCESS)
            table.add_row(
                str(entry.id),
                f"{entry.timestamp:%Y-%m-%d %H:%M}",
                _preview(entry.prompt, 50),
                ", ".join(r.model_key for r in entry.responses) or ", ".join(entry.models),
                f"{ok}/{len(entry.responses)}",
            )
        self.console.print(table)

    def display_summary(self, summary: SubmissionSummary) -> None:
        style, label = OUTCOME_STYLES[summary.outcome]
        self.console.print(f"[bold {style}]{label}:[/bold {style}] {summary.message}")

    # --- Providers & models ---

    def display_models(self, models: Sequence[ProviderModel]) -> None:
        if not models:
            self.display_warning("No models available. Check that at least one provider is enabled.")
            return
        table = Table(title="Available Models", box=ROUNDED)
        table.add_column("Model key", style="cyan", no_wrap=True)
        table.add_column("Name")
        table.add_column("Capabilities")
        table.add_column("Context", justify="right")
        table.add_column("In / Out per 1K", justify="right")
        for entry in models:
            model = entry.model
            caps = model.capabilities
            flags = [name for name, enabled in (
                ("text", caps.text_generation), ("image", caps.image_generation), ("stream", caps.streaming),
            ) if enabled]
            pricing = model.pricing
            price = (
                f"{_format_price(pricing.input_cost_per_1k)} / {_format_price(pricing.output_cost_per_1k)}"
                if pricing else "-"
            )
            table.add_row(
                f"{entry.provider_id}:{model.id}",
                model.name,
                ", ".join(flags),
                f"{caps.context_length:,}" if caps.context_length else "-",
                price,
            )
        self.console.print(table)

    def display_providers(self, providers: Sequence[ProviderStatus]) -> None:
        table = Table(title="Providers", box=ROUNDED)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name")
        table.add_column("Enabled", justify="center")
        table.add_column("Loaded", justify="center")
        table.add_column("Last error", style="red")
        for provider in providers:
            table.add_row(
                provider.id,
                provider.name,
                "[green]yes[/green]" if provider.enabled else "[red]no[/red]",
                "yes" if provider.has_instance else "no",
                provider.last_error or "",
            )
        self.console.print(table)

    def display_health(self, statuses: Dict[str, HealthStatus]) -> None:
        table = Table(title="Provider Health", box=ROUNDED)
        table.add_column("Provider", style="cyan", no_wrap=True)
        table.add_column("Status", justify="center")
        table.add_column("Latency", justify="right")
        table.add_column("Message")
        for provider_id, status in statuses.items():
            table.add_row(
                provider_id,
                "[green]healthy[/green]" if status.healthy else "[red]unhealthy[/red]",
                f"{status.latency_ms:.0f} ms",
                status.message,
            )
        self.console.print(table)

    def display_stats(self, stats: HistoryStats) -> None:
        table = Table(title="History Statistics", box=ROUNDED, show_header=False)
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right")
        table.add_row("Prompts", str(stats.total_prompts))
        table.add_row("Responses", str(stats.total_responses))
        table.add_row("Successful", f"[green]{stats.successful_responses}[/green]")
        table.add_row("Failed", f"[red]{stats.failed_responses}[/red]")
        for provider_id, count in sorted(stats.responses_by_provider.items()):
            table.add_row(f"  {provider_id}", str(count))
        self.console.print(table)
