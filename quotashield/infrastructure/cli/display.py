import logging
from typing import Any, Mapping, Optional

from rich.box import ROUNDED
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from quotashield.domain.interfaces.user_interface import UserInterface
from quotashield.domain.models.cache import CacheStats
from quotashield.domain.models.task import QueueStats

logger = logging.getLogger(__name__)


def format_countdown(seconds: int) -> str:
    """Formats a countdown as ``M:SS`` from one minute up, else ``Ns``."""
    seconds = max(0, int(seconds))
    minutes, remaining = divmod(seconds, 60)
    if minutes > 0:
        return f"{minutes}:{remaining:02d}"
    return f"{remaining}s"


def cooldown_progress(retry_after: Optional[int], remaining_seconds: int) -> float:
    """Percentage of the cooldown already elapsed (0-100)."""
    if not retry_after or retry_after <= 0:
        return 0.0
    elapsed = retry_after - max(0, remaining_seconds)
    return max(0.0, min(100.0, elapsed / retry_after * 100))


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    @console.setter
    def console(self, value: Console) -> None:
        self._console = value

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {error_message}")

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        self.console.print(f"[bold yellow]Warning:[/bold yellow] {warning_message}")

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        self.console.print(f"[blue]Info:[/blue] {info_message}")

    def display_cache_stats(self, stats: CacheStats) -> None:
        table = Table(title="Cache", box=ROUNDED, show_header=True, header_style="bold cyan")
        table.add_column("Entries", justify="right")
        table.add_column("Total size", justify="right")
        table.add_column("Oldest entry")
        table.add_column("Newest entry")
        table.add_row(
            str(stats.count),
            format_bytes(stats.total_size),
            stats.oldest_entry.strftime("%Y-%m-%d %H:%M:%S") if stats.oldest_entry else "-",
            stats.newest_entry.strftime("%Y-%m-%d %H:%M:%S") if stats.newest_entry else "-",
        )
        self.console.print(table)

    def display_queue_stats(self, stats_by_queue: Mapping[str, QueueStats]) -> None:
        table = Table(title="Task queues", box=ROUNDED, show_header=True, header_style="bold cyan")
        for column in ("Queue", "Total", "Completed", "Failed", "Pending", "Running", "Retrying", "Avg time"):
            table.add_column(column, justify="left" if column == "Queue" else "right")
        for name, stats in stats_by_queue.items():
            table.add_row(
                name,
                str(stats.total_tasks),
                str(stats.completed_tasks),
                str(stats.failed_tasks),
                str(stats.pending_tasks),
                str(stats.running_tasks),
                str(stats.retrying_tasks),
                f"{stats.average_execution_ms:.0f} ms",
            )
        self.console.print(table)

        # Per-type breakdown only when some queue has seen tasks
        if any(stats.tasks_by_type for stats in stats_by_queue.values()):
            by_type = Table(title="Tasks by type", box=ROUNDED, header_style="bold cyan")
            for column in ("Queue", "Type", "Total", "Completed", "Failed"):
                by_type.add_column(column)
            for name, stats in stats_by_queue.items():
                for task_type, type_stats in sorted(stats.tasks_by_type.items()):
                    by_type.add_row(name, task_type, str(type_stats.total), str(type_stats.completed), str(type_stats.failed))
            self.console.print(by_type)

    def display_quota_notice(self, retry_after: Optional[int], remaining_seconds: int) -> None:
        body = Text("API quota exceeded. Requests are paused until the quota resets.\n", style="bold")
        if retry_after:
            body.append(f"Time remaining: {format_countdown(remaining_seconds)}", style="yellow")
            body.append(f"  ({cooldown_progress(retry_after, remaining_seconds):.0f}% elapsed)", style="dim")
        else:
            body.append("Retry time unknown.", style="yellow")
        logger.debug(f"Rendering quota notice: retry_after={retry_after}, remaining={remaining_seconds}")
        self.console.print(Panel(body, title="Rate limit", border_style="yellow", box=ROUNDED))
