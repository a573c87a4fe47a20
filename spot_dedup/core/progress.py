"""
Progress bars for spot-dedup using the Rich library.

Two bars share a common base class and theme:
    - ScanProgressBar: playlists checked during a sync run
    - RemovalProgressBar: playlists processed during a remove-all run

The CLI drives both from the orchestrator's SyncEvents.

Usage:
    from spot_dedup.core.progress import ScanProgressBar

    with ScanProgressBar(total=len(playlists)) as progress:
        ...
        progress.update(duplicates=3)
"""

from abc import ABC, abstractmethod
from typing import Optional

from rich import get_console
from rich.console import JustifyMethod, OverflowMethod
from rich.highlighter import Highlighter
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    Task,
    TaskID,
)
from rich.style import StyleType
from rich.text import Text
from rich.theme import Theme


# =============================================================================
# Common Theme
# =============================================================================

PROGRESS_THEME = Theme({
    "bar.back": "grey23",
    "bar.complete": "rgb(30,215,96)",  # Spotify green
    "bar.finished": "rgb(114,156,31)",
    "bar.pulse": "rgb(30,215,96)",
    "progress.percentage": "white",
})


# =============================================================================
# Custom Column
# =============================================================================

class SizedTextColumn(ProgressColumn):
    """
    Text column truncated with an ellipsis beyond a fixed width.
    """

    def __init__(
        self,
        text_format: str,
        style: StyleType = "none",
        justify: JustifyMethod = "left",
        markup: bool = True,
        highlighter: Optional[Highlighter] = None,
        overflow: Optional[OverflowMethod] = None,
        width: int = 20,
    ) -> None:
        self.text_format = text_format
        self.justify: JustifyMethod = justify
        self.style = style
        self.markup = markup
        self.highlighter = highlighter
        self.overflow: Optional[OverflowMethod] = overflow
        self.width = width
        super().__init__()

    def render(self, task: Task) -> Text:
        """Render the column."""
        formatted = self.text_format.format(task=task)
        if self.markup:
            text = Text.from_markup(formatted, style=self.style, justify=self.justify)
        else:
            text = Text(formatted, style=self.style, justify=self.justify)
        if self.highlighter:
            self.highlighter.highlight(text)

        text.truncate(max_width=self.width, overflow=self.overflow, pad=True)
        return text


# =============================================================================
# Base Progress Bar
# =============================================================================

class BaseProgressBar(ABC):
    """
    Abstract base class for all progress bars.

    Provides common functionality:
    - Rich Progress instance with the shared theme
    - Context manager support (__enter__/__exit__)
    - Manual start/stop control
    - Log method for printing above the progress bar

    Subclasses must implement:
    - _get_status_text(): Return formatted status string
    - update(): Count one finished playlist
    """

    def __init__(
        self,
        total: int,
        description: str,
        status_width: int = 35
    ):
        """
        Args:
            total: Number of playlists to process.
            description: Description shown on the left (e.g., "Scanning").
            status_width: Width of the status column.
        """
        self.total = total
        self.description = description
        self.completed = 0

        self.console = get_console()

        self.progress = Progress(
            SizedTextColumn(
                "[white]{task.description}",
                overflow="ellipsis",
                width=15,
            ),
            SizedTextColumn(
                "{task.fields[status]}",
                width=status_width,
                style="white",
            ),
            BarColumn(bar_width=40, finished_style="green"),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=self.console,
            transient=False,
            refresh_per_second=10,
        )

        self.task_id: Optional[TaskID] = None
        self._started = False

    def __enter__(self) -> "BaseProgressBar":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def start(self) -> None:
        """Start the progress bar (can be called manually)."""
        if not self._started:
            self.console.push_theme(PROGRESS_THEME)
            self.progress.start()
            self.task_id = self.progress.add_task(
                description=self.description,
                total=self.total,
                status=self._get_status_text(),
            )
            self._started = True

    def stop(self) -> None:
        if self._started:
            self.progress.stop()
            self.console.pop_theme()
            self._started = False

    def log(self, message: str) -> None:
        """Print a message above the progress bar."""
        self.progress.console.print(message, highlight=False)

    def _update_progress(self) -> None:
        if self.task_id is not None:
            self.progress.update(
                self.task_id,
                completed=self.completed,
                status=self._get_status_text(),
            )

    @abstractmethod
    def _get_status_text(self) -> str:
        pass

    @abstractmethod
    def update(self, *args, **kwargs) -> None:
        pass


# =============================================================================
# Scan Progress Bar
# =============================================================================

class ScanProgressBar(BaseProgressBar):
    """
    Progress bar for a sync run over the user's playlists.

    Example:
        Scanning        ✓ 12  ⧉ 3  ✗ 1          ━━━━━━━━━━━━━━━━━  80%
    """

    def __init__(self, total: int, description: str = "Scanning"):
        super().__init__(total=total, description=description)
        self.clean = 0
        self.with_duplicates = 0
        self.failed = 0

    def _get_status_text(self) -> str:
        parts = [
            f"[green]✓ {self.clean}[/green]",
            f"[yellow]⧉ {self.with_duplicates}[/yellow]",
        ]
        if self.failed > 0:
            parts.append(f"[red]✗ {self.failed}[/red]")
        return "  ".join(parts)

    def update(self, duplicates: int = 0, failed: bool = False) -> None:
        """
        Count one finished playlist.

        Args:
            duplicates: Duplicates found in it.
            failed: Whether its sync failed.
        """
        self.completed += 1
        if failed:
            self.failed += 1
        elif duplicates:
            self.with_duplicates += 1
        else:
            self.clean += 1

        self._update_progress()


# =============================================================================
# Removal Progress Bar
# =============================================================================

class RemovalProgressBar(BaseProgressBar):
    """
    Progress bar for removing duplicates from several playlists.

    Example:
        Removing        ✓ 4  ✗ 1  − 37          ━━━━━━━━━━━━━━━━━  100%
    """

    def __init__(self, total: int, description: str = "Removing"):
        super().__init__(total=total, description=description)
        self.succeeded = 0
        self.failed = 0
        self.items_removed = 0

    def _get_status_text(self) -> str:
        parts = [
            f"[green]✓ {self.succeeded}[/green]",
            f"[red]✗ {self.failed}[/red]",
        ]
        if self.items_removed > 0:
            parts.append(f"[cyan]− {self.items_removed}[/cyan]")
        return "  ".join(parts)

    def update(self, success: bool, removed: int = 0) -> None:
        """
        Count one finished playlist.

        Args:
            success: Whether every batch succeeded.
            removed: Items removed from it.
        """
        self.completed += 1
        self.items_removed += removed
        if success:
            self.succeeded += 1
        else:
            self.failed += 1

        self._update_progress()


__all__ = [
    "PROGRESS_THEME",
    "SizedTextColumn",
    "BaseProgressBar",
    "ScanProgressBar",
    "RemovalProgressBar",
]
