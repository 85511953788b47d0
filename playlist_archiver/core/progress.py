"""
Progress display for reconciliation passes, built on Rich.

The bar advances once per finished source and keeps a tally of how each
source ended. It is only shown when the CLI runs in a terminal.

Usage:
    with PassProgressBar(total=len(sources)) as progress:
        for future in as_completed(futures):
            report = future.result()
            progress.advance(report.outcome.value)
"""

from collections import Counter

from rich import get_console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.theme import Theme


PROGRESS_THEME = Theme({
    "bar.back": "grey23",
    "bar.complete": "rgb(165,66,129)",
    "bar.finished": "rgb(114,156,31)",
    "progress.elapsed": "grey58",
})

# Outcome label -> markup shown in the tally, in display order
TALLY_MARKUP = {
    "synced": "[green]✓ {count}[/green]",
    "failed": "[red]✗ {count}[/red]",
    "skipped": "[yellow]⊘ {count}[/yellow]",
    "cancelled": "[grey58]■ {count}[/grey58]",
}


class PassProgressBar:
    """
    One bar for a whole pass.

    Example:
        Syncing ━━━━━━━━━━━━━━━━━━━━━━━━━━━ 5/7  ✓ 4  ✗ 1  0:01:12

    update() and advance() must be called from a single thread (the one
    collecting the worker futures).
    """

    def __init__(self, total: int, description: str = "Syncing"):
        self.total = total
        self.description = description
        self.tally: Counter[str] = Counter()

        self.console = get_console()
        self.progress = Progress(
            TextColumn("[white]{task.description:<10}"),
            BarColumn(bar_width=36),
            MofNCompleteColumn(),
            TextColumn("{task.fields[tally]}"),
            TimeElapsedColumn(),
            console=self.console,
            refresh_per_second=4,
        )
        self.task_id: TaskID | None = None

    def __enter__(self) -> "PassProgressBar":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        return self.task_id is not None

    def start(self) -> None:
        if self.running:
            return
        self.console.push_theme(PROGRESS_THEME)
        self.progress.start()
        self.task_id = self.progress.add_task(self.description, total=self.total, tally="")

    def stop(self) -> None:
        if not self.running:
            return
        self.progress.stop()
        self.console.pop_theme()
        self.task_id = None

    def render_tally(self) -> str:
        parts = [
            markup.format(count=self.tally[label])
            for label, markup in TALLY_MARKUP.items()
            if self.tally[label]
        ]
        return "  ".join(parts)

    def advance(self, outcome: str) -> None:
        """
        Count one finished source.

        Args:
            outcome: How the source ended ("synced", "failed", "skipped",
                     "cancelled").
        """
        self.tally[outcome] += 1
        if self.running:
            self.progress.update(
                self.task_id,
                completed=sum(self.tally.values()),
                tally=self.render_tally(),
            )
