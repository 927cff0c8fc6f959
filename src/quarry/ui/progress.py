"""centralized console output and progress tracking for registry operations."""

import sys
from contextlib import contextmanager
from typing import Optional
from rich.console import Console
from rich.progress import (
    Progress,
    TextColumn,
    BarColumn,
    DownloadColumn,
    TransferSpeedColumn,
    TimeRemainingColumn,
    TaskID,
)

STATUS_WIDTH = 12


class ProgressManager:
    """central manager for status lines and progress bars."""

    def __init__(self, console: Optional[Console] = None, quiet: bool = False):
        """
        initialize progress manager.

        args:
            console: optional rich console instance. if not provided, creates new one.
            quiet: suppress status lines entirely.
        """
        self.console = console or Console(stderr=True)
        self.quiet = quiet
        self._enabled = self._should_show_progress()

    def _should_show_progress(self) -> bool:
        """
        check if we should show progress bars.

        returns false in non-interactive environments (ci/cd, piped output).
        """
        return sys.stdout.isatty() and not sys.stdout.closed

    def status(self, verb: str, message: str):
        """
        print a right-aligned status line, e.g. `Downloading foo v1.0.0`.
        """
        if self.quiet:
            return
        self.console.print(f"[bold green]{verb:>{STATUS_WIDTH}}[/bold green] {message}", highlight=False)

    @contextmanager
    def download_progress(self):
        """
        create a download progress context with transfer speed tracking.

        yields:
            Progress instance configured for downloads
        """
        if not self._enabled or self.quiet:
            yield _DummyProgress()
            return

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
            transient=True,
        ) as progress:
            yield progress


class _DummyProgress:
    """dummy progress object for non-interactive mode."""

    def add_task(self, description: str, total: Optional[int] = None, **kwargs) -> TaskID:
        """add a task (no-op)."""
        return TaskID(0)

    def update(self, task_id: TaskID, **kwargs):
        """update a task (no-op)."""
        pass
