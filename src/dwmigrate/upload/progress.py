"""Rich per-record progress output for the upload loop.

Prints one line per record, in the form::

    [3/120] Uploading 000123... SUCCESS (ID: 555)
    [4/120] Uploading 000124... SKIPPED (Duplicate/Conflict)
    [5/120] Uploading 000125... FAILED (file_not_found)
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from dwmigrate.models import RecordResult

_RESULT_STYLES = {
    RecordResult.SUCCESS: "green",
    RecordResult.SKIPPED: "yellow",
    RecordResult.FAILED: "red",
}


class UploadProgressReporter:
    """Per-record progress lines plus running result counts.

    Usage::

        reporter = UploadProgressReporter()
        reporter.start(total=120)
        reporter.record_started(1, "000123")
        reporter.record_finished(RecordResult.SUCCESS, "ID: 555")
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()
        self._total = 0
        self._current: str | None = None
        self._stats: dict[str, int] = {result.value: 0 for result in RecordResult}

    def start(self, total: int) -> None:
        self._total = total
        self._console.print(f"Found [bold]{total}[/bold] records pending upload.")

    def record_started(self, index: int, object_id: str) -> None:
        self._current = f"[{index}/{self._total}] Uploading {escape(object_id)}... "

    def record_finished(self, result: RecordResult, detail: str | None = None) -> None:
        """Print the line for the current record with its outcome tag."""
        self._stats[result.value] += 1
        style = _RESULT_STYLES[result]
        suffix = f" ({escape(detail)})" if detail else ""
        self._console.print(
            f"{self._current or ''}[{style}]{result.value}[/{style}]{suffix}",
            highlight=False,
        )
        self._current = None

    def session_expired(self, object_id: str) -> None:
        self._console.print(
            f"{self._current or ''}[red]FAILED[/red] "
            f"(Session Expired - Retrying login for {escape(object_id)}...)",
            highlight=False,
        )

    def relogin_succeeded(self) -> None:
        self._console.print(" > Re-login successful. Retrying last upload...")

    def relogin_failed(self, remaining: int) -> None:
        self._console.print(
            f"[bold red]Re-login failed.[/bold red] {remaining} records not attempted."
        )

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the per-tag counts."""
        return dict(self._stats)
