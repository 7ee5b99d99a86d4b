"""Progress reporting for source loads.

The loader only talks to a TaskMonitor; what happens with the reports
(nothing, log lines, a rich console) is up to the caller.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from rich.console import Console
from rich.markup import escape

logger = logging.getLogger(__name__)


@runtime_checkable
class TaskMonitor(Protocol):
    """Narrow progress interface used by SourceLoader."""

    def set_progress_max(self, steps: int) -> None:
        """Declare how many steps the task will advance through."""
        ...

    def set_description(self, message: str) -> None:
        """Describe the step currently running."""
        ...

    def inc_progress(self, delta: int) -> None:
        """Advance the progress by delta steps."""
        ...

    def set_result(self, message: str) -> None:
        """Report a human-readable result (errors, notable outcomes)."""
        ...


class NullMonitor:
    """Monitor that discards every report."""

    def set_progress_max(self, steps: int) -> None:
        pass

    def set_description(self, message: str) -> None:
        pass

    def inc_progress(self, delta: int) -> None:
        pass

    def set_result(self, message: str) -> None:
        pass


class RecordingMonitor:
    """Monitor that keeps every report in memory.

    Used by the CLI's --json output and handy for inspecting a load.
    """

    def __init__(self):
        self.progress_max = 0
        self.progress = 0
        self.descriptions: list[str] = []
        self.results: list[str] = []

    def set_progress_max(self, steps: int) -> None:
        self.progress_max = steps

    def set_description(self, message: str) -> None:
        self.descriptions.append(message)

    def inc_progress(self, delta: int) -> None:
        self.progress += delta

    def set_result(self, message: str) -> None:
        self.results.append(message)


class LoggingMonitor:
    """Monitor that forwards reports to a logger."""

    def __init__(self, name: str = "", log: logging.Logger | None = None):
        self._name = name
        self._log = log or logger
        self._max = 0
        self._current = 0

    def _prefix(self) -> str:
        return f"[{self._name}] " if self._name else ""

    def set_progress_max(self, steps: int) -> None:
        self._max = steps
        self._current = 0

    def set_description(self, message: str) -> None:
        self._log.debug(f"{self._prefix()}{message}")

    def inc_progress(self, delta: int) -> None:
        self._current += delta
        self._log.debug(f"{self._prefix()}progress {self._current}/{self._max}")

    def set_result(self, message: str) -> None:
        self._log.info(f"{self._prefix()}{message}")


class ConsoleMonitor:
    """Monitor that prints to a rich console."""

    def __init__(self, console: Console | None = None, verbose: bool = False):
        self._console = console or Console()
        self._verbose = verbose
        self._max = 0
        self._current = 0

    def set_progress_max(self, steps: int) -> None:
        self._max = steps
        self._current = 0

    def set_description(self, message: str) -> None:
        if self._verbose:
            self._console.print(f"[dim]{escape(message)}[/dim]", highlight=False)

    def inc_progress(self, delta: int) -> None:
        self._current += delta
        if self._verbose:
            self._console.print(
                f"[dim]  step {self._current}/{self._max}[/dim]", highlight=False
            )

    def set_result(self, message: str) -> None:
        self._console.print(f"[yellow]{escape(message)}[/yellow]", highlight=False)
