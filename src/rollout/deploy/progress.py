"""Human-readable progress lines for each stage.

Stages report their transitions through a ``StageReporter``. The console
implementation prints one colored line per transition with rich, numbered
``[n/7]`` in execution order; structured logs are emitted separately by
the stages themselves.

Example output::

    [3/7] migrate    started  CoLocatedWithBuild via pathfinder-migration-build
    [3/7] migrate    ...      IN_PROGRESS (60s)
    [3/7] migrate    ok       build pathfinder-migration-build:7f3c SUCCEEDED
"""

from __future__ import annotations

from typing import Protocol

from rich.console import Console
from rich.markup import escape

from rollout.core.enums import Stage


class StageReporter(Protocol):
    def started(self, stage: Stage, description: str) -> None: ...

    def progress(self, stage: Stage, status: str, elapsed: float) -> None: ...

    def succeeded(self, stage: Stage, detail: str = "") -> None: ...

    def skipped(self, stage: Stage, reason: str) -> None: ...

    def failed(self, stage: Stage, error: Exception) -> None: ...

    def info(self, message: str) -> None: ...


def _position(stage: Stage) -> str:
    ordered = Stage.ordered()
    return f"[{ordered.index(stage) + 1}/{len(ordered)}]"


class ConsoleReporter:
    """StageReporter printing to a rich Console."""

    def __init__(self, console: Console | None = None, *, verbose: bool = False):
        self.console = console or Console()
        self.verbose = verbose

    def _line(self, stage: Stage, label: str, style: str, text: str) -> None:
        self.console.print(
            f"{_position(stage)} [bold]{stage.value:<10}[/bold] "
            f"[{style}]{label:<8}[/{style}] {escape(text)}"
        )

    def started(self, stage: Stage, description: str) -> None:
        self._line(stage, "started", "cyan", description)

    def progress(self, stage: Stage, status: str, elapsed: float) -> None:
        self._line(stage, "...", "dim", f"{status} ({elapsed:.0f}s)")

    def succeeded(self, stage: Stage, detail: str = "") -> None:
        self._line(stage, "ok", "green", detail)

    def skipped(self, stage: Stage, reason: str) -> None:
        self._line(stage, "skipped", "yellow", reason)

    def failed(self, stage: Stage, error: Exception) -> None:
        self._line(stage, "FAILED", "bold red", str(error))

    def info(self, message: str) -> None:
        if self.verbose:
            self.console.print(f"      [dim]{escape(message)}[/dim]")


class SilentReporter:
    """StageReporter that prints nothing (``--json`` mode)."""

    def started(self, stage: Stage, description: str) -> None:
        pass

    def progress(self, stage: Stage, status: str, elapsed: float) -> None:
        pass

    def succeeded(self, stage: Stage, detail: str = "") -> None:
        pass

    def skipped(self, stage: Stage, reason: str) -> None:
        pass

    def failed(self, stage: Stage, error: Exception) -> None:
        pass

    def info(self, message: str) -> None:
        pass


__all__ = ["ConsoleReporter", "SilentReporter", "StageReporter"]
