"""
CLI utility helpers: consoles, logging setup, and result rendering.
"""

from __future__ import annotations

import os

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from rollout.core.enums import ExitCode, StageStatus
from rollout.core.errors import ConfigError, RolloutError
from rollout.core.logging import configure_logging
from rollout.deploy.results import DeploymentDiagnostics, OverallStatus, PipelineResult

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False, json_logs: bool | None = None) -> None:
    """Configure structlog for a CLI invocation.

    Progress lines go to stdout, so logs default to WARNING on stderr
    unless ``--verbose`` or ``ROLLOUT_LOG_LEVEL`` says otherwise.
    """
    level = "DEBUG" if verbose else os.environ.get("ROLLOUT_LOG_LEVEL", "WARNING")
    configure_logging(level=level, json_format=json_logs, service="rollout")


def exit_config_error(exc: ConfigError) -> None:
    err_console.print(f"[bold red]Config error[/bold red] {escape(exc.message)}")
    raise typer.Exit(code=int(ExitCode.CONFIG))


# ── Output helpers ───────────────────────────────────────────────────────

_STAGE_STYLES = {
    StageStatus.SUCCEEDED: "green",
    StageStatus.FAILED: "red bold",
    StageStatus.SKIPPED: "yellow",
    StageStatus.RUNNING: "cyan",
    StageStatus.PENDING: "dim",
}


def print_stage_table(result: PipelineResult) -> None:
    table = Table(title=f"Run {result.run_id} ({result.environment})")
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Time")
    table.add_column("Identifiers")
    table.add_column("Detail")

    for record in result.stages:
        style = _STAGE_STYLES.get(record.status, "white")
        table.add_row(
            record.stage.value,
            f"[{style}]{record.status.value}[/{style}]",
            f"{record.duration_seconds:.0f}s" if record.duration_seconds is not None else "—",
            ", ".join(f"{k}={v}" for k, v in record.identifiers.items()) or "—",
            escape(record.detail or "—"),
        )
    console.print(table)


def print_diagnostics(diagnostics: DeploymentDiagnostics) -> None:
    """Render a diagnostics bundle: counts, events, stopped tasks, targets."""
    counts = Table(title=f"Service {diagnostics.service} ({diagnostics.cluster})", show_header=False)
    counts.add_column("Field", style="bold")
    counts.add_column("Value")
    counts.add_row("Desired", str(diagnostics.desired_count))
    counts.add_row("Running", str(diagnostics.running_count))
    counts.add_row("Pending", str(diagnostics.pending_count))
    counts.add_row("Deployments", str(diagnostics.deployment_count))
    if diagnostics.rollout_state:
        counts.add_row("Rollout state", diagnostics.rollout_state)
    counts.add_row("Reason", escape(diagnostics.reason))
    console.print(counts)

    if diagnostics.recent_events:
        events = Table(title="Recent service events")
        events.add_column("Time", style="dim")
        events.add_column("Message")
        for event in diagnostics.recent_events:
            events.add_row(event.timestamp, escape(event.message))
        console.print(events)

    if diagnostics.stopped_tasks:
        stopped = Table(title="Stopped tasks")
        stopped.add_column("Task")
        stopped.add_column("Stop code")
        stopped.add_column("Exit codes")
        stopped.add_column("Reasons")
        for task in diagnostics.stopped_tasks:
            stopped.add_row(
                task.task_arn.rsplit("/", 1)[-1],
                task.stop_code or "—",
                ", ".join(f"{c.name}={c.exit_code}" for c in task.containers if c.exit_code is not None) or "—",
                escape("; ".join(task.reasons) or "—"),
            )
        console.print(stopped)

    if diagnostics.targets:
        targets = Table(title="Load balancer targets")
        targets.add_column("Target")
        targets.add_column("State")
        targets.add_column("Reason")
        for target in diagnostics.targets:
            style = "green" if target.state == "healthy" else "red"
            targets.add_row(
                f"{target.target_id}:{target.port}" if target.port else target.target_id,
                f"[{style}]{target.state}[/{style}]",
                escape(target.description or target.reason or "—"),
            )
        console.print(targets)


def print_success(result: PipelineResult) -> None:
    print_stage_table(result)
    console.print(
        f"\n[bold green]{OverallStatus.PASSED.value}[/] {result.summary}: "
        f"image {result.image_tag} live at {result.application_url}"
    )


def print_failure(error: RolloutError, result: PipelineResult | None) -> None:
    if result is not None:
        print_stage_table(result)
        if result.diagnostics is not None:
            print_diagnostics(result.diagnostics)
    log_tail = getattr(error, "log_tail", None)
    if log_tail:
        err_console.print("[bold]Migration log tail[/bold]")
        for line in log_tail:
            err_console.print(f"  {escape(line)}")
    logs_url = getattr(error, "logs_url", None)
    if logs_url:
        err_console.print(f"Logs: {logs_url}")
    err_console.print(failure_line(error, result))


def failure_line(error: RolloutError, result: PipelineResult | None) -> str:
    """The last line of a failed run: stage, error and identifiers."""
    stage = error.context.stage or (result.failed_stage.value if result and result.failed_stage else "setup")
    identifiers = dict(error.context.identifiers)
    if error.context.service:
        identifiers.setdefault("service", error.context.service)
    if result is not None:
        identifiers.setdefault("service", result.service)
    ids = ", ".join(f"{k}={v}" for k, v in identifiers.items())
    line = f"[bold red]FAILED[/bold red] at stage [bold]{stage}[/bold]: {escape(error.message)}"
    if ids:
        line += f" ({escape(ids)})"
    return line


__all__ = [
    "console",
    "err_console",
    "exit_config_error",
    "failure_line",
    "print_diagnostics",
    "print_failure",
    "print_stage_table",
    "print_success",
    "setup_logging",
]
