"""
CLI: ``rollout deploy`` — run the pipeline and inspect the service.

Provides sub-commands for:
- Running the full provision → migrate → build → deploy → verify pipeline
- Inspecting the current service state (the same bundle a failed run prints)
- Reading the latest migration task log stream
- Re-printing the summary of the last run

Usage::

    rollout deploy run                          # Everything from ROLLOUT_* env vars
    rollout deploy run --skip-infra             # Skip the Pulumi apply
    rollout deploy run --strategy task --json   # One-shot migration task, JSON result

    rollout deploy status                       # Counts, events, stopped tasks, targets
    rollout deploy migration-logs               # Tail the migration log stream
    rollout deploy summary                      # Last run's summary.json
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.markup import escape

from rollout.cli.utils import (
    console,
    err_console,
    exit_config_error,
    print_diagnostics,
    print_failure,
    print_stage_table,
    print_success,
    setup_logging,
)
from rollout.core.enums import ExitCode
from rollout.core.errors import ConfigError, RemoteCallError

app = typer.Typer(no_args_is_help=True)


def _load_config(**overrides):
    from rollout.deploy.config import PipelineConfig

    try:
        return PipelineConfig.from_env(**overrides)
    except ConfigError as exc:
        exit_config_error(exc)


def _exit_remote_error(exc: RemoteCallError) -> None:
    err_console.print(
        f"[bold red]Error[/bold red] {escape(exc.message)} "
        f"({exc.service_name}:{exc.operation}{', ' + exc.code if exc.code else ''})"
    )
    raise typer.Exit(code=int(ExitCode.UNEXPECTED))


# ── Run ──────────────────────────────────────────────────────────────────


@app.command()
def run(
    skip_infra: bool = typer.Option(False, "--skip-infra", help="Skip the infrastructure apply."),
    strategy: str | None = typer.Option(
        None, "--strategy", "-s",
        help="Migration strategy: build, task or skip-if-unchanged.",
    ),
    json_out: bool = typer.Option(False, "--json", help="Output the run result as JSON."),
    no_artifacts: bool = typer.Option(False, "--no-artifacts", help="Do not write run artifacts."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output."),
) -> None:
    """Run the deployment pipeline.

    Provisions infrastructure, runs migrations inside the VPC, builds the
    image, forces a new deployment, waits for it to stabilize and probes
    the health endpoint. Exits non-zero at the first failed stage.
    """
    from rollout.deploy import workflow
    from rollout.deploy.config import migration_strategy_from_env
    from rollout.deploy.progress import ConsoleReporter, SilentReporter

    setup_logging(verbose=verbose)

    overrides: dict = {}
    if skip_infra:
        overrides["provision_enabled"] = False
    if no_artifacts:
        overrides["write_artifacts"] = False
    if verbose:
        overrides["verbose"] = True
    try:
        if strategy:
            overrides["migration"] = migration_strategy_from_env(strategy)
    except ConfigError as exc:
        exit_config_error(exc)
    config = _load_config(**overrides)

    reporter = SilentReporter() if json_out else ConsoleReporter(console, verbose=config.verbose)
    if not json_out:
        console.print(
            f"[bold]Deploying[/bold] {config.service} to {config.cluster} "
            f"({config.environment}, run {config.run_id})"
        )

    outcome = workflow.build_pipeline(config, reporter=reporter).run()

    if outcome.is_ok():
        result = outcome.unwrap()
        if json_out:
            typer.echo(result.model_dump_json(indent=2))
        else:
            print_success(result)
        raise typer.Exit(code=int(ExitCode.SUCCESS))

    error = outcome.error
    if json_out:
        if error.result is not None:
            typer.echo(error.result.model_dump_json(indent=2))
        else:
            typer.echo(json.dumps(outcome.to_dict(), indent=2, default=str))
    else:
        print_failure(error, error.result)
    raise typer.Exit(code=int(error.exit_code))


# ── Status ───────────────────────────────────────────────────────────────


@app.command()
def status(
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output."),
) -> None:
    """Show the service's counts, recent events, stopped tasks and targets.

    Exits 0 when the service is stable and with the stabilize code otherwise.
    """
    from rollout.deploy import workflow
    from rollout.deploy.context import StageContext
    from rollout.deploy.stabilization import StabilizationWaiter, is_stable, rollout_failure

    setup_logging(verbose=verbose)
    config = _load_config()
    ctx = StageContext(config=config, services=workflow.build_services(config))
    waiter = StabilizationWaiter(ctx)

    try:
        observation = waiter.observe()
        primary = observation.snapshot.primary_deployment
        stable = is_stable(observation)
        reason = "stable" if stable else (rollout_failure(observation, None) or observation.describe())
        diagnostics = waiter.collect_diagnostics(
            observation, reason=reason, deployment_id=primary.id if primary else None
        )
    except RemoteCallError as exc:
        _exit_remote_error(exc)

    if json_out:
        typer.echo(diagnostics.model_dump_json(indent=2))
    else:
        print_diagnostics(diagnostics)
    if not stable:
        raise typer.Exit(code=int(ExitCode.STABILIZE))


# ── Migration logs ───────────────────────────────────────────────────────


@app.command("migration-logs")
def migration_logs(
    log_group: str | None = typer.Option(
        None, "--log-group", "-g",
        help="Log group (default: the task strategy's ROLLOUT_MIGRATION_LOG_GROUP).",
    ),
    stream_filter: str | None = typer.Option(
        None, "--filter", "-f", help="Substring selecting the log stream."
    ),
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to print."),
) -> None:
    """Print the tail of the latest migration log stream."""
    from rollout.deploy import workflow
    from rollout.deploy.config import SeparateTask, SkipIfUnchanged

    setup_logging()
    config = _load_config()

    strategy = config.migration
    if isinstance(strategy, SkipIfUnchanged):
        strategy = strategy.inner
    if isinstance(strategy, SeparateTask):
        log_group = log_group or strategy.log_group
        stream_filter = stream_filter or strategy.log_stream_filter
    if not log_group:
        exit_config_error(
            ConfigError(
                "No log group: pass --log-group or set ROLLOUT_MIGRATION_LOG_GROUP",
                key="ROLLOUT_MIGRATION_LOG_GROUP",
            )
        )
    stream_filter = stream_filter or "migration-task"

    logs = workflow.build_services(config).logs
    try:
        stream = logs.latest_stream(log_group, stream_filter)
        if stream is None:
            err_console.print(
                f"[yellow]No log stream matching {stream_filter!r} in {log_group}[/yellow]"
            )
            raise typer.Exit(code=int(ExitCode.UNEXPECTED))
        tail = logs.tail(log_group, stream, limit=lines)
    except RemoteCallError as exc:
        _exit_remote_error(exc)

    console.print(f"[dim]{log_group} / {stream}[/dim]")
    for line in tail:
        typer.echo(line)


# ── Summary ──────────────────────────────────────────────────────────────


@app.command()
def summary(
    run_id: str | None = typer.Option(None, "--run-id", "-r", help="Run to show (default: latest)."),
    output_dir: str | None = typer.Option(None, "--output", "-o", help="Artifacts directory."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show the summary of a previous run from its artifacts."""
    from rollout.deploy.log_collector import LogCollector

    base = Path(output_dir) if output_dir else _load_config().output_dir
    result = LogCollector.load_summary(base, run_id)
    if result is None:
        err_console.print(f"[yellow]No run summary found under {base}[/yellow]")
        raise typer.Exit(code=int(ExitCode.UNEXPECTED))

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
        return
    print_stage_table(result)
    if result.diagnostics is not None:
        print_diagnostics(result.diagnostics)
    console.print(f"{result.overall_status.value}: {result.summary}")
