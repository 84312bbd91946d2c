"""
CLI: ``rollout config`` — inspect and validate the pipeline configuration.
"""

from __future__ import annotations

import typer
from rich.markup import escape

from rollout.cli.utils import console, exit_config_error

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the configuration a run would use."""
    from rollout.core.errors import ConfigError
    from rollout.deploy.config import ENV_VARS, PipelineConfig

    try:
        config = PipelineConfig.from_env()
    except ConfigError as exc:
        exit_config_error(exc)

    if format == "json":
        console.print_json(config.model_dump_json())
        return

    values = config.model_dump(mode="json")
    if format == "env":
        for key, env_var in ENV_VARS.items():
            value = values.get(key)
            if value is not None:
                typer.echo(f"{env_var}={value}")
        typer.echo(f"ROLLOUT_MIGRATION_STRATEGY={config.migration.kind}")
        return

    from rich.table import Table

    console.print(f"[bold]Target:[/bold] {config.service} on {config.cluster} ({config.region})")
    console.print(f"[bold]Migration:[/bold] {config.migration.kind}")

    table = Table()
    table.add_column("Setting")
    table.add_column("Env var", style="dim")
    table.add_column("Value")
    for key, value in values.items():
        if key == "migration":
            continue
        table.add_row(key, ENV_VARS.get(key, ""), escape(str(value)))
    console.print(table)

    migration = Table(title="Migration strategy")
    migration.add_column("Setting")
    migration.add_column("Value")
    for key, value in values["migration"].items():
        migration.add_row(key, escape(str(value)))
    console.print(migration)


@app.command("validate")
def validate_config() -> None:
    """Validate configuration and show warnings."""
    from rollout.core.errors import ConfigError
    from rollout.deploy.config import PipelineConfig, SeparateTask, SkipIfUnchanged

    try:
        config = PipelineConfig.from_env()
    except ConfigError as exc:
        exit_config_error(exc)

    warnings: list[str] = []
    if config.app_requires_database and not config.database_secret_arn:
        warnings.append("ROLLOUT_DATABASE_SECRET_ARN is unset; the build gets no DATABASE_URL")
    if config.pin_image_tag and not config.image_repository:
        warnings.append("ROLLOUT_PIN_IMAGE_TAG needs ROLLOUT_IMAGE_REPOSITORY")
    strategy = config.migration.inner if isinstance(config.migration, SkipIfUnchanged) else config.migration
    if isinstance(strategy, SeparateTask):
        if not strategy.subnets:
            warnings.append("Task strategy without ROLLOUT_MIGRATION_SUBNETS")
        if not strategy.security_groups:
            warnings.append("Task strategy without ROLLOUT_MIGRATION_SECURITY_GROUPS")
    if config.stabilize_timeout_seconds < config.poll_interval_seconds:
        warnings.append("Stabilize timeout is shorter than the poll interval")

    console.print(f"[bold]Migration strategy:[/bold] {config.migration.kind}")
    if warnings:
        console.print("\n[bold]Warnings:[/bold]")
        for warning in warnings:
            console.print(f"  [yellow]WARNING:[/yellow] {escape(warning)}")
    else:
        console.print("[green]✓ Configuration is valid[/green]")
