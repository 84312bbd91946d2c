"""
Root Typer application for the rollout CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="rollout",
    help="rollout — gated deployments: provision, migrate, build, deploy, verify.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("rollout-spine")
        except PackageNotFoundError:
            from rollout import __version__ as v
        typer.echo(f"rollout {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """rollout CLI — run and inspect deployments."""


# ── Sub-command registration ─────────────────────────────────────────────

from rollout.cli.config import app as config_app  # noqa: E402
from rollout.cli.deploy import app as deploy_app  # noqa: E402

app.add_typer(deploy_app, name="deploy", help="Run the deployment pipeline and inspect the service.")
app.add_typer(config_app, name="config", help="Show and validate configuration.")
