"""Application build stage.

Starts the application build project on the resolved source revision,
waits for it, and (when a registry repository is configured) confirms the
new image tag is actually visible before the service is pointed at it.

Key Concepts:
    derive_image_tag: ``<environment>-<revision[:7]>-<YYYY-MM-DD>`` with an
        optional ``-HHMMSS`` suffix. Deterministic for a given input.
    resolve_source_revision: Config, then ``GITHUB_SHA``, then
        ``CODEBUILD_RESOLVED_SOURCE_VERSION``, then ``git rev-parse HEAD``.
    build_application: The stage. Requires a ``MigratedToken``; the build
        is told the schema is current (``MIGRATIONS_COMPLETE=true``) and
        gets the database URL as a Secrets Manager reference, never as a
        plaintext value.
"""

from __future__ import annotations

import os
import subprocess
from datetime import datetime
from typing import Mapping

from rollout.core.enums import Stage
from rollout.core.errors import ConfigError, RemoteCallError, RemoteJobFailure
from rollout.core.logging import get_logger
from rollout.deploy.config import PipelineConfig
from rollout.deploy.context import StageContext
from rollout.deploy.polling import poll_until
from rollout.deploy.remote import EnvironmentOverride
from rollout.deploy.tokens import BuiltToken, MigratedToken, issue_built

logger = get_logger(__name__)

_REVISION_ENV_VARS = ("GITHUB_SHA", "CODEBUILD_RESOLVED_SOURCE_VERSION")


def derive_image_tag(
    environment: str, revision: str, when: datetime, precision: str = "date"
) -> str:
    """Derive the image tag for a build.

    >>> derive_image_tag("prod", "a1b2c3d4e5f6", datetime(2024, 6, 1))
    'prod-a1b2c3d-2024-06-01'
    """
    tag = f"{environment}-{revision[:7]}-{when:%Y-%m-%d}"
    if precision == "second":
        tag += f"-{when:%H%M%S}"
    return tag


def _git_head() -> str | None:
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=10,
            check=True,
        )
    except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
        return None
    return proc.stdout.strip() or None


def resolve_source_revision(
    configured: str | None,
    environ: Mapping[str, str] | None = None,
    git_head=_git_head,
) -> str:
    """Resolve the source revision to build.

    Raises:
        ConfigError: No revision could be determined.
    """
    if configured:
        return configured
    environ = os.environ if environ is None else environ
    for name in _REVISION_ENV_VARS:
        if environ.get(name):
            return environ[name]
    revision = git_head()
    if revision:
        return revision
    raise ConfigError(
        "Cannot determine the source revision: set ROLLOUT_SOURCE_REVISION "
        "or run inside a git checkout",
        key="ROLLOUT_SOURCE_REVISION",
    )


def app_build_overrides(config: PipelineConfig, image_tag: str) -> list[EnvironmentOverride]:
    """Environment overrides passed to the application build."""
    overrides = [
        EnvironmentOverride("IMAGE_TAG", image_tag),
        EnvironmentOverride("DEPLOY_ENVIRONMENT", config.environment),
        EnvironmentOverride("MIGRATIONS_COMPLETE", "true"),
    ]
    if config.app_requires_database and config.database_secret_arn:
        overrides.append(
            EnvironmentOverride(
                "DATABASE_URL",
                f"{config.database_secret_arn}:{config.database_secret_key}",
                type="SECRETS_MANAGER",
            )
        )
    return overrides


def build_application(ctx: StageContext, token: MigratedToken, *, revision: str) -> BuiltToken:
    """Build and push the application image.

    Raises:
        RemoteJobFailure: The build ended non-success, timed out, or the
            pushed tag never appeared in the registry.
    """
    if not isinstance(token, MigratedToken):
        raise TypeError("the application build requires the migration stage's token")

    config = ctx.config
    image_tag = derive_image_tag(config.environment, revision, ctx.clock.now(), config.tag_precision)
    ctx.reporter.started(Stage.BUILD, f"{config.app_project} @ {revision[:7]} -> {image_tag}")

    builds = ctx.services.builds
    job = builds.start_build(
        config.app_project,
        overrides=app_build_overrides(config, image_tag),
        source_version=revision,
    )
    logger.info("build.started", build_id=job.id, project=config.app_project, image_tag=image_tag)
    ctx.reporter.info(f"build {job.id}")

    try:
        polled = poll_until(
            lambda: builds.get_build(job.id),
            lambda b: b.status.is_terminal,
            interval=config.poll_interval_seconds,
            timeout=config.build_timeout_seconds,
            clock=ctx.clock,
            on_poll=ctx.reporting_poll(Stage.BUILD),
        )
    except RemoteCallError as exc:
        raise _lost_build(config, job.id, f"lost track of build {job.id}", exc) from exc
    final = polled.value
    logger.info(
        "build.finished",
        build_id=job.id,
        status=final.status.value,
        polls=polled.attempts,
        timed_out=polled.timed_out,
    )

    if polled.timed_out or not final.status.is_success:
        message = (
            f"build {job.id} still {final.status.value} after {config.build_timeout_seconds:.0f}s"
            if polled.timed_out
            else f"build {job.id} ended {final.status.value}"
        )
        error = RemoteJobFailure(
            message,
            stage=Stage.BUILD,
            job_id=job.id,
            status=final.status.value,
            logs_url=final.logs_url,
        )
        error.with_context(run_id=config.run_id, build_id=job.id)
        raise error

    if config.image_repository:
        _confirm_image(ctx, config.image_repository, image_tag, job.id)

    ctx.reporter.succeeded(Stage.BUILD, f"{job.id} SUCCEEDED, image {image_tag}")
    return issue_built(token, image_tag=image_tag, build_id=job.id)


def _confirm_image(ctx: StageContext, repository: str, image_tag: str, build_id: str) -> None:
    registry = ctx.services.registry
    try:
        polled = poll_until(
            lambda: registry.image_exists(repository, image_tag),
            bool,
            interval=min(ctx.config.poll_interval_seconds, 10.0),
            timeout=ctx.config.registry_timeout_seconds,
            clock=ctx.clock,
        )
    except RemoteCallError as exc:
        raise _lost_build(
            ctx.config, build_id, f"could not confirm {repository}:{image_tag} after build {build_id}", exc
        ) from exc
    if not polled.value:
        error = RemoteJobFailure(
            f"image {repository}:{image_tag} not found in the registry "
            f"{ctx.config.registry_timeout_seconds:.0f}s after build {build_id} succeeded",
            stage=Stage.BUILD,
            job_id=build_id,
        )
        error.with_context(run_id=ctx.config.run_id, image=f"{repository}:{image_tag}")
        raise error
    logger.info("build.image_confirmed", repository=repository, image_tag=image_tag, polls=polled.attempts)


def _lost_build(config: PipelineConfig, build_id: str, what: str, exc: RemoteCallError) -> RemoteJobFailure:
    logger.error("build.poll_failed", build_id=build_id, error=exc.message, code=exc.code)
    error = RemoteJobFailure(f"{what}: {exc.message}", stage=Stage.BUILD, job_id=build_id, cause=exc)
    error.with_context(run_id=config.run_id, build_id=build_id)
    return error


__all__ = [
    "app_build_overrides",
    "build_application",
    "derive_image_tag",
    "resolve_source_revision",
]
