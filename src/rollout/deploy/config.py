"""Configuration models for the deployment pipeline.

Provides frozen Pydantic v2 models for every setting the pipeline reads.
All fields can be overridden from environment variables, so the pipeline
runs with zero arguments in CI and locally.

Why This Matters:
    The original deployment was a shell script with hard-coded names and
    ``sleep 30`` between steps. Moving every name, timeout and interval
    into one immutable object makes each stage testable in isolation and
    keeps a run reproducible: the config a stage sees cannot change under
    it halfway through the run.

Key Concepts:
    PipelineConfig: Everything a run needs (names, timeouts, strategy).
        Uses ``ROLLOUT_*`` env vars (plus ``AWS_REGION``) via ``from_env()``.
    MigrationStrategy: Tagged union selecting how migrations run:
        ``CoLocatedWithBuild`` (kind="build"), ``SeparateTask``
        (kind="task") or ``SkipIfUnchanged`` (kind="skip-if-unchanged",
        wrapping one of the other two).

Architecture Decisions:
    - Frozen models: A stage can read the config, never mutate it.
    - from_env() classmethod: Explicit env-var parsing rather than
      ``pydantic-settings``, keeping the dependency surface small.
    - Override precedence: kwargs > env vars > field defaults.
    - Validation failures surface as ``ConfigError`` so the CLI can map
      them to the config exit code.

Related Modules:
    - :mod:`rollout.deploy.workflow` — Consumer of PipelineConfig
    - :mod:`rollout.deploy.migrations` — Dispatches on MigrationStrategy

Tags:
    config, settings, pydantic, deployment, environment
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rollout.core.errors import ConfigError

_TRUE_VALUES = ("true", "1", "yes")


def _split(value: str) -> tuple[str, ...]:
    return tuple(v.strip() for v in value.split(",") if v.strip())


def _flag(value: str) -> bool:
    return value.lower() in _TRUE_VALUES


# ── Migration strategies ─────────────────────────────────────────────────


class CoLocatedWithBuild(BaseModel):
    """Run migrations inside the network-scoped migration build job.

    The build is started with ``RUN_MIGRATIONS=true``; its buildspec builds
    the migration image and executes it in the same job.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["build"] = "build"
    project: str = Field(
        default="pathfinder-migration-build",
        description="Build project that builds and runs the migration image",
    )


class SeparateTask(BaseModel):
    """Run migrations as a one-shot container task inside the VPC."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["task"] = "task"
    task_definition: str = Field(
        default="pathfinder-migration",
        description="Task definition family (or ARN) of the migration task",
    )
    container_name: str | None = Field(
        default=None,
        description="Container whose exit code decides the outcome (first container if unset)",
    )
    subnets: tuple[str, ...] = Field(
        default=(),
        description="Subnet ids or Name tags the task is placed in",
    )
    security_groups: tuple[str, ...] = Field(
        default=(),
        description="Security group ids or names attached to the task",
    )
    assign_public_ip: bool = Field(
        default=False,
        description="Give the task a public IP (only needed without a NAT path)",
    )
    launch_type: str = Field(default="FARGATE")
    log_group: str | None = Field(
        default=None,
        description="CloudWatch log group of the migration container",
    )
    log_stream_filter: str = Field(
        default="migration-task",
        description="Substring identifying migration log streams",
    )


InnerStrategy = Annotated[
    Union[CoLocatedWithBuild, SeparateTask],
    Field(discriminator="kind"),
]


class SkipIfUnchanged(BaseModel):
    """Skip the migration stage when the migration sources are unchanged.

    Wraps another strategy. The content hash of ``source_dir`` is compared
    with the last successfully applied hash; the inner strategy only runs
    when they differ.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["skip-if-unchanged"] = "skip-if-unchanged"
    inner: InnerStrategy = Field(default_factory=CoLocatedWithBuild)
    source_dir: Path = Field(
        default=Path("apps/web/src/db/migrations"),
        description="Directory holding the migration sources",
    )
    patterns: tuple[str, ...] = Field(default=("**/*",))
    hash_store: Literal["file", "ssm"] = Field(
        default="file",
        description="Where the last applied hash is kept",
    )
    hash_file: Path = Field(default=Path(".rollout/migration-hash.json"))
    hash_parameter: str | None = Field(
        default=None,
        description="SSM parameter name (defaults to /rollout/<environment>/migration-hash)",
    )


MigrationStrategy = Annotated[
    Union[CoLocatedWithBuild, SeparateTask, SkipIfUnchanged],
    Field(discriminator="kind"),
]


def migration_strategy_from_env(kind: str | None = None) -> MigrationStrategy:
    """Build a MigrationStrategy from ``ROLLOUT_MIGRATION_*`` variables.

    Args:
        kind: Strategy kind overriding ``ROLLOUT_MIGRATION_STRATEGY``.
    """
    env = os.environ
    kind = kind or env.get("ROLLOUT_MIGRATION_STRATEGY", "build")

    def inner(inner_kind: str) -> CoLocatedWithBuild | SeparateTask:
        if inner_kind == "build":
            values: dict[str, Any] = {}
            if "ROLLOUT_MIGRATION_PROJECT" in env:
                values["project"] = env["ROLLOUT_MIGRATION_PROJECT"]
            return CoLocatedWithBuild(**values)
        if inner_kind == "task":
            values = {}
            if "ROLLOUT_MIGRATION_TASK_DEFINITION" in env:
                values["task_definition"] = env["ROLLOUT_MIGRATION_TASK_DEFINITION"]
            if "ROLLOUT_MIGRATION_CONTAINER" in env:
                values["container_name"] = env["ROLLOUT_MIGRATION_CONTAINER"]
            if "ROLLOUT_MIGRATION_SUBNETS" in env:
                values["subnets"] = _split(env["ROLLOUT_MIGRATION_SUBNETS"])
            if "ROLLOUT_MIGRATION_SECURITY_GROUPS" in env:
                values["security_groups"] = _split(env["ROLLOUT_MIGRATION_SECURITY_GROUPS"])
            if "ROLLOUT_MIGRATION_ASSIGN_PUBLIC_IP" in env:
                values["assign_public_ip"] = _flag(env["ROLLOUT_MIGRATION_ASSIGN_PUBLIC_IP"])
            if "ROLLOUT_MIGRATION_LOG_GROUP" in env:
                values["log_group"] = env["ROLLOUT_MIGRATION_LOG_GROUP"]
            return SeparateTask(**values)
        raise ConfigError(
            f"Unknown migration strategy {inner_kind!r} (expected build or task)",
            key="ROLLOUT_MIGRATION_STRATEGY",
        )

    if kind == "skip-if-unchanged":
        values: dict[str, Any] = {
            "inner": inner(env.get("ROLLOUT_MIGRATION_INNER_STRATEGY", "build")),
        }
        if "ROLLOUT_MIGRATION_SOURCE_DIR" in env:
            values["source_dir"] = Path(env["ROLLOUT_MIGRATION_SOURCE_DIR"])
        if "ROLLOUT_MIGRATION_HASH_STORE" in env:
            values["hash_store"] = env["ROLLOUT_MIGRATION_HASH_STORE"]
        if "ROLLOUT_MIGRATION_HASH_FILE" in env:
            values["hash_file"] = Path(env["ROLLOUT_MIGRATION_HASH_FILE"])
        if "ROLLOUT_MIGRATION_HASH_PARAMETER" in env:
            values["hash_parameter"] = env["ROLLOUT_MIGRATION_HASH_PARAMETER"]
        try:
            return SkipIfUnchanged(**values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid migration settings: {exc}", cause=exc) from exc
    return inner(kind)


# ── Pipeline configuration ───────────────────────────────────────────────


# Field name -> environment variable read by PipelineConfig.from_env()
ENV_VARS: dict[str, str] = {
    "environment": "ROLLOUT_ENVIRONMENT",
    "region": "AWS_REGION",
    "cluster": "ROLLOUT_CLUSTER",
    "service": "ROLLOUT_SERVICE",
    "load_balancer": "ROLLOUT_LOAD_BALANCER",
    "app_project": "ROLLOUT_APP_PROJECT",
    "app_requires_database": "ROLLOUT_APP_REQUIRES_DATABASE",
    "database_secret_arn": "ROLLOUT_DATABASE_SECRET_ARN",
    "database_secret_key": "ROLLOUT_DATABASE_SECRET_KEY",
    "source_revision": "ROLLOUT_SOURCE_REVISION",
    "image_repository": "ROLLOUT_IMAGE_REPOSITORY",
    "tag_precision": "ROLLOUT_TAG_PRECISION",
    "pin_image_tag": "ROLLOUT_PIN_IMAGE_TAG",
    "container_name": "ROLLOUT_CONTAINER_NAME",
    "poll_interval_seconds": "ROLLOUT_POLL_INTERVAL_SECONDS",
    "build_timeout_seconds": "ROLLOUT_BUILD_TIMEOUT_SECONDS",
    "migration_timeout_seconds": "ROLLOUT_MIGRATION_TIMEOUT_SECONDS",
    "stabilize_timeout_seconds": "ROLLOUT_STABILIZE_TIMEOUT_SECONDS",
    "registry_timeout_seconds": "ROLLOUT_REGISTRY_TIMEOUT_SECONDS",
    "post_provision_delay_seconds": "ROLLOUT_POST_PROVISION_DELAY_SECONDS",
    "health_scheme": "ROLLOUT_HEALTH_SCHEME",
    "health_path": "ROLLOUT_HEALTH_PATH",
    "health_timeout_seconds": "ROLLOUT_HEALTH_TIMEOUT_SECONDS",
    "diagnostics_event_count": "ROLLOUT_DIAGNOSTICS_EVENT_COUNT",
    "provision_enabled": "ROLLOUT_PROVISION_ENABLED",
    "infra_dir": "ROLLOUT_INFRA_DIR",
    "pulumi_stack": "ROLLOUT_PULUMI_STACK",
    "provision_timeout_seconds": "ROLLOUT_PROVISION_TIMEOUT_SECONDS",
    "output_dir": "ROLLOUT_OUTPUT_DIR",
    "write_artifacts": "ROLLOUT_WRITE_ARTIFACTS",
    "verbose": "ROLLOUT_VERBOSE",
    "run_id": "ROLLOUT_RUN_ID",
}


class PipelineConfig(BaseModel):
    """Configuration for one deployment pipeline run.

    Immutable once built. Defaults mirror the deployed Pathfinder stack so
    a bare ``rollout deploy run`` targets it.

    Example::

        config = PipelineConfig.from_env(environment="staging")
        config.cluster           # "pathfinder"
        config.migration.kind    # "build"
    """

    model_config = ConfigDict(frozen=True)

    # Target
    environment: str = Field(default="prod", description="Environment name used in image tags")
    region: str = Field(default="us-east-1", description="AWS region")
    cluster: str = Field(default="pathfinder", description="Container cluster name")
    service: str = Field(default="pathfinder-app", description="Container service name")
    load_balancer: str = Field(default="pathfinder-lb", description="Application load balancer name")

    # Build
    app_project: str = Field(
        default="pathfinder-app-build",
        description="Build project producing the application image",
    )
    app_requires_database: bool = Field(
        default=True,
        description="The application build queries the database",
    )
    database_secret_arn: str | None = Field(
        default=None,
        description="Secrets Manager ARN holding the database connection string",
    )
    database_secret_key: str = Field(default="database_url")
    source_revision: str | None = Field(
        default=None,
        description="Source revision to build (resolved from CI/git when unset)",
    )
    image_repository: str | None = Field(
        default=None,
        description="Registry repository name; enables pushed-tag confirmation",
    )
    tag_precision: Literal["date", "second"] = Field(default="date")

    # Migration
    migration: MigrationStrategy = Field(default_factory=CoLocatedWithBuild)

    # Trigger
    pin_image_tag: bool = Field(
        default=False,
        description="Register a task definition revision pinned to the new tag",
    )
    container_name: str = Field(
        default="pathfinder-app",
        description="Application container name inside the task definition",
    )

    # Timing
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    build_timeout_seconds: float = Field(default=1200.0, gt=0)
    migration_timeout_seconds: float = Field(default=900.0, gt=0)
    stabilize_timeout_seconds: float = Field(default=600.0, gt=0)
    registry_timeout_seconds: float = Field(default=120.0, gt=0)
    post_provision_delay_seconds: float = Field(default=30.0, ge=0)

    # Verification
    health_scheme: Literal["http", "https"] = Field(default="http")
    health_path: str = Field(default="/health")
    health_timeout_seconds: float = Field(default=10.0, gt=0)
    diagnostics_event_count: int = Field(default=10, ge=1)

    # Provisioning
    provision_enabled: bool = Field(default=True)
    infra_dir: Path = Field(default=Path("apps/infra"))
    pulumi_stack: str | None = Field(default=None)
    pulumi_binary: str = Field(default="pulumi")
    provision_timeout_seconds: float = Field(default=1800.0, gt=0)

    # Output
    output_dir: Path = Field(
        default=Path("deploy-results"),
        description="Directory for run summaries and diagnostics",
    )
    write_artifacts: bool = Field(default=True)
    verbose: bool = Field(default=False, description="Enable verbose output")

    # Internal
    run_id: str = Field(
        default_factory=lambda: uuid.uuid4().hex[:12],
        description="Unique run identifier (auto-generated)",
    )

    @field_validator("health_path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value.startswith("/"):
            return "/" + value
        return value

    def health_url(self, dns_name: str) -> str:
        return f"{self.health_scheme}://{dns_name}{self.health_path}"

    @classmethod
    def from_env(cls, **overrides: Any) -> PipelineConfig:
        """Create config from ROLLOUT_* environment variables.

        Raises:
            ConfigError: If a variable cannot be parsed or a value is invalid.
        """
        bool_fields = {
            "app_requires_database",
            "pin_image_tag",
            "provision_enabled",
            "write_artifacts",
            "verbose",
        }
        float_fields = {name for name in ENV_VARS if name.endswith("_seconds")}
        int_fields = {"diagnostics_event_count"}

        values: dict[str, Any] = {}
        for field_name, env_var in ENV_VARS.items():
            env_val = os.environ.get(env_var)
            if env_val is None or env_val == "":
                continue
            try:
                if field_name in bool_fields:
                    values[field_name] = _flag(env_val)
                elif field_name in float_fields:
                    values[field_name] = float(env_val)
                elif field_name in int_fields:
                    values[field_name] = int(env_val)
                else:
                    values[field_name] = env_val
            except ValueError as exc:
                raise ConfigError(
                    f"{env_var}={env_val!r} is not a valid number", key=env_var, cause=exc
                ) from exc

        if "migration" not in overrides:
            values["migration"] = migration_strategy_from_env()
        values.update(overrides)
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid pipeline configuration: {exc}", cause=exc) from exc


__all__ = [
    "ENV_VARS",
    "CoLocatedWithBuild",
    "MigrationStrategy",
    "PipelineConfig",
    "SeparateTask",
    "SkipIfUnchanged",
    "migration_strategy_from_env",
]
