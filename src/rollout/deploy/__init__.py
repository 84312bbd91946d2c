"""rollout-spine deploy: the gated seven-stage deployment pipeline.

Provisions infrastructure, migrates the private database, builds the
application image, forces a new service deployment, waits for it to
stabilize and probes the public health endpoint. Every stage is a hard
gate: a failure stops the run, names the stage and carries the remote
identifiers needed to look it up.

Why This Matters:
    Migrations and the application build both need the database, which
    only lives inside the VPC. Running them from the right network, in
    the right order, and refusing to continue after a failure is the
    difference between a deploy and a half-deploy.

Key Concepts:
    PipelineConfig: Frozen pydantic model; ``from_env()`` reads ROLLOUT_*.
    MigrationStrategy: ``CoLocatedWithBuild`` | ``SeparateTask`` |
        ``SkipIfUnchanged``.
    DeploymentPipeline: Runs the stages; returns ``Ok``/``Err``.
    PipelineResult: Stage records, identifiers, diagnostics, health.
    RemoteServices: The remote dependencies; boto3 adapters in production.

Related Modules:
    - :mod:`rollout.deploy.config` — Configuration models
    - :mod:`rollout.deploy.results` — Result models
    - :mod:`rollout.deploy.aws` — boto3 adapters
    - :mod:`rollout.deploy.workflow` — Pipeline orchestrator
    - :mod:`rollout.cli.deploy` — CLI commands (``rollout deploy``)

Architecture::

    ┌───────────┬──────────┬─────────┬───────┬─────────┬───────────┬────────┐
    │ provision │ preflight│ migrate │ build │ trigger │ stabilize │ verify │
    ├───────────┴──────────┴─────────┴───────┴─────────┴───────────┴────────┤
    │        success tokens (each stage needs the previous one's)           │
    ├───────────────────────────────────────────────────────────────────────┤
    │  RemoteServices: CodeBuild │ ECS │ ELBv2 │ EC2 │ Logs │ ECR │ SSM     │
    └───────────────────────────────────────────────────────────────────────┘

Tags:
    deploy, pipeline, aws, migrations, ecs, codebuild, health-check

Example:
    >>> from rollout.deploy import PipelineConfig
    >>> config = PipelineConfig(environment="staging")
    >>> config.migration.kind
    'build'
"""

from __future__ import annotations

from rollout.deploy.config import (
    CoLocatedWithBuild,
    MigrationStrategy,
    PipelineConfig,
    SeparateTask,
    SkipIfUnchanged,
)
from rollout.deploy.remote import RemoteServices
from rollout.deploy.results import (
    BuildJob,
    BuildStatus,
    DeploymentDiagnostics,
    HealthProbeResult,
    MigrationOutcome,
    MigrationStatus,
    OverallStatus,
    PipelineResult,
    ServiceSnapshot,
)
from rollout.deploy.workflow import DeploymentPipeline, build_pipeline, build_services

__all__ = [
    "BuildJob",
    "BuildStatus",
    "CoLocatedWithBuild",
    "DeploymentDiagnostics",
    "DeploymentPipeline",
    "HealthProbeResult",
    "MigrationOutcome",
    "MigrationStatus",
    "MigrationStrategy",
    "OverallStatus",
    "PipelineConfig",
    "PipelineResult",
    "RemoteServices",
    "SeparateTask",
    "ServiceSnapshot",
    "SkipIfUnchanged",
    "build_pipeline",
    "build_services",
]
