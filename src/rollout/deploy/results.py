"""Result models for the deployment pipeline.

Pydantic v2 models for everything the pipeline observes or reports: remote
build jobs, migration outcomes, service snapshots, stabilization
diagnostics, health probes, and the per-stage records that roll up into a
``PipelineResult``.

Why This Matters:
    A failed deploy is only actionable when the operator can see *why*
    without opening the console. Modelling the observed state (counts,
    events, stopped-task reasons, target health) lets the CLI render it,
    the log collector persist it, and tests assert on it.

Key Concepts:
    BuildStatus: Remote build states. ``parse()`` maps unknown strings to
        IN_PROGRESS so a new remote state never ends a wait early.
    ServiceSnapshot: One observation of the container service.
    DeploymentDiagnostics: The bundle surfaced when stabilization fails.
    PipelineResult: Stage records plus run metadata. ``mark_complete()``
        finalises timestamps, duration and summary.

Architecture Decisions:
    - Pydantic v2 BaseModel: ``model_dump_json(indent=2)`` for artifacts.
    - ISO-8601 string timestamps, as produced by ``_now()``.
    - Snapshots are produced by adapters and read by stages; no stage
      mutates one.

Related Modules:
    - :mod:`rollout.deploy.workflow` — Produces PipelineResult
    - :mod:`rollout.deploy.aws` — Produces snapshots and jobs
    - :mod:`rollout.deploy.log_collector` — Persists them

Tags:
    results, models, pydantic, deployment, diagnostics
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from rollout.core.enums import ExitCode, Stage, StageStatus


def _now() -> str:
    return datetime.now(UTC).isoformat()


class OverallStatus(str, Enum):
    """Overall status of a pipeline run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PASSED = "PASSED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Remote jobs
# ---------------------------------------------------------------------------


class BuildStatus(str, Enum):
    """Status of a remote build job."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    FAULT = "FAULT"
    STOPPED = "STOPPED"
    TIMED_OUT = "TIMED_OUT"

    @classmethod
    def parse(cls, value: str | None) -> BuildStatus:
        """Map a remote status string; unknown values count as in progress."""
        try:
            return cls(value)
        except ValueError:
            return cls.IN_PROGRESS

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_BUILD

    @property
    def is_success(self) -> bool:
        return self is BuildStatus.SUCCEEDED


_TERMINAL_BUILD = frozenset(
    {
        BuildStatus.SUCCEEDED,
        BuildStatus.FAILED,
        BuildStatus.FAULT,
        BuildStatus.STOPPED,
        BuildStatus.TIMED_OUT,
    }
)


class BuildJob(BaseModel):
    """A remote build job as last observed."""

    id: str
    project: str
    status: BuildStatus = BuildStatus.PENDING
    phase: str | None = None
    logs_url: str | None = None
    source_version: str | None = None


class TaskDescription(BaseModel):
    """A one-shot container task as last observed."""

    task_arn: str
    last_status: str = "PROVISIONING"
    exit_code: int | None = None
    stopped_reason: str | None = None
    stop_code: str | None = None
    container_name: str | None = None
    container_reason: str | None = None

    @property
    def is_stopped(self) -> bool:
        return self.last_status == "STOPPED"


class MigrationStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class MigrationOutcome(BaseModel):
    """Outcome of the migration stage."""

    status: MigrationStatus
    strategy: str
    job_id: str | None = None
    exit_code: int | None = None
    content_hash: str | None = None
    detail: str | None = None
    logs_url: str | None = None
    log_tail: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status in (MigrationStatus.SUCCEEDED, MigrationStatus.SKIPPED)


# ---------------------------------------------------------------------------
# Container service observations
# ---------------------------------------------------------------------------


class ServiceEvent(BaseModel):
    timestamp: str
    message: str


class ServiceDeployment(BaseModel):
    """One deployment (task-set revision) of the service."""

    id: str
    status: str
    task_definition: str | None = None
    desired_count: int = 0
    running_count: int = 0
    pending_count: int = 0
    rollout_state: str | None = None
    rollout_state_reason: str | None = None


class ServiceSnapshot(BaseModel):
    """One observation of the container service."""

    cluster: str
    service: str
    status: str = "ACTIVE"
    desired_count: int = 0
    running_count: int = 0
    pending_count: int = 0
    deployments: list[ServiceDeployment] = Field(default_factory=list)
    events: list[ServiceEvent] = Field(
        default_factory=list,
        description="Service events as returned by the API (newest first)",
    )
    target_group_arns: list[str] = Field(default_factory=list)
    task_definition: str | None = None

    @property
    def primary_deployment(self) -> ServiceDeployment | None:
        for deployment in self.deployments:
            if deployment.status == "PRIMARY":
                return deployment
        return self.deployments[0] if self.deployments else None

    @property
    def deployment_count(self) -> int:
        return len(self.deployments)

    def recent_events(self, limit: int) -> list[ServiceEvent]:
        """The most recent ``limit`` events, oldest first."""
        newest = sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
        return list(reversed(newest))


class TargetHealth(BaseModel):
    """Health of one load balancer target."""

    target_id: str
    port: int | None = None
    state: str
    reason: str | None = None
    description: str | None = None
    target_group_arn: str | None = None


class StoppedContainer(BaseModel):
    name: str
    exit_code: int | None = None
    reason: str | None = None


class StoppedTask(BaseModel):
    """A task that stopped while the deployment was rolling out."""

    task_arn: str
    stopped_reason: str | None = None
    stop_code: str | None = None
    started_by: str | None = None
    task_definition: str | None = None
    containers: list[StoppedContainer] = Field(default_factory=list)

    @property
    def reasons(self) -> list[str]:
        found = [self.stopped_reason] if self.stopped_reason else []
        found.extend(c.reason for c in self.containers if c.reason)
        return found


class DeploymentDiagnostics(BaseModel):
    """Everything an operator needs to see when a rollout does not settle."""

    cluster: str
    service: str
    reason: str
    desired_count: int = 0
    running_count: int = 0
    pending_count: int = 0
    deployment_count: int = 0
    primary_deployment_id: str | None = None
    rollout_state: str | None = None
    rollout_state_reason: str | None = None
    recent_events: list[ServiceEvent] = Field(default_factory=list)
    stopped_tasks: list[StoppedTask] = Field(default_factory=list)
    targets: list[TargetHealth] = Field(default_factory=list)
    polls: int = 0
    elapsed_seconds: float = 0.0

    @property
    def stop_reasons(self) -> list[str]:
        return [reason for task in self.stopped_tasks for reason in task.reasons]


class HealthProbeResult(BaseModel):
    """Result of the final HTTP probe."""

    endpoint: str
    http_status: int | None = None
    success: bool = False
    error: str | None = None
    elapsed_ms: float = 0.0


# ---------------------------------------------------------------------------
# Run-level results
# ---------------------------------------------------------------------------


class StageRecord(BaseModel):
    """Timing and outcome of one stage."""

    stage: Stage
    status: StageStatus = StageStatus.PENDING
    started_at: str | None = None
    completed_at: str | None = None
    duration_seconds: float | None = None
    detail: str | None = None
    identifiers: dict[str, str] = Field(default_factory=dict)

    def start(self) -> None:
        self.status = StageStatus.RUNNING
        self.started_at = _now()

    def finish(self, status: StageStatus, detail: str | None = None) -> None:
        self.status = status
        self.completed_at = _now()
        if detail is not None:
            self.detail = detail
        if self.started_at:
            start = datetime.fromisoformat(self.started_at)
            end = datetime.fromisoformat(self.completed_at)
            self.duration_seconds = (end - start).total_seconds()


class PipelineResult(BaseModel):
    """Outcome of one pipeline run."""

    run_id: str
    environment: str
    cluster: str
    service: str
    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float | None = None
    overall_status: OverallStatus = OverallStatus.RUNNING
    stages: list[StageRecord] = Field(default_factory=list)
    failed_stage: Stage | None = None
    exit_code: int = ExitCode.SUCCESS.value
    error: dict[str, Any] | None = None
    image_tag: str | None = None
    migration: MigrationOutcome | None = None
    diagnostics: DeploymentDiagnostics | None = None
    health: HealthProbeResult | None = None
    application_url: str | None = None
    summary: str = ""

    def stage(self, stage: Stage) -> StageRecord:
        """Return the record for ``stage``, creating it on first use."""
        for record in self.stages:
            if record.stage == stage:
                return record
        record = StageRecord(stage=stage)
        self.stages.append(record)
        return record

    def mark_complete(self, status: OverallStatus | None = None) -> None:
        """Mark run as complete, compute duration, status and summary."""
        self.completed_at = _now()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        if status:
            self.overall_status = status
        elif self.failed_stage is not None or any(
            s.status == StageStatus.FAILED for s in self.stages
        ):
            self.overall_status = OverallStatus.FAILED
        else:
            self.overall_status = OverallStatus.PASSED

        done = sum(1 for s in self.stages if s.status in (StageStatus.SUCCEEDED, StageStatus.SKIPPED))
        total = len(Stage.ordered())
        if self.overall_status == OverallStatus.PASSED:
            self.summary = f"{done}/{total} stages complete"
        else:
            failed = self.failed_stage.value if self.failed_stage else "unknown"
            self.summary = f"{done}/{total} stages complete, failed at {failed}"


__all__ = [
    "BuildJob",
    "BuildStatus",
    "DeploymentDiagnostics",
    "HealthProbeResult",
    "MigrationOutcome",
    "MigrationStatus",
    "OverallStatus",
    "PipelineResult",
    "ServiceDeployment",
    "ServiceEvent",
    "ServiceSnapshot",
    "StageRecord",
    "StoppedContainer",
    "StoppedTask",
    "TargetHealth",
    "TaskDescription",
]
