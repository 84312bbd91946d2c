"""Pipeline orchestrator.

Runs the seven stages in order, each a hard gate, and turns the outcome
into ``Ok(PipelineResult)`` or ``Err(error)`` with the partial result
attached.

Why This Matters:
    The shell script this replaces ran ``set -e`` and hoped. A failed
    migration still let a human re-run "just the build", and a crashing
    service surfaced as a bare waiter timeout. Here the order is
    structural (each stage needs the previous stage's token) and the
    operator always gets the failed stage, its identifiers and, for
    stabilization, the diagnostics bundle.

Key Concepts:
    DeploymentPipeline.run(): provision → preflight → migrate → build →
        trigger → stabilize → verify. Fail-fast, no rollback.
    _stage(): Wraps one stage with its StageRecord, log context and
        reporter calls. A ``RemoteCallError`` escaping a stage is wrapped
        into a ``DeploymentError`` naming that stage.
    build_pipeline(): Factory wiring the boto3 adapters, the Pulumi
        provisioner and the HTTP probe from a ``PipelineConfig``.

Architecture Decisions:
    - The source revision is resolved before anything touches AWS, so a
      missing revision is a config error, not a failure after migrations.
    - Artifacts are written in both outcomes when enabled; a write error
      is logged and does not change the run's outcome.

Related Modules:
    - :mod:`rollout.deploy.context` — StageContext passed to every stage
    - :mod:`rollout.deploy.tokens` — The success-token chain
    - :mod:`rollout.cli.deploy` — Renders the result and exits

Tags:
    workflow, orchestration, pipeline, deployment, runner
"""

from __future__ import annotations

from typing import Callable, TypeVar

from rollout.core.enums import Stage, StageStatus
from rollout.core.errors import (
    ConfigError,
    DeploymentError,
    HealthCheckFailure,
    RemoteCallError,
    RemoteJobFailure,
    RolloutError,
    StabilizationFailure,
    StabilizationTimeout,
)
from rollout.core.logging import LogContext, get_logger
from rollout.core.result import Err, Ok, Result
from rollout.deploy.aws import (
    CloudWatchLogService,
    CodeBuildService,
    Ec2NetworkService,
    EcrRegistryService,
    EcsService,
    ElbV2Service,
    SsmParameterService,
    aws_session,
)
from rollout.deploy.builder import build_application, resolve_source_revision
from rollout.deploy.config import PipelineConfig
from rollout.deploy.context import StageContext
from rollout.deploy.hash_store import HashStore
from rollout.deploy.health import HttpHealthProbe, verify_health
from rollout.deploy.log_collector import LogCollector
from rollout.deploy.migrations import run_migrations
from rollout.deploy.polling import SYSTEM_CLOCK, Clock
from rollout.deploy.preflight import run_preflight
from rollout.deploy.progress import SilentReporter, StageReporter
from rollout.deploy.provision import PulumiProvisioner, provision_infrastructure
from rollout.deploy.remote import RemoteServices
from rollout.deploy.results import MigrationStatus, OverallStatus, PipelineResult
from rollout.deploy.stabilization import wait_for_stable
from rollout.deploy.trigger import trigger_rollout

logger = get_logger(__name__)

T = TypeVar("T")


class DeploymentPipeline:
    """Runs one deployment end to end.

    Parameters
    ----------
    config
        Immutable run configuration.
    services
        Remote dependencies (boto3 adapters in production, fakes in tests).
    reporter
        Sink for human-readable progress lines.
    clock
        Time source for polling and tag derivation.
    hash_store
        Overrides the store used by the skip-if-unchanged strategy.
    revision_resolver
        Resolves the source revision from the configured value.
    """

    def __init__(
        self,
        config: PipelineConfig,
        services: RemoteServices,
        *,
        reporter: StageReporter | None = None,
        clock: Clock = SYSTEM_CLOCK,
        hash_store: HashStore | None = None,
        revision_resolver: Callable[[str | None], str] = resolve_source_revision,
    ) -> None:
        self.config = config
        self.ctx = StageContext(
            config=config,
            services=services,
            reporter=reporter or SilentReporter(),
            clock=clock,
        )
        self.hash_store = hash_store
        self.revision_resolver = revision_resolver

    def run(self) -> Result[PipelineResult]:
        """Execute every stage in order.

        Returns
        -------
        Result[PipelineResult]
            ``Ok`` when the health probe passed; otherwise ``Err`` holding
            the stage failure, whose ``result`` is the partial run result.
        """
        config = self.config
        ctx = self.ctx
        result = PipelineResult(
            run_id=config.run_id,
            environment=config.environment,
            cluster=config.cluster,
            service=config.service,
        )

        with LogContext(run_id=config.run_id, environment=config.environment):
            logger.info("pipeline.started", cluster=config.cluster, service=config.service)
            try:
                revision = self.revision_resolver(config.source_revision)

                provisioned = self._stage(
                    result, Stage.PROVISION, lambda: provision_infrastructure(ctx),
                    skipped=lambda t: t.skipped,
                )
                preflight = self._stage(
                    result, Stage.PREFLIGHT, lambda: run_preflight(ctx, provisioned)
                )
                migrated = self._stage(
                    result,
                    Stage.MIGRATE,
                    lambda: run_migrations(ctx, preflight, hash_store=self.hash_store),
                    skipped=lambda t: t.outcome.status == MigrationStatus.SKIPPED,
                )
                result.migration = migrated.outcome
                if migrated.outcome.job_id:
                    result.stage(Stage.MIGRATE).identifiers["job_id"] = migrated.outcome.job_id

                built = self._stage(
                    result,
                    Stage.BUILD,
                    lambda: build_application(ctx, migrated, revision=revision),
                )
                result.image_tag = built.image_tag
                result.stage(Stage.BUILD).identifiers.update(
                    {"build_id": built.build_id, "image_tag": built.image_tag}
                )

                rolled_out = self._stage(
                    result, Stage.TRIGGER, lambda: trigger_rollout(ctx, built)
                )
                if rolled_out.deployment_id:
                    result.stage(Stage.TRIGGER).identifiers["deployment_id"] = rolled_out.deployment_id

                stable = self._stage(
                    result, Stage.STABILIZE, lambda: wait_for_stable(ctx, rolled_out)
                )
                result.health = self._stage(
                    result, Stage.VERIFY, lambda: verify_health(ctx, stable)
                )
                result.application_url = f"{config.health_scheme}://{stable.load_balancer_dns}"

            except RolloutError as exc:
                return Err(self._fail(result, exc))

            result.mark_complete(OverallStatus.PASSED)
            logger.info(
                "pipeline.completed",
                image_tag=result.image_tag,
                duration_seconds=result.duration_seconds,
            )
            self._write_artifacts(result, None)
            return Ok(result)

    # ------------------------------------------------------------------
    # Private methods
    # ------------------------------------------------------------------

    def _stage(
        self,
        result: PipelineResult,
        stage: Stage,
        run: Callable[[], T],
        *,
        skipped: Callable[[T], bool] | None = None,
    ) -> T:
        record = result.stage(stage)
        record.start()
        with LogContext(stage=stage.value):
            logger.info("stage.started")
            try:
                value = run()
            except RemoteCallError as exc:
                error = DeploymentError(f"{stage.value}: {exc.message}", stage=stage, cause=exc)
                error.context.metadata.update(exc.context.metadata)
                error.with_context(run_id=self.config.run_id)
                self._record_failure(record, stage, error)
                raise error from exc
            except RolloutError as exc:
                self._record_failure(record, stage, exc)
                raise

            status = StageStatus.SKIPPED if skipped and skipped(value) else StageStatus.SUCCEEDED
            record.finish(status)
            logger.info("stage.completed", status=status.value, duration_seconds=record.duration_seconds)
            return value

    def _record_failure(self, record, stage: Stage, error: RolloutError) -> None:
        record.finish(StageStatus.FAILED, error.message)
        record.identifiers.update(error.context.identifiers)
        if isinstance(error, ConfigError) and error.context.stage is None:
            error.context.stage = stage.value
        logger.error("stage.failed", error_type=type(error).__name__, error=error.message)
        self.ctx.reporter.failed(stage, error)

    def _fail(self, result: PipelineResult, error: RolloutError) -> RolloutError:
        error.result = result
        if isinstance(error, DeploymentError):
            result.failed_stage = error.stage
        elif error.context.stage:
            result.failed_stage = Stage(error.context.stage)
        if isinstance(error, (StabilizationTimeout, StabilizationFailure)):
            result.diagnostics = error.diagnostics
        if isinstance(error, HealthCheckFailure):
            result.health = error.probe
        result.error = error.to_dict()
        result.exit_code = int(error.exit_code)
        result.mark_complete(OverallStatus.FAILED)

        logger.error(
            "pipeline.failed",
            stage=result.failed_stage.value if result.failed_stage else None,
            error_type=type(error).__name__,
            exit_code=result.exit_code,
            identifiers=error.context.identifiers,
        )
        self._write_artifacts(result, error)
        return error

    def _write_artifacts(self, result: PipelineResult, error: RolloutError | None) -> None:
        if not self.config.write_artifacts:
            return
        try:
            collector = LogCollector(self.config.output_dir, self.config.run_id)
            if result.diagnostics is not None:
                collector.write_diagnostics(result.diagnostics)
            if isinstance(error, RemoteJobFailure) and error.log_tail:
                collector.write_log_tail("migration", error.log_tail)
            collector.write_summary(result)
        except OSError as exc:
            logger.warning("artifacts.write_failed", output_dir=str(self.config.output_dir), error=str(exc))


def build_services(config: PipelineConfig) -> RemoteServices:
    """Wire the production adapters for ``config``."""
    session = aws_session(config.region)
    return RemoteServices(
        builds=CodeBuildService.from_session(session),
        containers=EcsService.from_session(session),
        load_balancers=ElbV2Service.from_session(session),
        network=Ec2NetworkService.from_session(session),
        logs=CloudWatchLogService.from_session(session),
        registry=EcrRegistryService.from_session(session),
        parameters=SsmParameterService.from_session(session),
        provisioner=PulumiProvisioner(
            config.infra_dir,
            stack=config.pulumi_stack,
            binary=config.pulumi_binary,
            timeout=config.provision_timeout_seconds,
        ),
        probe=HttpHealthProbe(timeout=config.health_timeout_seconds),
    )


def build_pipeline(
    config: PipelineConfig, *, reporter: StageReporter | None = None
) -> DeploymentPipeline:
    """Create a pipeline backed by AWS for ``config``."""
    return DeploymentPipeline(config, build_services(config), reporter=reporter)


__all__ = ["DeploymentPipeline", "build_pipeline", "build_services"]
