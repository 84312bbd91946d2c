"""Schema migration stage.

Runs database migrations from inside the VPC, the only place the private
database is reachable from, and gates every later stage on the outcome.

Why This Matters:
    The application build queries the database (static pages render from
    live rows). If it ran against an un-migrated schema it would either
    fail obscurely or, worse, bake stale data into the image. So the build
    takes a ``MigratedToken`` that only this stage issues, and only on
    success.

Key Concepts:
    MigrationRunner.run: Dispatches on the configured strategy and returns
        a ``MigrationOutcome`` (SUCCEEDED, FAILED or SKIPPED). It never
        raises for a failed migration; ``run_migrations`` does.
    CoLocatedWithBuild: Start the migration build project with
        ``RUN_MIGRATIONS=true`` and wait for a terminal build state.
    SeparateTask: Run the one-shot migration task, wait for STOPPED, read
        the container exit code. 0 is success, anything else is failure.
    SkipIfUnchanged: Hash the migration sources; skip without any remote
        call when the hash matches the last successful apply.

Related Modules:
    - :mod:`rollout.deploy.hash_store` — Where the applied hash is kept
    - :mod:`rollout.deploy.builder` — Consumes the MigratedToken
"""

from __future__ import annotations

from rollout.core.enums import Stage
from rollout.core.errors import ConfigError, RemoteCallError, RemoteJobFailure
from rollout.core.hashing import hash_tree
from rollout.core.logging import get_logger
from rollout.deploy.config import CoLocatedWithBuild, SeparateTask, SkipIfUnchanged
from rollout.deploy.context import StageContext
from rollout.deploy.hash_store import FileHashStore, HashStore, ParameterStoreHashStore
from rollout.deploy.polling import poll_until
from rollout.deploy.remote import EnvironmentOverride
from rollout.deploy.results import MigrationOutcome, MigrationStatus
from rollout.deploy.tokens import MigratedToken, PreflightToken, issue_migrated

logger = get_logger(__name__)

_LOG_TAIL_LINES = 30


def hash_store_for(ctx: StageContext, strategy: SkipIfUnchanged) -> HashStore:
    """Build the hash store a SkipIfUnchanged strategy asks for."""
    if strategy.hash_store == "ssm":
        name = strategy.hash_parameter or f"/rollout/{ctx.config.environment}/migration-hash"
        return ParameterStoreHashStore(ctx.services.parameters, name)
    return FileHashStore(strategy.hash_file, ctx.config.environment)


def describe_strategy(strategy: CoLocatedWithBuild | SeparateTask | SkipIfUnchanged) -> str:
    if isinstance(strategy, CoLocatedWithBuild):
        return f"migration build {strategy.project}"
    if isinstance(strategy, SeparateTask):
        return f"migration task {strategy.task_definition}"
    return f"skip-if-unchanged over {strategy.source_dir}, else {describe_strategy(strategy.inner)}"


class MigrationRunner:
    """Runs migrations with the configured strategy."""

    def __init__(self, ctx: StageContext, hash_store: HashStore | None = None) -> None:
        self.ctx = ctx
        self.config = ctx.config
        self._hash_store = hash_store

    def run(self, token: PreflightToken) -> MigrationOutcome:
        return self._run_strategy(self.config.migration, token)

    def _run_strategy(self, strategy, token: PreflightToken) -> MigrationOutcome:
        if isinstance(strategy, SkipIfUnchanged):
            return self._run_skip_if_unchanged(strategy, token)
        if isinstance(strategy, SeparateTask):
            return self._run_task(strategy, token)
        return self._run_build(strategy)

    # ------------------------------------------------------------------
    # CoLocatedWithBuild
    # ------------------------------------------------------------------

    def _run_build(self, strategy: CoLocatedWithBuild) -> MigrationOutcome:
        builds = self.ctx.services.builds
        job = builds.start_build(
            strategy.project,
            overrides=[
                EnvironmentOverride("RUN_MIGRATIONS", "true"),
                EnvironmentOverride("DEPLOY_ENVIRONMENT", self.config.environment),
            ],
        )
        logger.info("migration.build_started", build_id=job.id, project=strategy.project)
        self.ctx.reporter.info(f"migration build {job.id}")

        try:
            polled = poll_until(
                lambda: builds.get_build(job.id),
                lambda b: b.status.is_terminal,
                interval=self.config.poll_interval_seconds,
                timeout=self.config.migration_timeout_seconds,
                clock=self.ctx.clock,
                on_poll=self.ctx.reporting_poll(Stage.MIGRATE),
            )
        except RemoteCallError as exc:
            raise self._lost_job(f"migration build {job.id}", job.id, exc) from exc
        final = polled.value
        logger.info(
            "migration.build_finished",
            build_id=job.id,
            status=final.status.value,
            polls=polled.attempts,
            timed_out=polled.timed_out,
        )
        if polled.timed_out:
            return MigrationOutcome(
                status=MigrationStatus.FAILED,
                strategy="build",
                job_id=job.id,
                logs_url=final.logs_url,
                detail=f"migration build still {final.status.value} after "
                f"{self.config.migration_timeout_seconds:.0f}s",
            )
        if not final.status.is_success:
            return MigrationOutcome(
                status=MigrationStatus.FAILED,
                strategy="build",
                job_id=job.id,
                logs_url=final.logs_url,
                detail=f"migration build ended {final.status.value}",
            )
        return MigrationOutcome(
            status=MigrationStatus.SUCCEEDED,
            strategy="build",
            job_id=job.id,
            logs_url=final.logs_url,
        )

    # ------------------------------------------------------------------
    # SeparateTask
    # ------------------------------------------------------------------

    def _run_task(self, strategy: SeparateTask, token: PreflightToken) -> MigrationOutcome:
        containers = self.ctx.services.containers
        cluster = self.config.cluster
        task_arn = containers.run_task(
            cluster,
            strategy.task_definition,
            subnets=token.task_subnets or strategy.subnets,
            security_groups=token.task_security_groups or strategy.security_groups,
            assign_public_ip=strategy.assign_public_ip,
            launch_type=strategy.launch_type,
            started_by=f"rollout-{self.config.run_id}",
        )
        logger.info("migration.task_started", task_arn=task_arn, task_definition=strategy.task_definition)
        self.ctx.reporter.info(f"migration task {task_arn}")

        try:
            polled = poll_until(
                lambda: containers.describe_task(cluster, task_arn, strategy.container_name),
                lambda t: t.is_stopped,
                interval=self.config.poll_interval_seconds,
                timeout=self.config.migration_timeout_seconds,
                clock=self.ctx.clock,
                on_poll=self.ctx.reporting_poll(Stage.MIGRATE),
            )
        except RemoteCallError as exc:
            raise self._lost_job(f"migration task {task_arn}", task_arn, exc) from exc
        task = polled.value
        logger.info(
            "migration.task_finished",
            task_arn=task_arn,
            last_status=task.last_status,
            exit_code=task.exit_code,
            polls=polled.attempts,
        )

        if polled.timed_out:
            detail = (
                f"migration task still {task.last_status} after "
                f"{self.config.migration_timeout_seconds:.0f}s"
            )
            exit_code = None
        elif task.exit_code is None:
            detail = f"migration task stopped without an exit code: {task.stopped_reason or 'unknown reason'}"
            exit_code = None
        elif task.exit_code != 0:
            detail = f"migration exited with code {task.exit_code}"
            exit_code = task.exit_code
        else:
            return MigrationOutcome(
                status=MigrationStatus.SUCCEEDED, strategy="task", job_id=task_arn, exit_code=0
            )

        return MigrationOutcome(
            status=MigrationStatus.FAILED,
            strategy="task",
            job_id=task_arn,
            exit_code=exit_code,
            detail=detail,
            log_tail=self._log_tail(strategy, task_arn),
        )

    def _lost_job(self, what: str, job_id: str, exc: RemoteCallError) -> RemoteJobFailure:
        """The job was started but can no longer be observed; it may still be running."""
        logger.error("migration.poll_failed", job_id=job_id, error=exc.message, code=exc.code)
        error = RemoteJobFailure(
            f"lost track of {what}: {exc.message}",
            stage=Stage.MIGRATE,
            job_id=job_id,
            cause=exc,
        )
        error.with_context(run_id=self.config.run_id)
        return error

    def _log_tail(self, strategy: SeparateTask, task_arn: str) -> list[str]:
        """Last lines of the migration container's log, best effort."""
        if not strategy.log_group:
            return []
        logs = self.ctx.services.logs
        task_id = task_arn.rsplit("/", 1)[-1]
        try:
            stream = logs.latest_stream(strategy.log_group, task_id) or logs.latest_stream(
                strategy.log_group, strategy.log_stream_filter
            )
            if stream is None:
                return []
            return logs.tail(strategy.log_group, stream, limit=_LOG_TAIL_LINES)
        except RemoteCallError as exc:
            logger.warning("migration.log_tail_unavailable", log_group=strategy.log_group, error=exc.message)
            return []

    # ------------------------------------------------------------------
    # SkipIfUnchanged
    # ------------------------------------------------------------------

    def _run_skip_if_unchanged(
        self, strategy: SkipIfUnchanged, token: PreflightToken
    ) -> MigrationOutcome:
        try:
            digest = hash_tree(strategy.source_dir, strategy.patterns)
        except FileNotFoundError as exc:
            raise ConfigError(
                f"Migration source directory {strategy.source_dir} does not exist",
                key="ROLLOUT_MIGRATION_SOURCE_DIR",
                cause=exc,
            ) from exc

        store = self._hash_store or hash_store_for(self.ctx, strategy)
        applied = store.load()
        if applied == digest:
            logger.info("migration.skipped", content_hash=digest[:12])
            return MigrationOutcome(
                status=MigrationStatus.SKIPPED,
                strategy="skip-if-unchanged",
                content_hash=digest,
                detail="migration sources unchanged since last successful apply",
            )

        logger.info(
            "migration.changed",
            content_hash=digest[:12],
            applied_hash=applied[:12] if applied else None,
        )
        outcome = self._run_strategy(strategy.inner, token)
        if outcome.status == MigrationStatus.SUCCEEDED:
            store.save(digest)
            logger.info("migration.hash_recorded", content_hash=digest[:12])
        return outcome.model_copy(
            update={"content_hash": digest, "strategy": f"skip-if-unchanged/{outcome.strategy}"}
        )


def run_migrations(
    ctx: StageContext, token: PreflightToken, *, hash_store: HashStore | None = None
) -> MigratedToken:
    """Run migrations and issue the token the application build requires.

    Raises:
        RemoteJobFailure: The migration did not succeed. Nothing downstream
            may run.
    """
    if not isinstance(token, PreflightToken):
        raise TypeError("migrations require the preflight stage's token")

    ctx.reporter.started(Stage.MIGRATE, describe_strategy(ctx.config.migration))
    outcome = MigrationRunner(ctx, hash_store).run(token)

    if outcome.status == MigrationStatus.FAILED:
        logger.error(
            "migration.failed",
            job_id=outcome.job_id,
            exit_code=outcome.exit_code,
            detail=outcome.detail,
        )
        error = RemoteJobFailure(
            outcome.detail or "migration failed",
            stage=Stage.MIGRATE,
            job_id=outcome.job_id,
            logs_url=outcome.logs_url,
            container_exit_code=outcome.exit_code,
            log_tail=outcome.log_tail,
        )
        error.with_context(run_id=ctx.config.run_id)
        raise error

    if outcome.status == MigrationStatus.SKIPPED:
        ctx.reporter.skipped(Stage.MIGRATE, outcome.detail or "unchanged")
    else:
        ctx.reporter.succeeded(Stage.MIGRATE, f"{outcome.job_id} SUCCEEDED")
    return issue_migrated(token, outcome)


__all__ = ["MigrationRunner", "describe_strategy", "hash_store_for", "run_migrations"]
