"""Preflight resolution of every resource the later stages touch.

Runs right after provisioning. Nothing here changes remote state; it only
looks things up, so the run fails before the first remote job if a name is
wrong instead of twenty minutes into a build.

Checks:
    - the container service exists in the cluster
    - the load balancer exists (its DNS name feeds the health probe)
    - the application build project exists, and is VPC-scoped when the
      build queries the database
    - the migration build project exists and is VPC-scoped (build strategy)
    - the task subnets and security groups resolve (task strategy)

All problems are collected and reported together, then raised as one
``PreconditionFailure``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rollout.core.enums import Stage
from rollout.core.errors import PreconditionFailure, RemoteCallError
from rollout.core.logging import get_logger
from rollout.deploy.config import CoLocatedWithBuild, SeparateTask, SkipIfUnchanged
from rollout.deploy.context import StageContext
from rollout.deploy.tokens import PreflightToken, ProvisionedToken, issue_preflight

logger = get_logger(__name__)


@dataclass
class PreflightReport:
    """Collects every problem rather than stopping at the first."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    load_balancer_dns: str = ""
    subnets: tuple[str, ...] = ()
    security_groups: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors


def _check_build_project(ctx: StageContext, report: PreflightReport, project: str, *, needs_vpc: bool, role: str) -> None:
    try:
        info = ctx.services.builds.describe_project(project)
    except RemoteCallError as exc:
        report.errors.append(f"{role} build project {project!r}: {exc.message}")
        return
    if needs_vpc and not info.vpc_id:
        report.errors.append(
            f"{role} build project {project!r} is not VPC-scoped but needs database access; "
            "a build outside the VPC cannot reach the private database"
        )


def _check_task_network(ctx: StageContext, report: PreflightReport, strategy: SeparateTask) -> None:
    if not strategy.subnets:
        report.errors.append("migration task has no subnets (set ROLLOUT_MIGRATION_SUBNETS)")
    else:
        try:
            report.subnets = tuple(ctx.services.network.resolve_subnets(strategy.subnets))
        except RemoteCallError as exc:
            report.errors.append(f"migration task subnets: {exc.message}")
    if not strategy.security_groups:
        report.errors.append(
            "migration task has no security groups (set ROLLOUT_MIGRATION_SECURITY_GROUPS)"
        )
    else:
        try:
            report.security_groups = tuple(
                ctx.services.network.resolve_security_groups(strategy.security_groups)
            )
        except RemoteCallError as exc:
            report.errors.append(f"migration task security groups: {exc.message}")
    if strategy.assign_public_ip:
        report.warnings.append("migration task will get a public IP")


def check_preconditions(ctx: StageContext) -> PreflightReport:
    """Look up every resource and return the collected report."""
    config = ctx.config
    report = PreflightReport()

    try:
        ctx.services.containers.describe_service(config.cluster, config.service)
    except RemoteCallError as exc:
        report.errors.append(f"service {config.service!r} in cluster {config.cluster!r}: {exc.message}")

    try:
        report.load_balancer_dns = ctx.services.load_balancers.dns_name(config.load_balancer)
    except RemoteCallError as exc:
        report.errors.append(f"load balancer {config.load_balancer!r}: {exc.message}")

    _check_build_project(
        ctx, report, config.app_project, needs_vpc=config.app_requires_database, role="application"
    )

    strategy = config.migration
    if isinstance(strategy, SkipIfUnchanged):
        strategy = strategy.inner
    if isinstance(strategy, CoLocatedWithBuild):
        _check_build_project(ctx, report, strategy.project, needs_vpc=True, role="migration")
    elif isinstance(strategy, SeparateTask):
        _check_task_network(ctx, report, strategy)

    if config.app_requires_database and not config.database_secret_arn:
        report.warnings.append(
            "no database secret configured; the application build must resolve DATABASE_URL itself"
        )
    return report


def run_preflight(ctx: StageContext, token: ProvisionedToken) -> PreflightToken:
    """Resolve resources and issue the preflight token.

    Raises:
        PreconditionFailure: One or more resources could not be resolved.
    """
    if not isinstance(token, ProvisionedToken):
        raise TypeError("preflight requires the provisioning stage's token")

    ctx.reporter.started(Stage.PREFLIGHT, "resolving service, load balancer and build projects")
    report = check_preconditions(ctx)
    for warning in report.warnings:
        logger.warning("preflight.warning", detail=warning)
        ctx.reporter.info(warning)

    if not report.valid:
        logger.error("preflight.failed", errors=report.errors)
        error = PreconditionFailure("; ".join(report.errors))
        error.with_context(run_id=ctx.config.run_id, metadata={"errors": report.errors})
        raise error

    logger.info("preflight.completed", load_balancer_dns=report.load_balancer_dns)
    ctx.reporter.succeeded(Stage.PREFLIGHT, report.load_balancer_dns)
    return issue_preflight(
        token,
        load_balancer_dns=report.load_balancer_dns,
        task_subnets=report.subnets,
        task_security_groups=report.security_groups,
    )


__all__ = ["PreflightReport", "check_preconditions", "run_preflight"]
