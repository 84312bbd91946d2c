"""Stabilization stage.

Waits, within a bound, for the forced deployment to converge and collects
a diagnostics bundle when it does not.

Why This Matters:
    ``update-service`` returning 200 says nothing about whether the new
    tasks start. A task that crashes on boot is replaced, crashes again,
    and the service sits at ``running 1/2`` forever. Before this stage the
    operator's only signal was a generic waiter timing out; now the run
    ends with the counts, the recent service events and the stop reasons
    of the tasks that died.

Key Concepts:
    is_stable: running == desired, nothing pending, exactly one deployment
        left, and every load balancer target that is not draining is
        healthy (with at least ``desired`` healthy targets).
    rollout_failure: The orchestrator gave up on the deployment (circuit
        breaker) or rolled it back. Ends the wait immediately.
    collect_diagnostics: Counts, the last N events oldest first,
        stopped tasks started by the current deployment, target health.

Related Modules:
    - :mod:`rollout.deploy.polling` — The bounded wait
    - :mod:`rollout.deploy.health` — Runs only after this succeeds
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rollout.core.enums import Stage
from rollout.core.errors import RemoteCallError, StabilizationFailure, StabilizationTimeout
from rollout.core.logging import get_logger
from rollout.deploy.context import StageContext
from rollout.deploy.polling import poll_until
from rollout.deploy.results import DeploymentDiagnostics, ServiceSnapshot, TargetHealth
from rollout.deploy.tokens import RolloutToken, StableToken, issue_stable

logger = get_logger(__name__)

_IGNORED_TARGET_STATES = frozenset({"draining"})


@dataclass(frozen=True)
class Observation:
    """One poll of the service and its load balancer targets."""

    snapshot: ServiceSnapshot
    targets: list[TargetHealth] = field(default_factory=list)

    @property
    def healthy_targets(self) -> int:
        return sum(1 for t in self.targets if t.state == "healthy")

    def describe(self) -> str:
        text = (
            f"running {self.snapshot.running_count}/{self.snapshot.desired_count}, "
            f"pending {self.snapshot.pending_count}, "
            f"deployments {self.snapshot.deployment_count}"
        )
        if self.snapshot.target_group_arns:
            text += f", healthy targets {self.healthy_targets}"
        return text


def is_stable(observation: Observation) -> bool:
    snapshot = observation.snapshot
    if snapshot.running_count != snapshot.desired_count:
        return False
    if snapshot.pending_count != 0:
        return False
    if snapshot.deployment_count != 1:
        return False
    active = [t for t in observation.targets if t.state not in _IGNORED_TARGET_STATES]
    if any(t.state != "healthy" for t in active):
        return False
    if snapshot.target_group_arns and observation.healthy_targets < snapshot.desired_count:
        return False
    return True


def rollout_failure(observation: Observation, deployment_id: str | None) -> str | None:
    """Reason the rollout can no longer succeed, or None."""
    primary = observation.snapshot.primary_deployment
    if primary is None:
        return None
    if primary.rollout_state == "FAILED":
        return primary.rollout_state_reason or "deployment rollout failed"
    if deployment_id and primary.id != deployment_id and observation.snapshot.deployment_count == 1:
        return f"deployment {deployment_id} was replaced by {primary.id} (rolled back)"
    return None


class StabilizationWaiter:
    """Polls the service until it is stable, failed, or out of time."""

    def __init__(self, ctx: StageContext) -> None:
        self.ctx = ctx
        self.config = ctx.config

    def observe(self) -> Observation:
        services = self.ctx.services
        snapshot = services.containers.describe_service(self.config.cluster, self.config.service)
        targets: list[TargetHealth] = []
        for arn in snapshot.target_group_arns:
            targets.extend(services.load_balancers.target_health(arn))
        return Observation(snapshot=snapshot, targets=targets)

    def wait(self, token: RolloutToken):
        def on_poll(observation: Observation, attempt: int, elapsed: float) -> None:
            logger.debug("stabilize.polled", attempt=attempt, state=observation.describe())
            self.ctx.reporter.progress(Stage.STABILIZE, observation.describe(), elapsed)

        return poll_until(
            self.observe,
            lambda o: is_stable(o) or rollout_failure(o, token.deployment_id) is not None,
            interval=self.config.poll_interval_seconds,
            timeout=self.config.stabilize_timeout_seconds,
            clock=self.ctx.clock,
            on_poll=on_poll,
        )

    def collect_diagnostics(
        self,
        observation: Observation,
        *,
        reason: str,
        deployment_id: str | None,
        polls: int = 0,
        elapsed: float = 0.0,
    ) -> DeploymentDiagnostics:
        snapshot = observation.snapshot
        primary = snapshot.primary_deployment
        stopped = []
        try:
            stopped = self.ctx.services.containers.list_stopped_tasks(
                self.config.cluster, self.config.service, limit=max(10, self.config.diagnostics_event_count)
            )
        except RemoteCallError as exc:
            logger.warning("stabilize.stopped_tasks_unavailable", error=exc.message)
        if deployment_id:
            stopped = [t for t in stopped if t.started_by == deployment_id]

        return DeploymentDiagnostics(
            cluster=self.config.cluster,
            service=self.config.service,
            reason=reason,
            desired_count=snapshot.desired_count,
            running_count=snapshot.running_count,
            pending_count=snapshot.pending_count,
            deployment_count=snapshot.deployment_count,
            primary_deployment_id=primary.id if primary else None,
            rollout_state=primary.rollout_state if primary else None,
            rollout_state_reason=primary.rollout_state_reason if primary else None,
            recent_events=snapshot.recent_events(self.config.diagnostics_event_count),
            stopped_tasks=stopped,
            targets=observation.targets,
            polls=polls,
            elapsed_seconds=round(elapsed, 1),
        )


def wait_for_stable(ctx: StageContext, token: RolloutToken) -> StableToken:
    """Wait for the rollout to converge.

    Raises:
        StabilizationTimeout: Not stable within ``stabilize_timeout_seconds``.
        StabilizationFailure: The orchestrator failed or rolled back the
            deployment.
    Both carry a ``DeploymentDiagnostics`` bundle.
    """
    if not isinstance(token, RolloutToken):
        raise TypeError("stabilization requires the trigger stage's token")

    config = ctx.config
    ctx.reporter.started(
        Stage.STABILIZE,
        f"waiting up to {config.stabilize_timeout_seconds:.0f}s for {config.service} to stabilize",
    )
    waiter = StabilizationWaiter(ctx)
    polled = waiter.wait(token)
    observation: Observation = polled.value

    # A rollback to the previous deployment also looks stable
    failure = None if polled.timed_out else rollout_failure(observation, token.deployment_id)
    if failure is None and not polled.timed_out and is_stable(observation):
        logger.info("stabilize.completed", polls=polled.attempts, state=observation.describe())
        ctx.reporter.succeeded(Stage.STABILIZE, observation.describe())
        return issue_stable(token, observation.snapshot)

    if failure is None:
        reason = f"not stable after {polled.elapsed:.0f}s ({observation.describe()})"
        error_type = StabilizationTimeout
    else:
        reason = failure
        error_type = StabilizationFailure

    diagnostics = waiter.collect_diagnostics(
        observation,
        reason=reason,
        deployment_id=token.deployment_id,
        polls=polled.attempts,
        elapsed=polled.elapsed,
    )
    logger.error(
        "stabilize.failed",
        reason=reason,
        polls=polled.attempts,
        stop_reasons=diagnostics.stop_reasons,
    )
    error = error_type(f"service {config.service}: {reason}", diagnostics=diagnostics)
    error.with_context(run_id=config.run_id, service=config.service)
    if token.deployment_id:
        error.with_context(deployment_id=token.deployment_id)
    raise error


__all__ = [
    "Observation",
    "StabilizationWaiter",
    "is_stable",
    "rollout_failure",
    "wait_for_stable",
]
