"""Tests for the stabilization wait and its diagnostics bundle."""

from __future__ import annotations

import pytest
from _support.fake_remote import (
    NEW_DEPLOYMENT,
    OLD_DEPLOYMENT,
    FakeClock,
    FakeRemote,
    snapshot,
    targets,
)

from rollout.core.errors import StabilizationFailure, StabilizationTimeout
from rollout.deploy.results import (
    MigrationOutcome,
    MigrationStatus,
    StoppedContainer,
    StoppedTask,
)
from rollout.deploy.stabilization import Observation, is_stable, rollout_failure, wait_for_stable
from rollout.deploy.tokens import (
    issue_built,
    issue_migrated,
    issue_preflight,
    issue_provisioned,
    issue_rollout,
)


def _rollout_token(deployment_id=NEW_DEPLOYMENT):
    preflight = issue_preflight(issue_provisioned("run000000001"), load_balancer_dns="lb.example.com")
    migrated = issue_migrated(preflight, MigrationOutcome(status=MigrationStatus.SUCCEEDED, strategy="build"))
    built = issue_built(migrated, image_tag="prod-a1b2c3d-2024-06-01", build_id="b:1")
    return issue_rollout(built, deployment_id=deployment_id)


@pytest.fixture
def rolling(remote: FakeRemote) -> FakeRemote:
    remote.containers.forced = True
    return remote


class TestIsStable:
    def test_converged(self):
        assert is_stable(Observation(snapshot(running=2), targets("healthy", "healthy")))

    @pytest.mark.parametrize(
        "snap",
        [
            snapshot(running=1),
            snapshot(running=2, pending=1),
            snapshot(running=2, deployments=2),
        ],
        ids=["running-short", "pending", "two-deployments"],
    )
    def test_counts_must_settle(self, snap):
        assert not is_stable(Observation(snap, targets("healthy", "healthy")))

    def test_unhealthy_target(self):
        assert not is_stable(Observation(snapshot(running=2), targets("healthy", "unhealthy")))

    def test_draining_targets_ignored(self):
        observation = Observation(snapshot(running=2), targets("healthy", "healthy", "draining"))
        assert is_stable(observation)

    def test_needs_enough_healthy_targets(self):
        assert not is_stable(Observation(snapshot(running=2), targets("healthy")))

    def test_no_load_balancer(self):
        assert is_stable(Observation(snapshot(running=2, target_groups=())))


class TestRolloutFailure:
    def test_circuit_breaker(self):
        observation = Observation(
            snapshot(running=0, rollout_state="FAILED", rollout_state_reason="tasks failed to start")
        )
        assert rollout_failure(observation, NEW_DEPLOYMENT) == "tasks failed to start"

    def test_rolled_back(self):
        observation = Observation(snapshot(running=2, primary_id=OLD_DEPLOYMENT))
        assert "rolled back" in rollout_failure(observation, NEW_DEPLOYMENT)

    def test_in_progress(self):
        observation = Observation(snapshot(running=1, deployments=2))
        assert rollout_failure(observation, NEW_DEPLOYMENT) is None


class TestWaitForStable:
    def test_stable_on_first_poll(self, config, rolling: FakeRemote, clock: FakeClock):
        token = wait_for_stable(rolling.context(config, clock), _rollout_token())
        assert token.snapshot.running_count == 2
        assert clock.sleeps == []

    def test_converges_on_last_allowed_poll(self, config, rolling: FakeRemote, clock: FakeClock):
        # polls at t=0,30,...,600; the 21st observes the converged state
        rolling.containers.rollout = [snapshot(running=1, deployments=2)] * 20 + [snapshot(running=2)]
        token = wait_for_stable(rolling.context(config, clock), _rollout_token())
        assert token.snapshot.running_count == 2
        assert clock.elapsed == 600
        assert rolling.names().count("ecs.describe_service") == 21

    def test_timeout_collects_diagnostics(self, config, rolling: FakeRemote, clock: FakeClock):
        rolling.containers.rollout = [
            snapshot(
                running=1,
                events=(
                    ("2024-06-01T12:05:00Z", "(service pathfinder-app) has started 1 tasks"),
                    ("2024-06-01T12:01:00Z", "(service pathfinder-app) has stopped 1 running tasks"),
                ),
            )
        ]
        rolling.load_balancers.health = [targets("healthy", "unhealthy")]
        rolling.containers.stopped = [
            StoppedTask(
                task_arn="arn:aws:ecs:us-east-1:123456789012:task/pathfinder/dead",
                stopped_reason="Essential container in task exited",
                started_by=NEW_DEPLOYMENT,
                containers=[StoppedContainer(name="app", exit_code=1)],
            ),
            StoppedTask(
                task_arn="arn:aws:ecs:us-east-1:123456789012:task/pathfinder/old",
                stopped_reason="Scaling activity initiated by deployment",
                started_by=OLD_DEPLOYMENT,
            ),
        ]

        with pytest.raises(StabilizationTimeout) as exc_info:
            wait_for_stable(rolling.context(config, clock), _rollout_token())

        error = exc_info.value
        assert error.exit_code == 50
        assert error.context.identifiers["deployment_id"] == NEW_DEPLOYMENT
        diagnostics = error.diagnostics
        assert diagnostics.polls == 21
        assert diagnostics.elapsed_seconds == 600
        assert diagnostics.running_count == 1
        assert diagnostics.desired_count == 2
        assert diagnostics.reason.startswith("not stable after 600s")
        assert diagnostics.stop_reasons == ["Essential container in task exited"]
        assert [e.timestamp for e in diagnostics.recent_events] == [
            "2024-06-01T12:01:00Z",
            "2024-06-01T12:05:00Z",
        ]
        assert {t.state for t in diagnostics.targets} == {"healthy", "unhealthy"}

    def test_circuit_breaker_ends_wait(self, config, rolling: FakeRemote, clock: FakeClock):
        rolling.containers.rollout = [
            snapshot(
                running=0,
                deployments=2,
                rollout_state="FAILED",
                rollout_state_reason="ECS deployment circuit breaker: tasks failed to start.",
            )
        ]
        with pytest.raises(StabilizationFailure) as exc_info:
            wait_for_stable(rolling.context(config, clock), _rollout_token())
        diagnostics = exc_info.value.diagnostics
        assert diagnostics.polls == 1
        assert diagnostics.rollout_state == "FAILED"
        assert "circuit breaker" in diagnostics.reason
        assert exc_info.value.exit_code == 50

    def test_rollback_is_not_success(self, config, rolling: FakeRemote, clock: FakeClock):
        rolling.containers.rollout = [
            snapshot(running=1, deployments=2),
            snapshot(running=2, primary_id=OLD_DEPLOYMENT),
        ]
        with pytest.raises(StabilizationFailure, match="rolled back"):
            wait_for_stable(rolling.context(config, clock), _rollout_token())

    def test_requires_rollout_token(self, config, rolling, clock):
        with pytest.raises(TypeError):
            wait_for_stable(rolling.context(config, clock), issue_provisioned("run1"))
