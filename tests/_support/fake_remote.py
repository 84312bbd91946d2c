"""
In-memory fakes for the remote services a pipeline run drives.

Every fake appends to one shared ``calls`` list so tests can assert on the
order of remote operations across services. Scripted sequences (build
statuses, task states, service snapshots, target health) are consumed one
entry per call and repeat their last entry once exhausted.

Usage::

    remote = FakeRemote()
    remote.builds.script("pathfinder-migration-build", ["IN_PROGRESS", "FAILED"])
    pipeline = DeploymentPipeline(config, remote.services(), clock=clock.as_clock())
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Sequence

from rollout.core.errors import RemoteCallError
from rollout.deploy.context import StageContext
from rollout.deploy.polling import Clock
from rollout.deploy.progress import SilentReporter
from rollout.deploy.remote import BuildProjectInfo, ProvisionOutcome, RemoteServices
from rollout.deploy.results import (
    BuildJob,
    BuildStatus,
    HealthProbeResult,
    ServiceDeployment,
    ServiceEvent,
    ServiceSnapshot,
    StoppedTask,
    TargetHealth,
    TaskDescription,
)

REVISION = "a1b2c3d4e5f60718293a4b5c6d7e8f9012345678"
LB_DNS = "pathfinder-lb-1234567890.us-east-1.elb.amazonaws.com"
TARGET_GROUP = "arn:aws:elasticloadbalancing:us-east-1:123456789012:targetgroup/pathfinder/abc"
TASK_ARN = "arn:aws:ecs:us-east-1:123456789012:task/pathfinder/0f1e2d3c4b5a"
NEW_DEPLOYMENT = "ecs-svc/1111111111111111111"
OLD_DEPLOYMENT = "ecs-svc/0000000000000000000"


def _next(script: list):
    """Pop the next scripted value, repeating the last one."""
    return script.pop(0) if len(script) > 1 else script[0]


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Monotonic time that only moves when ``sleep`` is called."""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)) -> None:
        self.elapsed = 0.0
        self.sleeps: list[float] = []
        self.start = start

    def monotonic(self) -> float:
        return self.elapsed

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.elapsed += seconds

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def as_clock(self) -> Clock:
        return Clock(monotonic=self.monotonic, sleep=self.sleep, now=self.now)


# =============================================================================
# Snapshot helpers
# =============================================================================


def snapshot(
    *,
    running: int,
    desired: int = 2,
    pending: int = 0,
    deployments: int = 1,
    primary_id: str = NEW_DEPLOYMENT,
    rollout_state: str | None = None,
    rollout_state_reason: str | None = None,
    events: Sequence[tuple[str, str]] = (),
    target_groups: Sequence[str] = (TARGET_GROUP,),
    task_definition: str = "arn:aws:ecs:us-east-1:123456789012:task-definition/pathfinder-app:7",
) -> ServiceSnapshot:
    """A service snapshot with a PRIMARY deployment plus ``deployments - 1`` ACTIVE ones."""
    rows = [
        ServiceDeployment(
            id=primary_id,
            status="PRIMARY",
            desired_count=desired,
            running_count=running,
            pending_count=pending,
            rollout_state=rollout_state,
            rollout_state_reason=rollout_state_reason,
        )
    ]
    rows.extend(
        ServiceDeployment(id=f"{OLD_DEPLOYMENT[:-1]}{i}", status="ACTIVE", desired_count=desired)
        for i in range(deployments - 1)
    )
    return ServiceSnapshot(
        cluster="pathfinder",
        service="pathfinder-app",
        desired_count=desired,
        running_count=running,
        pending_count=pending,
        deployments=rows,
        events=[ServiceEvent(timestamp=ts, message=msg) for ts, msg in events],
        target_group_arns=list(target_groups),
        task_definition=task_definition,
    )


def targets(*states: str) -> list[TargetHealth]:
    return [
        TargetHealth(target_id=f"10.0.1.{i + 10}", port=3000, state=state, target_group_arn=TARGET_GROUP)
        for i, state in enumerate(states)
    ]


# =============================================================================
# Fakes
# =============================================================================


class FakeBuilds:
    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.started: list[dict] = []
        self.projects: dict[str, BuildProjectInfo] = {
            "pathfinder-app-build": BuildProjectInfo("pathfinder-app-build", vpc_id="vpc-0abc"),
            "pathfinder-migration-build": BuildProjectInfo(
                "pathfinder-migration-build", vpc_id="vpc-0abc"
            ),
        }
        self._scripts: dict[str, list[str]] = {}
        self._jobs: dict[str, list[str]] = {}

    def script(self, project: str, statuses: list[str]) -> None:
        self._scripts[project] = list(statuses)

    def start_build(self, project, *, overrides=(), source_version=None) -> BuildJob:
        build_id = f"{project}:{len(self.started) + 1:04d}"
        self.calls.append(("build.start", project))
        self.started.append(
            {
                "id": build_id,
                "project": project,
                "overrides": {o.name: o for o in overrides},
                "source_version": source_version,
            }
        )
        self._jobs[build_id] = list(self._scripts.get(project, ["IN_PROGRESS", "SUCCEEDED"]))
        return BuildJob(id=build_id, project=project, status=BuildStatus.IN_PROGRESS)

    def get_build(self, build_id: str) -> BuildJob:
        self.calls.append(("build.get", build_id))
        status = _next(self._jobs[build_id])
        return BuildJob(
            id=build_id,
            project=build_id.split(":", 1)[0],
            status=BuildStatus.parse(status),
            logs_url=f"https://console.aws.amazon.com/codebuild/{build_id}",
        )

    def describe_project(self, project: str) -> BuildProjectInfo:
        self.calls.append(("build.describe_project", project))
        if project not in self.projects:
            raise RemoteCallError(f"Build project {project} not found", service="codebuild", code="NotFound")
        return self.projects[project]


class FakeContainers:
    """Service snapshots switch from ``steady`` to ``rollout`` once a deployment is forced."""

    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.steady = snapshot(running=2, primary_id=OLD_DEPLOYMENT)
        self.rollout: list[ServiceSnapshot] = [snapshot(running=2)]
        self.task_states: list[TaskDescription] = [
            TaskDescription(task_arn=TASK_ARN, last_status="RUNNING"),
            TaskDescription(task_arn=TASK_ARN, last_status="STOPPED", exit_code=0),
        ]
        self.stopped: list[StoppedTask] = []
        self.run_task_args: dict = {}
        self.forced = False
        self.reject_update: RemoteCallError | None = None
        self.registered: list[tuple[str, str, str]] = []

    def run_task(self, cluster, task_definition, *, subnets, security_groups,
                 assign_public_ip, launch_type, started_by=None) -> str:
        self.calls.append(("ecs.run_task", task_definition))
        self.run_task_args = {
            "cluster": cluster,
            "task_definition": task_definition,
            "subnets": list(subnets),
            "security_groups": list(security_groups),
            "assign_public_ip": assign_public_ip,
            "launch_type": launch_type,
            "started_by": started_by,
        }
        return TASK_ARN

    def describe_task(self, cluster, task_arn, container_name=None) -> TaskDescription:
        self.calls.append(("ecs.describe_task", task_arn))
        return _next(self.task_states)

    def describe_service(self, cluster, service) -> ServiceSnapshot:
        self.calls.append(("ecs.describe_service", service))
        if self.forced:
            return _next(self.rollout)
        return self.steady

    def force_new_deployment(self, cluster, service, task_definition=None) -> ServiceSnapshot:
        self.calls.append(("ecs.force_new_deployment", task_definition))
        if self.reject_update is not None:
            raise self.reject_update
        self.forced = True
        return snapshot(running=2, deployments=2)

    def list_stopped_tasks(self, cluster, service, *, limit=10) -> list[StoppedTask]:
        self.calls.append(("ecs.list_stopped_tasks", limit))
        return list(self.stopped)

    def register_image_revision(self, task_definition, container_name, image) -> str:
        self.calls.append(("ecs.register_image_revision", image))
        self.registered.append((task_definition, container_name, image))
        return "arn:aws:ecs:us-east-1:123456789012:task-definition/pathfinder-app:8"


class FakeLoadBalancers:
    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.dns = LB_DNS
        self.health: list[list[TargetHealth]] = [targets("healthy", "healthy")]

    def dns_name(self, name: str) -> str:
        self.calls.append(("elb.dns_name", name))
        return self.dns

    def target_health(self, target_group_arn: str) -> list[TargetHealth]:
        self.calls.append(("elb.target_health", target_group_arn))
        return _next(self.health)


class FakeNetwork:
    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.names = {"pathfinder-private-a": "subnet-0aaa", "pathfinder-db-clients": "sg-0ddd"}

    def _resolve(self, refs):
        resolved = []
        for ref in refs:
            if ref.startswith(("subnet-", "sg-")):
                resolved.append(ref)
            elif ref in self.names:
                resolved.append(self.names[ref])
            else:
                raise RemoteCallError(f"{ref} not found", service="ec2", code="NotFound")
        return resolved

    def resolve_subnets(self, refs):
        self.calls.append(("ec2.resolve_subnets", tuple(refs)))
        return self._resolve(refs)

    def resolve_security_groups(self, refs):
        self.calls.append(("ec2.resolve_security_groups", tuple(refs)))
        return self._resolve(refs)


class FakeLogs:
    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.streams: dict[str, dict[str, list[str]]] = {}

    def latest_stream(self, log_group: str, contains: str) -> str | None:
        self.calls.append(("logs.latest_stream", contains))
        for name in self.streams.get(log_group, {}):
            if contains in name:
                return name
        return None

    def tail(self, log_group: str, stream: str, *, limit: int = 50) -> list[str]:
        self.calls.append(("logs.tail", stream))
        return self.streams[log_group][stream][-limit:]


class FakeRegistry:
    """The image appears after ``appears_after`` lookups."""

    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.appears_after = 1
        self.lookups = 0

    def image_exists(self, repository: str, tag: str) -> bool:
        self.calls.append(("ecr.image_exists", f"{repository}:{tag}"))
        self.lookups += 1
        return self.lookups >= self.appears_after


class FakeParameters:
    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.values: dict[str, str] = {}

    def get(self, name: str) -> str | None:
        self.calls.append(("ssm.get", name))
        return self.values.get(name)

    def put(self, name: str, value: str) -> None:
        self.calls.append(("ssm.put", name))
        self.values[name] = value


class FakeProvisioner:
    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.outcome = ProvisionOutcome(exit_code=0, duration_seconds=42.0)

    def apply(self) -> ProvisionOutcome:
        self.calls.append(("provision.apply",))
        return self.outcome


class FakeProbe:
    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.status: int | None = 200
        self.error: str | None = None

    def probe(self, url: str) -> HealthProbeResult:
        self.calls.append(("probe", url))
        return HealthProbeResult(
            endpoint=url,
            http_status=self.status,
            success=self.status is not None and 200 <= self.status < 300,
            error=self.error,
            elapsed_ms=12.5,
        )


class FakeRemote:
    """All fakes sharing one call log."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.builds = FakeBuilds(self.calls)
        self.containers = FakeContainers(self.calls)
        self.load_balancers = FakeLoadBalancers(self.calls)
        self.network = FakeNetwork(self.calls)
        self.logs = FakeLogs(self.calls)
        self.registry = FakeRegistry(self.calls)
        self.parameters = FakeParameters(self.calls)
        self.provisioner = FakeProvisioner(self.calls)
        self.probe = FakeProbe(self.calls)

    def services(self) -> RemoteServices:
        return RemoteServices(
            builds=self.builds,
            containers=self.containers,
            load_balancers=self.load_balancers,
            network=self.network,
            logs=self.logs,
            registry=self.registry,
            parameters=self.parameters,
            provisioner=self.provisioner,
            probe=self.probe,
        )

    def context(self, config, clock: FakeClock, reporter=None) -> StageContext:
        return StageContext(
            config=config,
            services=self.services(),
            reporter=reporter or SilentReporter(),
            clock=clock.as_clock(),
        )

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]
